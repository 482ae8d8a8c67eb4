"""Data structures for the income ledger and its derived reports."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class IncomeType(str, Enum):
    """Income types with a dedicated column in the spreadsheet report."""
    TRANSFER = "TRANSFER"
    WELCOME_BONUS = "WELCOME_BONUS"
    REALIZED_PNL = "REALIZED_PNL"
    FUNDING_FEE = "FUNDING_FEE"
    COMMISSION = "COMMISSION"
    INSURANCE_CLEAR = "INSURANCE_CLEAR"
    COMMISSION_REBATE = "COMMISSION_REBATE"
    REFERRAL_KICKBACK = "REFERRAL_KICKBACK"


# Spreadsheet column for each known income type
INCOME_TYPE_COLUMNS: Dict[str, str] = {
    IncomeType.TRANSFER.value: "transfer",
    IncomeType.REALIZED_PNL.value: "realizedPnl",
    IncomeType.FUNDING_FEE.value: "fundingFee",
    IncomeType.COMMISSION.value: "commission",
    IncomeType.COMMISSION_REBATE.value: "commissionRebate",
    IncomeType.REFERRAL_KICKBACK.value: "referralKickback",
    IncomeType.INSURANCE_CLEAR.value: "insuranceClear",
    IncomeType.WELCOME_BONUS.value: "welcomeBonus",
}


@dataclass(frozen=True)
class IncomeRecord:
    """One ledger entry exactly as delivered by the income feed."""
    symbol: str
    income_type: str
    income: str          # decimal string, kept verbatim
    asset: str
    info: str
    time: int            # epoch milliseconds
    tran_id: str
    trade_id: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "IncomeRecord":
        """Build a record from the exchange's camelCase payload."""
        return cls(
            symbol=data.get('symbol', '') or '',
            income_type=data['incomeType'],
            income=str(data['income']),
            asset=data.get('asset', '') or '',
            info=str(data.get('info', '') or ''),
            time=int(data['time']),
            tran_id=str(data.get('tranId', '')),
            trade_id=str(data.get('tradeId', '')),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'incomeType': self.income_type,
            'income': self.income,
            'asset': self.asset,
            'info': self.info,
            'time': self.time,
            'tranId': self.tran_id,
            'tradeId': self.trade_id,
        }


@dataclass
class MappedIncomeRecord:
    """Income entry with a numeric amount, produced by consolidation."""
    symbol: str
    income_type: str
    income: Decimal
    asset: str
    info: str
    time: int
    tran_id: str
    trade_id: str

    @classmethod
    def from_record(cls, record: IncomeRecord) -> "MappedIncomeRecord":
        # Consolidated entries may span several symbols
        return cls(
            symbol='',
            income_type=record.income_type,
            income=Decimal(record.income),
            asset=record.asset,
            info=record.info,
            time=record.time,
            tran_id=record.tran_id,
            trade_id=record.trade_id,
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'incomeType': self.income_type,
            'income': format_decimal(self.income),
            'asset': self.asset,
            'info': self.info,
            'time': self.time,
            'tranId': self.tran_id,
            'tradeId': self.trade_id,
        }


@dataclass
class ExcelRow:
    """One spreadsheet row: a single asset on a single day."""
    date: str
    asset: str
    transfer: Decimal = field(default_factory=Decimal)
    realizedPnl: Decimal = field(default_factory=Decimal)
    fundingFee: Decimal = field(default_factory=Decimal)
    commission: Decimal = field(default_factory=Decimal)
    commissionRebate: Decimal = field(default_factory=Decimal)
    referralKickback: Decimal = field(default_factory=Decimal)
    insuranceClear: Decimal = field(default_factory=Decimal)
    welcomeBonus: Decimal = field(default_factory=Decimal)
    total: Decimal = field(default_factory=Decimal)

    def add(self, income_type: str, amount: Decimal) -> None:
        """Add an amount to its income type column and to the total.

        Unknown income types only count towards ``total``.
        """
        column = INCOME_TYPE_COLUMNS.get(income_type)
        if column is not None:
            setattr(self, column, getattr(self, column) + amount)
        self.total += amount

    def to_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {'date': self.date}
        for column in INCOME_TYPE_COLUMNS.values():
            row[column] = format_decimal(getattr(self, column))
        row['total'] = format_decimal(self.total)
        row['asset'] = self.asset
        return row


@dataclass
class PageWindow:
    """Time window of the next page request."""
    start: int
    end: int
    page_count: int = 0


# Account name -> records in feed order
AggregatedResult = Dict[str, List[IncomeRecord]]


def format_decimal(value: Optional[Decimal]) -> str:
    """Render a decimal in plain notation (never ``1E-8``)."""
    if value is None:
        return ''
    return format(value, 'f')
