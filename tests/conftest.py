"""Pytest configuration and shared fixtures."""

from typing import Dict, List, Optional

import pytest

from income_export.clients.binance_income import PageResult
from income_export.config.settings import Account, ExportSettings, PaginationConfig
from income_export.models import IncomeRecord


T0 = 1704067200000  # 2024-01-01T00:00:00Z
T1 = 1704153600000  # 2024-01-02T00:00:00Z


def make_record(
    time: int,
    income: str = "1.5",
    income_type: str = "FUNDING_FEE",
    asset: str = "USDT",
    symbol: str = "BTCUSDT",
    tran_id: Optional[str] = None,
) -> IncomeRecord:
    return IncomeRecord(
        symbol=symbol,
        income_type=income_type,
        income=income,
        asset=asset,
        info=income_type,
        time=time,
        tran_id=tran_id if tran_id is not None else str(time),
        trade_id="",
    )


def make_page(start: int, count: int, step: int = 1000) -> List[IncomeRecord]:
    return [make_record(start + i * step) for i in range(count)]


class ScriptedFetcher:
    """Page fetcher replaying scripted results and recording every call."""

    def __init__(self, pages: Dict[str, List[PageResult]]):
        self.pages = {name: list(results) for name, results in pages.items()}
        self.calls = []

    async def __call__(self, account: Account, start_time: int, end_time: int, page_number: int = 0) -> PageResult:
        self.calls.append((account.name, start_time, end_time, page_number))
        script = self.pages[account.name]
        if not script:
            raise AssertionError(f"Unexpected extra request for {account.name}")
        return script.pop(0)


class RecordingSleep:
    """Sleep replacement that only records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def account() -> Account:
    return Account(name="main", api_key="test-key", api_secret="test-secret")


@pytest.fixture
def second_account() -> Account:
    return Account(name="sub", api_key="sub-key", api_secret="sub-secret")


@pytest.fixture
def pagination_config() -> PaginationConfig:
    return PaginationConfig()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def export_settings(tmp_path, account) -> ExportSettings:
    return ExportSettings(
        accounts=[account],
        report={'output_dir': str(tmp_path), 'timezone': 'UTC'},
        pagination={'page_delay_seconds': 0, 'empty_page_delay_seconds': 0},
    )
