"""Daily consolidation and spreadsheet pivot of income records."""

from datetime import date, datetime, tzinfo
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .models import ExcelRow, IncomeRecord, MappedIncomeRecord


def to_local_date(timestamp_ms: int, tz: Optional[tzinfo] = None) -> date:
    """Calendar day of an epoch-ms timestamp in ``tz`` (local time if None)."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=tz).date()


def consolidate(records: Iterable[IncomeRecord], tz: Optional[tzinfo] = None) -> List[MappedIncomeRecord]:
    """
    Merge records of the same asset and income type into one entry per day.

    Within an ``(asset, income_type)`` group, consecutive records falling on
    the same calendar day are summed; the merged entry takes the time of the
    last record merged into it. Symbols are cleared since one entry may span
    several of them.

    Args:
        records: Raw income records
        tz: Timezone defining day boundaries

    Returns:
        Consolidated entries across all groups, ordered by time
    """
    groups: Dict[Tuple[str, str], List[MappedIncomeRecord]] = {}
    last_days: Dict[Tuple[str, str], date] = {}

    for record in sorted(records, key=lambda r: r.time):
        key = (record.asset, record.income_type)
        day = to_local_date(record.time, tz)
        entries = groups.setdefault(key, [])

        if entries and last_days[key] == day:
            last = entries[-1]
            last.income += Decimal(record.income)
            last.time = record.time
        else:
            entries.append(MappedIncomeRecord.from_record(record))
            last_days[key] = day

    merged = [entry for entries in groups.values() for entry in entries]
    return sorted(merged, key=lambda e: e.time)


def map_to_excel(
    consolidated: Iterable[MappedIncomeRecord],
    tz: Optional[tzinfo] = None,
    date_format: str = "%Y-%m-%d"
) -> List[ExcelRow]:
    """
    Pivot consolidated entries into one row per asset per day.

    Each row carries one column per known income type plus a ``total`` over
    all types, unknown ones included.

    Args:
        consolidated: Output of ``consolidate``
        tz: Timezone defining day boundaries
        date_format: strftime format of the ``date`` column

    Returns:
        Rows ordered by date
    """
    groups: Dict[str, List[ExcelRow]] = {}

    for entry in sorted(consolidated, key=lambda e: e.time):
        day = datetime.fromtimestamp(entry.time / 1000, tz=tz).strftime(date_format)
        rows = groups.setdefault(entry.asset, [])

        if not rows or rows[-1].date != day:
            rows.append(ExcelRow(date=day, asset=entry.asset))

        rows[-1].add(entry.income_type, entry.income)

    excel_rows = [row for rows in groups.values() for row in rows]
    return sorted(excel_rows, key=lambda row: datetime.strptime(row.date, date_format))
