"""CSV report writer with atomic file replacement."""

import asyncio
import csv
import logging
import os
import tempfile
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..config.settings import ReportConfig
from ..models import ExcelRow, IncomeRecord, MappedIncomeRecord

logger = logging.getLogger(__name__)


INCOME_FIELDS = [
    'symbol', 'incomeType', 'income', 'asset', 'info', 'time', 'tranId', 'tradeId'
]

EXCEL_FIELDS = [
    'date', 'transfer', 'realizedPnl', 'fundingFee', 'commission',
    'commissionRebate', 'referralKickback', 'insuranceClear', 'welcomeBonus',
    'total', 'asset'
]

REPORT_KINDS = {
    'raw': ('Raw', INCOME_FIELDS),
    'cons': ('Consolidated', INCOME_FIELDS),
    'excel': ('Excel', EXCEL_FIELDS),
}


def format_range_date(timestamp_ms: int, tz: Optional[tzinfo] = None) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=tz).strftime('%Y%m%d')


def report_paths(
    output_dir: str,
    account_name: str,
    start_time: int,
    end_time: int,
    tz: Optional[tzinfo] = None
) -> Dict[str, Path]:
    """Paths of the three reports for one account and range."""
    prefix = f"{account_name}_{format_range_date(start_time, tz)}_{format_range_date(end_time, tz)}"
    return {kind: Path(output_dir) / f"{prefix}_{kind}.csv" for kind in REPORT_KINDS}


def write_csv(path: Path, fieldnames: Sequence[str], rows: Iterable[Dict[str, Any]]) -> int:
    """
    Write rows to ``path`` through a temporary file in the same directory.

    The target only ever holds a complete report: the temporary file is
    moved into place once fully written.

    Returns:
        Number of data rows written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)

    count = 0
    try:
        with os.fdopen(fd, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=list(fieldnames))
            writer.writeheader()
            for row in rows:
                writer.writerow(row)
                count += 1
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    return count


class ReportWriter:
    """Writes the raw, consolidated and spreadsheet reports of each account.

    Writes run in worker threads and are not awaited by the caller;
    ``wait_closed`` collects them before shutdown.
    """

    def __init__(self, config: ReportConfig):
        self.config = config
        self._pending: List[asyncio.Task] = []
        self.stats = {
            'files_written': 0,
            'rows_written': 0,
            'errors': 0,
        }

    def schedule(
        self,
        account_name: str,
        start_time: int,
        end_time: int,
        raw: Sequence[IncomeRecord],
        consolidated: Sequence[MappedIncomeRecord],
        excel: Sequence[ExcelRow]
    ) -> List[asyncio.Task]:
        """Start writing the three reports of one account."""
        paths = report_paths(
            self.config.output_dir, account_name, start_time, end_time, self.config.tzinfo
        )
        contents = {
            'raw': [record.to_row() for record in raw],
            'cons': [entry.to_row() for entry in consolidated],
            'excel': [row.to_row() for row in excel],
        }

        tasks = []
        for kind, (label, fieldnames) in REPORT_KINDS.items():
            task = asyncio.create_task(
                asyncio.to_thread(write_csv, paths[kind], fieldnames, contents[kind]),
                name=f"write-{kind}-{account_name}"
            )
            task.add_done_callback(self._make_done_callback(label, account_name, paths[kind]))
            tasks.append(task)

        self._pending.extend(tasks)
        return tasks

    def _make_done_callback(self, label: str, account_name: str, path: Path):
        def _on_done(task: asyncio.Task):
            if task.cancelled():
                logger.warning(f"Write of {path} was cancelled")
                return
            error = task.exception()
            if error is not None:
                self.stats['errors'] += 1
                logger.error(f"Failed to write {label} report for {account_name} to {path}: {error}")
                return
            rows = task.result()
            self.stats['files_written'] += 1
            self.stats['rows_written'] += rows
            logger.info(f"Wrote {label}: {rows} rows ({path})")
        return _on_done

    async def wait_closed(self) -> None:
        """Wait for every scheduled write to finish."""
        pending, self._pending = self._pending, []
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
