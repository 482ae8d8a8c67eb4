"""Income Export - command line entry point and service wiring."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import date, datetime, timezone
from functools import partial
from typing import Callable, List, Optional, Sequence, Tuple

import yaml

from .aggregator import consolidate, map_to_excel
from .clients.binance_income import BinanceIncomeClient
from .config.settings import DEFAULT_CONFIG_FILE, ExportSettings, load_settings
from .errors import ConfigurationError, UsageError
from .models import AggregatedResult, IncomeRecord
from .pagination import IncomePaginator
from .utils.logging import setup_logging
from .writers.csv_writer import ReportWriter

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 9
EXIT_INTERRUPTED = 130

USAGE = "use: --from <date from> --to <date to>"


# Accepted besides ISO-8601
DATE_FORMATS = ('%Y/%m/%d', '%Y%m%d')
DATETIME_FORMATS = ('%Y/%m/%d %H:%M', '%Y/%m/%d %H:%M:%S')


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting."""

    def error(self, message):
        raise UsageError(message)


def _parse_day(text: str) -> Optional[date]:
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _parse_datetime(text: str) -> Optional[datetime]:
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_date(value: str) -> int:
    """
    Parse a date or datetime into epoch milliseconds.

    ISO-8601 and slash-separated values (``2024/01/31``, ``2024/01/31 08:00``)
    are accepted. Dates are midnight UTC; naive datetimes are local time.
    """
    text = value.strip()

    day = _parse_day(text)
    if day is not None:
        parsed = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    else:
        parsed = _parse_datetime(text)
        if parsed is None:
            raise UsageError(f"Invalid date: {value}")
        if parsed.tzinfo is None:
            parsed = parsed.astimezone()

    return int(parsed.timestamp() * 1000)


def parse_args(argv: Optional[Sequence[str]] = None) -> Tuple[int, int]:
    """Parse ``--from``/``--to`` into an epoch-ms range."""
    parser = _ArgumentParser(prog="income-export", add_help=False, allow_abbrev=False)
    parser.add_argument('--from', dest='date_from', required=True)
    parser.add_argument('--to', dest='date_to', required=True)

    argv = list(sys.argv[1:] if argv is None else argv)
    args = parser.parse_args(argv)

    for flag in ('--from', '--to'):
        if sum(1 for arg in argv if arg == flag or arg.startswith(flag + '=')) != 1:
            raise UsageError(f"{flag} must be given exactly once")

    start_time = parse_date(args.date_from)
    end_time = parse_date(args.date_to)
    if start_time >= end_time:
        raise UsageError("--from must be before --to")

    return start_time, end_time


def load_configuration(config_file: Optional[str] = None) -> ExportSettings:
    """Load settings, folding every failure into ``ConfigurationError``."""
    if config_file is None:
        config_file = os.getenv("CONFIG_FILE")
        if config_file is None and os.path.exists(DEFAULT_CONFIG_FILE):
            config_file = DEFAULT_CONFIG_FILE

    try:
        return load_settings(config_file)
    except (ValueError, OSError, yaml.YAMLError) as e:
        raise ConfigurationError(str(e)) from e


class IncomeExportService:
    """Fetches every configured account and schedules its reports."""

    def __init__(
        self,
        settings: ExportSettings,
        client_factory: Callable[..., BinanceIncomeClient] = BinanceIncomeClient
    ):
        self.settings = settings
        self.client_factory = client_factory
        self.writer = ReportWriter(settings.report)

        logger.info(f"Income export initialized for {len(settings.accounts)} account(s)")

    async def run(self, start_time: int, end_time: int) -> AggregatedResult:
        client = self.client_factory(
            self.settings.binance, page_limit=self.settings.pagination.page_limit
        )

        try:
            async with client:
                paginator = IncomePaginator(client.fetch_page, self.settings.pagination)
                return await paginator.run_accounts(
                    self.settings.accounts,
                    start_time,
                    end_time,
                    on_account_complete=partial(self._publish_reports, start_time, end_time)
                )
        finally:
            await self.writer.wait_closed()
            logger.info(
                f"Reports: {self.writer.stats['files_written']} files, "
                f"{self.writer.stats['rows_written']} rows, {self.writer.stats['errors']} errors"
            )

    def _publish_reports(self, start_time: int, end_time: int, account_name: str, records: List[IncomeRecord]):
        report = self.settings.report
        consolidated = consolidate(records, report.tzinfo)
        excel = map_to_excel(consolidated, report.tzinfo, report.date_format)

        self.writer.schedule(account_name, start_time, end_time, records, consolidated, excel)


async def run_export(service: IncomeExportService, start_time: int, end_time: int) -> int:
    """Run the export until it completes or a shutdown signal arrives."""
    loop = asyncio.get_running_loop()
    task = asyncio.create_task(service.run(start_time, end_time))

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, cancelling export")
        loop.call_soon_threadsafe(task.cancel)

    previous_handlers = {
        sig: signal.signal(sig, signal_handler)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }

    try:
        await task
    except asyncio.CancelledError:
        logger.warning("Export cancelled before completion")
        return EXIT_INTERRUPTED
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    try:
        start_time, end_time = parse_args(argv)
    except UsageError as e:
        print(f"error: {e}", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return EXIT_USAGE

    try:
        settings = load_configuration()
    except ConfigurationError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(settings.logging, settings.service_name)

    if not settings.accounts:
        logger.error("No accounts configured")
        return EXIT_ERROR

    try:
        return asyncio.run(run_export(IncomeExportService(settings), start_time, end_time))
    except Exception as e:
        logger.error(f"Export failed: {e}", exc_info=True)
        return EXIT_ERROR


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
