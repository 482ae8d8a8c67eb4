"""Pagination engine for the time-windowed income feed."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence

from .clients.binance_income import PageResult
from .config.settings import Account, PaginationConfig
from .models import AggregatedResult, IncomeRecord, PageWindow
from .utils.deduplication import PageDeduplicator
from .utils.logging import log_with_context

logger = logging.getLogger(__name__)

PageFetcher = Callable[[Account, int, int, int], Awaitable[PageResult]]
Sleeper = Callable[[float], Awaitable[None]]
AccountCallback = Callable[[str, List[IncomeRecord]], None]


class IncomePaginator:
    """
    Walks the income feed one page at a time for each account.

    Per page the outcome decides the next step:
    - full page: keep the new records, wait ``page_delay_seconds`` and
      continue from the last record's time (the boundary record comes back
      and is dropped by deduplication); a full page whose last record sits at
      the window start moves the start forward by one millisecond instead
    - empty page or failed request: wait ``empty_page_delay_seconds`` and
      rewind the window start by ``rewind_step_ms``
    - anything in between: keep the new records and finish the account
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        config: PaginationConfig,
        sleep: Sleeper = asyncio.sleep
    ):
        self.fetch_page = fetch_page
        self.config = config
        self.sleep = sleep

    async def run_account(self, account: Account, start_time: int, end_time: int) -> List[IncomeRecord]:
        """Fetch every income record of ``account`` between the two timestamps."""
        window = PageWindow(start=start_time, end=end_time)
        deduplicator = PageDeduplicator()
        accumulated: List[IncomeRecord] = []

        stats = {
            'pages': 0,
            'full_pages': 0,
            'empty_pages': 0,
            'failures': 0,
            'stalled_pages': 0,
        }
        empty_streak = 0

        logger.info(f"Starting income export for {account.name} from {_format_ms(start_time)} to {_format_ms(end_time)}")

        while True:
            result = await self.fetch_page(account, window.start, window.end, window.page_count)
            stats['pages'] += 1

            if not result.ok:
                # Failures share the empty-page rewind path
                stats['failures'] += 1
                logger.warning(f"Page #{window.page_count} for {account.name} failed, treating as empty: {result.error}")
                records: List[IncomeRecord] = []
            else:
                records = result.records

            if len(records) >= self.config.page_limit:
                stats['full_pages'] += 1
                empty_streak = 0
                accumulated.extend(deduplicator.accept(records))

                next_start = records[-1].time
                if next_start <= window.start:
                    # A whole page inside one millisecond; the same window would repeat forever
                    next_start = window.start + 1
                    stats['stalled_pages'] += 1
                    logger.error(
                        f"Full page for {account.name} ends at its window start "
                        f"{_format_ms(window.start)}; skipping ahead to {_format_ms(next_start)}"
                    )

                await self.sleep(self.config.page_delay_seconds)
                window = PageWindow(
                    start=next_start,
                    end=window.end,
                    page_count=window.page_count + 1
                )
                continue

            if not records:
                stats['empty_pages'] += 1
                max_retries = self.config.max_empty_retries
                if max_retries is not None and empty_streak >= max_retries:
                    logger.error(
                        f"Giving up on {account.name} after {empty_streak} empty pages "
                        f"at {_format_ms(window.start)}; keeping {len(accumulated)} records"
                    )
                    break

                empty_streak += 1
                next_start = window.start - self.config.rewind_step_ms
                logger.info(f"retrying from: {_format_ms(next_start)}")

                await self.sleep(self.config.empty_page_delay_seconds)
                window = PageWindow(
                    start=next_start,
                    end=window.end,
                    page_count=window.page_count + 1
                )
                continue

            accumulated.extend(deduplicator.accept(records))
            break

        log_with_context(
            logger,
            logging.INFO,
            f"Completed {account.name}: {len(accumulated)} records",
            account=account.name,
            records=len(accumulated),
            duplicates=deduplicator.stats['duplicates_found'],
            **stats
        )
        if accumulated:
            logger.info(f"first: {_format_ms(accumulated[0].time)}")
            logger.info(f"last: {_format_ms(accumulated[-1].time)}")

        return accumulated

    async def run_accounts(
        self,
        accounts: Sequence[Account],
        start_time: int,
        end_time: int,
        on_account_complete: Optional[AccountCallback] = None
    ) -> AggregatedResult:
        """
        Run every account in order, each over the full requested range.

        Returns:
            Mapping of account name to its records, in processing order
        """
        accounts = tuple(accounts)
        aggregated: AggregatedResult = {}

        for index, account in enumerate(accounts, start=1):
            logger.info(f"Account {index}/{len(accounts)}: {account.name}")
            records = await self.run_account(account, start_time, end_time)
            aggregated[account.name] = records

            if on_account_complete is not None:
                on_account_complete(account.name, records)

        return aggregated


def _format_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()
