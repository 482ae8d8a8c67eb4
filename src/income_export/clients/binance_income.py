"""Binance USD-M futures REST client for the income history feed."""

import asyncio
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import aiohttp

from ..config.settings import Account, BinanceConfig
from ..errors import IncomeFetchError, NetworkFailure, UpstreamError
from ..models import IncomeRecord

logger = logging.getLogger(__name__)

INCOME_ENDPOINT = '/fapi/v1/income'
MAX_PAGE_LIMIT = 1000


def sign_query(query_string: str, secret: str) -> str:
    """HMAC-SHA256 hex signature of a literal query string."""
    return hmac.new(
        secret.encode('utf-8'),
        query_string.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()


@dataclass
class PageResult:
    """Outcome of a single page request."""
    records: List[IncomeRecord] = field(default_factory=list)
    error: Optional[IncomeFetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BinanceIncomeClient:
    """Signed client for ``GET /fapi/v1/income``.

    Performs exactly one attempt per page; retry policy belongs to the caller.
    """

    def __init__(self, config: BinanceConfig, page_limit: int = MAX_PAGE_LIMIT):
        self.config = config
        self.page_limit = min(page_limit, MAX_PAGE_LIMIT)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()
            self.session = None

    def build_query_string(self, start_time: int, end_time: int, timestamp: Optional[int] = None) -> str:
        """Query string in the exact order it is signed and sent."""
        if timestamp is None:
            timestamp = int(time.time() * 1000)
        return (
            f"timestamp={timestamp}&limit={self.page_limit}"
            f"&startTime={start_time}&endTime={end_time}"
        )

    def build_url(self, account: Account, query_string: str) -> str:
        signature = sign_query(query_string, account.api_secret)
        return f"{self.config.rest_base_url}{INCOME_ENDPOINT}?{query_string}&signature={signature}"

    async def fetch_page(
        self,
        account: Account,
        start_time: int,
        end_time: int,
        page_number: int = 0
    ) -> PageResult:
        """
        Request one page of income records for ``[start_time, end_time]``.

        Network errors and non-2xx responses are returned as ``PageResult.error``
        rather than raised. Cancellation of the awaiting task aborts the
        request and propagates.
        """
        if not self.session:
            raise RuntimeError("Client not initialized. Use async context manager.")

        url = self.build_url(account, self.build_query_string(start_time, end_time))
        headers = {'X-MBX-APIKEY': account.api_key}

        logger.debug(f"Fetching income page #{page_number} for {account.name}: {start_time} -> {end_time}")

        try:
            async with self.session.get(url, headers=headers) as response:
                if response.status < 200 or response.status >= 300:
                    body = await response.text()
                    raise UpstreamError(response.status, body)

                payload = await response.json(content_type=None)

        except IncomeFetchError as e:
            logger.error(f"Income request failed for {account.name}: {e}")
            return PageResult(error=e)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            error = NetworkFailure(str(e) or type(e).__name__)
            logger.error(f"Income request failed for {account.name}: {error}")
            return PageResult(error=error)

        if not isinstance(payload, list):
            error = UpstreamError(200, str(payload))
            logger.error(f"Unexpected income payload for {account.name}: {payload!r}")
            return PageResult(error=error)

        try:
            records = [IncomeRecord.from_api(item) for item in payload]
        except (KeyError, TypeError, ValueError) as e:
            error = UpstreamError(200, f"Malformed income record: {e}")
            logger.error(f"Malformed income payload for {account.name}: {e}")
            return PageResult(error=error)

        if records:
            logger.info(
                f"#{page_number}: {_format_ms(records[0].time)} "
                f"to: {_format_ms(records[-1].time)}"
            )

        return PageResult(records=records)


def _format_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).astimezone().isoformat()
