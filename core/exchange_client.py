"""
Shared aiohttp plumbing for the exchange REST clients.
"""
import asyncio
import logging
from typing import Any, List, Optional

import aiohttp

from core.models import Coin, Exchange, ExchangeData, FundingRate, HistoricalFundingEntry

logger = logging.getLogger(__name__)


class ExchangeAPIError(Exception):
    """Non-success HTTP response from an exchange."""

    def __init__(self, message: str, status: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after


class BaseExchangeClient:
    """
    Base class for a venue's REST client.

    Subclasses implement list_instruments, current_funding_rates and
    funding_history. Each of them is best effort: failures are logged and
    turned into an empty list at this boundary.
    """

    exchange: Exchange

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict] = None,
        payload: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Perform a request and decode the JSON body.

        Raises:
            ExchangeAPIError: on a non-200 status
            aiohttp.ClientError / asyncio.TimeoutError: on transport failures
        """
        await self._ensure_session()

        async with self._session.request(
            method,
            url,
            params=params,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=timeout or self.timeout),
        ) as response:
            if response.status != 200:
                body = await response.text()
                retry_after = response.headers.get("Retry-After")
                raise ExchangeAPIError(
                    f"{self.exchange.value} {method} {url} returned HTTP {response.status}: {body[:200]}",
                    status=response.status,
                    retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                )
            return await response.json(content_type=None)

    async def list_instruments(self) -> List[Coin]:
        raise NotImplementedError

    async def current_funding_rates(self) -> List[FundingRate]:
        raise NotImplementedError

    async def funding_history(
        self, symbol: str, start_time: int, end_time: Optional[int] = None
    ) -> List[HistoricalFundingEntry]:
        raise NotImplementedError

    async def get_all_data(self) -> ExchangeData:
        """Instruments and current funding rates in one poll."""
        coins, funding_rates = await asyncio.gather(
            self.list_instruments(),
            self.current_funding_rates(),
        )
        return ExchangeData(exchange=self.exchange, coins=coins, funding_rates=funding_rates)
