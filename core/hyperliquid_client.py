"""
Hyperliquid REST client for perpetual funding data.

Everything goes through POST /info:
- metaAndAssetCtxs returns [meta, assetCtxs]; meta.universe[i].name is the
  coin and assetCtxs[i].funding its current hourly funding rate
- fundingHistory returns settled hourly funding entries for one coin
"""
import asyncio
import logging
import time
from typing import Any, List, Optional, Tuple

from core.exchange_client import BaseExchangeClient, ExchangeAPIError
from core.models import Coin, Exchange, ExchangeData, FundingRate, HistoricalFundingEntry
from utils.parsing import parse_float, to_millis
from utils.time_utils import format_date, now_ms, year_start_ms

logger = logging.getLogger(__name__)

PERIOD_HOURS = 1.0


class HyperliquidClient(BaseExchangeClient):
    """Async client for Hyperliquid's info endpoint."""

    exchange = Exchange.HYPERLIQUID

    def __init__(
        self,
        rest_url: str = "https://api.hyperliquid.xyz/info",
        timeout: float = 10.0,
        min_request_interval: float = 2.0,
        max_retries: int = 2,
    ):
        super().__init__(timeout=timeout)
        self.rest_url = rest_url
        self.min_request_interval = min_request_interval
        self.max_retries = max_retries
        self._last_request_time = 0.0
        self._pace_lock = asyncio.Lock()

    async def _rate_limit(self):
        """Keep at least min_request_interval between requests."""
        async with self._pace_lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self.min_request_interval:
                await asyncio.sleep(self.min_request_interval - elapsed)
            self._last_request_time = time.monotonic()

    async def _post_info(self, payload: dict) -> Any:
        """
        POST to /info with pacing and 429 backoff.

        A 422 means the request itself is malformed and is never retried.
        """
        for attempt in range(self.max_retries):
            await self._rate_limit()
            try:
                return await self._request("POST", self.rest_url, payload=payload)
            except ExchangeAPIError as e:
                if e.status == 422:
                    logger.warning(f"Hyperliquid rejected request format: {payload}")
                    raise
                if e.status == 429:
                    if attempt == self.max_retries - 1:
                        break
                    wait = e.retry_after if e.retry_after is not None else (2 ** attempt) * 2
                    logger.warning(
                        f"Hyperliquid rate limited. Waiting {wait}s before retry {attempt + 1}/{self.max_retries}"
                    )
                    await asyncio.sleep(wait)
                    continue
                raise
        raise ExchangeAPIError("Hyperliquid max retries exceeded", status=429)

    async def _meta_and_asset_ctxs(self) -> Tuple[list, list]:
        data = await self._post_info({"type": "metaAndAssetCtxs"})
        if not isinstance(data, list) or len(data) < 2:
            logger.warning(f"Unexpected Hyperliquid metaAndAssetCtxs response: {str(data)[:200]}")
            return [], []

        universe = (data[0] or {}).get("universe") or []
        asset_ctxs = data[1]
        if not isinstance(universe, list) or not isinstance(asset_ctxs, list):
            logger.warning("Invalid Hyperliquid universe or assetCtxs structure")
            return [], []
        return universe, asset_ctxs

    @staticmethod
    def _parse_coins(universe: list) -> List[Coin]:
        coins = []
        for info in universe:
            name = (info or {}).get("name")
            if name:
                coins.append(Coin(symbol=name.upper(), exchange=Exchange.HYPERLIQUID))
        return coins

    @staticmethod
    def _parse_funding_rates(universe: list, asset_ctxs: list, timestamp: int) -> List[FundingRate]:
        # universe[i] and assetCtxs[i] describe the same coin
        rates = []
        for info, ctx in zip(universe, asset_ctxs):
            name = (info or {}).get("name")
            if not name:
                continue
            rates.append(FundingRate(
                symbol=name.upper(),
                exchange=Exchange.HYPERLIQUID,
                rate=parse_float((ctx or {}).get("funding")),
                timestamp=timestamp,
                period_hours=PERIOD_HOURS,
            ))
        return rates

    async def list_instruments(self) -> List[Coin]:
        """Fetch all tradeable perpetuals."""
        try:
            universe, _ = await self._meta_and_asset_ctxs()
        except Exception as e:
            logger.error(f"Error fetching Hyperliquid coins: {e}")
            return []
        coins = self._parse_coins(universe)
        logger.info(f"Extracted {len(coins)} coins from Hyperliquid universe")
        return coins

    async def current_funding_rates(self) -> List[FundingRate]:
        """Fetch the current hourly funding rate of every perpetual."""
        try:
            universe, asset_ctxs = await self._meta_and_asset_ctxs()
        except Exception as e:
            logger.error(f"Error fetching Hyperliquid funding rates: {e}")
            return []
        rates = self._parse_funding_rates(universe, asset_ctxs, now_ms())
        non_zero = sum(1 for rate in rates if rate.rate != 0)
        logger.info(f"Fetched {len(rates)} Hyperliquid funding rates ({non_zero} non-zero)")
        return rates

    async def get_all_data(self) -> ExchangeData:
        """Coins and funding rates from a single metaAndAssetCtxs call."""
        try:
            universe, asset_ctxs = await self._meta_and_asset_ctxs()
        except Exception as e:
            logger.error(f"Error fetching Hyperliquid market data: {e}")
            return ExchangeData(exchange=self.exchange)

        return ExchangeData(
            exchange=self.exchange,
            coins=self._parse_coins(universe),
            funding_rates=self._parse_funding_rates(universe, asset_ctxs, now_ms()),
        )

    @staticmethod
    def _parse_history(coin: str, data: Any) -> List[HistoricalFundingEntry]:
        if not isinstance(data, list):
            logger.warning(f"[HL History] {coin} got non-list response: {str(data)[:200]}")
            return []

        entries = []
        for item in data:
            if not isinstance(item, dict):
                continue
            timestamp = to_millis(item.get("time", item.get("timestamp", item.get("ts"))))
            if timestamp <= 0:
                continue
            entries.append(HistoricalFundingEntry(
                symbol=(item.get("coin") or coin).upper(),
                exchange=Exchange.HYPERLIQUID,
                rate=parse_float(item.get("fundingRate")),
                timestamp=timestamp,
                period_hours=PERIOD_HOURS,
            ))
        return entries

    async def funding_history(
        self, symbol: str, start_time: int, end_time: Optional[int] = None
    ) -> List[HistoricalFundingEntry]:
        """
        Fetch settled funding for one coin.

        The coin name is sent as-is: k-tokens must already use the lower-case
        prefix (kBONK). The window is clamped to [year start, now]. The
        endpoint occasionally fails on millisecond bounds, in which case the
        request is retried once with seconds.
        """
        now = now_ms()
        safe_end = min(end_time if end_time is not None else now, now)
        safe_start = max(min(start_time, safe_end), year_start_ms(now))

        payload = {
            "type": "fundingHistory",
            "coin": symbol,
            "startTime": safe_start,
            "endTime": safe_end,
        }
        logger.debug(f"[HL History] Fetching {symbol}, {format_date(safe_start)} to {format_date(safe_end)}")

        try:
            data = await self._post_info(payload)
        except Exception as e:
            logger.warning(f"[HL History] {symbol} request with ms bounds failed ({e}), retrying with seconds")
            payload = dict(payload, startTime=safe_start // 1000, endTime=safe_end // 1000)
            try:
                data = await self._post_info(payload)
            except Exception as e:
                logger.error(f"[HL] Error fetching funding history for {symbol}: {e}")
                return []

        entries = self._parse_history(symbol, data)
        logger.debug(f"[HL History] {symbol} got {len(entries)} entries")
        return entries
