"""
Lighter REST client for perpetual funding data.

Endpoints used:
- GET /api/v1/orderBooks      markets with symbol and market_id
- GET /api/v1/funding-rates   current 8-hour funding rates
- GET /api/v1/marketStats     per-market stats, used for rates when
                              funding-rates returns nothing
- GET /api/v1/fundings        settled funding history for one market_id

The history endpoint reports rates as unsigned percentages plus a direction
("long" when longs pay, "short" when shorts pay). Entries are converted to
signed decimals from the long side's point of view.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from core.exchange_client import BaseExchangeClient
from core.models import Coin, Exchange, FundingRate, HistoricalFundingEntry
from utils.parsing import first_present, parse_float, to_millis
from utils.time_utils import format_date, now_ms, year_start_ms

logger = logging.getLogger(__name__)

PERIOD_HOURS = 8.0
ORDER_BOOKS_PATH = "/api/v1/orderBooks"
FUNDING_RATES_PATH = "/api/v1/funding-rates"
MARKET_STATS_PATH = "/api/v1/marketStats"
FUNDINGS_PATH = "/api/v1/fundings"

# Metadata rows some deployments mix into the market list
_IGNORED_SYMBOLS = {"CODE"}


def _extract_list(data: Any, *keys: str) -> list:
    """Return data itself if it is a list, else the first list found under keys."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


class LighterClient(BaseExchangeClient):
    """Async client for the Lighter public API."""

    exchange = Exchange.LIGHTER

    def __init__(
        self,
        base_urls: List[str],
        timeout: float = 10.0,
        history_timeout: float = 15.0,
        markets_cache_seconds: float = 300.0,
    ):
        super().__init__(timeout=timeout)
        self.base_urls = base_urls
        self.history_timeout = history_timeout
        self.markets_cache_seconds = markets_cache_seconds
        self._working_url: Optional[str] = None
        self._markets: List[dict] = []
        self._markets_fetched_at = 0.0

    async def _resolve_base_url(self) -> str:
        """
        First base URL whose order book endpoint answers.

        The result is remembered until a request against it fails.
        """
        if self._working_url:
            return self._working_url

        for url in self.base_urls:
            try:
                await self._request("GET", url + ORDER_BOOKS_PATH, timeout=5)
            except Exception as e:
                logger.warning(f"Lighter API {url} not usable: {e}")
                continue
            self._working_url = url
            logger.info(f"Using Lighter API at {url}")
            return url

        raise ConnectionError(f"No working Lighter API URL found. Tried: {', '.join(self.base_urls)}")

    async def _get(self, path: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> Any:
        base_url = await self._resolve_base_url()
        try:
            return await self._request("GET", base_url + path, params=params, timeout=timeout)
        except Exception:
            # Re-probe on the next call in case another mirror is up
            self._working_url = None
            raise

    async def _order_books(self) -> List[dict]:
        """Market list, cached for markets_cache_seconds."""
        if self._markets and time.monotonic() - self._markets_fetched_at < self.markets_cache_seconds:
            return self._markets

        data = await self._get(ORDER_BOOKS_PATH)
        markets = [m for m in _extract_list(data, "order_books", "orderBooks", "markets", "data")
                   if isinstance(m, dict)]
        self._markets = markets
        self._markets_fetched_at = time.monotonic()
        return markets

    async def _market_ids(self) -> Dict[str, int]:
        market_ids = {}
        for market in await self._order_books():
            symbol = market.get("symbol")
            market_id = market.get("market_id")
            if symbol and market_id is not None:
                market_ids[symbol.upper()] = market_id
        return market_ids

    async def list_instruments(self) -> List[Coin]:
        """Fetch all markets as unique upper-case symbols."""
        try:
            markets = await self._order_books()
        except Exception as e:
            logger.error(f"Error fetching Lighter coins: {e}")
            logger.warning("Continuing without Lighter data.")
            return []

        coins: Dict[str, Coin] = {}
        for market in markets:
            symbol = first_present(market, "symbol", "base_token", "baseToken", default="")
            symbol = str(symbol).upper()
            if symbol and symbol not in _IGNORED_SYMBOLS:
                coins[symbol] = Coin(symbol=symbol, exchange=Exchange.LIGHTER)

        logger.info(f"Fetched {len(coins)} unique Lighter coins")
        return list(coins.values())

    async def current_funding_rates(self) -> List[FundingRate]:
        """
        Fetch current funding rates.

        The endpoint may aggregate several exchanges; Lighter's own entry
        wins when a symbol appears more than once. When it yields nothing the
        per-market stats are used instead.
        """
        try:
            items = _extract_list(await self._get(FUNDING_RATES_PATH), "funding_rates", "fundingRates", "data")
        except Exception as e:
            logger.error(f"Error fetching Lighter funding rates: {e}")
            items = []

        if not items:
            items = await self._market_stats_rates()
            if not items:
                return []

        try:
            market_ids = {market_id: symbol for symbol, market_id in (await self._market_ids()).items()}
        except Exception as e:
            logger.warning(f"Failed to map Lighter market IDs to symbols: {e}")
            market_ids = {}

        rates_by_symbol: Dict[str, float] = {}
        for item in items:
            if not isinstance(item, dict):
                continue
            symbol = item.get("symbol") or market_ids.get(item.get("market_id"))
            if not symbol:
                continue
            symbol = symbol.upper()
            source = str(item.get("exchange") or "").lower()
            if symbol in rates_by_symbol and source not in ("", "lighter"):
                continue
            rates_by_symbol[symbol] = parse_float(
                first_present(item, "rate", "funding_rate", "fundingRate", "current_funding_rate")
            )

        timestamp = now_ms()
        rates = [
            FundingRate(
                symbol=symbol,
                exchange=Exchange.LIGHTER,
                rate=rate,
                timestamp=timestamp,
                period_hours=PERIOD_HOURS,
            )
            for symbol, rate in rates_by_symbol.items()
        ]
        non_zero = sum(1 for rate in rates if rate.rate != 0)
        logger.info(f"Lighter: Fetched {len(rates)} funding rates ({non_zero} non-zero)")
        return rates

    async def _market_stats_rates(self) -> List[dict]:
        """Funding rates taken from the market stats endpoint."""
        try:
            data = await self._get(MARKET_STATS_PATH)
        except Exception as e:
            logger.error(f"Error fetching Lighter market stats: {e}")
            return []

        stats = _extract_list(data, "market_stats", "marketStats", "data")
        logger.info(f"Lighter funding-rates empty, using {len(stats)} market stats")
        return [
            {
                "market_id": item.get("market_id"),
                "symbol": item.get("symbol"),
                "rate": first_present(item, "current_funding_rate", "funding_rate", "currentFundingRate"),
            }
            for item in stats
            if isinstance(item, dict)
        ]

    @staticmethod
    def _parse_history(symbol: str, data: Any) -> List[HistoricalFundingEntry]:
        entries = []
        for item in _extract_list(data, "fundings", "data"):
            if not isinstance(item, dict):
                continue
            timestamp = to_millis(item.get("timestamp"))
            if timestamp <= 0:
                continue

            # Percent to decimal, sign from the paying side
            rate = abs(parse_float(first_present(item, "funding_rate", "fundingRate", "rate", "value"))) / 100
            direction = str(first_present(item, "direction", "funding_direction", default="")).lower()
            if direction == "short":
                rate = -rate

            entries.append(HistoricalFundingEntry(
                symbol=symbol.upper(),
                exchange=Exchange.LIGHTER,
                rate=rate,
                timestamp=timestamp,
                period_hours=PERIOD_HOURS,
            ))
        return entries

    async def funding_history(
        self, symbol: str, start_time: int, end_time: Optional[int] = None
    ) -> List[HistoricalFundingEntry]:
        """Fetch settled funding for one market, clamped to [year start, now]."""
        now = now_ms()
        safe_end = min(end_time if end_time is not None else now, now)
        safe_start = max(min(start_time, safe_end), year_start_ms(now))

        try:
            market_id = (await self._market_ids()).get(symbol.upper())
        except Exception as e:
            logger.warning(f"Failed to get Lighter market ID for {symbol}: {e}")
            return []

        if market_id is None:
            logger.debug(f"[Lighter History] No market_id for {symbol}")
            return []

        params = {
            "market_id": market_id,
            "resolution": "1h",
            "start_timestamp": safe_start,
            "end_timestamp": safe_end,
            "count_back": 1000,
        }
        logger.debug(
            f"[Lighter] Fetching funding history for {symbol} (market_id={market_id}), "
            f"{format_date(safe_start)} to {format_date(safe_end)}"
        )

        try:
            data = await self._get(FUNDINGS_PATH, params=params, timeout=self.history_timeout)
        except Exception as e:
            logger.error(f"Error fetching Lighter funding history for {symbol}: {e}")
            return []

        entries = self._parse_history(symbol, data)
        logger.debug(f"[Lighter] Got {len(entries)} funding entries for {symbol}")
        return entries
