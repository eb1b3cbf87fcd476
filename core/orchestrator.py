"""
Cache and refresh orchestration for arbitrage opportunities.

Owns every cache bucket:
- realtime        latest rates from both venues (60s)
- 7d / 30d        opportunities from averaged historical rates (1h)
- rates:7d/30d    the averaged rates behind those opportunities (1h)
- ytd             intentionally always empty: Lighter only retains about a
                  month of history, so a year-to-date average is misleading
- (symbol, long)  per-symbol historical APRs (24h), created on demand

Readers get immutable models and fresh list copies, never the buckets.
"""
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from core.cache import BucketSnapshot, CacheBucket
from core.exchange_client import BaseExchangeClient
from core.historical_funding import HistoricalAggregator
from core.models import (
    ArbitrageOpportunity, AverageRates, CoinsResponse, Exchange, ExchangeData,
    HistoricalAPRs, MarketSnapshot, OpportunitiesByPeriod, OpportunitiesResponse, TimePeriod
)
from core.opportunity_calculator import OpportunityCalculator
from utils.logging_config import log_opportunity_summary
from utils.time_utils import now_ms

logger = logging.getLogger(__name__)

HISTORICAL_PERIODS = (TimePeriod.SEVEN_DAYS, TimePeriod.THIRTY_DAYS)


class OpportunityOrchestrator:
    """
    Keeps realtime and historical opportunities available without blocking
    readers on slow upstream fetches and without duplicate concurrent
    refreshes.
    """

    def __init__(
        self,
        lighter: BaseExchangeClient,
        hyperliquid: BaseExchangeClient,
        aggregator: HistoricalAggregator,
        calculator: Optional[OpportunityCalculator] = None,
        realtime_ttl: float = 60,
        historical_ttl: float = 60 * 60,
        symbol_history_ttl: float = 24 * 60 * 60,
        fetch_timeout: float = 20.0,
        sync_refresh_timeout: float = 30.0,
        symbol_request_delay: float = 0.2,
        clock: Callable[[], int] = now_ms,
    ):
        self.lighter = lighter
        self.hyperliquid = hyperliquid
        self.aggregator = aggregator
        self.calculator = calculator or OpportunityCalculator()
        self.realtime_interval = realtime_ttl
        self.historical_interval = historical_ttl
        self.fetch_timeout = fetch_timeout
        self.sync_refresh_timeout = sync_refresh_timeout
        self.symbol_request_delay = symbol_request_delay
        self.clock = clock

        self.realtime: CacheBucket[MarketSnapshot] = CacheBucket(
            "realtime", int(realtime_ttl * 1000), MarketSnapshot, clock, on_commit=self._on_realtime_commit
        )
        self.periods: Dict[TimePeriod, CacheBucket[List[ArbitrageOpportunity]]] = {
            period: CacheBucket(period.value, int(historical_ttl * 1000), list, clock)
            for period in HISTORICAL_PERIODS
        }
        self.rates: Dict[TimePeriod, CacheBucket[AverageRates]] = {
            period: CacheBucket(f"rates:{period.value}", int(historical_ttl * 1000), AverageRates, clock)
            for period in HISTORICAL_PERIODS
        }
        self.ytd: CacheBucket[List[ArbitrageOpportunity]] = CacheBucket(
            TimePeriod.YTD.value, int(historical_ttl * 1000), list, clock
        )
        self._symbol_ttl_ms = int(symbol_history_ttl * 1000)
        self._symbol_buckets: Dict[Tuple[str, Exchange], CacheBucket[HistoricalAPRs]] = {}

        self.running = False
        self._tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def _fetch_exchange(self, client: BaseExchangeClient) -> ExchangeData:
        """One venue's poll; a failure or timeout yields empty data."""
        try:
            return await asyncio.wait_for(client.get_all_data(), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{client.exchange.value} API timed out after {self.fetch_timeout}s")
        except Exception as e:
            logger.warning(f"{client.exchange.value} API failed: {e}")
        return ExchangeData(exchange=client.exchange)

    async def _fetch_market(self) -> MarketSnapshot:
        lighter_data, hyperliquid_data = await asyncio.gather(
            self._fetch_exchange(self.lighter),
            self._fetch_exchange(self.hyperliquid),
        )

        logger.info(
            f"Fetched {len(lighter_data.coins)} Lighter coins, {len(hyperliquid_data.coins)} Hyperliquid coins; "
            f"{len(lighter_data.funding_rates)} Lighter funding rates, "
            f"{len(hyperliquid_data.funding_rates)} Hyperliquid funding rates"
        )
        self._log_overlap(lighter_data, hyperliquid_data)

        opportunities = self.calculator.calculate_opportunities(
            lighter_data.funding_rates, hyperliquid_data.funding_rates
        )
        logger.info(f"Found {len(opportunities)} realtime arbitrage opportunities")

        return MarketSnapshot(
            opportunities=opportunities,
            lighter_coins=lighter_data.coins,
            hyperliquid_coins=hyperliquid_data.coins,
            lighter_available=len(lighter_data.coins) > 0,
            hyperliquid_available=len(hyperliquid_data.coins) > 0,
        )

    @staticmethod
    def _log_overlap(lighter_data: ExchangeData, hyperliquid_data: ExchangeData):
        lighter_symbols = {rate.symbol.upper() for rate in lighter_data.funding_rates}
        hl_symbols = {rate.symbol.upper() for rate in hyperliquid_data.funding_rates}
        common = sorted(lighter_symbols & hl_symbols)
        lighter_only = sorted(lighter_symbols - hl_symbols)
        logger.debug(f"Common symbols ({len(common)}): {', '.join(common[:20])}")
        logger.debug(f"Lighter-only ({len(lighter_only)}): {', '.join(lighter_only)}")
        logger.debug(f"Hyperliquid-only: {len(hl_symbols - lighter_symbols)}")

    def refresh_realtime(self) -> asyncio.Task:
        """Start (or join) a realtime refresh."""
        return self.realtime.refresh(self._fetch_market)

    def _on_realtime_commit(self, snapshot: BucketSnapshot):
        log_opportunity_summary(TimePeriod.REALTIME.value, snapshot.data.opportunities)
        if snapshot.data.opportunities:
            self.schedule_historical_refresh(stale_only=True)

    def seed_symbols(self) -> List[str]:
        """Instruments the historical refresh works on: the realtime matches."""
        return self.realtime.data.symbols

    # ------------------------------------------------------------------
    # Historical periods
    # ------------------------------------------------------------------

    async def _period_rates(self, period: TimePeriod, symbols: List[str]) -> AverageRates:
        bucket = self.rates[period]
        if bucket.is_fresh():
            return bucket.data

        committed = await bucket.refresh(lambda: self.aggregator.average_rates_for_period(symbols, period))
        if not committed:
            raise RuntimeError(f"average rates for {period.value} could not be refreshed")
        return bucket.data

    async def _fetch_period(self, period: TimePeriod) -> List[ArbitrageOpportunity]:
        symbols = self.seed_symbols()
        if not symbols:
            raise RuntimeError(f"no realtime instruments to seed the {period.value} refresh")

        rates = await self._period_rates(period, symbols)
        opportunities = self.calculator.calculate_opportunities_from_rates(
            rates.lighter_hourly,
            rates.hyperliquid_hourly,
            self.clock(),
            rates.data_start_dates,
        )
        logger.info(
            f"Historical {period.value}: {len(opportunities)} opportunities "
            f"from {len(symbols)} realtime symbols"
        )
        log_opportunity_summary(period.value, opportunities)
        return opportunities

    def refresh_period(self, period: TimePeriod) -> asyncio.Task:
        """Start (or join) the refresh of a historical period."""
        return self.periods[period].refresh(lambda: self._fetch_period(period))

    def schedule_historical_refresh(self, stale_only: bool = False) -> List[asyncio.Task]:
        """
        Refresh the historical periods in the background.

        Does nothing until the realtime bucket has instruments to seed from.
        With stale_only, fresh periods are left alone.
        """
        if not self.seed_symbols():
            logger.debug("Skipping historical refresh: no realtime instruments yet")
            return []

        tasks = []
        for period, bucket in self.periods.items():
            if stale_only and bucket.is_fresh():
                continue
            tasks.append(self.refresh_period(period))
        return tasks

    # ------------------------------------------------------------------
    # Per-symbol historical APRs
    # ------------------------------------------------------------------

    def _evict_expired_symbol_buckets(self):
        expired = [key for key, bucket in self._symbol_buckets.items()
                   if not bucket.refreshing and not bucket.is_fresh()]
        for key in expired:
            del self._symbol_buckets[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired historical APR buckets")

    def _symbol_bucket(self, symbol: str, long_exchange: Exchange) -> Optional[CacheBucket[HistoricalAPRs]]:
        """
        Bucket of one (symbol, direction), None for symbols outside the
        current realtime opportunities.
        """
        key = (symbol.upper(), long_exchange)
        if key[0] not in set(self.seed_symbols()):
            return None
        bucket = self._symbol_buckets.get(key)
        if bucket is None:
            self._evict_expired_symbol_buckets()
            bucket = CacheBucket(f"{key[0]}-{long_exchange.value}", self._symbol_ttl_ms, HistoricalAPRs, self.clock)
            self._symbol_buckets[key] = bucket
        return bucket

    async def get_historical_aprs(self, symbol: str, long_exchange: Exchange) -> HistoricalAPRs:
        """
        Historical APRs of one direction, cached for a day.

        Only symbols of the current realtime opportunities are looked up;
        anything else gets empty APRs without touching the venues.
        """
        symbol = symbol.upper()
        bucket = self._symbol_bucket(symbol, long_exchange)
        if bucket is None:
            logger.debug(f"{symbol} is not a current realtime instrument, no historical APRs")
            return HistoricalAPRs()
        return await bucket.read(
            lambda: self.aggregator.historical_aprs(symbol, long_exchange),
            wait=self.sync_refresh_timeout,
        )

    async def get_historical_aprs_for_symbols(
        self, pairs: Iterable[Tuple[str, Exchange]]
    ) -> Dict[str, HistoricalAPRs]:
        """Historical APRs for several symbols, fetched one after another."""
        results: Dict[str, HistoricalAPRs] = {}
        for index, (symbol, long_exchange) in enumerate(pairs):
            bucket = self._symbol_bucket(symbol, long_exchange)
            if index and bucket is not None and not bucket.is_fresh():
                await asyncio.sleep(self.symbol_request_delay)
            try:
                results[symbol] = await self.get_historical_aprs(symbol, long_exchange)
            except Exception as e:
                logger.error(f"Error getting historical APRs for {symbol}: {e}")
                results[symbol] = HistoricalAPRs()
        return results

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def _snapshot_by_period(self) -> OpportunitiesByPeriod:
        return OpportunitiesByPeriod(
            realtime=list(self.realtime.data.opportunities),
            seven_days=list(self.periods[TimePeriod.SEVEN_DAYS].data),
            thirty_days=list(self.periods[TimePeriod.THIRTY_DAYS].data),
            ytd=list(self.ytd.data),
        )

    async def get_opportunities(self) -> OpportunitiesResponse:
        """
        Opportunities for every period.

        A stale realtime bucket is refreshed synchronously for at most
        sync_refresh_timeout seconds; stale historical periods refresh in the
        background.
        """
        market = await self.realtime.read(self._fetch_market, wait=self.sync_refresh_timeout)
        if market.opportunities:
            self.schedule_historical_refresh(stale_only=True)

        return OpportunitiesResponse(
            opportunities=self._snapshot_by_period(),
            last_updated=self.realtime.timestamp,
            lighter_available=market.lighter_available,
            hyperliquid_available=market.hyperliquid_available,
        )

    async def get_coins(self) -> CoinsResponse:
        market = await self.realtime.read(self._fetch_market, wait=self.sync_refresh_timeout)
        return CoinsResponse(
            lighter=list(market.lighter_coins),
            hyperliquid=list(market.hyperliquid_coins),
            last_updated=self.realtime.timestamp,
        )

    def cached_opportunities(self) -> OpportunitiesByPeriod:
        """Whatever is cached right now. Never triggers a fetch."""
        return self._snapshot_by_period()

    @property
    def last_updated(self) -> int:
        return self.realtime.timestamp

    def cache_stats(self) -> dict:
        stats = {"realtime": self.realtime.stats(), "ytd": self.ytd.stats()}
        for period in HISTORICAL_PERIODS:
            stats[period.value] = self.periods[period].stats()
            stats[f"rates:{period.value}"] = self.rates[period].stats()
        stats["symbols"] = len(self._symbol_buckets)
        return stats

    def clear_cache(self):
        """Mark every bucket stale and forget the per-symbol APRs."""
        self.realtime.invalidate()
        for bucket in list(self.periods.values()) + list(self.rates.values()):
            bucket.invalidate()
        self._symbol_buckets.clear()
        logger.info("Opportunity caches cleared")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _realtime_loop(self):
        while self.running:
            try:
                await self.refresh_realtime()
            except Exception as e:
                logger.error(f"Error in realtime refresh loop: {e}", exc_info=True)
            await asyncio.sleep(self.realtime_interval)

    async def _historical_loop(self):
        while self.running:
            await asyncio.sleep(self.historical_interval)
            try:
                tasks = self.schedule_historical_refresh()
                if tasks:
                    await asyncio.gather(*tasks)
            except Exception as e:
                logger.error(f"Error in historical refresh loop: {e}", exc_info=True)

    def start(self):
        """Start the proactive realtime and historical refresh timers."""
        if self.running:
            logger.warning("Orchestrator already running")
            return
        self.running = True
        self._tasks = [
            asyncio.create_task(self._realtime_loop(), name="realtime-timer"),
            asyncio.create_task(self._historical_loop(), name="historical-timer"),
        ]
        logger.info(
            f"Refresh timers started: realtime every {self.realtime_interval}s, "
            f"historical every {self.historical_interval}s"
        )

    async def stop(self):
        """Stop the timers."""
        self.running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Refresh timers stopped")
