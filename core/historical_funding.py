"""
Historical funding aggregation.

Turns the settled funding histories of both venues into averaged hourly rates
per instrument for the 7d / 30d / ytd windows, and into per-symbol average
net APRs for a fixed long/short direction.

Lighter only keeps history back to the start of the current year, so every
window is clamped to January 1st (UTC).
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from core.exchange_client import BaseExchangeClient
from core.models import AverageRates, Exchange, HistoricalAPRs, HistoricalFundingEntry, TimePeriod
from core.opportunity_calculator import net_apr
from core.rate_normalizer import HISTORY_PREFIX, THOUSAND_PREFIX, to_hourly, to_hyperliquid_symbol
from utils.time_utils import DAY_MS, format_date, now_ms, year_start_ms

logger = logging.getLogger(__name__)

WINDOW_LENGTHS_MS = {
    TimePeriod.SEVEN_DAYS: 7 * DAY_MS,
    TimePeriod.THIRTY_DAYS: 30 * DAY_MS,
}


def period_window(period: TimePeriod, now: int) -> Tuple[int, int]:
    """
    [start, end] in ms for a named period.

    realtime has no history and collapses to (now, now).
    """
    year_start = year_start_ms(now)

    if period == TimePeriod.REALTIME:
        start = now
    elif period == TimePeriod.YTD:
        start = year_start
    else:
        start = now - WINDOW_LENGTHS_MS[period]

    start = min(max(start, year_start), now)
    return start, now


def in_window(entries: Sequence[HistoricalFundingEntry], start: int, end: int) -> List[HistoricalFundingEntry]:
    """Entries inside [start, end]; zero or missing timestamps are dropped."""
    return [e for e in entries if e.timestamp > 0 and start <= e.timestamp <= end]


def average_hourly_rate(entries: Sequence[HistoricalFundingEntry]) -> Optional[float]:
    """Unweighted mean of the hourly-normalized rates, None without entries."""
    if not entries:
        return None
    return sum(to_hourly(e.rate, e.period_hours) for e in entries) / len(entries)


def earliest_timestamp(entries: Sequence[HistoricalFundingEntry]) -> Optional[int]:
    if not entries:
        return None
    return min(e.timestamp for e in entries)


@dataclass(frozen=True)
class SymbolSummary:
    """Averaged view of one instrument over one window."""
    lighter_hourly: Optional[float]
    hyperliquid_hourly: Optional[float]
    data_start_date: Optional[int]

    @property
    def on_both(self) -> bool:
        return self.lighter_hourly is not None and self.hyperliquid_hourly is not None


def summarize_histories(
    lighter_entries: Sequence[HistoricalFundingEntry],
    hyperliquid_entries: Sequence[HistoricalFundingEntry],
    start: int,
    end: int,
) -> SymbolSummary:
    """
    Average both venues over [start, end].

    The data start is the later of the two venues' first entries: the spread
    only exists once both sides have coverage. It is only set when both
    venues have data in the window.
    """
    lighter = in_window(lighter_entries, start, end)
    hyperliquid = in_window(hyperliquid_entries, start, end)

    data_start = None
    if lighter and hyperliquid:
        data_start = max(earliest_timestamp(lighter), earliest_timestamp(hyperliquid))

    return SymbolSummary(
        lighter_hourly=average_hourly_rate(lighter),
        hyperliquid_hourly=average_hourly_rate(hyperliquid),
        data_start_date=data_start,
    )


def average_net_apr(summary: SymbolSummary, long_exchange: Exchange) -> Optional[float]:
    """Net APR of a fixed direction, None unless both venues have data."""
    if not summary.on_both:
        return None
    if long_exchange == Exchange.LIGHTER:
        return net_apr(summary.lighter_hourly, summary.hyperliquid_hourly)
    return net_apr(summary.hyperliquid_hourly, summary.lighter_hourly)


def _is_k_token(symbol: str) -> bool:
    return symbol.startswith(THOUSAND_PREFIX) or symbol.startswith("K")


class HistoricalAggregator:
    """
    Fetches funding histories from both venues and aggregates them.

    For each instrument the two venue requests run concurrently; instruments
    are walked one at a time with a fixed delay in between to stay under the
    venues' rate limits.
    """

    def __init__(
        self,
        lighter: BaseExchangeClient,
        hyperliquid: BaseExchangeClient,
        request_delay: float = 0.1,
        fetch_timeout: float = 15.0,
        clock: Callable[[], int] = now_ms,
    ):
        self.lighter = lighter
        self.hyperliquid = hyperliquid
        self.request_delay = request_delay
        self.fetch_timeout = fetch_timeout
        self.clock = clock

    async def _bounded(
        self, exchange: Exchange, symbol: str, fetch: Awaitable[List[HistoricalFundingEntry]]
    ) -> List[HistoricalFundingEntry]:
        """Await one venue fetch under the timeout; failures become no entries."""
        try:
            return await asyncio.wait_for(fetch, timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{exchange.value} funding history for {symbol} timed out after {self.fetch_timeout}s")
        except Exception as e:
            logger.error(f"Error fetching {exchange.value} funding history for {symbol}: {e}")
        return []

    async def fetch_histories(
        self, symbol: str, start: int, end: int
    ) -> Tuple[List[HistoricalFundingEntry], List[HistoricalFundingEntry]]:
        """
        Lighter and Hyperliquid histories of one instrument, fetched together.

        symbol uses Lighter naming; the Hyperliquid request gets the k-prefixed
        name its history endpoint expects.
        """
        hl_symbol = to_hyperliquid_symbol(symbol, HISTORY_PREFIX)
        if hl_symbol != symbol:
            logger.debug(f"Fetching k-token history: {symbol} -> HL:{hl_symbol}")

        lighter_entries, hyperliquid_entries = await asyncio.gather(
            self._bounded(Exchange.LIGHTER, symbol, self.lighter.funding_history(symbol, start, end)),
            self._bounded(Exchange.HYPERLIQUID, symbol, self.hyperliquid.funding_history(hl_symbol, start, end)),
        )
        return lighter_entries, hyperliquid_entries

    async def average_rates_for_period(self, symbols: Sequence[str], period: TimePeriod) -> AverageRates:
        """Average hourly rate per venue for every symbol with data in the window."""
        start, end = period_window(period, self.clock())
        logger.info(f"Fetching average rates for period: {period.value}, {len(symbols)} symbols")

        lighter_rates: Dict[str, float] = {}
        hyperliquid_rates: Dict[str, float] = {}
        data_start_dates: Dict[str, int] = {}

        for index, symbol in enumerate(symbols):
            if index:
                await asyncio.sleep(self.request_delay)
            try:
                lighter_entries, hyperliquid_entries = await self.fetch_histories(symbol, start, end)
                summary = summarize_histories(lighter_entries, hyperliquid_entries, start, end)
            except Exception as e:
                logger.error(f"Error fetching rates for {symbol}: {e}")
                continue

            # Both sides are stored under the Lighter symbol so they line up
            if summary.lighter_hourly is not None:
                lighter_rates[symbol] = summary.lighter_hourly
            if summary.hyperliquid_hourly is not None:
                hyperliquid_rates[symbol] = summary.hyperliquid_hourly
            if summary.data_start_date is not None:
                data_start_dates[symbol] = summary.data_start_date

            if _is_k_token(symbol):
                logger.debug(
                    f"[Historical {period.value}] {symbol}: "
                    f"LT={'yes' if summary.lighter_hourly is not None else 'no'}, "
                    f"HL={'yes' if summary.hyperliquid_hourly is not None else 'no'}"
                )

        logger.info(f"Fetched average rates: Lighter={len(lighter_rates)}, HL={len(hyperliquid_rates)}")
        self._log_data_start_range(period, data_start_dates, end)

        return AverageRates(
            lighter_hourly=lighter_rates,
            hyperliquid_hourly=hyperliquid_rates,
            data_start_dates=data_start_dates,
        )

    @staticmethod
    def _log_data_start_range(period: TimePeriod, data_start_dates: Dict[str, int], now: int):
        if not data_start_dates:
            return
        earliest = format_date(min(data_start_dates.values()))
        latest = format_date(max(data_start_dates.values()))
        logger.info(f"[Historical {period.value}] Data start dates range: {earliest} to {latest}")

        today = format_date(now)
        if earliest == today and latest == today:
            logger.warning(f"[Historical {period.value}] All data starts today - historical fetch may not be working!")

    async def historical_aprs(self, symbol: str, long_exchange: Exchange) -> HistoricalAPRs:
        """
        Average net APR of one direction over 7d, 30d and ytd.

        A single fetch covers the widest window; the shorter ones are slices
        of it.
        """
        now = self.clock()
        windows = {period: period_window(period, now)
                   for period in (TimePeriod.SEVEN_DAYS, TimePeriod.THIRTY_DAYS, TimePeriod.YTD)}
        earliest_start = min(start for start, _ in windows.values())

        try:
            lighter_entries, hyperliquid_entries = await self.fetch_histories(symbol, earliest_start, now)
        except Exception as e:
            logger.error(f"Error fetching historical APRs for {symbol}: {e}")
            return HistoricalAPRs()

        aprs = {}
        for period, (start, end) in windows.items():
            summary = summarize_histories(lighter_entries, hyperliquid_entries, start, end)
            aprs[period] = average_net_apr(summary, long_exchange)

        return HistoricalAPRs(
            apr_7d=aprs[TimePeriod.SEVEN_DAYS],
            apr_30d=aprs[TimePeriod.THIRTY_DAYS],
            apr_ytd=aprs[TimePeriod.YTD],
        )
