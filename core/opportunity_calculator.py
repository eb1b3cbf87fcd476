"""
Opportunity calculation for delta-neutral funding arbitrage.

A long position pays its venue's funding when the rate is positive and
receives it when negative; a short position does the opposite. Holding long
on one venue and short on the other therefore earns short_rate - long_rate
per hour.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Set

from core.models import ArbitrageOpportunity, Exchange, FundingRate
from core.rate_normalizer import REALTIME_PREFIX, annualize, hourly_rate, match_symbol

logger = logging.getLogger(__name__)

SMALL_APR_THRESHOLD = 1.0


def net_apr(long_hourly: float, short_hourly: float) -> float:
    """Annualized net return of going long at long_hourly and short at short_hourly."""
    return annualize(short_hourly - long_hourly)


def select_direction(
    symbol: str,
    lighter_hourly: float,
    hyperliquid_hourly: float,
    last_updated: int,
    data_start_date: Optional[int] = None,
) -> ArbitrageOpportunity:
    """
    Pick the better of the two long/short directions for one instrument.

    Ties go to long Lighter / short Hyperliquid.
    """
    long_lighter_apr = net_apr(lighter_hourly, hyperliquid_hourly)
    long_hyperliquid_apr = net_apr(hyperliquid_hourly, lighter_hourly)

    if long_lighter_apr >= long_hyperliquid_apr:
        return ArbitrageOpportunity(
            symbol=symbol,
            long_exchange=Exchange.LIGHTER,
            short_exchange=Exchange.HYPERLIQUID,
            long_funding_rate=lighter_hourly,
            short_funding_rate=hyperliquid_hourly,
            net_apr=long_lighter_apr,
            last_updated=last_updated,
            data_start_date=data_start_date,
        )

    return ArbitrageOpportunity(
        symbol=symbol,
        long_exchange=Exchange.HYPERLIQUID,
        short_exchange=Exchange.LIGHTER,
        long_funding_rate=hyperliquid_hourly,
        short_funding_rate=lighter_hourly,
        net_apr=long_hyperliquid_apr,
        last_updated=last_updated,
        data_start_date=data_start_date,
    )


def sort_opportunities(opportunities: Iterable[ArbitrageOpportunity]) -> List[ArbitrageOpportunity]:
    """Highest net APR first, symbol ascending among equals."""
    return sorted(opportunities, key=lambda opp: (-opp.net_apr, opp.symbol))


def _index_by_symbol(rates: Iterable[FundingRate]) -> Dict[str, FundingRate]:
    indexed: Dict[str, FundingRate] = {}
    for rate in rates:
        indexed[rate.symbol.upper()] = rate
    return indexed


class OpportunityCalculator:
    """
    Computes arbitrage opportunities from realtime rates or averaged rates.

    Keeps track of the zero-rate symbols it has already reported so a
    delisted market is only logged once.
    """

    def __init__(self):
        self._logged_zero_rates: Set[str] = set()

    def calculate_opportunities(
        self,
        lighter_rates: Iterable[FundingRate],
        hyperliquid_rates: Iterable[FundingRate],
    ) -> List[ArbitrageOpportunity]:
        """Realtime opportunities from the latest funding rates of both venues."""
        lighter_map = _index_by_symbol(lighter_rates)
        hyperliquid_map = _index_by_symbol(hyperliquid_rates)

        opportunities: List[ArbitrageOpportunity] = []

        for symbol, lighter_rate in lighter_map.items():
            match = match_symbol(symbol, hyperliquid_map, REALTIME_PREFIX)
            if match is None:
                continue
            hl_symbol, hyperliquid_rate = match
            if hl_symbol != symbol:
                logger.debug(f"[MATCH] {symbol} (Lighter) -> {hl_symbol} (Hyperliquid)")

            lighter_hourly = hourly_rate(lighter_rate)
            hyperliquid_hourly = hourly_rate(hyperliquid_rate)

            # Both venues at exactly zero usually means a delisted market
            if lighter_hourly == 0 and hyperliquid_hourly == 0:
                if symbol not in self._logged_zero_rates:
                    logger.info(f"[SKIP] Both rates zero for {symbol} (likely delisted)")
                    self._logged_zero_rates.add(symbol)
                continue

            opportunities.append(select_direction(
                symbol,
                lighter_hourly,
                hyperliquid_hourly,
                last_updated=max(lighter_rate.timestamp, hyperliquid_rate.timestamp),
            ))

        self._log_small_aprs(opportunities)
        return sort_opportunities(opportunities)

    def calculate_opportunities_from_rates(
        self,
        lighter_hourly: Mapping[str, float],
        hyperliquid_hourly: Mapping[str, float],
        timestamp: int,
        data_start_dates: Optional[Mapping[str, int]] = None,
    ) -> List[ArbitrageOpportunity]:
        """
        Opportunities from pre-averaged hourly rates.

        Used for the historical periods. Zero rates are kept here: a zero
        average over a window is a real observation.
        """
        data_start_dates = data_start_dates or {}
        opportunities: List[ArbitrageOpportunity] = []

        for symbol, lighter_rate in lighter_hourly.items():
            match = match_symbol(symbol, hyperliquid_hourly, REALTIME_PREFIX)
            if match is None:
                continue
            _, hyperliquid_rate = match

            opportunities.append(select_direction(
                symbol,
                lighter_rate,
                hyperliquid_rate,
                last_updated=timestamp,
                data_start_date=data_start_dates.get(symbol),
            ))

        return sort_opportunities(opportunities)

    @staticmethod
    def _log_small_aprs(opportunities: List[ArbitrageOpportunity]):
        small = [opp for opp in opportunities if abs(opp.net_apr) < SMALL_APR_THRESHOLD]
        if not small:
            return
        logger.debug(f"{len(small)} realtime opportunities with APR < {SMALL_APR_THRESHOLD}%")
        for opp in small[:5]:
            logger.debug(
                f"  {opp.symbol}: netAPR={opp.net_apr:.6f}%, "
                f"longRate={opp.long_funding_rate:.4e}, shortRate={opp.short_funding_rate:.4e}"
            )
