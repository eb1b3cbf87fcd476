"""
Funding rate normalization and cross-venue symbol matching.

Lighter settles funding every 8 hours, Hyperliquid every hour. Everything
downstream compares hourly rates, and annualizes them over a flat 8760 hour
year.

Low-denomination tokens are listed as 1000FLOKI on Lighter and as KFLOKI /
kFLOKI on Hyperliquid. The realtime asset contexts are matched upper-cased,
while Hyperliquid's fundingHistory endpoint only accepts the lower-case k.
"""
from typing import Mapping, Optional, Tuple, TypeVar

from core.models import Exchange, FundingRate

T = TypeVar("T")

HOURS_PER_YEAR = 24 * 365

THOUSAND_PREFIX = "1000"
REALTIME_PREFIX = "K"
HISTORY_PREFIX = "k"

DEFAULT_PERIOD_HOURS = {
    Exchange.LIGHTER: 8.0,
    Exchange.HYPERLIQUID: 1.0,
}
FALLBACK_PERIOD_HOURS = 8.0


def to_hourly(rate: float, period_hours: float) -> float:
    """Convert a per-period funding rate to its hourly equivalent."""
    if period_hours <= 0:
        raise ValueError(f"period_hours must be positive, got {period_hours}")
    return rate / period_hours


def annualize(hourly_rate: float) -> float:
    """Hourly decimal rate to an APR percentage."""
    return hourly_rate * HOURS_PER_YEAR * 100


def period_hours_or_default(rate: FundingRate) -> float:
    """Funding period of a rate, falling back to the venue's settlement interval."""
    if rate.period_hours:
        return rate.period_hours
    return DEFAULT_PERIOD_HOURS.get(rate.exchange, FALLBACK_PERIOD_HOURS)


def hourly_rate(rate: FundingRate) -> float:
    return to_hourly(rate.rate, period_hours_or_default(rate))


def to_hyperliquid_symbol(symbol: str, prefix: str = REALTIME_PREFIX) -> str:
    """
    Translate a Lighter symbol to Hyperliquid naming.

    1000BONK becomes KBONK (or kBONK with HISTORY_PREFIX); any other symbol is
    returned unchanged.
    """
    if symbol.startswith(THOUSAND_PREFIX):
        return prefix + symbol[len(THOUSAND_PREFIX):]
    return symbol


def match_symbol(
    symbol: str,
    candidates: Mapping[str, T],
    prefix: str = REALTIME_PREFIX,
) -> Optional[Tuple[str, T]]:
    """
    Find the counterpart of a Lighter symbol in a Hyperliquid keyed mapping.

    Tries the exact symbol first, then the 1000 -> K translation. Returns the
    matched key and its value, or None.
    """
    if symbol in candidates:
        return symbol, candidates[symbol]

    translated = to_hyperliquid_symbol(symbol, prefix)
    if translated != symbol and translated in candidates:
        return translated, candidates[translated]

    return None
