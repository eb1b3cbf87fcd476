"""
Pydantic models for the Funding Arbitrage Scanner data structures.

Models serialise with camelCase field names so the JSON read API and the
push stream keep the wire format the frontend expects.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class Exchange(str, Enum):
    """Supported venues."""
    LIGHTER = "lighter"
    HYPERLIQUID = "hyperliquid"


class TimePeriod(str, Enum):
    """Horizons the opportunities are computed for."""
    REALTIME = "realtime"
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"
    YTD = "ytd"


class WireModel(BaseModel):
    """Immutable model with camelCase aliases."""
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        """JSON-ready dict using the camelCase field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Coin(WireModel):
    """Instrument listed on a venue."""
    symbol: str
    exchange: Exchange


class FundingRate(WireModel):
    """Current funding rate of one instrument on one venue."""
    symbol: str
    exchange: Exchange
    rate: float  # decimal, e.g. 0.0001 for 0.01%
    timestamp: int  # milliseconds
    period_hours: Optional[float] = None  # 1 hourly, 8 eight-hourly; venue default when absent


class HistoricalFundingEntry(WireModel):
    """One realized funding settlement, already sign-adjusted."""
    symbol: str
    exchange: Exchange
    rate: float
    timestamp: int  # milliseconds
    period_hours: float


class ArbitrageOpportunity(WireModel):
    """Best delta-neutral direction for one instrument."""
    symbol: str
    long_exchange: Exchange
    short_exchange: Exchange
    long_funding_rate: float  # hourly decimal
    short_funding_rate: float  # hourly decimal
    net_apr: float = Field(alias="netAPR")  # percentage, 12.5 means 12.5%
    last_updated: int
    data_start_date: Optional[int] = None  # set on historical periods

    @model_validator(mode="after")
    def _check_legs(self) -> "ArbitrageOpportunity":
        if self.long_exchange == self.short_exchange:
            raise ValueError("long and short legs must be on different exchanges")
        return self


class AverageRates(WireModel):
    """Averaged hourly rates per venue for one historical window."""
    lighter_hourly: Dict[str, float] = Field(default_factory=dict)
    hyperliquid_hourly: Dict[str, float] = Field(default_factory=dict)
    data_start_dates: Dict[str, int] = Field(default_factory=dict)


class HistoricalAPRs(WireModel):
    """Average net APR of a fixed direction over the historical windows."""
    apr_7d: Optional[float] = Field(default=None, alias="apr7d")
    apr_30d: Optional[float] = Field(default=None, alias="apr30d")
    apr_ytd: Optional[float] = Field(default=None, alias="aprYtd")


class ExchangeData(WireModel):
    """One venue's realtime poll result."""
    exchange: Exchange
    coins: List[Coin] = Field(default_factory=list)
    funding_rates: List[FundingRate] = Field(default_factory=list)


class MarketSnapshot(WireModel):
    """Content of the realtime cache bucket."""
    opportunities: List[ArbitrageOpportunity] = Field(default_factory=list)
    lighter_coins: List[Coin] = Field(default_factory=list)
    hyperliquid_coins: List[Coin] = Field(default_factory=list)
    lighter_available: bool = False
    hyperliquid_available: bool = False

    @property
    def symbols(self) -> List[str]:
        return [opp.symbol for opp in self.opportunities]


class OpportunitiesByPeriod(WireModel):
    """Opportunity lists keyed by horizon."""
    realtime: List[ArbitrageOpportunity] = Field(default_factory=list)
    seven_days: List[ArbitrageOpportunity] = Field(default_factory=list, alias="7d")
    thirty_days: List[ArbitrageOpportunity] = Field(default_factory=list, alias="30d")
    ytd: List[ArbitrageOpportunity] = Field(default_factory=list)


class OpportunitiesResponse(WireModel):
    """Body of GET /api/opportunities."""
    opportunities: OpportunitiesByPeriod
    last_updated: int
    lighter_available: bool
    hyperliquid_available: bool


class CoinsResponse(WireModel):
    """Body of GET /api/coins."""
    lighter: List[Coin] = Field(default_factory=list)
    hyperliquid: List[Coin] = Field(default_factory=list)
    last_updated: int = 0


class BroadcastMessage(WireModel):
    """Frame sent to push subscribers."""
    type: str = "opportunities"
    data: OpportunitiesByPeriod
    timestamp: int
