"""
Pytest configuration and shared fixtures.
"""
from typing import Dict, List, Optional

import pytest

from core.exchange_client import BaseExchangeClient
from core.models import Coin, Exchange, FundingRate, HistoricalFundingEntry

NOW = 1_750_000_000_000  # 2025-06-15 (UTC)
HOUR = 60 * 60 * 1000


class FakeClient(BaseExchangeClient):
    """In-memory venue client with call counting."""

    def __init__(
        self,
        exchange: Exchange,
        rates: Optional[Dict[str, float]] = None,
        history: Optional[Dict[str, List[HistoricalFundingEntry]]] = None,
        period_hours: float = 1.0,
    ):
        super().__init__()
        self.exchange = exchange
        self.rates = rates or {}
        self.history = history or {}
        self.period_hours = period_hours
        self.calls = 0
        self.history_calls: List[str] = []
        self.fail = False

    async def list_instruments(self) -> List[Coin]:
        if self.fail:
            raise ConnectionError("venue down")
        return [Coin(symbol=symbol, exchange=self.exchange) for symbol in self.rates]

    async def current_funding_rates(self) -> List[FundingRate]:
        self.calls += 1
        if self.fail:
            raise ConnectionError("venue down")
        return [
            FundingRate(symbol=symbol, exchange=self.exchange, rate=rate, timestamp=NOW,
                        period_hours=self.period_hours)
            for symbol, rate in self.rates.items()
        ]

    async def funding_history(self, symbol, start_time, end_time=None):
        self.history_calls.append(symbol)
        return list(self.history.get(symbol, []))


def make_entry(exchange: Exchange, rate: float, timestamp: int, period_hours: float = 1.0, symbol: str = "BTC"):
    return HistoricalFundingEntry(
        symbol=symbol, exchange=exchange, rate=rate, timestamp=timestamp, period_hours=period_hours
    )


def make_rate(exchange: Exchange, symbol: str, rate: float, period_hours: Optional[float] = None,
              timestamp: int = NOW):
    return FundingRate(symbol=symbol, exchange=exchange, rate=rate, timestamp=timestamp, period_hours=period_hours)


@pytest.fixture
def lighter_client():
    return FakeClient(Exchange.LIGHTER, {"BTC": 0.0001, "ETH": -0.0002, "1000BONK": 0.0008}, period_hours=8.0)


@pytest.fixture
def hyperliquid_client():
    return FakeClient(Exchange.HYPERLIQUID, {"BTC": 0.00002, "ETH": 0.00001, "KBONK": -0.00005, "SOL": 0.0001})


class FakeClock:
    """Settable millisecond clock."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()
