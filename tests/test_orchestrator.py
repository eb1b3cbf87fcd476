"""
Tests for the cache/refresh orchestrator.
"""
import asyncio

import pytest

from core.historical_funding import HistoricalAggregator
from core.models import Exchange, TimePeriod
from core.orchestrator import OpportunityOrchestrator
from conftest import HOUR, make_entry


@pytest.fixture
def orchestrator(lighter_client, hyperliquid_client, clock):
    aggregator = HistoricalAggregator(lighter_client, hyperliquid_client, request_delay=0, fetch_timeout=1, clock=clock)
    return OpportunityOrchestrator(
        lighter_client,
        hyperliquid_client,
        aggregator,
        fetch_timeout=0.2,
        sync_refresh_timeout=1,
        symbol_request_delay=0,
        clock=clock,
    )


async def _settle_historical(orchestrator):
    tasks = orchestrator.schedule_historical_refresh(stale_only=True)
    if tasks:
        await asyncio.gather(*tasks)


class TestRealtime:
    """Tests for the realtime read path."""

    def test_get_opportunities(self, orchestrator, clock):
        async def scenario():
            response = await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            return response

        response = asyncio.run(scenario())

        realtime = response.opportunities.realtime
        assert [opp.symbol for opp in realtime] == ["1000BONK", "ETH", "BTC"]
        assert realtime[0].long_exchange == Exchange.HYPERLIQUID
        assert realtime[0].net_apr == pytest.approx(131.4)
        assert realtime[2].net_apr == pytest.approx(6.57)
        assert response.lighter_available
        assert response.hyperliquid_available
        assert response.last_updated == clock.now
        assert response.opportunities.ytd == []

    def test_wire_format(self, orchestrator):
        async def scenario():
            response = await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            return response.to_wire()

        wire = asyncio.run(scenario())
        assert set(wire["opportunities"]) == {"realtime", "7d", "30d", "ytd"}
        assert wire["lighterAvailable"] is True
        assert "lastUpdated" in wire

    def test_concurrent_readers_share_one_fetch(self, orchestrator, lighter_client, hyperliquid_client):
        async def scenario():
            await asyncio.gather(*(orchestrator.get_opportunities() for _ in range(5)))
            await _settle_historical(orchestrator)

        asyncio.run(scenario())
        assert lighter_client.calls == 1
        assert hyperliquid_client.calls == 1

    def test_fresh_cache_not_refetched(self, orchestrator, lighter_client, clock):
        async def scenario():
            await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            clock.advance(30_000)
            await orchestrator.get_opportunities()
            clock.advance(31_000)
            await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)

        asyncio.run(scenario())
        assert lighter_client.calls == 2

    def test_venue_timeout_marks_unavailable(self, orchestrator, hyperliquid_client):
        async def hang():
            await asyncio.sleep(5)

        hyperliquid_client.get_all_data = hang

        response = asyncio.run(orchestrator.get_opportunities())
        assert response.lighter_available
        assert not response.hyperliquid_available
        assert response.opportunities.realtime == []

    def test_venue_error_marks_unavailable(self, orchestrator, lighter_client):
        lighter_client.fail = True

        response = asyncio.run(orchestrator.get_opportunities())
        assert not response.lighter_available
        assert response.hyperliquid_available
        assert response.opportunities.realtime == []

    def test_get_coins(self, orchestrator):
        coins = asyncio.run(orchestrator.get_coins())
        assert {coin.symbol for coin in coins.lighter} == {"BTC", "ETH", "1000BONK"}
        assert "SOL" in {coin.symbol for coin in coins.hyperliquid}


class TestHistoricalPeriods:
    """Tests for the 7d / 30d buckets."""

    def test_period_refresh_needs_seed_symbols(self, orchestrator):
        async def scenario():
            return await orchestrator.refresh_period(TimePeriod.SEVEN_DAYS)

        assert asyncio.run(scenario()) is False
        assert orchestrator.periods[TimePeriod.SEVEN_DAYS].timestamp == 0

    def test_periods_computed_from_history(self, orchestrator, lighter_client, hyperliquid_client, clock):
        lighter_client.history["BTC"] = [make_entry(Exchange.LIGHTER, 0.00008, clock.now - HOUR, period_hours=8)]
        hyperliquid_client.history["BTC"] = [make_entry(Exchange.HYPERLIQUID, 0.00003, clock.now - 2 * HOUR)]

        async def scenario():
            await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            return orchestrator.cached_opportunities()

        snapshot = asyncio.run(scenario())
        for period in (snapshot.seven_days, snapshot.thirty_days):
            assert [opp.symbol for opp in period] == ["BTC"]
            assert period[0].net_apr == pytest.approx(17.52)
            assert period[0].data_start_date == clock.now - HOUR
        assert snapshot.ytd == []

    def test_rates_bucket_reused_while_fresh(self, orchestrator, hyperliquid_client):
        async def scenario():
            await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            first = len(hyperliquid_client.history_calls)
            orchestrator.periods[TimePeriod.SEVEN_DAYS].invalidate()
            await orchestrator.refresh_period(TimePeriod.SEVEN_DAYS)
            return first

        first = asyncio.run(scenario())
        assert first > 0
        assert len(hyperliquid_client.history_calls) == first

    def test_period_failure_keeps_previous_list(self, orchestrator):
        async def scenario():
            await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            bucket = orchestrator.periods[TimePeriod.THIRTY_DAYS]
            committed_at = bucket.timestamp

            async def broken(symbols, period):
                raise RuntimeError("aggregation failed")

            orchestrator.rates[TimePeriod.THIRTY_DAYS].invalidate()
            orchestrator.aggregator.average_rates_for_period = broken
            bucket.invalidate()
            ok = await orchestrator.refresh_period(TimePeriod.THIRTY_DAYS)
            return ok, committed_at

        ok, committed_at = asyncio.run(scenario())
        assert ok is False
        assert committed_at > 0


class TestSymbolHistory:
    """Tests for per-symbol historical APRs."""

    def test_cached_per_symbol_and_direction(self, orchestrator, lighter_client, hyperliquid_client, clock):
        lighter_client.history["ETH"] = [make_entry(Exchange.LIGHTER, 0.00008, clock.now - HOUR, period_hours=8)]
        hyperliquid_client.history["ETH"] = [make_entry(Exchange.HYPERLIQUID, 0.00002, clock.now - HOUR)]

        async def scenario():
            await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            before = len(hyperliquid_client.history_calls)
            first = await orchestrator.get_historical_aprs("eth", Exchange.LIGHTER)
            second = await orchestrator.get_historical_aprs("ETH", Exchange.LIGHTER)
            other = await orchestrator.get_historical_aprs("ETH", Exchange.HYPERLIQUID)
            return first, second, other, hyperliquid_client.history_calls[before:]

        first, second, other, calls = asyncio.run(scenario())
        assert first.apr_7d == pytest.approx(8.76)
        assert second == first
        assert other.apr_7d == pytest.approx(-8.76)
        assert calls == ["ETH", "ETH"]

    def test_for_symbols(self, orchestrator):
        pairs = [("BTC", Exchange.LIGHTER), ("1000BONK", Exchange.HYPERLIQUID)]

        async def scenario():
            await orchestrator.get_opportunities()
            return await orchestrator.get_historical_aprs_for_symbols(pairs)

        results = asyncio.run(scenario())
        assert set(results) == {"BTC", "1000BONK"}
        assert results["BTC"].apr_7d is None

    def test_unknown_symbols_not_cached_or_fetched(self, orchestrator, lighter_client, hyperliquid_client):
        async def scenario():
            await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            before = (len(lighter_client.history_calls), len(hyperliquid_client.history_calls))
            results = [
                await orchestrator.get_historical_aprs(f"JUNK{i}", Exchange.LIGHTER)
                for i in range(50)
            ]
            after = (len(lighter_client.history_calls), len(hyperliquid_client.history_calls))
            return results, before, after

        results, before, after = asyncio.run(scenario())
        assert all(result.apr_7d is None for result in results)
        assert after == before
        assert orchestrator.cache_stats()["symbols"] == 0

    def test_no_buckets_before_realtime_data(self, orchestrator, hyperliquid_client):
        result = asyncio.run(orchestrator.get_historical_aprs("BTC", Exchange.LIGHTER))
        assert result.apr_7d is None
        assert hyperliquid_client.history_calls == []
        assert orchestrator.cache_stats()["symbols"] == 0

    def test_expired_buckets_evicted(self, orchestrator, clock):
        async def load(symbol):
            await orchestrator.get_historical_aprs(symbol, Exchange.LIGHTER)

        async def first_round():
            await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            await load("BTC")

        asyncio.run(first_round())
        assert orchestrator.cache_stats()["symbols"] == 1

        clock.advance(24 * HOUR)

        async def second_round():
            await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            await load("ETH")

        asyncio.run(second_round())
        assert set(orchestrator._symbol_buckets) == {("ETH", Exchange.LIGHTER)}

    def test_clear_cache(self, orchestrator):
        async def scenario():
            await orchestrator.get_opportunities()
            await _settle_historical(orchestrator)
            await orchestrator.get_historical_aprs("BTC", Exchange.LIGHTER)

        asyncio.run(scenario())
        assert orchestrator.cache_stats()["symbols"] == 1
        last_updated = orchestrator.realtime.timestamp

        orchestrator.clear_cache()
        stats = orchestrator.cache_stats()
        assert stats["symbols"] == 0
        assert stats["realtime"]["state"] == "stale"
        # Data and its commit time survive, only freshness is reset
        assert orchestrator.realtime.timestamp == last_updated > 0
        assert orchestrator.cached_opportunities().realtime


class TestTimers:
    """Tests for start/stop."""

    def test_start_refreshes_and_stop_cancels(self, orchestrator, lighter_client):
        async def scenario():
            orchestrator.start()
            await asyncio.sleep(0.05)
            await orchestrator.stop()

        asyncio.run(scenario())
        assert lighter_client.calls == 1
        assert not orchestrator.running
        assert orchestrator.realtime.data.opportunities
