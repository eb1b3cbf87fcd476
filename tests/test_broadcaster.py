"""
Tests for the opportunity push stream.
"""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from core.broadcaster import OpportunityBroadcaster
from core.models import OpportunitiesByPeriod
from core.opportunity_calculator import select_direction
from conftest import NOW


@pytest.fixture
def broadcaster(clock):
    return OpportunityBroadcaster(interval=0.01, clock=clock)


@pytest.fixture
def snapshot():
    return OpportunitiesByPeriod(realtime=[select_direction("BTC", 0.00001, 0.00002, NOW)])


def _subscriber(fail: bool = False):
    subscriber = AsyncMock()
    if fail:
        subscriber.send_text.side_effect = ConnectionError("socket closed")
    return subscriber


class TestBroadcast:
    """Tests for broadcast and subscriber handling."""

    def test_message_format(self, broadcaster, snapshot, clock):
        message = json.loads(broadcaster.build_message(snapshot))
        assert message["type"] == "opportunities"
        assert message["timestamp"] == clock.now
        assert set(message["data"]) == {"realtime", "7d", "30d", "ytd"}
        assert message["data"]["realtime"][0]["symbol"] == "BTC"
        assert message["data"]["realtime"][0]["netAPR"] == pytest.approx(8.76)

    def test_broadcast_reaches_every_subscriber(self, broadcaster, snapshot):
        subscribers = [_subscriber() for _ in range(3)]
        for subscriber in subscribers:
            broadcaster.register(subscriber)

        delivered = asyncio.run(broadcaster.broadcast(snapshot))

        assert delivered == 3
        for subscriber in subscribers:
            subscriber.send_text.assert_awaited_once()

    def test_failed_subscriber_pruned(self, broadcaster, snapshot):
        healthy = _subscriber()
        broken = _subscriber(fail=True)
        broadcaster.register(healthy)
        broadcaster.register(broken)

        delivered = asyncio.run(broadcaster.broadcast(snapshot))

        assert delivered == 1
        assert broadcaster.subscriber_count == 1
        healthy.send_text.assert_awaited_once()

    def test_blocked_subscriber_pruned_on_timeout(self, clock, snapshot):
        broadcaster = OpportunityBroadcaster(interval=0.01, send_timeout=0.05, clock=clock)
        healthy = _subscriber()
        stuck = _subscriber()

        async def never_drains(payload):
            await asyncio.sleep(3600)

        stuck.send_text.side_effect = never_drains
        broadcaster.register(healthy)
        broadcaster.register(stuck)

        delivered = asyncio.run(broadcaster.broadcast(snapshot))

        assert delivered == 1
        assert broadcaster.subscriber_count == 1
        healthy.send_text.assert_awaited_once()

    def test_no_subscribers(self, broadcaster, snapshot):
        assert asyncio.run(broadcaster.broadcast(snapshot)) == 0

    def test_unregister_unknown_is_noop(self, broadcaster):
        broadcaster.unregister(_subscriber())
        assert broadcaster.subscriber_count == 0


class TestBroadcastLoop:
    """Tests for the timed loop."""

    def test_loop_sends_provider_snapshot(self, broadcaster, snapshot):
        subscriber = _subscriber()
        broadcaster.register(subscriber)

        async def scenario():
            broadcaster.start(lambda: snapshot)
            await asyncio.sleep(0.05)
            await broadcaster.stop()

        asyncio.run(scenario())
        assert subscriber.send_text.await_count >= 1
        sent = json.loads(subscriber.send_text.await_args.args[0])
        assert sent["data"]["realtime"][0]["symbol"] == "BTC"

    def test_blocked_subscriber_does_not_stall_loop(self, clock, snapshot):
        broadcaster = OpportunityBroadcaster(interval=0.01, send_timeout=0.05, clock=clock)
        healthy = _subscriber()
        stuck = _subscriber()

        async def never_drains(payload):
            await asyncio.sleep(3600)

        stuck.send_text.side_effect = never_drains
        broadcaster.register(healthy)
        broadcaster.register(stuck)

        async def scenario():
            broadcaster.start(lambda: snapshot)
            await asyncio.sleep(0.5)
            await broadcaster.stop()

        asyncio.run(scenario())
        # The first round waits out the timeout, later rounds only reach the healthy one
        assert healthy.send_text.await_count > 5
        assert broadcaster.subscriber_count == 1

    def test_failing_provider_sends_empty_snapshot(self, broadcaster):
        subscriber = _subscriber()
        broadcaster.register(subscriber)

        def provider():
            raise RuntimeError("cache unavailable")

        async def scenario():
            broadcaster.start(provider)
            await asyncio.sleep(0.05)
            await broadcaster.stop()

        asyncio.run(scenario())
        sent = json.loads(subscriber.send_text.await_args.args[0])
        assert sent["data"] == {"realtime": [], "7d": [], "30d": [], "ytd": []}

    def test_close_closes_subscribers(self, broadcaster):
        subscriber = _subscriber()
        broadcaster.register(subscriber)

        asyncio.run(broadcaster.close())

        subscriber.close.assert_awaited_once()
        assert broadcaster.subscriber_count == 0
