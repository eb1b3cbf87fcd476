"""
Push stream of opportunities to connected subscribers.
Sends the cached opportunities of every period on a fixed interval.
"""
import asyncio
import json
import logging
from typing import Callable, Optional, Protocol, Set

from core.models import BroadcastMessage, OpportunitiesByPeriod
from utils.time_utils import now_ms

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    async def send_text(self, data: str) -> None:
        ...


class OpportunityBroadcaster:
    """
    Keeps the set of push subscribers and sends them snapshots.
    A subscriber whose send fails is dropped without affecting the others.
    """

    def __init__(self, interval: float = 10.0, send_timeout: float = 5.0, clock: Callable[[], int] = now_ms):
        self.interval = interval
        self.send_timeout = send_timeout
        self.clock = clock
        self._subscribers: Set[Subscriber] = set()
        self._task: Optional[asyncio.Task] = None
        self.running = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def register(self, subscriber: Subscriber):
        self._subscribers.add(subscriber)
        logger.info(f"Client connected. Total clients: {len(self._subscribers)}")

    def unregister(self, subscriber: Subscriber):
        if subscriber in self._subscribers:
            self._subscribers.discard(subscriber)
            logger.info(f"Client disconnected. Total clients: {len(self._subscribers)}")

    def build_message(self, data: OpportunitiesByPeriod) -> str:
        message = BroadcastMessage(data=data, timestamp=self.clock())
        return json.dumps(message.to_wire())

    async def _deliver(self, subscriber: Subscriber, payload: str) -> bool:
        try:
            await asyncio.wait_for(subscriber.send_text(payload), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Dropping subscriber: send still blocked after {self.send_timeout}s")
            self.unregister(subscriber)
            return False
        except Exception as e:
            logger.warning(f"Dropping subscriber after failed send: {e}")
            self.unregister(subscriber)
            return False

    async def send(self, subscriber: Subscriber, data: OpportunitiesByPeriod) -> bool:
        """Send one snapshot to one subscriber; False (and dropped) when it fails."""
        return await self._deliver(subscriber, self.build_message(data))

    async def broadcast(self, data: OpportunitiesByPeriod) -> int:
        """
        Send one snapshot to every subscriber concurrently.

        Returns:
            int: Number of subscribers that received it
        """
        subscribers = list(self._subscribers)
        if not subscribers:
            return 0

        payload = self.build_message(data)
        results = await asyncio.gather(*(self._deliver(s, payload) for s in subscribers))
        delivered = sum(1 for ok in results if ok)
        logger.debug(f"Broadcast to {delivered}/{len(subscribers)} clients")
        return delivered

    async def _loop(self, provider: Callable[[], OpportunitiesByPeriod]):
        while self.running:
            await asyncio.sleep(self.interval)
            if not self._subscribers:
                continue
            try:
                data = provider()
            except Exception as e:
                logger.error(f"Error building broadcast snapshot: {e}", exc_info=True)
                data = OpportunitiesByPeriod()
            await self.broadcast(data)

    def start(self, provider: Callable[[], OpportunitiesByPeriod]):
        """Broadcast provider() every interval seconds."""
        if self.running:
            logger.warning("Broadcaster already running")
            return
        self.running = True
        self._task = asyncio.create_task(self._loop(provider), name="broadcast-timer")
        logger.info(f"Broadcasting opportunities every {self.interval}s")

    async def stop(self):
        self.running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def close(self):
        """Stop broadcasting and close every subscriber that supports it."""
        await self.stop()
        for subscriber in list(self._subscribers):
            close = getattr(subscriber, "close", None)
            if close is not None:
                try:
                    await asyncio.wait_for(close(), timeout=self.send_timeout)
                except Exception as e:
                    logger.debug(f"Error closing subscriber: {e}")
        self._subscribers.clear()
