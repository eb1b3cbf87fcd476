"""
Single-flight, TTL-bound cache buckets.

A bucket holds one immutable snapshot (data + commit timestamp). Refreshes
replace the snapshot as a whole, never field by field, and at most one
refresh per bucket is in flight at any time. A failed refresh keeps the old
snapshot and leaves its timestamp alone, so the bucket stays stale and is
retried on the next read or timer tick.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from utils.time_utils import now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BucketState(str, Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class BucketSnapshot(Generic[T]):
    data: T
    timestamp: int = 0


class CacheBucket(Generic[T]):
    """
    One named result bucket.

    Args:
        name: Bucket name used in logs and stats
        ttl_ms: How long a committed snapshot stays fresh
        empty: Factory for the initial (empty) data
        clock: Millisecond clock
        on_commit: Called with the new snapshot after each successful refresh
    """

    def __init__(
        self,
        name: str,
        ttl_ms: int,
        empty: Callable[[], T],
        clock: Callable[[], int] = now_ms,
        on_commit: Optional[Callable[[BucketSnapshot], None]] = None,
    ):
        self.name = name
        self.ttl_ms = ttl_ms
        self.clock = clock
        self.on_commit = on_commit
        self._snapshot: BucketSnapshot = BucketSnapshot(empty(), 0)
        self._task: Optional[asyncio.Task] = None
        self._stale = False
        self._tickets_issued = 0
        self._committed_ticket = 0

    @property
    def snapshot(self) -> BucketSnapshot:
        return self._snapshot

    @property
    def data(self) -> T:
        return self._snapshot.data

    @property
    def timestamp(self) -> int:
        return self._snapshot.timestamp

    @property
    def refreshing(self) -> bool:
        return self._task is not None and not self._task.done()

    def age_ms(self) -> Optional[int]:
        if not self.timestamp:
            return None
        return self.clock() - self.timestamp

    def is_fresh(self) -> bool:
        if self._stale or not self.timestamp:
            return False
        return self.clock() - self.timestamp < self.ttl_ms

    def state(self) -> BucketState:
        if self.refreshing:
            return BucketState.REFRESHING
        if not self.timestamp:
            return BucketState.EMPTY
        return BucketState.FRESH if self.is_fresh() else BucketState.STALE

    def _next_ticket(self) -> int:
        self._tickets_issued += 1
        return self._tickets_issued

    def _commit(self, ticket: int, data: T) -> bool:
        # Invalidated (or a newer refresh landed) after this refresh started
        if ticket <= self._committed_ticket:
            logger.info(f"[{self.name}] Discarding superseded refresh result")
            return False
        self._committed_ticket = ticket
        self._snapshot = BucketSnapshot(data, self.clock())
        self._stale = False
        if self.on_commit:
            try:
                self.on_commit(self._snapshot)
            except Exception as e:
                logger.error(f"[{self.name}] Commit callback failed: {e}", exc_info=True)
        return True

    def invalidate(self) -> None:
        """
        Mark the bucket stale while keeping its data and commit timestamp.

        A refresh already in flight was started against the old state and
        its result is discarded.
        """
        self._stale = True
        self._committed_ticket = self._next_ticket()

    async def _run(self, ticket: int, fetch: Callable[[], Awaitable[T]]) -> bool:
        started = self.clock()
        try:
            data = await fetch()
        except asyncio.CancelledError:
            logger.info(f"[{self.name}] Refresh cancelled")
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Refresh failed, keeping previous data: {e}", exc_info=True)
            return False
        finally:
            if self._task is asyncio.current_task():
                self._task = None

        committed = self._commit(ticket, data)
        if committed:
            logger.debug(f"[{self.name}] Refreshed in {self.clock() - started}ms")
        return committed

    def refresh(self, fetch: Callable[[], Awaitable[T]]) -> asyncio.Task:
        """
        Start a refresh unless one is already running.

        Returns the in-flight task; its result is True when new data was
        committed.
        """
        if self.refreshing:
            return self._task
        self._task = asyncio.create_task(self._run(self._next_ticket(), fetch), name=f"refresh:{self.name}")
        return self._task

    async def read(self, fetch: Callable[[], Awaitable[T]], wait: Optional[float] = None) -> T:
        """
        Current data, refreshing when stale.

        A fresh bucket answers immediately. While a refresh is running the
        current data is returned without waiting. Otherwise a refresh is
        started and, if wait is given, awaited for at most that many seconds;
        the refresh keeps running in the background past the timeout.
        """
        if self.is_fresh() or self.refreshing:
            return self.data

        task = self.refresh(fetch)
        if wait:
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=wait)
            except asyncio.TimeoutError:
                logger.warning(f"[{self.name}] Refresh still running after {wait}s, serving cached data")
        return self.data

    def stats(self) -> dict:
        return {
            "state": self.state().value,
            "timestamp": self.timestamp,
            "ageMs": self.age_ms(),
            "ttlMs": self.ttl_ms,
        }
