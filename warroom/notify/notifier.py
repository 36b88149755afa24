"""
Change Notifier

Fans snapshot changes out to long-lived subscribers (served as SSE).

Per subscriber: one ``hello`` event on connect, then every tick either a full
``snapshot`` (new version), a ``ping`` keep-alive, or a generic ``error`` when
the store read failed. Errors do not end the stream; the next tick reads again.
"""

from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator, Callable, Dict, Optional

from warroom.errors import StoreError
from warroom.memory.snapshot_store import SnapshotStore
from warroom.notify.feed import ChangeFeed, PollingChangeFeed
from warroom.schemas.refresh import StreamEvent
from warroom.utils.logging import get_logger

logger = get_logger(__name__, category="stream")


class ChangeNotifier:
    """Tick loop per subscriber over a pluggable ChangeFeed."""

    def __init__(
        self,
        store: SnapshotStore,
        tick_seconds: float = 1.0,
        feed_factory: Optional[Callable[[], ChangeFeed]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            store: Snapshot store read by the default polling feed
            tick_seconds: Interval between snapshot/ping events
            feed_factory: Builds one ChangeFeed per subscriber (defaults to polling)
            clock: Seconds since the epoch, used for ping payloads
        """
        self.store = store
        self.tick_seconds = tick_seconds
        self._feed_factory = feed_factory or (lambda: PollingChangeFeed(store))
        self._clock = clock
        self._closed = asyncio.Event()
        self._subscribers = 0

    @property
    def subscriber_count(self) -> int:
        return self._subscribers

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Stop every subscriber's tick loop (server shutdown)."""
        self._closed.set()
        logger.info("Change notifier closed (%s active subscribers)", self._subscribers)

    async def _wait_tick(self) -> bool:
        """Sleep one tick. True if the notifier was closed meanwhile."""
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=self.tick_seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _tick(self, feed: ChangeFeed) -> StreamEvent:
        try:
            snapshot = await feed.next_change()
        except StoreError as exc:
            logger.warning("Snapshot read failed during stream tick: %s", exc)
            return StreamEvent(event="error", data={"message": "store_error"})

        if snapshot is not None:
            logger.debug("Delivering snapshot %s", snapshot.version)
            return StreamEvent(event="snapshot", data=snapshot.to_wire())
        return StreamEvent(event="ping", data={"t": int(self._clock() * 1000)})

    async def subscribe(self) -> AsyncIterator[StreamEvent]:
        """
        Event stream for one subscriber.

        Closing the generator (client disconnect) or calling ``close()`` ends
        the loop; no further ticks run after either.
        """
        feed = self._feed_factory()
        self._subscribers += 1
        logger.info("Stream subscriber connected (%s active)", self._subscribers)
        try:
            yield StreamEvent(event="hello", data={"ok": True})
            while not self._closed.is_set():
                if await self._wait_tick():
                    break
                yield await self._tick(feed)
        finally:
            self._subscribers -= 1
            await feed.close()
            logger.info("Stream subscriber disconnected (%s active)", self._subscribers)

    async def sse_events(self) -> AsyncIterator[Dict[str, str]]:
        """``subscribe()`` shaped for sse-starlette."""
        async for event in self.subscribe():
            yield event.to_sse()
