"""
Client Sync

Consumer-side companion of the war-room service, for processes that have no
scheduler of their own (dashboards, edge workers, the watch script).

Two independent loops:

- refresh loop: triggers a refresh immediately, then every interval while the
  service answers ok; on failure backs off exponentially (10s doubling, 10min cap)
- stream loop: follows the SSE change stream; whenever it drops, reads the
  snapshot once directly, then reconnects with backoff (1s doubling, 15s cap)
"""

from __future__ import annotations

import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from warroom.schemas.snapshot import Snapshot
from warroom.utils.backoff import ExponentialBackoff
from warroom.utils.logging import get_logger

logger = get_logger(__name__, category="sync")

SnapshotCallback = Callable[[Snapshot], Union[None, Awaitable[None]]]

SNAPSHOT_PATH = "/api/warroom"
REFRESH_PATH = "/api/warroom-refresh"
STREAM_PATH = "/api/warroom-stream"


class ClientSync:
    """Keeps a local copy of the latest snapshot and drives refreshes."""

    def __init__(
        self,
        base_url: str,
        on_snapshot: Optional[SnapshotCallback] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        refresh_interval: float = 60.0,
        refresh_backoff_base: float = 10.0,
        refresh_backoff_max: float = 600.0,
        stream_backoff_base: float = 1.0,
        stream_backoff_max: float = 15.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize client sync.

        Args:
            base_url: Root URL of the war-room service
            on_snapshot: Called with each newer snapshot (sync or async)
            http_client: Client to use; one is created (and owned) if omitted
            refresh_interval: Seconds between refresh triggers after a success
            refresh_backoff_base: First retry delay after a failed trigger
            refresh_backoff_max: Cap for the refresh retry delay
            stream_backoff_base: First reconnect delay for the stream
            stream_backoff_max: Cap for the stream reconnect delay
            sleep: Awaitable sleep, injectable for tests
        """
        self.base_url = base_url.rstrip("/")
        self.on_snapshot = on_snapshot
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, connect=10.0)
        )
        self.refresh_interval = refresh_interval
        self.refresh_backoff = ExponentialBackoff(refresh_backoff_base, refresh_backoff_max)
        self.stream_backoff = ExponentialBackoff(stream_backoff_base, stream_backoff_max)
        self._sleep = sleep

        self.latest: Optional[Snapshot] = None
        self.is_running = False
        self.stream_connected = False
        self.refresh_task: Optional[asyncio.Task] = None
        self.stream_task: Optional[asyncio.Task] = None

    # --- lifecycle ---

    async def start(self) -> None:
        """Start both loops as independent tasks."""
        if self.is_running:
            logger.warning("Client sync is already running")
            return

        self.is_running = True
        self.refresh_task = asyncio.create_task(self.run_refresh_loop())
        self.stream_task = asyncio.create_task(self.run_stream_loop())
        logger.info("Client sync started against %s", self.base_url)

    async def stop(self) -> None:
        """Cancel both loops and close the owned HTTP client."""
        self.is_running = False

        for task in (self.refresh_task, self.stream_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    # Expected when stopping
                    pass
                except Exception as exc:
                    logger.error("Client sync task had failed: %s", exc)
        self.refresh_task = None
        self.stream_task = None
        self.stream_connected = False

        if self._owns_client:
            await self.http_client.aclose()

        logger.info("Client sync stopped")

    # --- snapshot delivery ---

    async def _deliver(self, snapshot: Snapshot) -> None:
        """Replace the local copy if ``snapshot`` is newer; duplicates are ignored."""
        if self.latest is not None and snapshot.updated_at <= self.latest.updated_at:
            return
        self.latest = snapshot
        if self.on_snapshot is None:
            return
        try:
            result = self.on_snapshot(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # latest is already updated; keep streaming
            logger.exception("on_snapshot callback failed for %s", snapshot.version)

    async def fetch_snapshot(self) -> Optional[Snapshot]:
        """One-shot read of the current snapshot; None if not populated yet."""
        response = await self.http_client.get(f"{self.base_url}{SNAPSHOT_PATH}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return Snapshot.model_validate(response.json())

    # --- refresh loop ---

    async def trigger_refresh(self) -> bool:
        """Ask the service to refresh. True when it answered ok (skips count)."""
        try:
            response = await self.http_client.post(f"{self.base_url}{REFRESH_PATH}")
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Refresh trigger failed: %s", exc)
            return False

        if not isinstance(body, dict):
            body = {}
        if response.is_success and body.get("ok"):
            if body.get("skipped"):
                logger.debug("Refresh skipped by service: %s", body.get("reason"))
            return True

        logger.warning(
            "Refresh trigger returned %s: %s",
            response.status_code,
            body.get("error"),
        )
        return False

    async def run_refresh_loop(self) -> None:
        """Trigger now, then every interval; exponential backoff on failure."""
        while self.is_running:
            if await self.trigger_refresh():
                self.refresh_backoff.reset()
                delay = self.refresh_interval
            else:
                delay = self.refresh_backoff.next_delay()
                logger.info("Retrying refresh trigger in %.0fs", delay)
            await self._sleep(delay)

    # --- stream loop ---

    async def _dispatch(self, event: str, data: str) -> None:
        if event == "hello":
            self.stream_connected = True
            self.stream_backoff.reset()
            logger.info("Change stream connected")
        elif event == "snapshot":
            await self._deliver(Snapshot.model_validate(json.loads(data)))
        elif event == "error":
            logger.warning("Change stream reported a transient error: %s", data)

    async def consume_stream(self) -> None:
        """Follow the change stream until the server closes it."""
        url = f"{self.base_url}{STREAM_PATH}"
        timeout = httpx.Timeout(10.0, read=30.0)

        async with self.http_client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            event = "message"
            data_lines = []
            async for line in response.aiter_lines():
                if not line:
                    if data_lines:
                        await self._dispatch(event, "\n".join(data_lines))
                    event = "message"
                    data_lines = []
                elif line.startswith(":"):
                    continue
                elif line.startswith("event:"):
                    event = line[len("event:"):].strip()
                elif line.startswith("data:"):
                    data_lines.append(line[len("data:"):].lstrip())

            if data_lines:
                await self._dispatch(event, "\n".join(data_lines))

    async def _fallback_read(self) -> None:
        try:
            snapshot = await self.fetch_snapshot()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Fallback snapshot read failed: %s", exc)
            return
        if snapshot is not None:
            await self._deliver(snapshot)

    async def run_stream_loop(self) -> None:
        """Follow the stream, falling back to direct reads between reconnects."""
        while self.is_running:
            try:
                await self.consume_stream()
                logger.info("Change stream closed by server")
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Change stream dropped: %s", exc)

            self.stream_connected = False
            await self._fallback_read()

            if not self.is_running:
                break
            delay = self.stream_backoff.next_delay()
            logger.info("Reconnecting change stream in %.0fs", delay)
            await self._sleep(delay)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "streamConnected": self.stream_connected,
            "latestUpdatedAt": self.latest.version if self.latest else None,
        }
