"""
Refresh Coordinator

Runs one refresh attempt at a time across every process sharing the store:

    Idle -> Throttled | LockContested | Refreshing -> Succeeded | Failed -> Idle

The min-interval check only avoids needless lock contention. The store lock
(set-if-absent with TTL) is what guarantees a single protected section; its
TTL is the only recovery for a holder that dies without releasing.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Callable, List, Optional

from warroom.compute import RECENT_VODS_KEEP, derive_view
from warroom.errors import ConfigError, StoreError, WarroomError
from warroom.memory.snapshot_store import SnapshotStore
from warroom.schemas.refresh import RefreshResult, SkipReason
from warroom.schemas.snapshot import Snapshot, parse_timestamp
from warroom.upstream.base import ChannelSource
from warroom.utils.logging import get_logger

logger = get_logger(__name__, category="refresh")


class RefreshPhase(str, Enum):
    IDLE = "idle"
    THROTTLED = "throttled"
    LOCK_CONTESTED = "lock_contested"
    REFRESHING = "refreshing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class RefreshCoordinator:
    """Throttled, lock-protected fetch -> derive -> publish."""

    def __init__(
        self,
        store: SnapshotStore,
        source: ChannelSource,
        channel_login: Optional[str],
        min_interval_seconds: int = 60,
        lock_ttl_seconds: int = 25,
        fetch_limit: int = 100,
        keep_recent: int = RECENT_VODS_KEEP,
        tz: tzinfo = timezone.utc,
        now: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            store: Shared snapshot store (owns snapshot, version, refresh state, lock)
            source: Upstream fetch capability
            channel_login: Login of the tracked channel
            min_interval_seconds: Skip refreshes closer than this to the last one
            lock_ttl_seconds: Lock lifetime; the fetch+write must finish well inside it
            fetch_limit: Recent VODs requested per refresh
            keep_recent: Recent VODs kept in the snapshot
            tz: Calendar used for the daily trend buckets
            now: Clock returning an aware datetime
        """
        self.store = store
        self.source = source
        self.channel_login = channel_login
        self.min_interval_ms = min_interval_seconds * 1000
        self.lock_ttl_seconds = lock_ttl_seconds
        self.fetch_limit = fetch_limit
        self.keep_recent = keep_recent
        self.tz = tz
        self._now = now
        self.last_phase = RefreshPhase.IDLE

    def _env_info(self) -> dict:
        info = {"hasTargetChannel": bool(self.channel_login)}
        info.update(self.source.describe_config())
        return info

    async def _current_updated_at(self, trace: List[str], step: str) -> Optional[str]:
        trace.append(step)
        snapshot = await self.store.get_snapshot()
        return snapshot.version if snapshot else None

    async def refresh_once(self) -> RefreshResult:
        """
        Attempt one refresh.

        Never raises for refresh failures: configuration, auth, fetch and store
        errors come back as ``ok=False`` with a message. Skips return the
        currently stored ``updatedAt`` and never wait for the lock holder.
        """
        trace: List[str] = []
        env = self._env_info()
        now = self._now()

        try:
            trace.append("store:get:last_refresh")
            last_ms = await self.store.get_last_refresh_ms()
            if last_ms is not None and _to_ms(now) - last_ms < self.min_interval_ms:
                updated_at = await self._current_updated_at(trace, "store:get:data_for_skip")
                self.last_phase = RefreshPhase.THROTTLED
                logger.debug("Refresh skipped: min interval (last=%s)", last_ms)
                return RefreshResult(
                    ok=True,
                    skipped=True,
                    reason=SkipReason.MIN_INTERVAL,
                    updated_at=updated_at,
                    trace=trace,
                    env=env,
                )

            token = f"{_to_ms(now)}:{uuid.uuid4().hex}"
            trace.append("store:set:refresh_lock")
            if not await self.store.acquire_lock(token, self.lock_ttl_seconds):
                updated_at = await self._current_updated_at(trace, "store:get:data_for_locked")
                self.last_phase = RefreshPhase.LOCK_CONTESTED
                logger.info("Refresh skipped: another refresh holds the lock")
                return RefreshResult(
                    ok=True,
                    skipped=True,
                    reason=SkipReason.LOCKED,
                    updated_at=updated_at,
                    trace=trace,
                    env=env,
                )

            self.last_phase = RefreshPhase.REFRESHING
            try:
                snapshot = await self._refresh_locked(trace)
            finally:
                trace.append("store:del:refresh_lock")
                try:
                    await self.store.release_lock(token)
                except StoreError as exc:
                    logger.warning("Failed to release refresh lock (TTL will expire it): %s", exc)

            self.last_phase = RefreshPhase.SUCCEEDED
            logger.info("Refresh succeeded: snapshot %s published", snapshot.version)
            return RefreshResult(
                ok=True,
                skipped=False,
                updated_at=snapshot.version,
                trace=trace,
                env=env,
            )

        except WarroomError as exc:
            self.last_phase = RefreshPhase.FAILED
            logger.error("Refresh failed (%s): %s", type(exc).__name__, exc.message)
            return RefreshResult(ok=False, error=exc.message, trace=trace, env=env)
        except Exception as exc:  # noqa: BLE001
            self.last_phase = RefreshPhase.FAILED
            logger.error("Unexpected refresh failure: %s", exc, exc_info=True)
            return RefreshResult(ok=False, error=str(exc) or type(exc).__name__, trace=trace, env=env)

    async def _refresh_locked(self, trace: List[str]) -> Snapshot:
        """Protected section: runs only while holding the lock."""
        trace.append("env:check")
        if not self.channel_login:
            raise ConfigError("Missing env: TARGET_CHANNEL")
        self.source.validate_config()

        trace.append("upstream:authenticate")
        await self.source.authenticate()

        raw = await self.source.fetch_channel_snapshot(
            self.channel_login, self.fetch_limit, on_step=trace.append
        )

        # Taken after lock acquisition; forced past the stored version so
        # successive snapshots are strictly ordered at millisecond precision.
        now = self._now()
        updated_at = now.replace(microsecond=now.microsecond // 1000 * 1000)
        trace.append("store:get:version")
        previous = await self.store.get_version()
        if previous:
            try:
                floor = parse_timestamp(previous) + timedelta(milliseconds=1)
            except ValueError:
                logger.warning("Ignoring unreadable stored version %r", previous)
            else:
                if updated_at < floor:
                    updated_at = floor

        trace.append("compute:derive_view")
        snapshot = derive_view(raw, updated_at, self.tz, self.keep_recent)

        trace.append("store:set:data")
        await self.store.publish(snapshot, _to_ms(updated_at))
        return snapshot
