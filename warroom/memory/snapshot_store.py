"""
Snapshot Store

Typed access to the keys the refresh protocol owns:

- ``<prefix>:latest``         the published Snapshot (JSON)
- ``<prefix>:updatedAt``      snapshot version marker (the snapshot's updatedAt)
- ``<prefix>:refresh_state``  {"lastRefreshAt": epoch ms} used for throttling
- ``<prefix>:refresh_lock``   holder token, expires after the lock TTL

Only single-key operations are used; publication writes the snapshot before
its version so a reader that sees a new version can always load the payload.
"""

from __future__ import annotations

import json
from typing import Optional

from pydantic import ValidationError

from warroom.memory.kv import KeyValueStore
from warroom.schemas.snapshot import Snapshot
from warroom.utils.logging import get_logger

logger = get_logger(__name__, category="store")


def _to_int_or_none(value: object) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return None
    return None


class SnapshotStore:
    """Latest snapshot, version marker, refresh state and refresh lock."""

    def __init__(self, kv: KeyValueStore, key_prefix: str = "warroom"):
        self.kv = kv
        self.key_prefix = key_prefix

    @property
    def snapshot_key(self) -> str:
        return f"{self.key_prefix}:latest"

    @property
    def version_key(self) -> str:
        return f"{self.key_prefix}:updatedAt"

    @property
    def refresh_state_key(self) -> str:
        return f"{self.key_prefix}:refresh_state"

    @property
    def lock_key(self) -> str:
        return f"{self.key_prefix}:refresh_lock"

    # --- snapshot ---

    async def get_snapshot(self) -> Optional[Snapshot]:
        """
        Load the published snapshot.

        Returns:
            The Snapshot, or None if nothing has been published yet. A stored
            payload that no longer matches the Snapshot model is treated as
            absent so the next refresh replaces it.
        """
        raw = await self.kv.get(self.snapshot_key)
        if raw is None:
            return None
        try:
            return Snapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Stored snapshot under %s does not match the current shape; ignoring it (%s errors)",
                self.snapshot_key,
                e.error_count(),
            )
            return None

    async def get_version(self) -> Optional[str]:
        return await self.kv.get(self.version_key)

    async def publish(self, snapshot: Snapshot, refreshed_at_ms: int) -> None:
        """Write snapshot, then version marker, then refresh timestamp."""
        payload = json.dumps(snapshot.to_wire())
        await self.kv.set(self.snapshot_key, payload)
        await self.kv.set(self.version_key, snapshot.version)
        await self.kv.set(
            self.refresh_state_key,
            json.dumps({"lastRefreshAt": refreshed_at_ms}),
        )
        logger.debug("Published snapshot version %s", snapshot.version)

    # --- refresh state ---

    async def get_last_refresh_ms(self) -> Optional[int]:
        raw = await self.kv.get(self.refresh_state_key)
        if raw is None:
            return None
        try:
            state = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Unreadable refresh state %r; treating as never refreshed", raw)
            return None
        if isinstance(state, dict):
            return _to_int_or_none(state.get("lastRefreshAt"))
        return _to_int_or_none(state)

    # --- lock ---

    async def acquire_lock(self, token: str, ttl_seconds: int) -> bool:
        """Test-and-set the refresh lock. True only for the caller that set it."""
        return await self.kv.set_if_absent(self.lock_key, token, ttl_seconds)

    async def release_lock(self, token: str) -> bool:
        """Release the lock if ``token`` still holds it."""
        released = await self.kv.delete_if_equals(self.lock_key, token)
        if not released:
            logger.warning("Refresh lock was no longer held by %s at release", token)
        return released

    async def ping(self) -> bool:
        return await self.kv.ping()
