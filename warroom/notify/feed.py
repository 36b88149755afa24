"""
Change feeds

A ChangeFeed answers one question per subscriber tick: "is there a snapshot
this subscriber has not seen yet?". PollingChangeFeed does it by comparing
the store's version marker with the last version it delivered; a native
pub/sub implementation can replace it without touching ChangeNotifier.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from warroom.memory.snapshot_store import SnapshotStore
from warroom.schemas.snapshot import Snapshot


class ChangeFeed(ABC):
    """Per-subscriber source of unseen snapshots."""

    @abstractmethod
    async def next_change(self) -> Optional[Snapshot]:
        """
        Return the newest snapshot if it has not been delivered yet, else None.

        Raises:
            StoreError: the backing store could not be read
        """
        ...

    async def close(self) -> None:
        """Release anything held for this subscriber."""


class PollingChangeFeed(ChangeFeed):
    """Poll-and-diff on the snapshot version marker."""

    def __init__(self, store: SnapshotStore):
        self.store = store
        self.delivered_version: Optional[str] = None

    async def next_change(self) -> Optional[Snapshot]:
        version = await self.store.get_version()
        if not version or version == self.delivered_version:
            return None

        snapshot = await self.store.get_snapshot()
        if snapshot is None:
            # Version written without a readable payload; retry next tick
            return None

        self.delivered_version = version
        return snapshot
