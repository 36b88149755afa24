"""Abstract base class for channel data sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from warroom.schemas.snapshot import ChannelIdentity, RawSnapshot, StreamInfo, VideoItem


class ChannelSource(ABC):
    """Fetch capability the refresh coordinator consumes.

    Every fetch is single-shot: no internal retry, failures raise
    ``UpstreamFetchError`` (or ``UpstreamAuthError`` while authenticating)
    straight to the caller.
    """

    def validate_config(self) -> None:
        """Raise ``ConfigError`` if a setting this source needs is missing."""

    def describe_config(self) -> Dict[str, bool]:
        """Presence flags for the settings this source reads (never values)."""
        return {}

    async def authenticate(self) -> None:
        """Make sure a usable credential is available before fetching."""

    @abstractmethod
    async def fetch_identity(self, login: str) -> ChannelIdentity:
        """Resolve a login. Raises ``ChannelNotFoundError`` when unknown."""
        ...

    @abstractmethod
    async def fetch_live_status(self, user_id: str) -> Optional[StreamInfo]:
        """Current stream, or None while offline."""
        ...

    @abstractmethod
    async def fetch_recent_items(self, user_id: str, limit: int = 100) -> List[VideoItem]:
        """Most recent archived broadcasts, newest first."""
        ...

    async def fetch_channel_snapshot(
        self,
        login: str,
        limit: int = 100,
        on_step: Optional[Callable[[str], None]] = None,
    ) -> RawSnapshot:
        """
        Identity, live status and recent items in one raw record.

        ``on_step`` is called with ``upstream:<fetch>`` before each call.
        """
        step = on_step or (lambda name: None)
        step("upstream:fetch_identity")
        identity = await self.fetch_identity(login)
        step("upstream:fetch_live_status")
        stream = await self.fetch_live_status(identity.user_id)
        step("upstream:fetch_recent_items")
        videos = await self.fetch_recent_items(identity.user_id, limit)
        return RawSnapshot(identity=identity, stream=stream, videos=videos)

    async def close(self) -> None:
        """Release network resources."""
