"""
Offline channel source for local runs and demos.

Produces plausible, seed-deterministic channel data so the whole refresh
pipeline can run without Twitch credentials (UPSTREAM_MODE=mock).
"""

from __future__ import annotations

import random
import zlib
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from warroom.schemas.snapshot import ChannelIdentity, StreamInfo, VideoItem, format_timestamp
from warroom.upstream.base import ChannelSource


class MockChannelSource(ChannelSource):
    """Generates a fake channel; each fetch advances the random stream."""

    def __init__(
        self,
        seed: Optional[int] = None,
        live_probability: float = 0.6,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._rand = random.Random(seed)
        self.live_probability = live_probability
        self._now = now

    def describe_config(self) -> Dict[str, bool]:
        return {"mockUpstream": True}

    async def fetch_identity(self, login: str) -> ChannelIdentity:
        return ChannelIdentity(
            user_id=str(zlib.crc32(login.encode("utf-8"))),
            login=login,
            display_name=login.capitalize(),
            profile_image_url=None,
        )

    async def fetch_live_status(self, user_id: str) -> Optional[StreamInfo]:
        if self._rand.random() >= self.live_probability:
            return None
        started = self._now() - timedelta(minutes=self._rand.randint(5, 300))
        return StreamInfo(
            id=f"mock-stream-{self._rand.randint(1, 10**6)}",
            title="Mock broadcast",
            game_name=self._rand.choice(["Just Chatting", "Minecraft", "Valorant"]),
            viewer_count=600 + self._rand.randint(0, 1800),
            started_at=format_timestamp(started),
        )

    async def fetch_recent_items(self, user_id: str, limit: int = 100) -> List[VideoItem]:
        now = self._now()
        videos: List[VideoItem] = []
        for i in range(min(limit, self._rand.randint(6, 24))):
            created = now - timedelta(
                days=self._rand.randint(0, 40),
                hours=self._rand.randint(0, 23),
            )
            videos.append(
                VideoItem(
                    id=f"mock-vod-{i}",
                    title=f"Mock VOD #{i}",
                    created_at=format_timestamp(created),
                    duration=f"{self._rand.randint(1, 6)}h{self._rand.randint(0, 59)}m",
                    url=f"https://www.twitch.tv/videos/mock-vod-{i}",
                    view_count=self._rand.randint(50, 5000),
                )
            )
        videos.sort(key=lambda v: v.created_at, reverse=True)
        return videos
