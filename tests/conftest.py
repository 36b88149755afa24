import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from warroom.memory.kv import InMemoryKeyValueStore
from warroom.memory.snapshot_store import SnapshotStore
from warroom.refresh.coordinator import RefreshCoordinator
from warroom.schemas.snapshot import ChannelIdentity, StreamInfo, VideoItem, format_timestamp
from warroom.upstream.base import ChannelSource


class FakeClock:
    """Shared wall clock for the store TTLs and the coordinator."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeSource(ChannelSource):
    """In-process fetch capability that counts calls."""

    def __init__(
        self,
        viewer_count: Optional[int] = 120,
        videos: Optional[List[VideoItem]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        auth_error: Optional[Exception] = None,
    ):
        self.viewer_count = viewer_count
        self.videos = videos or []
        self.delay = delay
        self.error = error
        self.auth_error = auth_error
        self.identity_calls = 0
        self.stream_calls = 0
        self.video_calls = 0

    @property
    def fetch_calls(self) -> int:
        return self.identity_calls

    def describe_config(self):
        return {"fakeUpstream": True}

    async def authenticate(self) -> None:
        if self.auth_error:
            raise self.auth_error

    async def fetch_identity(self, login: str) -> ChannelIdentity:
        self.identity_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return ChannelIdentity(
            user_id="42",
            login=login,
            display_name="Test Channel",
            profile_image_url="https://example.com/avatar.png",
        )

    async def fetch_live_status(self, user_id: str) -> Optional[StreamInfo]:
        self.stream_calls += 1
        if self.viewer_count is None:
            return None
        return StreamInfo(
            id="s1",
            title="Testing in prod",
            game_name="Just Chatting",
            viewer_count=self.viewer_count,
            started_at="2026-10-19T10:00:00Z",
        )

    async def fetch_recent_items(self, user_id: str, limit: int = 100) -> List[VideoItem]:
        self.video_calls += 1
        return list(self.videos[:limit])


def make_video(index: int, created_at: datetime) -> VideoItem:
    return VideoItem(
        id=f"v{index}",
        title=f"VOD {index}",
        created_at=format_timestamp(created_at),
        duration="1h",
        url=f"https://www.twitch.tv/videos/{index}",
        view_count=10 * index,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv(clock):
    return InMemoryKeyValueStore(clock=clock.time)


@pytest.fixture
def store(kv):
    return SnapshotStore(kv, key_prefix="test")


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def make_coordinator(store, clock):
    def _make(source: ChannelSource, **kwargs) -> RefreshCoordinator:
        kwargs.setdefault("channel_login", "testchannel")
        return RefreshCoordinator(store, source, now=clock.now, **kwargs)

    return _make


@pytest.fixture
def video_factory():
    return make_video


@pytest.fixture
def source_factory():
    return FakeSource
