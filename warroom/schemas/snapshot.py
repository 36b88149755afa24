"""
Snapshot Schemas

Pydantic models for the published channel snapshot and for the raw records
returned by the upstream fetch. Field names are snake_case in Python and
camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


def format_timestamp(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with milliseconds and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (Z or offset) into an aware datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CamelModel(BaseModel):
    """Base model serialising to camelCase and accepting either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Raw upstream records
# ---------------------------------------------------------------------------


class ChannelIdentity(CamelModel):
    """Resolved channel identity."""

    user_id: str
    login: str
    display_name: str
    profile_image_url: Optional[str] = None


class StreamInfo(CamelModel):
    """Current live stream, present only while the channel is live."""

    id: str
    title: str = ""
    game_name: str = ""
    viewer_count: int = 0
    started_at: Optional[str] = None


class VideoItem(CamelModel):
    """One archived broadcast (VOD)."""

    id: str
    title: str = ""
    created_at: str
    duration: str = ""
    url: str = ""
    view_count: int = 0


class RawSnapshot(CamelModel):
    """Everything one refresh pulls from upstream, before derivation."""

    identity: ChannelIdentity
    stream: Optional[StreamInfo] = None
    videos: List[VideoItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Published snapshot
# ---------------------------------------------------------------------------


class LiveStatus(CamelModel):
    is_live: bool
    title: Optional[str] = None
    game_name: Optional[str] = None
    viewer_count: Optional[int] = None
    started_at: Optional[str] = None


class Kpis(CamelModel):
    is_live: bool
    viewers_now: int
    vod_count_30d: int = Field(alias="vodCount30d")
    live_days_estimate_30d: int = Field(alias="liveDaysEstimate30d")


class TrendPoint(CamelModel):
    """Daily bucket; ``date`` is YYYY-MM-DD in the trend calendar."""

    date: str
    value: int


class WarroomEvent(CamelModel):
    id: str
    level: Literal["info", "warn", "critical"]
    title: str
    detail: str
    ts: str


class Snapshot(CamelModel):
    """The single current published view of channel state."""

    updated_at: datetime
    channel: ChannelIdentity
    live: LiveStatus
    kpis: Kpis
    trend_30d: List[TrendPoint] = Field(alias="trend30d")
    events: List[WarroomEvent] = Field(default_factory=list)
    recent_vods: List[VideoItem] = Field(default_factory=list)

    @field_serializer("updated_at")
    def _serialize_updated_at(self, value: datetime) -> str:
        return format_timestamp(value)

    @property
    def version(self) -> str:
        """Change marker for this snapshot (its rendered ``updatedAt``)."""
        return format_timestamp(self.updated_at)
