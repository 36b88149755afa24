"""
Schemas: snapshot records, refresh results and stream events
"""

from .snapshot import (
    ChannelIdentity,
    Kpis,
    LiveStatus,
    RawSnapshot,
    Snapshot,
    StreamInfo,
    TrendPoint,
    VideoItem,
    WarroomEvent,
    format_timestamp,
    parse_timestamp,
)
from .refresh import RefreshResult, SkipReason, StreamEvent

__all__ = [
    "ChannelIdentity",
    "Kpis",
    "LiveStatus",
    "RawSnapshot",
    "Snapshot",
    "StreamInfo",
    "TrendPoint",
    "VideoItem",
    "WarroomEvent",
    "format_timestamp",
    "parse_timestamp",
    "RefreshResult",
    "SkipReason",
    "StreamEvent",
]
