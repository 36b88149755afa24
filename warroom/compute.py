"""
Snapshot derivation

Pure functions turning one RawSnapshot into the published Snapshot:
30-day VOD trend, KPIs and rule-based events.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import List, Optional, Sequence

from warroom.schemas.snapshot import (
    Kpis,
    LiveStatus,
    RawSnapshot,
    Snapshot,
    TrendPoint,
    VideoItem,
    WarroomEvent,
    format_timestamp,
    parse_timestamp,
)

TREND_DAYS = 30
RECENT_VODS_KEEP = 12
VOD_DELTA_THRESHOLD = 3  # day-over-day change worth flagging
PEAK_VIEWERS_THRESHOLD = 1500


def _local_date(timestamp: str, tz: tzinfo) -> Optional[date]:
    try:
        return parse_timestamp(timestamp).astimezone(tz).date()
    except ValueError:
        return None


def derive_trend(
    videos: Sequence[VideoItem],
    today: date,
    tz: tzinfo = timezone.utc,
) -> List[TrendPoint]:
    """
    Count VODs per calendar day over [today-29, today].

    Always returns exactly 30 points, oldest first, one per day; days with no
    VODs have value 0 and VODs outside the window are ignored.
    """
    start = today - timedelta(days=TREND_DAYS - 1)
    counts = {start + timedelta(days=i): 0 for i in range(TREND_DAYS)}

    for video in videos:
        day = _local_date(video.created_at, tz)
        if day in counts:
            counts[day] += 1

    return [TrendPoint(date=day.isoformat(), value=value) for day, value in counts.items()]


def derive_kpis(
    stream_viewers: Optional[int],
    is_live: bool,
    videos: Sequence[VideoItem],
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> Kpis:
    cutoff = now - timedelta(days=TREND_DAYS)
    recent = []
    for video in videos:
        try:
            created = parse_timestamp(video.created_at)
        except ValueError:
            continue
        if created >= cutoff:
            recent.append(created)

    live_days = {created.astimezone(tz).date() for created in recent}
    return Kpis(
        is_live=is_live,
        viewers_now=stream_viewers or 0,
        vod_count_30d=len(recent),
        live_days_estimate_30d=len(live_days),
    )


def derive_events(
    updated_at: str,
    is_live: bool,
    viewer_count: int,
    trend: Sequence[TrendPoint],
) -> List[WarroomEvent]:
    """Evaluate the alert rules against one refresh's context."""
    events: List[WarroomEvent] = [
        WarroomEvent(
            id=f"live-{updated_at}",
            level="info" if is_live else "warn",
            title="Live now" if is_live else "Offline",
            detail=f"Current viewers: {viewer_count}" if is_live else "No live stream detected.",
            ts=updated_at,
        )
    ]

    values = [point.value for point in trend]
    last = values[-1] if values else 0
    prev = values[-2] if len(values) > 1 else last
    delta = last - prev

    if abs(delta) >= VOD_DELTA_THRESHOLD:
        sign = "+" if delta > 0 else ""
        events.append(
            WarroomEvent(
                id=f"vod-delta-{updated_at}",
                level="info",
                title="Content cadence change",
                detail=f"Today's VOD count changed by {sign}{delta} versus yesterday (by VOD publish date).",
                ts=updated_at,
            )
        )

    if is_live and viewer_count >= PEAK_VIEWERS_THRESHOLD:
        events.append(
            WarroomEvent(
                id=f"peak-{updated_at}",
                level="warn",
                title="Viewer peak",
                detail="Concurrent viewers are high; pin subscription, community and highlight-clip prompts now.",
                ts=updated_at,
            )
        )

    return events


def derive_view(
    raw: RawSnapshot,
    updated_at: datetime,
    tz: tzinfo = timezone.utc,
    keep_recent: int = RECENT_VODS_KEEP,
) -> Snapshot:
    """Build the complete Snapshot for one refresh."""
    stamp = format_timestamp(updated_at)
    stream = raw.stream
    is_live = stream is not None
    viewer_count = stream.viewer_count if stream else 0

    trend = derive_trend(raw.videos, updated_at.astimezone(tz).date(), tz)

    return Snapshot(
        updated_at=updated_at,
        channel=raw.identity,
        live=LiveStatus(
            is_live=is_live,
            title=stream.title if stream else None,
            game_name=stream.game_name if stream else None,
            viewer_count=viewer_count,
            started_at=stream.started_at if stream else None,
        ),
        kpis=derive_kpis(viewer_count, is_live, raw.videos, updated_at, tz),
        trend_30d=trend,
        events=derive_events(stamp, is_live, viewer_count, trend),
        recent_vods=list(raw.videos[:keep_recent]),
    )
