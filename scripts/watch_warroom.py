#!/usr/bin/env python3
"""
Watch a running war-room service from the terminal.

Drives periodic refresh triggers and follows the change stream, printing a
one-line summary for every new snapshot.

Usage:
    python scripts/watch_warroom.py --base-url http://localhost:8000
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from warroom.config import settings  # noqa: E402
from warroom.schemas.snapshot import Snapshot  # noqa: E402
from warroom.sync.client import ClientSync  # noqa: E402
from warroom.utils.logging import configure_logging  # noqa: E402


def print_snapshot(snapshot: Snapshot) -> None:
    live = snapshot.live
    state = f"LIVE ({live.viewer_count} viewers)" if live.is_live else "offline"
    print(
        f"[{snapshot.version}] {snapshot.channel.display_name}: {state} | "
        f"VODs 30d={snapshot.kpis.vod_count_30d} | events={len(snapshot.events)}"
    )
    for event in snapshot.events:
        print(f"    - {event.level.upper():8} {event.title}: {event.detail}")


async def main(base_url: str) -> None:
    sync = ClientSync(
        base_url,
        on_snapshot=print_snapshot,
        refresh_interval=settings.sync_refresh_interval_seconds,
        refresh_backoff_base=settings.sync_refresh_backoff_base_seconds,
        refresh_backoff_max=settings.sync_refresh_backoff_max_seconds,
        stream_backoff_base=settings.sync_stream_backoff_base_seconds,
        stream_backoff_max=settings.sync_stream_backoff_max_seconds,
    )
    await sync.start()
    try:
        await asyncio.Event().wait()
    finally:
        await sync.stop()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Follow a war-room service")
    parser.add_argument("--base-url", default=settings.sync_base_url)
    args = parser.parse_args()

    configure_logging()
    try:
        asyncio.run(main(args.base_url))
    except KeyboardInterrupt:
        print("\nStopped")
