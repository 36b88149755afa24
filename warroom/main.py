"""
War-room Service - FastAPI Application

Endpoints:
- GET  /api/warroom          latest snapshot (404 until the first refresh succeeds)
- GET|POST /api/warroom-refresh  run one throttled, lock-protected refresh
- GET  /api/warroom-stream   SSE change stream (hello, snapshot, ping, error)
- GET  /health               service, store and stream status

Run:
    uvicorn warroom.main:app --port 8000
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from warroom import __version__
from warroom.config import Settings, settings
from warroom.errors import StoreError
from warroom.memory.kv import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from warroom.memory.snapshot_store import SnapshotStore
from warroom.notify.notifier import ChangeNotifier
from warroom.refresh.coordinator import RefreshCoordinator
from warroom.upstream.base import ChannelSource
from warroom.upstream.credentials import CredentialCache
from warroom.upstream.mock import MockChannelSource
from warroom.upstream.twitch import TwitchChannelSource
from warroom.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__, category="system")

NO_STORE = {"Cache-Control": "no-store"}
NOT_POPULATED = "No data yet. Visit /api/warroom-refresh once."


class WarroomServices:
    """Everything one app instance owns, built once and passed explicitly."""

    def __init__(
        self,
        kv: KeyValueStore,
        store: SnapshotStore,
        source: ChannelSource,
        coordinator: RefreshCoordinator,
        notifier: ChangeNotifier,
        backend: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.kv = kv
        self.store = store
        self.source = source
        self.coordinator = coordinator
        self.notifier = notifier
        self.backend = backend
        self.http_client = http_client

    async def start(self) -> None:
        await self.kv.connect()

    async def stop(self) -> None:
        self.notifier.close()
        await self.source.close()
        if self.http_client:
            await self.http_client.aclose()
        await self.kv.close()


def build_services(
    config: Settings,
    kv: Optional[KeyValueStore] = None,
    source: Optional[ChannelSource] = None,
) -> WarroomServices:
    """Wire store, upstream source, coordinator and notifier from settings."""
    backend = config.store_backend.lower()
    if kv is None:
        if backend == "memory":
            kv = InMemoryKeyValueStore()
        else:
            kv = RedisKeyValueStore(config.redis_url)

    http_client = None
    if source is None:
        if config.upstream_mode.lower() == "mock":
            source = MockChannelSource()
        else:
            http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(config.upstream_timeout_seconds)
            )
            credentials = CredentialCache(
                kv,
                http_client,
                client_id=config.twitch_client_id,
                client_secret=config.twitch_client_secret,
                token_url=config.twitch_token_url,
                safety_margin_seconds=config.token_safety_margin_seconds,
            )
            source = TwitchChannelSource(
                http_client,
                credentials,
                client_id=config.twitch_client_id,
                client_secret=config.twitch_client_secret,
                api_base=config.twitch_api_base,
            )

    store = SnapshotStore(kv, key_prefix=config.store_key_prefix)
    coordinator = RefreshCoordinator(
        store,
        source,
        channel_login=config.target_channel,
        min_interval_seconds=config.min_refresh_interval_seconds,
        lock_ttl_seconds=config.refresh_lock_ttl_seconds,
        fetch_limit=config.recent_videos_fetch_limit,
        keep_recent=config.recent_videos_keep,
        tz=ZoneInfo(config.trend_timezone),
    )
    notifier = ChangeNotifier(store, tick_seconds=config.stream_tick_seconds)

    return WarroomServices(
        kv=kv,
        store=store,
        source=source,
        coordinator=coordinator,
        notifier=notifier,
        backend=backend,
        http_client=http_client,
    )


def create_app(
    config: Optional[Settings] = None,
    services: Optional[WarroomServices] = None,
) -> FastAPI:
    """Build the FastAPI app around one WarroomServices instance."""
    config = config or settings
    services = services or build_services(config)

    app = FastAPI(
        title="War-room Service",
        description="Live Twitch channel snapshot with throttled refresh and change stream",
        version=__version__,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/warroom")
    async def get_snapshot(request: Request):
        """Return the current snapshot verbatim."""
        svc: WarroomServices = request.app.state.services
        try:
            snapshot = await svc.store.get_snapshot()
        except StoreError as e:
            logger.error(f"Snapshot read failed: {e}")
            return JSONResponse(
                {"error": "Snapshot store unavailable"}, status_code=503, headers=NO_STORE
            )

        if snapshot is None:
            return JSONResponse({"error": NOT_POPULATED}, status_code=404, headers=NO_STORE)
        return JSONResponse(snapshot.to_wire(), headers=NO_STORE)

    @app.api_route("/api/warroom-refresh", methods=["GET", "POST"])
    async def refresh(request: Request):
        """Run one refresh attempt and report it; 500 exactly when ok is false."""
        svc: WarroomServices = request.app.state.services
        result = await svc.coordinator.refresh_once()
        status = 200 if result.ok else 500
        return JSONResponse(result.to_wire(), status_code=status, headers=NO_STORE)

    @app.get("/api/warroom-stream")
    async def stream(request: Request):
        """Long-lived SSE stream of snapshot changes."""
        svc: WarroomServices = request.app.state.services
        return EventSourceResponse(
            svc.notifier.sse_events(),
            headers={
                "Cache-Control": "no-cache, no-store, must-revalidate",
                "X-Accel-Buffering": "no",
            },
        )

    @app.get("/health")
    async def health_check(request: Request):
        """Service status, store reachability and stream subscribers."""
        svc: WarroomServices = request.app.state.services

        store_status = "connected"
        store_error = None
        try:
            await svc.store.ping()
        except StoreError as e:
            store_status = "error"
            store_error = e.message

        return {
            "status": "healthy" if store_status == "connected" else "degraded",
            "service": "warroom",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "store": {
                "backend": svc.backend,
                "status": store_status,
                "error": store_error,
            },
            "stream": {"subscribers": svc.notifier.subscriber_count},
            "refresh": {"last_phase": svc.coordinator.last_phase.value},
            "upstream": svc.source.describe_config(),
        }

    @app.on_event("startup")
    async def startup_event():
        logger.info(f"War-room service starting on {config.host}:{config.port}")
        try:
            await services.start()
            logger.info(f"Snapshot store ready ({services.backend})")
        except StoreError as exc:
            # Endpoints report store failures per request until it comes back
            logger.error(f"Failed to connect snapshot store: {exc}")

        if not config.target_channel:
            logger.warning("TARGET_CHANNEL not set; refreshes will fail with a config error")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("War-room service shutting down")
        try:
            await services.stop()
        except StoreError as exc:
            logger.error(f"Error closing snapshot store: {exc}")

    return app


app = create_app()
