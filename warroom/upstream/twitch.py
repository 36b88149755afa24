"""
Twitch Helix Channel Source

Fetches the channel identity, the current stream and recent archived
broadcasts from the Helix API using an app access token.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import httpx

from warroom.errors import ChannelNotFoundError, ConfigError, UpstreamFetchError
from warroom.schemas.snapshot import ChannelIdentity, StreamInfo, VideoItem
from warroom.upstream.base import ChannelSource
from warroom.upstream.credentials import CredentialCache
from warroom.utils.logging import get_logger

logger = get_logger(__name__, category="upstream")

# Helix API base URL
HELIX_API_BASE = "https://api.twitch.tv/helix"

QueryValue = Union[str, Sequence[str]]


class TwitchChannelSource(ChannelSource):
    """Helix-backed fetch capability."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        credentials: CredentialCache,
        client_id: Optional[str],
        client_secret: Optional[str],
        api_base: str = HELIX_API_BASE,
    ):
        self.http_client = http_client
        self.credentials = credentials
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base = api_base.rstrip("/")

    def validate_config(self) -> None:
        if not self.client_id:
            raise ConfigError("Missing env: TWITCH_CLIENT_ID")
        if not self.client_secret:
            raise ConfigError("Missing env: TWITCH_CLIENT_SECRET")

    def describe_config(self) -> Dict[str, bool]:
        return {
            "hasTwitchClientId": bool(self.client_id),
            "hasTwitchClientSecret": bool(self.client_secret),
        }

    async def authenticate(self) -> None:
        await self.credentials.get_token()

    async def _helix_get(self, path: str, query: Mapping[str, QueryValue]) -> Dict[str, Any]:
        token = await self.credentials.get_token()

        params: List[tuple] = []
        for key, value in query.items():
            if isinstance(value, str):
                params.append((key, value))
            else:
                params.extend((key, item) for item in value)

        url = f"{self.api_base}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Client-Id": self.client_id or "",
        }

        try:
            response = await self.http_client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise UpstreamFetchError(f"Helix GET {path} timed out") from exc
        except httpx.RequestError as exc:
            raise UpstreamFetchError(f"Helix GET {path} failed: {exc}") from exc

        if response.is_error:
            logger.error(
                "Helix GET %s failed: %s - %s",
                path,
                response.status_code,
                response.text,
            )
            raise UpstreamFetchError(
                f"Helix GET {path} failed: {response.status_code} {response.text}",
                status=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamFetchError(
                f"Helix GET {path} returned invalid JSON",
                status=response.status_code,
                body=response.text,
            ) from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("data", []), list):
            raise UpstreamFetchError(
                f"Helix GET {path} returned an unexpected body",
                status=response.status_code,
                body=response.text,
            )
        return payload

    async def fetch_identity(self, login: str) -> ChannelIdentity:
        payload = await self._helix_get("/users", {"login": login})
        users = payload.get("data") or []
        if not users:
            raise ChannelNotFoundError(login)

        u = users[0]
        try:
            return ChannelIdentity(
                user_id=str(u["id"]),
                login=u["login"],
                display_name=u.get("display_name") or u["login"],
                profile_image_url=u.get("profile_image_url") or None,
            )
        except KeyError as exc:
            raise UpstreamFetchError(f"Helix user record missing {exc}") from exc

    async def fetch_live_status(self, user_id: str) -> Optional[StreamInfo]:
        payload = await self._helix_get("/streams", {"user_id": user_id})
        streams = payload.get("data") or []
        if not streams:
            return None

        s = streams[0]
        try:
            return StreamInfo(
                id=str(s.get("id", "")),
                title=s.get("title") or "",
                game_name=s.get("game_name") or "",
                viewer_count=int(s.get("viewer_count") or 0),
                started_at=s.get("started_at"),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise UpstreamFetchError(f"Helix stream record is malformed: {exc}") from exc

    async def fetch_recent_items(self, user_id: str, limit: int = 100) -> List[VideoItem]:
        payload = await self._helix_get(
            "/videos",
            {"user_id": user_id, "first": str(limit), "type": "archive"},
        )

        videos: List[VideoItem] = []
        for v in payload.get("data") or []:
            if not v.get("id") or not v.get("created_at"):
                logger.debug("Skipping malformed video record: %s", v)
                continue
            try:
                item = VideoItem(
                    id=str(v["id"]),
                    title=v.get("title") or "",
                    created_at=v["created_at"],
                    duration=v.get("duration") or "",
                    url=v.get("url") or "",
                    view_count=int(v.get("view_count") or 0),
                )
            except (TypeError, ValueError) as exc:
                raise UpstreamFetchError(f"Helix video record is malformed: {exc}") from exc
            videos.append(item)
        return videos
