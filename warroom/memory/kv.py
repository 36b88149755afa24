"""
Key-Value Store Backends

Atomic single-key primitives the refresh protocol is built on:
get, set (optional TTL), set-if-absent with TTL (lock acquisition) and
delete-if-equals (fenced lock release).

RedisKeyValueStore is the shared, cross-process backend. InMemoryKeyValueStore
gives the same semantics inside one process for tests and local runs.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from warroom.errors import StoreError
from warroom.utils.logging import get_logger

logger = get_logger(__name__, category="store")

# Compare-and-delete: only the current holder may remove the key
_DELETE_IF_EQUALS = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class KeyValueStore(Protocol):
    """Single-key atomic store contract."""

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self) -> bool: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def delete_if_equals(self, key: str, value: str) -> bool: ...


class RedisKeyValueStore:
    """Key-value store backed by Redis."""

    def __init__(self, redis_url: str):
        """
        Initialize Redis store.

        Args:
            redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
        """
        self.redis_url = redis_url
        self.redis_client: Optional[redis.Redis] = None
        self._connected = False

    async def connect(self) -> None:
        """Establish connection to Redis."""
        try:
            self.redis_client = redis.from_url(self.redis_url, decode_responses=True)
            await self.redis_client.ping()
            self._connected = True
            logger.info("Connected to Redis")
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self._connected = False
            raise StoreError(f"Failed to connect to Redis: {e}") from e

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self._connected = False
            logger.info("Redis connection closed")

    def _client(self) -> redis.Redis:
        if not self._connected or not self.redis_client:
            raise StoreError("Redis store is not connected")
        return self.redis_client

    async def ping(self) -> bool:
        try:
            return bool(await self._client().ping())
        except RedisError as e:
            raise StoreError(f"Redis ping failed: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client().get(key)
        except RedisError as e:
            raise StoreError(f"Redis GET {key} failed: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self._client().set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise StoreError(f"Redis SET {key} failed: {e}") from e

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            result = await self._client().set(key, value, nx=True, ex=ttl_seconds)
        except RedisError as e:
            raise StoreError(f"Redis SET NX {key} failed: {e}") from e
        return bool(result)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        try:
            deleted = await self._client().eval(_DELETE_IF_EQUALS, 1, key, value)
        except RedisError as e:
            raise StoreError(f"Redis compare-and-delete {key} failed: {e}") from e
        return bool(deleted)


class InMemoryKeyValueStore:
    """Process-local store with the same TTL semantics as Redis.

    Every method body runs without awaiting, so each call is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Args:
            clock: Seconds since the epoch; injectable so tests can move time.
        """
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    async def connect(self) -> None:
        logger.info("Using in-memory key-value store")

    async def close(self) -> None:
        self._data.clear()

    async def ping(self) -> bool:
        return True

    def _live_entry(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[float]:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    async def get(self, key: str) -> Optional[str]:
        return self._live_entry(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._data[key] = (value, self._expiry(ttl_seconds))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        if self._live_entry(key) is not None:
            return False
        self._data[key] = (value, self._expiry(ttl_seconds))
        return True

    async def delete_if_equals(self, key: str, value: str) -> bool:
        if self._live_entry(key) != value:
            return False
        del self._data[key]
        return True
