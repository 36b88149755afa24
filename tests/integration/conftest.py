"""
Integration test fixtures for the app and HTTP client setup.
"""
import httpx
import pytest
import pytest_asyncio

from warroom.config import Settings
from warroom.main import build_services, create_app
from warroom.memory.kv import InMemoryKeyValueStore


@pytest.fixture
def test_settings():
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        store_backend="memory",
        target_channel="testchannel",
        twitch_client_id="cid",
        twitch_client_secret="secret",
        stream_tick_seconds=0.01,
    )


@pytest.fixture
def build_app(test_settings, source_factory):
    """Factory: app wired to an in-memory store and the given source."""

    def _build(source=None, kv=None, **overrides):
        config = test_settings.model_copy(update=overrides)
        services = build_services(
            config,
            kv=kv or InMemoryKeyValueStore(),
            source=source or source_factory(),
        )
        return create_app(config, services)

    return _build


@pytest_asyncio.fixture
async def client_for():
    """Open an httpx client against an app; closed after the test."""
    clients = []

    def _open(app):
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )
        clients.append(client)
        return client

    yield _open

    for client in clients:
        await client.aclose()
