"""Unit tests for the refresh coordinator."""
import asyncio

import pytest

from warroom.errors import ChannelNotFoundError, StoreError, UpstreamAuthError, UpstreamFetchError
from warroom.refresh.coordinator import RefreshPhase
from warroom.schemas.refresh import SkipReason
from warroom.schemas.snapshot import parse_timestamp


@pytest.mark.unit
@pytest.mark.asyncio
class TestRefreshOnce:
    """Throttle, lock and publish behaviour of refresh_once."""

    async def test_first_refresh_publishes_live_snapshot(self, make_coordinator, fake_source, store, clock):
        coordinator = make_coordinator(fake_source)

        result = await coordinator.refresh_once()

        assert result.ok is True
        assert result.skipped is False
        assert result.updated_at == "2026-10-19T12:00:00.000Z"
        snapshot = await store.get_snapshot()
        assert snapshot is not None
        assert snapshot.live.is_live is True
        assert snapshot.live.viewer_count == 120
        assert snapshot.version == result.updated_at
        assert await store.get_version() == result.updated_at
        assert coordinator.last_phase == RefreshPhase.SUCCEEDED

    async def test_skips_within_min_interval_without_fetching(self, make_coordinator, fake_source, clock):
        coordinator = make_coordinator(fake_source)
        first = await coordinator.refresh_once()

        clock.advance(10)
        second = await coordinator.refresh_once()
        clock.advance(10)
        third = await coordinator.refresh_once()

        for result in (second, third):
            assert result.ok is True
            assert result.skipped is True
            assert result.reason == SkipReason.MIN_INTERVAL
            assert result.updated_at == first.updated_at
        assert fake_source.fetch_calls == 1
        assert coordinator.last_phase == RefreshPhase.THROTTLED

    async def test_refreshes_again_after_min_interval(self, make_coordinator, fake_source, clock):
        coordinator = make_coordinator(fake_source)
        first = await coordinator.refresh_once()

        clock.advance(61)
        second = await coordinator.refresh_once()

        assert second.ok is True and second.skipped is False
        assert parse_timestamp(second.updated_at) > parse_timestamp(first.updated_at)
        assert fake_source.fetch_calls == 2

    async def test_concurrent_refreshes_only_one_runs(self, make_coordinator, source_factory):
        source = source_factory(delay=0.01)
        coordinator = make_coordinator(source)

        results = await asyncio.gather(coordinator.refresh_once(), coordinator.refresh_once())

        winners = [r for r in results if r.ok and not r.skipped]
        losers = [r for r in results if r.skipped]
        assert len(winners) == 1
        assert len(losers) == 1
        assert losers[0].reason == SkipReason.LOCKED
        assert losers[0].updated_at is None  # nothing stored yet when it lost
        assert source.fetch_calls == 1

    async def test_many_concurrent_triggers_single_protected_section(self, make_coordinator, source_factory):
        source = source_factory(delay=0.01)
        coordinator = make_coordinator(source)

        results = await asyncio.gather(*(coordinator.refresh_once() for _ in range(10)))

        assert sum(1 for r in results if r.ok and not r.skipped) == 1
        assert sum(1 for r in results if r.skipped) == 9
        assert source.fetch_calls == 1

    async def test_locked_skip_reports_stored_updated_at(self, make_coordinator, fake_source, store, clock):
        coordinator = make_coordinator(fake_source)
        first = await coordinator.refresh_once()
        clock.advance(61)
        assert await store.acquire_lock("someone-else", 25)

        result = await coordinator.refresh_once()

        assert result.skipped is True
        assert result.reason == SkipReason.LOCKED
        assert result.updated_at == first.updated_at
        assert fake_source.fetch_calls == 1

    async def test_abandoned_lock_expires_after_ttl(self, make_coordinator, fake_source, store, clock):
        coordinator = make_coordinator(fake_source, lock_ttl_seconds=25)
        assert await store.acquire_lock("crashed-holder", 25)

        blocked = await coordinator.refresh_once()
        assert blocked.reason == SkipReason.LOCKED

        clock.advance(26)
        result = await coordinator.refresh_once()

        assert result.ok is True
        assert result.skipped is False

    async def test_lock_released_after_success(self, make_coordinator, fake_source, store):
        coordinator = make_coordinator(fake_source)
        await coordinator.refresh_once()

        assert await store.kv.get(store.lock_key) is None

    async def test_fetch_failure_keeps_previous_snapshot_and_releases_lock(
        self, make_coordinator, fake_source, source_factory, store, clock
    ):
        good = await make_coordinator(fake_source).refresh_once()
        clock.advance(61)

        failing = source_factory(error=UpstreamFetchError("Helix GET /users failed: 503 busy", status=503))
        result = await make_coordinator(failing).refresh_once()

        assert result.ok is False
        assert "503" in result.error
        snapshot = await store.get_snapshot()
        assert snapshot.version == good.updated_at
        assert await store.kv.get(store.lock_key) is None

    async def test_failure_is_not_throttled(self, make_coordinator, source_factory, clock):
        failing = source_factory(error=ChannelNotFoundError("ghost"))
        coordinator = make_coordinator(failing)

        first = await coordinator.refresh_once()
        second = await coordinator.refresh_once()

        assert first.ok is False and first.error == "User not found: ghost"
        assert second.ok is False
        assert failing.fetch_calls == 2

    async def test_missing_channel_is_config_error(self, make_coordinator, fake_source):
        coordinator = make_coordinator(fake_source, channel_login=None)

        result = await coordinator.refresh_once()

        assert result.ok is False
        assert result.error == "Missing env: TARGET_CHANNEL"
        assert result.env["hasTargetChannel"] is False
        assert fake_source.fetch_calls == 0
        assert coordinator.last_phase == RefreshPhase.FAILED

    async def test_auth_failure_reported(self, make_coordinator, source_factory):
        source = source_factory(auth_error=UpstreamAuthError("Token fetch failed: 401 nope", status=401))
        result = await make_coordinator(source).refresh_once()

        assert result.ok is False
        assert result.error == "Token fetch failed: 401 nope"
        assert "upstream:authenticate" in result.trace
        assert "upstream:fetch_identity" not in result.trace

    async def test_store_failure_becomes_structured_result(self, make_coordinator, fake_source, store):
        async def broken_get(key):
            raise StoreError("Redis GET failed: connection refused")

        store.kv.get = broken_get
        result = await make_coordinator(fake_source).refresh_once()

        assert result.ok is False
        assert "connection refused" in result.error

    async def test_updated_at_strictly_increases_even_if_clock_stalls(
        self, make_coordinator, fake_source, clock
    ):
        coordinator = make_coordinator(fake_source, min_interval_seconds=0)

        first = await coordinator.refresh_once()
        second = await coordinator.refresh_once()

        assert parse_timestamp(second.updated_at) > parse_timestamp(first.updated_at)

    async def test_trace_records_protected_steps(self, make_coordinator, fake_source):
        result = await make_coordinator(fake_source).refresh_once()

        assert result.trace[0] == "store:get:last_refresh"
        assert "store:set:refresh_lock" in result.trace
        assert result.trace.index("upstream:fetch_identity") < result.trace.index("store:set:data")
        assert result.trace[-1] == "store:del:refresh_lock"
        assert result.env == {"hasTargetChannel": True, "fakeUpstream": True}

    async def test_unexpected_fault_still_releases_lock(self, make_coordinator, source_factory, store):
        source = source_factory(error=RuntimeError("boom"))

        result = await make_coordinator(source).refresh_once()

        assert result.ok is False
        assert result.error == "boom"
        assert await store.kv.get(store.lock_key) is None
        assert await store.get_snapshot() is None

    async def test_fetch_goes_through_composed_channel_snapshot(self, make_coordinator, fake_source):
        requested = []
        real_fetch = fake_source.fetch_channel_snapshot

        async def recording_fetch(login, limit=100, on_step=None):
            requested.append((login, limit))
            return await real_fetch(login, limit, on_step=on_step)

        fake_source.fetch_channel_snapshot = recording_fetch
        result = await make_coordinator(fake_source, fetch_limit=50).refresh_once()

        assert requested == [("testchannel", 50)]
        fetch_steps = [step for step in result.trace if step.startswith("upstream:fetch_")]
        assert fetch_steps == [
            "upstream:fetch_identity",
            "upstream:fetch_live_status",
            "upstream:fetch_recent_items",
        ]
        assert (fake_source.identity_calls, fake_source.stream_calls, fake_source.video_calls) == (1, 1, 1)
