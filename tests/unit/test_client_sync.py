"""Unit tests for the consumer-side sync loops."""
import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from warroom.compute import derive_view
from warroom.schemas.snapshot import ChannelIdentity, RawSnapshot
from warroom.sync.client import ClientSync

BASE_URL = "http://warroom.test"
T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _wire(at):
    raw = RawSnapshot(identity=ChannelIdentity(user_id="1", login="chan", display_name="Chan"))
    return derive_view(raw, at).to_wire()


def _sse(*events):
    chunks = [f"event: {name}\ndata: {json.dumps(data)}\n\n" for name, data in events]
    return "".join(chunks).encode()


class StopAfter:
    """Fake sleep that records delays and stops the sync after ``n`` calls."""

    def __init__(self, n):
        self.n = n
        self.delays = []
        self.sync = None

    async def __call__(self, delay):
        self.delays.append(delay)
        if len(self.delays) >= self.n:
            self.sync.is_running = False


def _sync(handler, sleep, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    sync = ClientSync(BASE_URL, http_client=client, sleep=sleep, **kwargs)
    sleep.sync = sync
    sync.is_running = True
    return sync


@pytest.mark.unit
@pytest.mark.asyncio
class TestRefreshLoop:
    async def test_success_waits_the_refresh_interval(self):
        calls = []

        def handler(request):
            calls.append(request.method)
            return httpx.Response(200, json={"ok": True, "skipped": True, "reason": "min_interval"})

        sleep = StopAfter(3)
        await _sync(handler, sleep).run_refresh_loop()

        assert calls == ["POST", "POST", "POST"]
        assert sleep.delays == [60, 60, 60]

    async def test_failures_back_off_exponentially_with_cap(self):
        def handler(request):
            return httpx.Response(500, json={"ok": False, "error": "Helix GET /users failed"})

        sleep = StopAfter(8)
        await _sync(handler, sleep).run_refresh_loop()

        assert sleep.delays == [10, 20, 40, 80, 160, 320, 600, 600]

    async def test_success_resets_backoff(self):
        responses = iter([500, 500, 200, 500])

        def handler(request):
            status = next(responses)
            return httpx.Response(status, json={"ok": status == 200})

        sleep = StopAfter(4)
        await _sync(handler, sleep).run_refresh_loop()

        assert sleep.delays == [10, 20, 60, 10]

    async def test_transport_error_counts_as_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        sync = _sync(handler, StopAfter(1))
        assert await sync.trigger_refresh() is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestStreamLoop:
    async def test_stream_delivers_snapshots_then_falls_back_to_read(self):
        received = []
        first, newer = _wire(T0), _wire(T0 + timedelta(minutes=1))

        def handler(request):
            if request.url.path == "/api/warroom-stream":
                body = _sse(("hello", {"ok": True}), ("snapshot", first), ("ping", {"t": 1}))
                return httpx.Response(
                    200, content=body, headers={"content-type": "text/event-stream"}
                )
            return httpx.Response(200, json=newer)

        sleep = StopAfter(1)
        sync = _sync(handler, sleep, on_snapshot=received.append)
        await sync.run_stream_loop()

        assert [s.version for s in received] == [
            "2026-10-19T12:00:00.000Z",
            "2026-10-19T12:01:00.000Z",
        ]
        assert sync.latest.version == "2026-10-19T12:01:00.000Z"
        assert sync.stream_connected is False
        assert sleep.delays == [1]

    async def test_older_or_duplicate_snapshots_are_ignored(self):
        received = []

        async def on_snapshot(snapshot):
            received.append(snapshot.version)

        newer, older = _wire(T0 + timedelta(minutes=1)), _wire(T0)

        def handler(request):
            if request.url.path == "/api/warroom-stream":
                body = _sse(("snapshot", newer), ("snapshot", newer), ("snapshot", older))
                return httpx.Response(200, content=body)
            return httpx.Response(200, json=older)

        await _sync(handler, StopAfter(1), on_snapshot=on_snapshot).run_stream_loop()

        assert received == ["2026-10-19T12:01:00.000Z"]

    async def test_reconnect_backoff_grows_and_resets_on_hello(self):
        attempts = {"n": 0}

        def handler(request):
            if request.url.path == "/api/warroom-stream":
                attempts["n"] += 1
                if attempts["n"] == 3:
                    return httpx.Response(200, content=_sse(("hello", {"ok": True})))
                return httpx.Response(503)
            return httpx.Response(404, json={"error": "No data yet."})

        sleep = StopAfter(5)
        sync = _sync(handler, sleep)
        await sync.run_stream_loop()

        # 503, 503, hello (reset), 503, 503
        assert sleep.delays == [1, 2, 1, 2, 4]
        assert sync.latest is None

    async def test_fetch_snapshot_not_populated(self):
        def handler(request):
            return httpx.Response(404, json={"error": "No data yet."})

        sync = _sync(handler, StopAfter(1))
        assert await sync.fetch_snapshot() is None
        assert sync.status() == {
            "running": True,
            "streamConnected": False,
            "latestUpdatedAt": None,
        }

    async def test_failing_callback_does_not_end_the_stream_loop(self):
        attempts = []
        snapshot = _wire(T0)

        def on_snapshot(_):
            raise RuntimeError("consumer bug")

        def handler(request):
            attempts.append(request.url.path)
            if request.url.path == "/api/warroom-stream":
                body = _sse(("hello", {"ok": True}), ("snapshot", snapshot), ("ping", {"t": 1}))
                return httpx.Response(200, content=body)
            return httpx.Response(200, json=snapshot)

        sleep = StopAfter(2)
        sync = _sync(handler, sleep, on_snapshot=on_snapshot)
        await sync.run_stream_loop()

        assert sync.latest.version == "2026-10-19T12:00:00.000Z"
        assert attempts.count("/api/warroom-stream") == 2
        assert attempts.count("/api/warroom") == 2
        assert sleep.delays == [1, 1]


@pytest.mark.unit
@pytest.mark.asyncio
class TestLifecycle:
    async def test_refresh_loop_runs_while_stream_hangs(self):
        refreshes = []
        stream_opened = asyncio.Event()

        async def handler(request):
            if request.url.path == "/api/warroom-stream":
                stream_opened.set()
                await asyncio.Event().wait()
            refreshes.append(request.method)
            return httpx.Response(200, json={"ok": True})

        async def quick_sleep(delay):
            await asyncio.sleep(0.001)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sync = ClientSync(BASE_URL, http_client=client, sleep=quick_sleep)

        await sync.start()
        await asyncio.wait_for(stream_opened.wait(), timeout=1)
        for _ in range(200):
            if len(refreshes) >= 3:
                break
            await asyncio.sleep(0.005)
        assert len(refreshes) >= 3

        tasks = (sync.refresh_task, sync.stream_task)
        await sync.stop()
        sent_at_stop = len(refreshes)
        await asyncio.sleep(0.05)

        assert all(task.done() for task in tasks)
        assert sync.refresh_task is None and sync.stream_task is None
        assert sync.is_running is False
        assert len(refreshes) == sent_at_stop
        await client.aclose()

    async def test_stop_tolerates_a_task_that_already_failed(self):
        sync = ClientSync(BASE_URL)

        async def crashed():
            raise RuntimeError("loop crashed")

        sync.is_running = True
        sync.stream_task = asyncio.create_task(crashed())
        await asyncio.sleep(0)

        await sync.stop()

        assert sync.http_client.is_closed
        assert sync.stream_task is None
