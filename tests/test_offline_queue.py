import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from client.offline_queue import (
    EventState,
    HttpSyncTransport,
    JsonFileQueueStore,
    OfflineEventQueue,
    OfflineEventType,
    classify_response,
)

BASE_URL = "http://shift-api.test"
LOCATION = {"latitude": 40.712776, "longitude": -74.005974, "accuracy": 12.0}


class FakeServer:
    """Scripted responses per event, recording every request it receives."""

    def __init__(self):
        self.requests = []
        self.responses = {}  # offline_event_id -> list of (status, body) or Exception
        self.online = True

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            if not self.online:
                raise httpx.ConnectError("offline", request=request)
            return httpx.Response(200, json={"status": "ok"})

        body = json.loads(request.content)
        self.requests.append((request.url.path, body))
        script = self.responses.get(body["offline_event_id"], [])
        outcome = script.pop(0) if script else (200, {"status": "success"})
        if isinstance(outcome, Exception):
            raise outcome
        status, payload = outcome
        return httpx.Response(status, json=payload)


def conflict(code: str):
    return (409, {"detail": {"error": code, "message": "conflict"}})


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def store(tmp_path):
    return JsonFileQueueStore(tmp_path / "queue.json")


@pytest.fixture
def queue(server, store):
    http = httpx.AsyncClient(transport=httpx.MockTransport(server.handler))
    transport = HttpSyncTransport(BASE_URL, token="test-token", client=http)
    return OfflineEventQueue(store, transport)


def enqueue_clock_in(queue, minutes_ago: int = 10) -> str:
    return queue.enqueue(
        OfflineEventType.CLOCK_IN,
        {"location": LOCATION},
        timestamp=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    )


def test_enqueue_persists_without_network(queue, server, store):
    event_id = enqueue_clock_in(queue)

    assert queue.pending_count() == 1
    assert server.requests == []

    reloaded = JsonFileQueueStore(store.path).load()
    assert [e.id for e in reloaded] == [event_id]
    assert reloaded[0].retry_count == 0
    assert reloaded[0].type == OfflineEventType.CLOCK_IN


@pytest.mark.asyncio
async def test_sync_replays_fifo_with_offline_tags(queue, server):
    first = enqueue_clock_in(queue, minutes_ago=30)
    second = queue.enqueue(OfflineEventType.CLOCK_OUT, {"location": LOCATION})
    third = queue.enqueue(
        OfflineEventType.REQUEST_SUBMIT, {"location": LOCATION, "reason": "Out at the client site"}
    )

    result = await queue.sync()

    assert result.success
    assert result.synced == [first, second, third]
    assert [path for path, _ in server.requests] == ["/time/clock-in", "/time/clock-out", "/requests"]

    _, body = server.requests[0]
    assert body["was_offline"] is True
    assert body["offline_event_id"] == first
    assert body["location"] == LOCATION
    assert datetime.fromisoformat(body["occurred_at"]) < datetime.now(timezone.utc)

    assert queue.pending_count() == 0
    assert queue.last_sync_time() is not None


@pytest.mark.asyncio
async def test_offline_device_skips_sync(queue, server):
    enqueue_clock_in(queue)
    server.online = False

    result = await queue.sync()

    assert not result.success
    assert result.synced == [] and result.failed == []
    assert queue.pending_count() == 1
    assert queue.last_sync_time() is None


@pytest.mark.asyncio
async def test_conflicts_are_removed_and_reported(queue, server):
    clock_in = enqueue_clock_in(queue)
    clock_out = queue.enqueue(OfflineEventType.CLOCK_OUT, {"location": LOCATION})
    server.responses[clock_in] = [conflict("already_open")]
    server.responses[clock_out] = [conflict("no_open_shift")]

    result = await queue.sync()

    assert result.conflicts == [clock_in, clock_out]
    assert result.failed == [clock_in, clock_out]
    assert not result.success
    assert {e.error for e in result.errors} == {"conflict:already_open", "conflict:no_open_shift"}
    assert queue.pending_count() == 0


@pytest.mark.asyncio
async def test_transient_failures_are_retried_then_abandoned(queue, server):
    event_id = enqueue_clock_in(queue)
    server.responses[event_id] = [
        (503, {"detail": "unavailable"}),
        httpx.ConnectTimeout("timed out"),
        (429, {"detail": "slow down"}),
    ]

    for expected_retries in (1, 2, 3):
        result = await queue.sync()
        assert result.synced == [] and result.failed == []
        assert queue.pending_events()[0].retry_count == expected_retries

    sent_before = len(server.requests)
    result = await queue.sync()

    assert result.failed == [event_id]
    assert result.errors[0].error == "Max retries exceeded"
    assert len(server.requests) == sent_before
    assert queue.pending_count() == 0


@pytest.mark.asyncio
async def test_event_at_max_retries_is_never_sent(queue, server, store):
    event_id = enqueue_clock_in(queue)
    events = store.load()
    events[0].retry_count = 3
    store.save(events)

    result = await queue.sync()

    assert result.failed == [event_id]
    assert server.requests == []


@pytest.mark.asyncio
async def test_failure_does_not_halt_or_reorder_the_queue(queue, server):
    flaky = enqueue_clock_in(queue, minutes_ago=20)
    rejected = queue.enqueue(OfflineEventType.REQUEST_SUBMIT, {"location": LOCATION, "reason": "x"})
    ok = queue.enqueue(OfflineEventType.CLOCK_OUT, {"location": LOCATION})
    server.responses[flaky] = [(500, {"detail": "boom"})]
    server.responses[rejected] = [(400, {"detail": {"error": "invalid_reason"}})]

    result = await queue.sync()

    assert result.synced == [ok]
    assert result.failed == []
    assert result.conflicts == []
    assert [e.id for e in queue.pending_events()] == [flaky, rejected]
    assert [e.retry_count for e in queue.pending_events()] == [1, 1]

    # Order is preserved for whatever is still queued
    later = queue.enqueue(OfflineEventType.CLOCK_OUT, {"location": LOCATION})
    assert [e.id for e in queue.pending_events()] == [flaky, rejected, later]

    result = await queue.sync()
    assert result.synced == [flaky, rejected, later]


@pytest.mark.asyncio
async def test_expired_token_keeps_event_queued(queue, server, store):
    event_id = enqueue_clock_in(queue)
    server.responses[event_id] = [
        (401, {"detail": "Could not validate credentials"}),
        (403, {"detail": "Forbidden"}),
    ]

    for expected_retries in (1, 2):
        result = await queue.sync()
        assert result.failed == []
        assert [e.id for e in store.load()] == [event_id]
        assert store.load()[0].retry_count == expected_retries

    # Fresh token on the next attempt
    result = await queue.sync()
    assert result.synced == [event_id]
    assert store.load() == []


@pytest.mark.asyncio
async def test_bearer_token_sent(queue, server):
    seen = []
    original = server.handler

    def capture(request):
        seen.append(request.headers.get("Authorization"))
        return original(request)

    server.handler = capture
    queue.transport._client = httpx.AsyncClient(transport=httpx.MockTransport(server.handler))
    enqueue_clock_in(queue)

    await queue.sync()

    assert seen and all(header == "Bearer test-token" for header in seen)


def test_clear(queue):
    enqueue_clock_in(queue)
    enqueue_clock_in(queue)

    queue.clear()

    assert queue.pending_count() == 0


@pytest.mark.parametrize(
    "status, body, expected",
    [
        (200, {"status": "success"}, EventState.SYNCED),
        (201, {"status": "success"}, EventState.SYNCED),
        (409, {"detail": {"error": "already_open"}}, EventState.CONFLICTED),
        (409, {"detail": {"error": "already_reviewed"}}, EventState.PENDING),
        (422, {"detail": {"error": "location_unverified"}}, EventState.PENDING),
        (400, {"detail": {"error": "out_of_range"}}, EventState.PENDING),
        (401, {"detail": "Could not validate credentials"}, EventState.PENDING),
        (408, {}, EventState.PENDING),
        (429, {}, EventState.PENDING),
        (502, {}, EventState.PENDING),
    ],
)
def test_classify_response(status, body, expected):
    state, _ = classify_response(httpx.Response(status, json=body))
    assert state == expected
