"""
Device-side queue for clock events captured without connectivity.

Events are persisted in arrival order and replayed FIFO against the shift
API once the device is back online. Each replay is tagged ``was_offline``,
``offline_event_id`` and ``occurred_at`` so the server records the time the
event actually happened and can recognise a replay it already applied.
"""

import asyncio
import json
import logging
import os
import tempfile
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import httpx
from pydantic import BaseModel, Field

from core.config import OFFLINE_MAX_RETRIES, OFFLINE_SYNC_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

# Server error codes that mean the replay can never succeed
CONFLICT_ERROR_CODES = ("already_open", "no_open_shift")


class OfflineEventType(str, Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"
    REQUEST_SUBMIT = "request_submit"


class EventState(str, Enum):
    PENDING = "pending"  # Still queued, will be retried
    SYNCED = "synced"  # Accepted by the server
    CONFLICTED = "conflicted"  # Server state makes it impossible (409)
    ABANDONED = "abandoned"  # Out of retries


ENDPOINTS = {
    OfflineEventType.CLOCK_IN: "/time/clock-in",
    OfflineEventType.CLOCK_OUT: "/time/clock-out",
    OfflineEventType.REQUEST_SUBMIT: "/requests",
}


def generate_offline_id() -> str:
    return f"offline_{uuid.uuid4().hex}"


class OfflineEvent(BaseModel):
    id: str = Field(default_factory=generate_offline_id)
    type: OfflineEventType
    # When the event happened on the device
    timestamp: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)
    retry_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SyncError(BaseModel):
    id: str
    error: str


class SyncResult(BaseModel):
    success: bool = True
    synced: List[str] = Field(default_factory=list)
    # Every event dropped without syncing (conflicts included)
    failed: List[str] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)
    errors: List[SyncError] = Field(default_factory=list)


class JsonFileQueueStore:
    """Persists the ordered queue and the last sync time to one JSON file.

    Writes go to a temp file that replaces the original, so a crash mid-write
    never leaves a truncated queue behind.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {"events": [], "last_sync": None}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"[OFFLINE_SYNC] Queue file {self.path} is corrupt: {e}")
            raise

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".queue-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def load(self) -> List[OfflineEvent]:
        return [OfflineEvent.model_validate(raw) for raw in self._read().get("events", [])]

    def save(self, events: List[OfflineEvent]) -> None:
        data = self._read()
        data["events"] = [event.model_dump(mode="json") for event in events]
        self._write(data)

    def get_last_sync(self) -> Optional[datetime]:
        raw = self._read().get("last_sync")
        return datetime.fromisoformat(raw) if raw else None

    def set_last_sync(self, when: datetime) -> None:
        data = self._read()
        data["last_sync"] = when.isoformat()
        self._write(data)


class HttpSyncTransport:
    """Replays queued events against the shift API with ``httpx``."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = OFFLINE_SYNC_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            return await self._client.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, headers=self._headers(), **kwargs)

    async def send(self, event: OfflineEvent) -> httpx.Response:
        body = dict(event.payload)
        body.update(
            was_offline=True,
            offline_event_id=event.id,
            occurred_at=event.timestamp.isoformat(),
        )
        return await self._request("POST", ENDPOINTS[event.type], json=body)

    async def is_online(self) -> bool:
        try:
            response = await self._request("GET", "/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        return detail.get("error")
    if isinstance(body, dict):
        return body.get("error")
    return None


def classify_response(response: httpx.Response) -> Tuple[EventState, Optional[str]]:
    """Map a replay response onto the event's next state."""
    if response.is_success:
        return EventState.SYNCED, None

    code = _error_code(response)
    if response.status_code == 409 and code in CONFLICT_ERROR_CODES:
        return EventState.CONFLICTED, f"conflict:{code}"

    # Everything else, expired tokens included, is retried until max_retries
    return EventState.PENDING, code or f"HTTP {response.status_code}"


class OfflineEventQueue:

    def __init__(
        self,
        store: JsonFileQueueStore,
        transport: HttpSyncTransport,
        is_online: Optional[Callable[[], Awaitable[bool]]] = None,
        max_retries: int = OFFLINE_MAX_RETRIES,
    ):
        self.store = store
        self.transport = transport
        self._is_online = is_online or transport.is_online
        self.max_retries = max_retries
        # One sync at a time per device
        self._lock = asyncio.Lock()

    def enqueue(
        self,
        event_type: OfflineEventType,
        payload: Dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> str:
        """Append an event to the queue. Never touches the network."""
        event = OfflineEvent(
            type=OfflineEventType(event_type),
            timestamp=timestamp or datetime.now(timezone.utc),
            payload=payload,
        )
        events = self.store.load()
        events.append(event)
        self.store.save(events)
        logger.info(f"[OFFLINE_SYNC] Queued event: {event.type.value} ({event.id})")
        return event.id

    def pending_count(self) -> int:
        return len(self.store.load())

    def pending_events(self) -> List[OfflineEvent]:
        return self.store.load()

    def last_sync_time(self) -> Optional[datetime]:
        return self.store.get_last_sync()

    def clear(self) -> None:
        self.store.save([])
        logger.info("[OFFLINE_SYNC] Queue cleared")

    def _remove(self, event_id: str) -> None:
        self.store.save([e for e in self.store.load() if e.id != event_id])

    def _increment_retry(self, event_id: str) -> None:
        events = self.store.load()
        for event in events:
            if event.id == event_id:
                event.retry_count += 1
        self.store.save(events)

    async def sync(self) -> SyncResult:
        """Replay every queued event in order.

        A failing event never stops the loop; it is retried on a later sync
        (any non-conflict failure) or dropped and reported (conflicts,
        exhausted retries).
        """
        async with self._lock:
            if not await self._is_online():
                logger.info("[OFFLINE_SYNC] Device is offline, skipping sync")
                return SyncResult(success=False)

            queue = self.store.load()
            result = SyncResult()
            if not queue:
                self.store.set_last_sync(datetime.now(timezone.utc))
                return result

            logger.info(f"[OFFLINE_SYNC] Processing {len(queue)} events...")

            for event in queue:
                if event.retry_count >= self.max_retries:
                    self._remove(event.id)
                    result.failed.append(event.id)
                    result.errors.append(SyncError(id=event.id, error="Max retries exceeded"))
                    logger.warning(f"[OFFLINE_SYNC] Event {event.id} exceeded max retries, abandoned")
                    continue

                try:
                    response = await self.transport.send(event)
                    state, error = classify_response(response)
                except httpx.HTTPError as e:
                    state, error = EventState.PENDING, str(e) or type(e).__name__

                if state == EventState.SYNCED:
                    self._remove(event.id)
                    result.synced.append(event.id)
                    logger.info(f"[OFFLINE_SYNC] Successfully synced: {event.id}")
                elif state == EventState.CONFLICTED:
                    self._remove(event.id)
                    result.conflicts.append(event.id)
                    result.failed.append(event.id)
                    result.errors.append(SyncError(id=event.id, error=error))
                    logger.warning(f"[OFFLINE_SYNC] Conflict for {event.id}: {error}")
                else:
                    self._increment_retry(event.id)
                    result.errors.append(SyncError(id=event.id, error=error))
                    logger.warning(f"[OFFLINE_SYNC] Event {event.id} will be retried: {error}")

            self.store.set_last_sync(datetime.now(timezone.utc))
            result.success = not result.failed
            logger.info(
                f"[OFFLINE_SYNC] Sync complete: {len(result.synced)} synced, "
                f"{len(result.failed)} failed"
            )
            return result
