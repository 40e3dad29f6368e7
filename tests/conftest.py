import asyncio
import json
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import httpx
import pytest

from app.features.location_enrichment.domain import Location


class FakeRedis:
    """In-memory stand-in for FastRedisClient (strings, lists, sets, sorted sets, locks)."""

    def __init__(self, available: bool = True):
        self.available = available
        self.store: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.sets: dict[str, set[str]] = {}
        self.locks: dict[str, asyncio.Lock] = {}

    async def ping(self) -> bool:
        return self.available

    async def get_or_raise(self, key: str) -> str | None:
        if not self.available:
            raise ConnectionError("redis down")
        return self.store.get(key)

    async def set_or_raise(self, key: str, value: str) -> None:
        if not self.available:
            raise ConnectionError("redis down")
        self.store[key] = value

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        return True

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    async def exists_or_raise(self, key: str) -> bool:
        if not self.available:
            raise ConnectionError("redis down")
        return key in self.store

    async def add_to_set(self, key: str, member: str) -> bool:
        self.sets.setdefault(key, set()).add(member)
        return True

    async def remove_from_set(self, key: str, member: str) -> bool:
        members = self.sets.get(key) or set()
        if member not in members:
            return False
        members.discard(member)
        return True

    async def set_members(self, key: str) -> set[str]:
        return set(self.sets.get(key) or set())

    async def acquire_lock(
        self, name: str, timeout: float | None = None, blocking_timeout: float | None = None
    ):
        if not self.available:
            raise ConnectionError("redis down")
        lock = self.locks.setdefault(name, asyncio.Lock())
        await lock.acquire()
        return lock

    async def release_lock(self, lock: asyncio.Lock) -> None:
        lock.release()

    async def push_to_list(self, key: str, value: str, left: bool = True) -> bool:
        items = self.lists.setdefault(key, [])
        if left:
            items.insert(0, value)
        else:
            items.append(value)
        return True

    async def pop_to_inflight(self, source_key: str, inflight_key: str, timeout: int = 0):
        items = self.lists.get(source_key) or []
        if not items:
            if timeout:
                # Stand in for the blocking pop so consumer loops yield
                await asyncio.sleep(0.01)
            return None
        value = items.pop()
        self.lists.setdefault(inflight_key, []).insert(0, value)
        return value

    async def ack_from_inflight(self, inflight_key: str, value: str) -> bool:
        items = self.lists.get(inflight_key) or []
        before = len(items)
        self.lists[inflight_key] = [item for item in items if item != value]
        return len(self.lists[inflight_key]) < before

    async def requeue_all_inflight(self, inflight_key: str, destination_key: str) -> int:
        moved = 0
        while self.lists.get(inflight_key):
            value = self.lists[inflight_key].pop()
            self.lists.setdefault(destination_key, []).insert(0, value)
            moved += 1
        return moved

    async def schedule_from_inflight(
        self,
        inflight_key: str,
        delayed_key: str,
        inflight_value: str,
        delayed_value: str,
        due_at: float,
    ) -> bool:
        if not await self.ack_from_inflight(inflight_key, inflight_value):
            return False
        self.zsets.setdefault(delayed_key, {})[delayed_value] = due_at
        return True

    async def promote_due(self, delayed_key: str, destination_key: str, now: float) -> int:
        delayed = self.zsets.get(delayed_key) or {}
        due = sorted((score, value) for value, score in delayed.items() if score <= now)
        for _, value in due:
            del delayed[value]
            self.lists.setdefault(destination_key, []).insert(0, value)
        return len(due)

    async def list_length(self, key: str) -> int:
        return len(self.lists.get(key) or [])

    async def sorted_set_size(self, key: str) -> int:
        return len(self.zsets.get(key) or {})


class InMemoryContactStore:
    """Contact document store keeping deep copies, like a real round-trip would."""

    def __init__(self, documents: dict[str, dict] | None = None):
        self.documents = {k: json.loads(json.dumps(v)) for k, v in (documents or {}).items()}
        self.get_calls = 0
        self.set_calls = 0
        self._locks: dict[str, asyncio.Lock] = {}

    async def get(self, owner_id: str) -> dict | None:
        self.get_calls += 1
        document = self.documents.get(owner_id)
        return json.loads(json.dumps(document)) if document is not None else None

    async def set(self, owner_id: str, document: dict) -> None:
        self.set_calls += 1
        self.documents[owner_id] = json.loads(json.dumps(document))

    @asynccontextmanager
    async def lock(self, owner_id: str) -> AsyncIterator[None]:
        async with self._locks.setdefault(owner_id, asyncio.Lock()):
            yield


class RecordingTransport:
    """httpx mock transport that records requests and dispatches by host."""

    def __init__(self, handlers: dict[str, Callable[[httpx.Request], httpx.Response]]):
        self.handlers = handlers
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.handlers.get(request.url.host)
        if handler is None:
            raise httpx.ConnectError(f"no route to {request.url.host}", request=request)
        return handler(request)

    def hosts(self) -> list[str]:
        return [request.url.host for request in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def make_contact(name: str, **extra) -> dict:
    contact = {
        "name": name,
        "surname": "Doe",
        "phone": "+27110000000",
        "email": f"{name.lower()}@example.com",
        "howWeMet": "Conference",
        "createdAt": "2025-03-01T09:00:00+00:00",
    }
    contact.update(extra)
    return contact


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def contact_store():
    return InMemoryContactStore(
        {"U1": {"contactList": [make_contact("Ann"), make_contact("Ben"), make_contact("Cara")]}}
    )


@pytest.fixture
def tembisa_location():
    return Location(
        latitude=-25.98,
        longitude=28.25,
        city="Tembisa",
        region="Gauteng",
        country="South Africa",
        country_code="ZA",
        timezone="Africa/Johannesburg",
        provider="ipapi.co",
    )


@pytest.fixture
def contact_factory():
    return make_contact


@pytest.fixture
def transport_factory():
    return RecordingTransport


@pytest.fixture
def store_factory():
    return InMemoryContactStore


@pytest.fixture
def redis_factory():
    return FakeRedis
