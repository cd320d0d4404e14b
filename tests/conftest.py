"""
Shared test configuration and fixtures.

Provides an in-memory remote store that can be switched "down" (raises
TransportError) or made to reject requests (raises ApplicationError), a fake
clock for cache expiry, and a wired-up DataAccessLayer.
"""

import asyncio
from collections.abc import Mapping
from typing import Any

import pytest

from content_sync.access import DataAccessLayer
from content_sync.config import SyncSettings
from content_sync.exceptions import ApplicationError, TransportError
from content_sync.local import MemoryFallbackStore
from content_sync.records import ContentRecord, ResourceType, utc_now_iso
from content_sync.remote import RemoteStore
from content_sync.sync import ChangePropagationBus, SyncSignal

EVENT_DATA = {
    "title": "Spring Fair",
    "date": "2026-04-18T10:00:00Z",
    "location": "Church hall",
    "description": "Stalls, music and food",
}

ARTICLE_DATA = {
    "title": "Welcome to our new site",
    "content": "We have moved to a new website.",
}


class InMemoryRemoteStore(RemoteStore):
    """
    Fake authoritative store for testing without a server.

    Assigns sequential numeric ids, like the real API.
    """

    def __init__(self) -> None:
        self.rows: dict[ResourceType, list[dict[str, Any]]] = {rtype: [] for rtype in ResourceType}
        self.down = False
        self.reject: ApplicationError | None = None
        self.delay = 0.0
        self.calls: list[tuple[str, str]] = []
        self._next_id = 1

    async def _enter(self, operation: str, resource_type: ResourceType) -> None:
        self.calls.append((operation, resource_type.value))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.down:
            raise TransportError("connection refused", url=f"memory://{resource_type.route}")
        if self.reject is not None:
            raise self.reject

    def seed(self, resource_type: ResourceType, data: Mapping[str, Any]) -> ContentRecord:
        """Insert a row directly, as if another device had created it."""
        now = utc_now_iso()
        row = {"status": "draft", **data, "id": str(self._next_id), "createdAt": now, "updatedAt": now}
        self._next_id += 1
        self.rows[resource_type].append(row)
        return ContentRecord.from_dict(resource_type, row)

    def _find(self, resource_type: ResourceType, record_id: str) -> dict[str, Any]:
        for row in self.rows[resource_type]:
            if row["id"] == record_id:
                return row
        raise ApplicationError(404, f"{resource_type.value.capitalize()} not found")

    async def list_records(self, resource_type, filters=None):
        await self._enter("list", resource_type)
        records = [ContentRecord.from_dict(resource_type, row) for row in self.rows[resource_type]]
        return [r for r in records if r.matches(filters)]

    async def get_record(self, resource_type, record_id):
        await self._enter("get", resource_type)
        return ContentRecord.from_dict(resource_type, self._find(resource_type, record_id))

    async def create_record(self, resource_type, data):
        await self._enter("create", resource_type)
        return self.seed(resource_type, data)

    async def update_record(self, resource_type, record_id, changes):
        await self._enter("update", resource_type)
        row = self._find(resource_type, record_id)
        row.update(changes)
        row["updatedAt"] = utc_now_iso()
        return ContentRecord.from_dict(resource_type, row)

    async def delete_record(self, resource_type, record_id):
        await self._enter("delete", resource_type)
        row = self._find(resource_type, record_id)
        self.rows[resource_type].remove(row)
        return ContentRecord.from_dict(resource_type, row)


class FakeClock:
    """Manually advanced clock for cache expiry tests."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def fallback():
    return MemoryFallbackStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return ChangePropagationBus(context_id="test-context")


@pytest.fixture
def signals(bus) -> list[SyncSignal]:
    """Every signal published on ``bus``."""
    received: list[SyncSignal] = []
    bus.subscribe("all", received.append)
    return received


@pytest.fixture
def settings(tmp_path):
    return SyncSettings(
        request_timeout_ms=200,
        local_path=str(tmp_path / "store"),
    )


@pytest.fixture
async def access(remote, fallback, bus, settings):
    """DataAccessLayer over the fake remote and an in-memory fallback store."""
    layer = DataAccessLayer(remote, fallback, bus=bus, settings=settings)
    yield layer
    await layer.close()


@pytest.fixture
def event_data():
    return dict(EVENT_DATA)


@pytest.fixture
def article_data():
    return dict(ARTICLE_DATA)
