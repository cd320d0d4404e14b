"""Tests for the local fallback stores."""

import asyncio

import pytest

from content_sync.exceptions import FallbackStoreError
from content_sync.local import FileFallbackStore, MemoryFallbackStore
from content_sync.records import ContentRecord, ResourceType


def make_article(record_id: str, title: str = "Title") -> ContentRecord:
    return ContentRecord.from_dict(
        ResourceType.ARTICLE, {"id": record_id, "title": title, "content": "Body"}
    )


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryFallbackStore()
    return FileFallbackStore(tmp_path / "store")


class TestKeyValue:
    """Tests for raw key/value operations on both stores."""

    async def test_missing_key(self, store):
        """Absent keys read as None."""
        assert await store.get_value("articles") is None
        assert await store.get_list("articles") == []

    async def test_set_get_delete(self, store):
        """Values round-trip and can be deleted."""
        await store.set_value("lastSync", {"timestamp": "t", "source": "remote"})
        assert await store.get_value("lastSync") == {"timestamp": "t", "source": "remote"}

        await store.delete_value("lastSync")
        assert await store.get_value("lastSync") is None

    async def test_keys_and_clear(self, store):
        """keys() lists stored keys; clear() removes them all."""
        await store.set_value("articles", [])
        await store.set_value("events", [])

        assert sorted(await store.keys()) == ["articles", "events"]

        await store.clear()
        assert await store.keys() == []

    async def test_invalid_key(self, store):
        """Keys that could escape the store are rejected."""
        with pytest.raises(FallbackStoreError):
            await store.set_value("../escape", [])

    async def test_get_list_rejects_non_list(self, store):
        """A record key holding a non-list is an error."""
        await store.set_value("articles", {"not": "a list"})
        with pytest.raises(FallbackStoreError):
            await store.get_list("articles")


class TestRecordHelpers:
    """Tests for record helpers built on the raw operations."""

    async def test_upsert_appends_then_replaces(self, store):
        """Upsert keeps insertion order and replaces in place."""
        await store.upsert_record(make_article("1", "First"))
        await store.upsert_record(make_article("2", "Second"))
        await store.upsert_record(make_article("1", "First, edited"))

        records = await store.read_records(ResourceType.ARTICLE)
        assert [(r.id, r.title) for r in records] == [("1", "First, edited"), ("2", "Second")]

    async def test_remove_record(self, store):
        """Removal returns the removed record, or None when absent."""
        await store.upsert_record(make_article("1"))

        removed = await store.remove_record(ResourceType.ARTICLE, "1")
        assert removed.id == "1"
        assert await store.remove_record(ResourceType.ARTICLE, "1") is None
        assert await store.find_record(ResourceType.ARTICLE, "1") is None

    async def test_unreadable_rows_skipped(self, store):
        """One bad row does not hide the rest of a listing."""
        await store.set_value(
            "articles",
            [{"title": "no id"}, "junk", {"id": "1", "title": "Good", "content": "Body"}],
        )

        records = await store.read_records(ResourceType.ARTICLE)
        assert [r.id for r in records] == ["1"]

    async def test_writes_keep_unreadable_rows(self, store):
        """Upserts and removals leave rows they cannot parse untouched."""
        legacy = {"title": "legacy row without id", "content": "Body"}
        await store.set_value("articles", [legacy, {"_id": "7", "title": "Old", "content": "Body"}])

        await store.upsert_record(make_article("1", "New"))
        await store.upsert_record(make_article("7", "Old, edited"))
        await store.remove_record(ResourceType.ARTICLE, "1")

        rows = await store.get_list("articles")
        assert rows[0] == legacy
        assert [(r["id"], r["title"]) for r in rows[1:]] == [("7", "Old, edited")]

    async def test_modify_record(self, store):
        """modify_record saves the changed record, or returns None if absent."""
        await store.upsert_record(make_article("1", "First"))

        updated = await store.modify_record(
            ResourceType.ARTICLE, "1", lambda r: r.with_changes({"title": "Renamed"})
        )

        assert updated.title == "Renamed"
        assert (await store.find_record(ResourceType.ARTICLE, "1")).title == "Renamed"
        assert await store.modify_record(ResourceType.ARTICLE, "2", lambda r: r) is None

    async def test_concurrent_upserts(self, store):
        """Concurrent upserts of different records are all stored."""
        await asyncio.gather(*(store.upsert_record(make_article(str(n))) for n in range(8)))

        records = await store.read_records(ResourceType.ARTICLE)
        assert sorted(r.id for r in records) == [str(n) for n in range(8)]


class TestMemoryFallbackStore:
    """Tests specific to the in-memory store."""

    async def test_values_are_copied(self):
        """Mutating a returned value does not change the store."""
        store = MemoryFallbackStore()
        value = [{"id": "1"}]
        await store.set_value("articles", value)
        value.append({"id": "2"})

        loaded = await store.get_value("articles")
        loaded.append({"id": "3"})

        assert await store.get_value("articles") == [{"id": "1"}]


class TestFileFallbackStore:
    """Tests specific to the file-backed store."""

    async def test_persists_across_instances(self, tmp_path):
        """A new store over the same directory sees earlier writes."""
        await FileFallbackStore(tmp_path).upsert_record(make_article("1", "Kept"))

        record = await FileFallbackStore(tmp_path).find_record(ResourceType.ARTICLE, "1")
        assert record.title == "Kept"

    async def test_one_file_per_key(self, tmp_path):
        """Each key is stored as <key>.json."""
        store = FileFallbackStore(tmp_path)
        await store.set_value("events", [])

        assert (tmp_path / "events.json").exists()
        assert not list(tmp_path.glob(".tmp_*"))

    async def test_corrupt_file(self, tmp_path):
        """A corrupt file raises FallbackStoreError."""
        (tmp_path / "articles.json").write_text("{not json")

        with pytest.raises(FallbackStoreError):
            await FileFallbackStore(tmp_path).get_value("articles")
