"""
Local fallback store.

A per-device key -> JSON value store. Content lives under one key per
resource type (``articles``, ``events``, ``recordings``), each holding an
ordered list of record dicts in insertion order. Other keys hold small JSON
documents such as ``lastSync``.

The store is a best-effort mirror of the remote store, never authoritative.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from copy import deepcopy
from pathlib import Path
from typing import Any

from ..exceptions import FallbackStoreError, RecordValidationError
from ..records import ContentRecord, ResourceType
from .file_ops import read_json, remove_file, write_json_atomic

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def _check_key(key: str) -> str:
    if not _KEY_PATTERN.match(key) or key.startswith("."):
        raise FallbackStoreError("validate_key", key)
    return key


def _row_index(rows: list[Any], record_id: str) -> int | None:
    for index, row in enumerate(rows):
        if isinstance(row, dict):
            row_id = row.get("id", row.get("_id"))
            if row_id is not None and str(row_id) == record_id:
                return index
    return None


class LocalFallbackStore(ABC):
    """Abstract key -> JSON value store.

    Subclasses implement the four raw operations; record helpers are built
    on top of them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        """Lock held across a read-modify-write of ``key`` in this store."""
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @abstractmethod
    async def get_value(self, key: str) -> Any | None:
        """Return the stored value, or None if the key is absent."""
        pass

    @abstractmethod
    async def set_value(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def delete_value(self, key: str) -> None:
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        pass

    async def clear(self) -> None:
        for key in await self.keys():
            await self.delete_value(key)

    async def get_list(self, key: str) -> list[dict[str, Any]]:
        value = await self.get_value(key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise FallbackStoreError("get_list", key)
        return value

    async def read_records(self, resource_type: ResourceType) -> list[ContentRecord]:
        """All stored records of a type, in stored order.

        Rows that cannot be parsed are skipped.
        """
        records = []
        for item in await self.get_list(resource_type.route):
            if not isinstance(item, dict):
                continue
            try:
                records.append(ContentRecord.from_dict(resource_type, item))
            except (RecordValidationError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable {resource_type.route} row: {e}")
                continue
        return records

    async def find_record(self, resource_type: ResourceType, record_id: str) -> ContentRecord | None:
        for record in await self.read_records(resource_type):
            if record.id == record_id:
                return record
        return None

    async def upsert_record(self, record: ContentRecord) -> None:
        """Replace the record with the same id in place, or append it.

        Other rows, including ones ``read_records`` cannot parse, are kept as
        they are.
        """
        key = record.resource_type.route
        async with self.lock(key):
            rows = await self.get_list(key)
            index = _row_index(rows, record.id)
            if index is None:
                rows.append(record.to_dict())
            else:
                rows[index] = record.to_dict()
            await self.set_value(key, rows)

    async def modify_record(
        self,
        resource_type: ResourceType,
        record_id: str,
        change: Callable[[ContentRecord], ContentRecord],
    ) -> ContentRecord | None:
        """Apply ``change`` to a stored record and save the result.

        Returns the new record, or None if no row has this id.
        """
        key = resource_type.route
        async with self.lock(key):
            rows = await self.get_list(key)
            index = _row_index(rows, record_id)
            if index is None:
                return None
            updated = change(ContentRecord.from_dict(resource_type, rows[index]))
            rows[index] = updated.to_dict()
            await self.set_value(key, rows)
            return updated

    async def remove_record(self, resource_type: ResourceType, record_id: str) -> ContentRecord | None:
        """Remove a record; returns it, or None if it was not stored."""
        key = resource_type.route
        async with self.lock(key):
            rows = await self.get_list(key)
            index = _row_index(rows, record_id)
            if index is None:
                return None
            removed = rows.pop(index)
            await self.set_value(key, rows)
        return ContentRecord.from_dict(resource_type, removed)

    async def close(self) -> None:
        return None


class MemoryFallbackStore(LocalFallbackStore):
    """In-process store; values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, Any] = {}

    async def get_value(self, key: str) -> Any | None:
        value = self._data.get(_check_key(key))
        return deepcopy(value)

    async def set_value(self, key: str, value: Any) -> None:
        self._data[_check_key(key)] = deepcopy(value)

    async def delete_value(self, key: str) -> None:
        self._data.pop(_check_key(key), None)

    async def keys(self) -> list[str]:
        return list(self._data)


class FileFallbackStore(LocalFallbackStore):
    """One JSON file per key under a directory.

    Directory structure:
    {base_path}/
      articles.json
      events.json
      recordings.json
      lastSync.json
    """

    def __init__(self, base_path: Path | str) -> None:
        super().__init__()
        self.base_path = Path(base_path).expanduser()

    def _path(self, key: str) -> Path:
        return self.base_path / f"{_check_key(key)}.json"

    async def get_value(self, key: str) -> Any | None:
        return await read_json(self._path(key))

    async def set_value(self, key: str, value: Any) -> None:
        await write_json_atomic(self._path(key), value)

    async def delete_value(self, key: str) -> None:
        await remove_file(self._path(key))

    async def keys(self) -> list[str]:
        if not self.base_path.exists():
            return []
        return sorted(
            p.stem for p in self.base_path.glob("*.json") if not p.name.startswith(".")
        )
