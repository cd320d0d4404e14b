"""
Divergence tracking between fallback and remote state.

Nothing here merges data. Every mutation applied to the fallback store is
queued as a PendingChange (persisted next to the records, so it survives a
restart). Later remote activity is compared against the queue:

- A remote listing that contains a record with the same title as a pending
  locally created record is a likely duplicate.
- A successful remote update or delete of a record that also has a pending
  fallback change means both sides changed it.

Each finding is recorded as a Divergence and logged as a ConsistencyWarning.
Divergences live in memory for the session. Operators list them and resolve
entries by hand.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..exceptions import ConsistencyWarning
from ..local.store import LocalFallbackStore
from ..logging_utils import log_sync_event
from ..records import ContentRecord, ResourceType, utc_now_iso
from ..sync.signals import SyncAction

logger = logging.getLogger(__name__)

PENDING_KEY = "pendingReconciliation"


class DivergenceKind(Enum):
    DUPLICATE_CANDIDATE = "duplicate_candidate"  # local create vs remote record with same title
    CONCURRENT_MUTATION = "concurrent_mutation"  # same id changed in fallback and on remote


def _normalize_title(title: str) -> str:
    return " ".join(title.split()).casefold()


@dataclass
class PendingChange:
    """A mutation applied only to the fallback store."""

    entry_id: str
    resource_type: ResourceType
    action: SyncAction
    item_id: str
    title: str
    recorded_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entryId": self.entry_id,
            "resourceType": self.resource_type.value,
            "action": self.action.value,
            "itemId": self.item_id,
            "title": self.title,
            "recordedAt": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingChange:
        return cls(
            entry_id=data["entryId"],
            resource_type=ResourceType.parse(data["resourceType"]),
            action=SyncAction(data["action"]),
            item_id=str(data["itemId"]),
            title=data.get("title", ""),
            recorded_at=data.get("recordedAt") or utc_now_iso(),
        )


@dataclass
class Divergence:
    """A detected, unresolved mismatch between fallback and remote state."""

    entry_id: str
    kind: DivergenceKind
    resource_type: ResourceType
    local_id: str
    remote_id: str
    pending_entry_id: str
    detected_at: str = field(default_factory=utc_now_iso)
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "entryId": self.entry_id,
            "kind": self.kind.value,
            "resourceType": self.resource_type.value,
            "localId": self.local_id,
            "remoteId": self.remote_id,
            "pendingEntryId": self.pending_entry_id,
            "detectedAt": self.detected_at,
            "resolved": self.resolved,
        }


class ReconciliationQueue:
    """Manual review queue for fallback-mode changes."""

    def __init__(self, store: LocalFallbackStore) -> None:
        self.store = store
        self._divergences: list[Divergence] = []

    async def _load(self) -> list[PendingChange]:
        entries = []
        for item in await self.store.get_list(PENDING_KEY):
            try:
                entries.append(PendingChange.from_dict(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Dropping unreadable reconciliation entry: {e}")
        return entries

    async def _save(self, entries: list[PendingChange]) -> None:
        await self.store.set_value(PENDING_KEY, [e.to_dict() for e in entries])

    async def record_fallback_change(self, action: SyncAction, record: ContentRecord) -> PendingChange:
        """Queue a mutation that was applied to the fallback store only."""
        entry = PendingChange(
            entry_id=uuid.uuid4().hex,
            resource_type=record.resource_type,
            action=action,
            item_id=record.id,
            title=record.title,
        )
        async with self.store.lock(PENDING_KEY):
            entries = await self._load()
            entries.append(entry)
            await self._save(entries)
        return entry

    async def pending(self, resource_type: ResourceType | None = None) -> list[PendingChange]:
        entries = await self._load()
        if resource_type is None:
            return entries
        return [e for e in entries if e.resource_type == resource_type]

    def divergences(self, include_resolved: bool = False) -> list[Divergence]:
        if include_resolved:
            return list(self._divergences)
        return [d for d in self._divergences if not d.resolved]

    async def check_remote_listing(
        self,
        resource_type: ResourceType,
        remote_records: list[ContentRecord],
    ) -> list[Divergence]:
        """Flag pending local creates that look duplicated by remote records."""
        creates = [
            e for e in await self.pending(resource_type)
            if e.action == SyncAction.CREATE and e.title.strip()
        ]
        if not creates:
            return []

        by_title: dict[str, list[ContentRecord]] = {}
        for record in remote_records:
            if not record.is_local:
                by_title.setdefault(_normalize_title(record.title), []).append(record)

        found = []
        for entry in creates:
            for record in by_title.get(_normalize_title(entry.title), []):
                divergence = self._add(
                    DivergenceKind.DUPLICATE_CANDIDATE, resource_type, entry, record.id
                )
                if divergence is not None:
                    found.append(divergence)
        return found

    async def check_remote_mutation(
        self,
        resource_type: ResourceType,
        record_id: str,
    ) -> list[Divergence]:
        """Flag a remote change to a record that also changed in fallback mode."""
        found = []
        for entry in await self.pending(resource_type):
            if entry.item_id != record_id:
                continue
            divergence = self._add(
                DivergenceKind.CONCURRENT_MUTATION, resource_type, entry, record_id
            )
            if divergence is not None:
                found.append(divergence)
        return found

    def _add(
        self,
        kind: DivergenceKind,
        resource_type: ResourceType,
        entry: PendingChange,
        remote_id: str,
    ) -> Divergence | None:
        for existing in self._divergences:
            if (
                existing.kind == kind
                and existing.pending_entry_id == entry.entry_id
                and existing.remote_id == remote_id
            ):
                return None

        divergence = Divergence(
            entry_id=uuid.uuid4().hex,
            kind=kind,
            resource_type=resource_type,
            local_id=entry.item_id,
            remote_id=remote_id,
            pending_entry_id=entry.entry_id,
        )
        self._divergences.append(divergence)

        warning = ConsistencyWarning(
            f"{resource_type.value} {entry.item_id} diverges from remote {remote_id}: {kind.value}",
            divergence.to_dict(),
        )
        log_sync_event(
            logger,
            "divergence_detected",
            logging.WARNING,
            message=warning.message,
            divergence=warning.details,
        )
        return divergence

    async def resolve(self, entry_id: str) -> bool:
        """Mark a divergence resolved or drop a pending change.

        Resolving a divergence also drops the pending change it came from.
        Returns False if no entry has this id.
        """
        for divergence in self._divergences:
            if divergence.entry_id == entry_id and not divergence.resolved:
                divergence.resolved = True
                await self._drop_pending(divergence.pending_entry_id)
                return True
        return await self._drop_pending(entry_id)

    async def _drop_pending(self, entry_id: str) -> bool:
        async with self.store.lock(PENDING_KEY):
            entries = await self._load()
            remaining = [e for e in entries if e.entry_id != entry_id]
            if len(remaining) == len(entries):
                return False
            await self._save(remaining)
        return True

    async def clear(self) -> None:
        self._divergences.clear()
        async with self.store.lock(PENDING_KEY):
            await self.store.delete_value(PENDING_KEY)
