"""
Sync signal types.

A SyncSignal says "a record of this type was created, updated or deleted".
Signals are ephemeral: they are delivered, never persisted beyond the shared
marker that carries the latest one between contexts.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ..records import ResourceType, utc_now_iso

# Subscription wildcard matching every resource type.
ALL_RESOURCES = "all"


class SyncAction(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SignalOrigin(Enum):
    """Which store the change was applied to."""

    REMOTE = "remote"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class SyncSignal:
    """A change notification.

    Attributes:
        resource_type: Type of the changed record
        action: What happened to it
        item_id: Id of the changed record
        payload: Wire dict of the record after the change (None for opaque deletes)
        timestamp: When the change was applied (ISO 8601, UTC)
        origin: Store the change was applied to
        source_context: Context that published the signal
        signal_id: Unique id of this signal
    """

    resource_type: ResourceType
    action: SyncAction
    item_id: str
    payload: dict[str, Any] | None = None
    timestamp: str = field(default_factory=utc_now_iso)
    origin: SignalOrigin = SignalOrigin.REMOTE
    source_context: str | None = None
    signal_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def from_context(self, context_id: str) -> SyncSignal:
        """Copy stamped with the publishing context."""
        return replace(self, source_context=context_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resourceType": self.resource_type.value,
            "action": self.action.value,
            "itemId": self.item_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "origin": self.origin.value,
            "sourceContext": self.source_context,
            "signalId": self.signal_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSignal:
        return cls(
            resource_type=ResourceType.parse(data["resourceType"]),
            action=SyncAction(data["action"]),
            item_id=str(data["itemId"]),
            payload=data.get("payload"),
            timestamp=data.get("timestamp") or utc_now_iso(),
            origin=SignalOrigin(data.get("origin", SignalOrigin.REMOTE.value)),
            source_context=data.get("sourceContext"),
            signal_id=data.get("signalId") or uuid.uuid4().hex,
        )
