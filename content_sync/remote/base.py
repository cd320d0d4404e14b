"""
Abstract remote store interface.

Defines the contract the access layer consumes. Implementations must raise
only TransportError or ApplicationError for remote failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from ..records import ContentRecord, ResourceType


class RemoteStore(ABC):
    """Authoritative backend for content records.

    All methods may raise:
        TransportError: No well-formed response was obtained
        ApplicationError: The backend rejected the request
    """

    @abstractmethod
    async def list_records(
        self,
        resource_type: ResourceType,
        filters: Mapping[str, Any] | None = None,
    ) -> list[ContentRecord]:
        """List records of a type, optionally filtered."""
        pass

    @abstractmethod
    async def get_record(self, resource_type: ResourceType, record_id: str) -> ContentRecord:
        """Get one record. A missing record is an ApplicationError with status 404."""
        pass

    @abstractmethod
    async def create_record(
        self,
        resource_type: ResourceType,
        data: Mapping[str, Any],
    ) -> ContentRecord:
        """Create a record and return it with its assigned id and timestamps."""
        pass

    @abstractmethod
    async def update_record(
        self,
        resource_type: ResourceType,
        record_id: str,
        changes: Mapping[str, Any],
    ) -> ContentRecord:
        """Apply wire-keyed changes and return the updated record."""
        pass

    @abstractmethod
    async def delete_record(self, resource_type: ResourceType, record_id: str) -> ContentRecord | None:
        """Delete a record; returns the deleted record when the backend echoes it."""
        pass

    async def close(self) -> None:
        """Release connections. Default is a no-op."""
        return None

    async def __aenter__(self) -> RemoteStore:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
