"""
Data access layer.

One read/write contract over the remote store and the local fallback store.

Every operation:
1. Calls the remote store (if enabled) with a bounded timeout.
2. On success, mirrors writes into the fallback store, publishes a signal
   with origin=remote and returns.
3. On TransportError with fallback enabled, applies the same operation to the
   fallback store (local id on create), publishes origin=fallback, returns.
4. On ApplicationError, or TransportError with fallback disabled, re-raises
   the exception unchanged. The fallback store is never written.

Reads follow the same rule but never write to either store. When the
fallback store itself fails on the read path, the read degrades to an empty
result instead of raising.

Fallback writes are refused for records whose remote mutation succeeded
earlier in this session, so a confirmed remote state is never overwritten by
a local one, whether fallback mode was reached through a failed remote call
or selected with ``set_remote_enabled(False)``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from ..config import SyncSettings
from ..exceptions import (
    ConfigurationError,
    ConfirmedRecordError,
    ConsistencyWarning,
    FallbackStoreError,
    RecordNotFoundError,
    TransportError,
)
from ..local.store import LocalFallbackStore
from ..logging_utils import log_sync_event
from ..records import (
    ContentPayload,
    ContentRecord,
    ContentStatus,
    ResourceType,
    parse_payload,
    utc_now_iso,
    validate_changes,
)
from ..remote.base import RemoteStore
from ..sync.bus import ChangePropagationBus
from ..sync.signals import SignalOrigin, SyncAction, SyncSignal
from .reconciliation import ReconciliationQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")

LAST_SYNC_KEY = "lastSync"

RecordInput = ContentPayload | Mapping[str, Any]


class DataAccessLayer:
    """Client-facing façade over RemoteStore and LocalFallbackStore.

    Example:
        >>> access = DataAccessLayer(
        ...     remote=HttpRemoteStore(settings.api_base_url, timeout=settings.request_timeout),
        ...     fallback=FileFallbackStore(settings.store_path),
        ...     bus=bus,
        ...     settings=settings,
        ... )
        >>> article = await access.create("article", {"title": "Welcome", "content": "..."})
        >>> published = await access.read_published("article")
    """

    def __init__(
        self,
        remote: RemoteStore | None,
        fallback: LocalFallbackStore | None,
        bus: ChangePropagationBus | None = None,
        settings: SyncSettings | None = None,
        reconciliation: ReconciliationQueue | None = None,
    ) -> None:
        """Initialize the access layer.

        Args:
            remote: Authoritative store (None behaves like remote_enabled=False)
            fallback: Per-device fallback store (None disables fallback)
            bus: Where change signals are published
            settings: Policy flags and timeout
            reconciliation: Divergence queue (created over ``fallback`` if omitted)
        """
        settings = settings or SyncSettings()
        self.remote = remote
        self.fallback = fallback
        self.bus = bus
        self.remote_enabled = settings.remote_enabled and remote is not None
        self.fallback_enabled = settings.fallback_enabled and fallback is not None
        self.propagate_changes = settings.propagate_changes
        self.mirror_remote_results = settings.mirror_remote_results
        self.request_timeout_ms = settings.request_timeout_ms

        if not self.remote_enabled and not self.fallback_enabled:
            raise ConfigurationError("remote_enabled", "no usable store: remote and fallback are both off")

        if reconciliation is None and fallback is not None:
            reconciliation = ReconciliationQueue(fallback)
        self.reconciliation = reconciliation

        # Records whose remote mutation succeeded in this session.
        self._confirmed: set[tuple[ResourceType, str]] = set()

    @property
    def request_timeout(self) -> float:
        return self.request_timeout_ms / 1000.0

    def set_remote_enabled(self, enabled: bool) -> None:
        """Switch between remote and fallback-only mode."""
        if enabled and self.remote is None:
            raise ConfigurationError("remote_enabled", "no remote store configured")
        if not enabled and not self.fallback_enabled:
            raise ConfigurationError("remote_enabled", "cannot disable remote without a fallback store")
        self.remote_enabled = enabled
        logger.info(f"Data access mode switched to: {'remote' if enabled else 'fallback'}")

    def describe(self) -> dict[str, Any]:
        return {
            "remote_enabled": self.remote_enabled,
            "fallback_enabled": self.fallback_enabled,
            "propagate_changes": self.propagate_changes,
            "mirror_remote_results": self.mirror_remote_results,
            "request_timeout_ms": self.request_timeout_ms,
        }

    async def close(self) -> None:
        if self.remote is not None:
            await self.remote.close()
        if self.fallback is not None:
            await self.fallback.close()

    # Reads

    async def read_all(
        self,
        resource_type: ResourceType | str,
        filters: Mapping[str, Any] | None = None,
    ) -> list[ContentRecord]:
        """List records of a type, optionally filtered by wire field equality.

        ``{"status": "published"}`` (or ``{"published": True}``) selects
        published records only.
        """
        rtype = ResourceType.parse(resource_type)
        if self.remote_enabled:
            try:
                records = await self._call_remote(lambda: self.remote.list_records(rtype, filters))
            except TransportError as e:
                if not self.fallback_enabled:
                    raise
                self._log_fallback("read_all", rtype, e)
            else:
                records = [r for r in records if r.matches(filters)]
                await self._check_listing(rtype, records)
                return records

        try:
            records = await self.fallback.read_records(rtype)
        except FallbackStoreError as e:
            logger.error(f"Fallback read of {rtype.route} failed, returning empty list: {e}")
            return []
        return [r for r in records if r.matches(filters)]

    async def read_published(self, resource_type: ResourceType | str) -> list[ContentRecord]:
        return await self.read_all(resource_type, {"status": ContentStatus.PUBLISHED.value})

    async def read_one(self, resource_type: ResourceType | str, record_id: str) -> ContentRecord | None:
        """Get one record.

        A remote 404 surfaces as ApplicationError; in fallback mode a missing
        record reads as None.
        """
        rtype = ResourceType.parse(resource_type)
        if self.remote_enabled:
            try:
                return await self._call_remote(lambda: self.remote.get_record(rtype, record_id))
            except TransportError as e:
                if not self.fallback_enabled:
                    raise
                self._log_fallback("read_one", rtype, e, item_id=record_id)

        try:
            return await self.fallback.find_record(rtype, record_id)
        except FallbackStoreError as e:
            logger.error(f"Fallback read of {rtype.route}/{record_id} failed: {e}")
            return None

    # Writes

    async def create(self, resource_type: ResourceType | str, data: RecordInput) -> ContentRecord:
        """Create a record; ``data`` may carry ``status`` (default draft)."""
        rtype = ResourceType.parse(resource_type)
        payload, status = parse_payload(rtype, data)
        wire = {**payload.to_dict(), "status": status.value}

        if self.remote_enabled:
            try:
                record = await self._call_remote(lambda: self.remote.create_record(rtype, wire))
            except TransportError as e:
                if not self.fallback_enabled:
                    raise
                self._log_fallback("create", rtype, e)
            else:
                self._confirmed.add((rtype, record.id))
                await self._mirror(record)
                await self._after_write(SyncAction.CREATE, rtype, record.id, record, SignalOrigin.REMOTE)
                return record

        record = ContentRecord.new_local(rtype, payload, status)
        await self.fallback.upsert_record(record)
        await self._queue_or_undo(
            SyncAction.CREATE, record, lambda: self.fallback.remove_record(rtype, record.id)
        )
        await self._after_write(SyncAction.CREATE, rtype, record.id, record, SignalOrigin.FALLBACK)
        return record

    async def update(
        self,
        resource_type: ResourceType | str,
        record_id: str,
        changes: RecordInput,
    ) -> ContentRecord:
        """Apply a partial update (wire-keyed fields and/or ``status``)."""
        rtype = ResourceType.parse(resource_type)
        validated = validate_changes(rtype, changes)

        failure: TransportError | None = None
        if self.remote_enabled:
            try:
                record = await self._call_remote(
                    lambda: self.remote.update_record(rtype, record_id, validated)
                )
            except TransportError as e:
                if not self.fallback_enabled:
                    raise
                failure = e
            else:
                self._confirmed.add((rtype, record.id))
                await self._check_mutation(rtype, record.id)
                await self._mirror(record)
                await self._after_write(SyncAction.UPDATE, rtype, record.id, record, SignalOrigin.REMOTE)
                return record

        self._guard_confirmed("update", rtype, record_id, failure)
        if failure is not None:
            self._log_fallback("update", rtype, failure, item_id=record_id)

        previous: list[ContentRecord] = []

        def apply(existing: ContentRecord) -> ContentRecord:
            previous.append(existing)
            return existing.with_changes(validated)

        record = await self.fallback.modify_record(rtype, record_id, apply)
        if record is None:
            raise RecordNotFoundError(rtype.value, record_id)
        await self._queue_or_undo(
            SyncAction.UPDATE, record, lambda: self.fallback.upsert_record(previous[0])
        )
        await self._after_write(SyncAction.UPDATE, rtype, record.id, record, SignalOrigin.FALLBACK)
        return record

    async def remove(self, resource_type: ResourceType | str, record_id: str) -> ContentRecord | None:
        """Delete a record; returns it when the store knows its last state."""
        rtype = ResourceType.parse(resource_type)

        failure: TransportError | None = None
        if self.remote_enabled:
            try:
                deleted = await self._call_remote(lambda: self.remote.delete_record(rtype, record_id))
            except TransportError as e:
                if not self.fallback_enabled:
                    raise
                failure = e
            else:
                self._confirmed.add((rtype, record_id))
                await self._check_mutation(rtype, record_id)
                await self._mirror_delete(rtype, record_id)
                await self._after_write(SyncAction.DELETE, rtype, record_id, deleted, SignalOrigin.REMOTE)
                return deleted

        self._guard_confirmed("remove", rtype, record_id, failure)
        if failure is not None:
            self._log_fallback("remove", rtype, failure, item_id=record_id)

        removed = await self.fallback.remove_record(rtype, record_id)
        if removed is None:
            raise RecordNotFoundError(rtype.value, record_id)
        await self._queue_or_undo(
            SyncAction.DELETE, removed, lambda: self.fallback.upsert_record(removed)
        )
        await self._after_write(SyncAction.DELETE, rtype, record_id, removed, SignalOrigin.FALLBACK)
        return removed

    async def last_sync(self) -> dict[str, Any] | None:
        """Timestamp and source of the last successful write, if recorded."""
        if self.fallback is None:
            return None
        try:
            return await self.fallback.get_value(LAST_SYNC_KEY)
        except FallbackStoreError as e:
            logger.warning(f"Cannot read last sync marker: {e}")
            return None

    # Internals

    async def _call_remote(self, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(call(), timeout=self.request_timeout)
        except TimeoutError as e:
            raise TransportError("timeout", cause=e) from e
        except ConnectionError as e:
            raise TransportError("connection failed", cause=e) from e

    def _log_fallback(
        self,
        operation: str,
        resource_type: ResourceType,
        error: TransportError,
        item_id: str | None = None,
    ) -> None:
        log_sync_event(
            logger,
            "remote_fallback",
            logging.WARNING,
            message=f"Remote {operation} of {resource_type.route} failed ({error.reason}), using fallback store",
            operation=operation,
            resource_type=resource_type.value,
            item_id=item_id,
            reason=error.reason,
        )

    def _guard_confirmed(
        self,
        operation: str,
        resource_type: ResourceType,
        record_id: str,
        failure: TransportError | None,
    ) -> None:
        """Refuse a fallback write over a remote state confirmed in this session.

        Re-raises ``failure`` when the fallback was reached through a failed
        remote call, otherwise raises ConfirmedRecordError.
        """
        if (resource_type, record_id) not in self._confirmed:
            return
        refusal = ConfirmedRecordError(operation, resource_type.value, record_id)
        warning = ConsistencyWarning(refusal.message, refusal.details)
        log_sync_event(
            logger, "fallback_write_refused", logging.WARNING, message=warning.message, **warning.details
        )
        if failure is not None:
            raise failure
        raise refusal

    async def _mirror(self, record: ContentRecord) -> None:
        if not (self.mirror_remote_results and self.fallback is not None):
            return
        try:
            await self.fallback.upsert_record(record)
        except FallbackStoreError as e:
            logger.warning(f"Could not mirror {record.resource_type.value} {record.id} locally: {e}")

    async def _mirror_delete(self, resource_type: ResourceType, record_id: str) -> None:
        if not (self.mirror_remote_results and self.fallback is not None):
            return
        try:
            await self.fallback.remove_record(resource_type, record_id)
        except FallbackStoreError as e:
            logger.warning(f"Could not drop mirrored {resource_type.value} {record_id}: {e}")

    async def _queue_or_undo(
        self,
        action: SyncAction,
        record: ContentRecord,
        undo: Callable[[], Awaitable[Any]],
    ) -> None:
        """Queue a fallback change, rolling the store write back if queuing fails."""
        if self.reconciliation is None:
            return
        try:
            await self.reconciliation.record_fallback_change(action, record)
        except FallbackStoreError:
            try:
                await undo()
            except FallbackStoreError as e:
                logger.error(f"Could not roll back fallback {action.value} of {record.id}: {e}")
            raise

    async def _check_listing(self, resource_type: ResourceType, records: list[ContentRecord]) -> None:
        if self.reconciliation is None:
            return
        try:
            await self.reconciliation.check_remote_listing(resource_type, records)
        except FallbackStoreError as e:
            logger.warning(f"Reconciliation check skipped: {e}")

    async def _check_mutation(self, resource_type: ResourceType, record_id: str) -> None:
        if self.reconciliation is None:
            return
        try:
            await self.reconciliation.check_remote_mutation(resource_type, record_id)
        except FallbackStoreError as e:
            logger.warning(f"Reconciliation check skipped: {e}")

    async def _after_write(
        self,
        action: SyncAction,
        resource_type: ResourceType,
        record_id: str,
        record: ContentRecord | None,
        origin: SignalOrigin,
    ) -> None:
        timestamp = utc_now_iso()
        if self.fallback is not None and (origin == SignalOrigin.FALLBACK or self.mirror_remote_results):
            try:
                await self.fallback.set_value(
                    LAST_SYNC_KEY, {"timestamp": timestamp, "source": origin.value}
                )
            except FallbackStoreError as e:
                logger.warning(f"Could not record last sync: {e}")

        if self.propagate_changes and self.bus is not None:
            await self.bus.publish(
                SyncSignal(
                    resource_type=resource_type,
                    action=action,
                    item_id=record_id,
                    payload=record.to_dict() if record is not None else None,
                    timestamp=timestamp,
                    origin=origin,
                )
            )
