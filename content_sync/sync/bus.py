"""
Change propagation bus.

Delivers SyncSignals to listeners (page views, dashboards) in two ways:

1. Intra-context: ``publish`` invokes every matching subscriber before it
   returns, in publish order.
2. Inter-context: ``publish`` also hands the signal to a SignalTransport;
   signals arriving from other contexts are re-dispatched to this context's
   subscribers.

Signals are fire-and-forget. A failing handler is logged and skipped; a
failed cross-context send leaves other contexts stale until the next signal.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import ContentSyncError
from ..logging_utils import SyncLoggerAdapter
from ..records import ResourceType
from .signals import ALL_RESOURCES, SyncSignal
from .transports import SignalTransport

logger = logging.getLogger(__name__)

SignalHandler = Callable[[SyncSignal], Any]


def _normalize_types(
    resource_types: ResourceType | str | Iterable[ResourceType | str],
) -> frozenset[str]:
    if isinstance(resource_types, (ResourceType, str)):
        resource_types = [resource_types]
    names = set()
    for item in resource_types:
        if item == ALL_RESOURCES:
            names.add(ALL_RESOURCES)
        else:
            names.add(ResourceType.parse(item).value)
    if not names:
        raise ValueError("subscribe() needs at least one resource type")
    return frozenset(names)


@dataclass(eq=False)
class Subscription:
    """Handle returned by ChangePropagationBus.subscribe()."""

    resource_types: frozenset[str]
    handler: SignalHandler
    bus: ChangePropagationBus | None = field(default=None, repr=False)

    def accepts(self, signal: SyncSignal) -> bool:
        return (
            ALL_RESOURCES in self.resource_types
            or signal.resource_type.value in self.resource_types
        )

    def cancel(self) -> None:
        if self.bus is not None:
            self.bus.unsubscribe(self)
            self.bus = None


class ChangePropagationBus:
    """Publish/subscribe hub for one execution context.

    Example:
        >>> bus = ChangePropagationBus(MarkerFileTransport(marker_path))
        >>> bus.subscribe({"event", "all"}, refresh_calendar)
        >>> async with bus:
        ...     await bus.publish(SyncSignal(ResourceType.EVENT, SyncAction.UPDATE, "42"))
    """

    def __init__(
        self,
        transport: SignalTransport | None = None,
        context_id: str | None = None,
    ) -> None:
        """Initialize the bus.

        Args:
            transport: Cross-context carrier; None keeps signals in-context
            context_id: Identifier of this context (generated if omitted)
        """
        self.transport = transport
        self.context_id = context_id or uuid.uuid4().hex[:12]
        self._log = SyncLoggerAdapter(logger, {"context_id": self.context_id})
        self._subscriptions: list[Subscription] = []
        self._running = False
        self.published_count = 0
        self.received_count = 0

    async def start(self) -> None:
        """Start receiving signals from other contexts."""
        if self._running:
            return
        self._running = True
        if self.transport is not None:
            await self.transport.start(self._on_transport_signal)
        self._log.debug(f"Sync bus {self.context_id} started")

    async def stop(self) -> None:
        self._running = False
        if self.transport is not None:
            await self.transport.stop()
        self._log.debug(f"Sync bus {self.context_id} stopped")

    async def __aenter__(self) -> ChangePropagationBus:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def subscribe(
        self,
        resource_types: ResourceType | str | Iterable[ResourceType | str],
        handler: SignalHandler,
    ) -> Subscription:
        """Register ``handler`` for signals of the given types.

        ``resource_types`` may contain ``"all"`` to receive every signal.
        Handlers may be plain functions or coroutine functions.
        """
        subscription = Subscription(_normalize_types(resource_types), handler, self)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def reset(self) -> None:
        """Drop all subscriptions and counters."""
        for subscription in self._subscriptions:
            subscription.bus = None
        self._subscriptions.clear()
        self.published_count = 0
        self.received_count = 0

    async def publish(self, signal: SyncSignal) -> None:
        """Deliver locally, then forward to other contexts."""
        stamped = signal.from_context(self.context_id)
        self.published_count += 1
        await self._dispatch(stamped)

        if self.transport is None:
            return
        try:
            await self.transport.send(stamped)
        except (ContentSyncError, OSError) as e:
            self._log.warning(
                f"Cross-context delivery of {stamped.action.value} "
                f"{stamped.resource_type.value}/{stamped.item_id} failed: {e}"
            )

    async def _on_transport_signal(self, signal: SyncSignal) -> None:
        if signal.source_context == self.context_id:
            return
        self.received_count += 1
        await self._dispatch(signal)

    async def _dispatch(self, signal: SyncSignal) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.accepts(signal):
                continue
            try:
                result = subscription.handler(signal)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self._log.exception(
                    f"Sync handler failed for {signal.action.value} "
                    f"{signal.resource_type.value}/{signal.item_id}"
                )
