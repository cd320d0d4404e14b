"""
Cross-context signal transports.

A transport carries SyncSignals between execution contexts (tabs, devices,
processes). The bus only sees this interface, so the carrier can be swapped:

- InMemoryTransport: contexts attached to one InMemoryChannel in a process
- MarkerFileTransport: a shared marker file holding the latest signal, watched
  by every context

Delivery across contexts is at-least-once, unordered, and may coalesce.
The marker transport only notices that the file's content changed between
two polls: several signals written within one poll interval surface as the
last one, and rewriting an identical value is not observed at all.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from pathlib import Path

from ..exceptions import FallbackStoreError
from ..local.file_ops import read_text, write_json_atomic
from .signals import SyncSignal

logger = logging.getLogger(__name__)

SignalListener = Callable[[SyncSignal], Awaitable[None]]


class SignalTransport(ABC):
    """Carries signals to and from other contexts."""

    @abstractmethod
    async def start(self, listener: SignalListener) -> None:
        """Begin delivering signals from other contexts to ``listener``."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass

    @abstractmethod
    async def send(self, signal: SyncSignal) -> None:
        """Make ``signal`` visible to other contexts."""
        pass


class InMemoryChannel:
    """Shared in-process medium standing in for several contexts.

    Example:
        >>> channel = InMemoryChannel()
        >>> admin_tab = ChangePropagationBus(InMemoryTransport(channel), context_id="admin")
        >>> public_tab = ChangePropagationBus(InMemoryTransport(channel), context_id="public")
    """

    def __init__(self) -> None:
        self._transports: list[InMemoryTransport] = []
        self.delivered = 0

    def attach(self, transport: InMemoryTransport) -> None:
        if transport not in self._transports:
            self._transports.append(transport)

    def detach(self, transport: InMemoryTransport) -> None:
        if transport in self._transports:
            self._transports.remove(transport)

    async def broadcast(self, signal: SyncSignal, sender: InMemoryTransport) -> None:
        for transport in list(self._transports):
            if transport is sender:
                continue
            await transport.deliver(signal)
            self.delivered += 1


class InMemoryTransport(SignalTransport):
    """Transport attached to an InMemoryChannel."""

    def __init__(self, channel: InMemoryChannel) -> None:
        self.channel = channel
        self._listener: SignalListener | None = None

    async def start(self, listener: SignalListener) -> None:
        self._listener = listener
        self.channel.attach(self)

    async def stop(self) -> None:
        self.channel.detach(self)
        self._listener = None

    async def send(self, signal: SyncSignal) -> None:
        await self.channel.broadcast(signal, sender=self)

    async def deliver(self, signal: SyncSignal) -> None:
        if self._listener is not None:
            await self._listener(signal)


class MarkerFileTransport(SignalTransport):
    """Shared marker file transport.

    Every send overwrites the marker with the signal's JSON. A watcher task
    polls the file and hands each newly observed value to the listener.
    """

    def __init__(self, marker_path: Path | str, poll_interval: float = 0.5) -> None:
        """Initialize the transport.

        Args:
            marker_path: File shared by all contexts
            poll_interval: Seconds between change checks
        """
        self.marker_path = Path(marker_path).expanduser()
        self.poll_interval = poll_interval
        self._listener: SignalListener | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._last_seen: str | None = None

    async def start(self, listener: SignalListener) -> None:
        if self._watch_task is not None:
            return
        self._listener = listener
        # Only changes made after start are delivered.
        self._last_seen = await read_text(self.marker_path)
        self._watch_task = asyncio.create_task(self._watch_loop())
        logger.debug(f"Watching signal marker {self.marker_path}")

    async def stop(self) -> None:
        if self._watch_task:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None
        self._listener = None

    async def send(self, signal: SyncSignal) -> None:
        await write_json_atomic(self.marker_path, signal.to_dict())

    async def poll_once(self) -> bool:
        """Check the marker once; returns True if a new signal was delivered."""
        try:
            text = await read_text(self.marker_path)
        except FallbackStoreError as e:
            logger.warning(f"Cannot read signal marker: {e}")
            return False
        if text is None or text == self._last_seen:
            return False
        self._last_seen = text

        try:
            signal = SyncSignal.from_dict(json.loads(text))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed signal marker: {e}")
            return False

        if self._listener is not None:
            await self._listener(signal)
        return True

    async def _watch_loop(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.poll_interval)
