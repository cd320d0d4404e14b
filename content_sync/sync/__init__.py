"""
Change propagation.

Publishes "a record changed" signals to in-process listeners and to other
open contexts through a pluggable transport.
"""

from .bus import ChangePropagationBus, Subscription
from .signals import ALL_RESOURCES, SignalOrigin, SyncAction, SyncSignal
from .transports import (
    InMemoryChannel,
    InMemoryTransport,
    MarkerFileTransport,
    SignalTransport,
)

__all__ = [
    "ALL_RESOURCES",
    "ChangePropagationBus",
    "InMemoryChannel",
    "InMemoryTransport",
    "MarkerFileTransport",
    "SignalOrigin",
    "SignalTransport",
    "Subscription",
    "SyncAction",
    "SyncSignal",
]
