"""
Content Sync

Synchronization and consistency layer for published content records
(articles, events, recordings).

Provides:
- A data access layer over an authoritative HTTP store with a local fallback
- Change propagation between listeners and across open contexts
- A TTL response cache with write-path invalidation for aiohttp servers
- A reconciliation queue for changes made while the remote was unreachable

Usage:

    >>> from content_sync import DataAccessLayer, HttpRemoteStore, SyncSettings
    >>> settings = SyncSettings.from_environment()
    >>> remote = HttpRemoteStore(settings.api_base_url, timeout=settings.request_timeout)
    >>> fallback = FileFallbackStore(settings.store_path)
    >>> bus = ChangePropagationBus(MarkerFileTransport(settings.signal_marker_path))
    >>> async with bus:
    ...     access = DataAccessLayer(remote, fallback, bus=bus, settings=settings)
    ...     bus.subscribe("event", on_event_change)
    ...     record = await access.create("event", {
    ...         "title": "Open day",
    ...         "date": "2025-05-01T10:00:00Z",
    ...         "location": "Main hall",
    ...         "description": "Tours every hour",
    ...     })

Server-side caching:

    from aiohttp import web
    from content_sync.cache import ResponseCache, setup_response_cache

    app = web.Application()
    setup_response_cache(app, ResponseCache(settings.cache_default_ttl), settings)
"""

# Data access
from .access import (
    LAST_SYNC_KEY,
    DataAccessLayer,
    Divergence,
    DivergenceKind,
    PendingChange,
    ReconciliationQueue,
)

# Response cache
from .cache import ResponseCache, setup_response_cache

# Configuration
from .config import SyncSettings

# Exceptions
from .exceptions import (
    ApplicationError,
    ConfigurationError,
    ConfirmedRecordError,
    ConsistencyWarning,
    ContentSyncError,
    FallbackStoreError,
    RecordNotFoundError,
    RecordValidationError,
    RemoteStoreError,
    TransportError,
)

# Stores
from .local import FileFallbackStore, LocalFallbackStore, MemoryFallbackStore

# Records
from .records import (
    ArticlePayload,
    ContentRecord,
    ContentStatus,
    EventPayload,
    RecordingPayload,
    ResourceType,
)
from .remote import HttpRemoteStore, RemoteStore

# Change propagation
from .sync import (
    ALL_RESOURCES,
    ChangePropagationBus,
    InMemoryChannel,
    InMemoryTransport,
    MarkerFileTransport,
    SyncAction,
    SyncSignal,
)

__all__ = [
    # Records
    "ResourceType",
    "ContentStatus",
    "ContentRecord",
    "ArticlePayload",
    "EventPayload",
    "RecordingPayload",
    # Stores
    "RemoteStore",
    "HttpRemoteStore",
    "LocalFallbackStore",
    "FileFallbackStore",
    "MemoryFallbackStore",
    # Data access
    "DataAccessLayer",
    "LAST_SYNC_KEY",
    "ReconciliationQueue",
    "PendingChange",
    "Divergence",
    "DivergenceKind",
    # Change propagation
    "ALL_RESOURCES",
    "ChangePropagationBus",
    "SyncAction",
    "SyncSignal",
    "InMemoryChannel",
    "InMemoryTransport",
    "MarkerFileTransport",
    # Cache
    "ResponseCache",
    "setup_response_cache",
    # Configuration
    "SyncSettings",
    # Exceptions
    "ContentSyncError",
    "ConfigurationError",
    "RecordValidationError",
    "ConfirmedRecordError",
    "RecordNotFoundError",
    "RemoteStoreError",
    "TransportError",
    "ApplicationError",
    "FallbackStoreError",
    "ConsistencyWarning",
]

__version__ = "0.1.0"
