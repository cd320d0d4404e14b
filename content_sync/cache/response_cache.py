"""
TTL response cache for read endpoints.

Entries are keyed by (method, path, query) and expire after their TTL.
Writes invalidate coarsely: a mutation on a resource type purges every entry
under that type's route prefix, with no per-record bookkeeping.

Entry lifecycle: absent -> populated (miss + store) -> expired or purged
-> absent.

Concurrent misses on one key may both run the handler (no stampede
protection); handlers are idempotent reads, so this only costs efficiency.
A fill that started before a purge is dropped instead of stored, so a read
racing a write never re-populates the cache with pre-write data.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urlencode

from ..logging_utils import log_sync_event

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, str]


def normalize_query(query: str) -> str:
    """Order-independent form of a query string."""
    if not query:
        return ""
    return urlencode(sorted(parse_qsl(query.lstrip("?"), keep_blank_values=True)))


def make_key(method: str, path: str, query: str = "") -> CacheKey:
    return (method.upper(), path.rstrip("/") or "/", normalize_query(query))


def path_has_prefix(path: str, prefix: str) -> bool:
    """Segment-aware prefix test: ``/api/events`` covers ``/api/events/7`` but not ``/api/eventsx``."""
    base = prefix.rstrip("/")
    if not base:
        return True
    return path == base or path.startswith(base + "/")


@dataclass
class CacheEntry:
    key: CacheKey
    value: Any
    expires_at: float

    @property
    def path(self) -> str:
        return self.key[1]


class ResponseCache:
    """In-memory TTL cache with hit/miss accounting.

    Example:
        >>> cache = ResponseCache(default_ttl=3600)
        >>> key = make_key("GET", "/api/articles", "published=true")
        >>> cache.set(key, {"success": True, "data": []}, ttl=1800)
        >>> cache.get(key)
        {'success': True, 'data': []}
    """

    def __init__(
        self,
        default_ttl: float = 3600,
        clock: Callable[[], float] = time.monotonic,
        enabled: bool = True,
    ) -> None:
        """Initialize the cache.

        Args:
            default_ttl: Seconds an entry lives when set() gets no ttl
            clock: Time source in seconds (monotonic by default)
            enabled: When False, get() always misses and set() stores nothing
        """
        if default_ttl <= 0:
            raise ValueError(f"default_ttl must be > 0, got {default_ttl}")

        self.default_ttl = default_ttl
        self.clock = clock
        self.enabled = enabled
        self._entries: dict[CacheKey, CacheEntry] = {}
        self.hits = 0
        self.misses = 0
        # Monotonic purge sequence and the last purge seq per prefix.
        self._purge_seq = 0
        self._last_purge: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self.clock() < entry.expires_at

    def get(self, key: CacheKey) -> Any | None:
        """Return the cached value, or None on a miss or an expired entry."""
        if not self.enabled:
            return None

        entry = self._entries.get(key)
        if entry is not None and self.clock() >= entry.expires_at:
            del self._entries[key]
            entry = None

        if entry is None:
            self.misses += 1
            return None

        self.hits += 1
        logger.debug(f"Cache HIT: {key[0]} {key[1]}?{key[2]}")
        return entry.value

    def fill_token(self) -> int:
        """Token to pass to set() for a value computed after this call."""
        return self._purge_seq

    def set(
        self,
        key: CacheKey,
        value: Any,
        ttl: float | None = None,
        fill_token: int | None = None,
    ) -> bool:
        """Store a value.

        With ``fill_token``, the value is dropped if a purge covering the key
        happened after the token was taken.

        Returns:
            True if the value was stored
        """
        if not self.enabled:
            return False
        if fill_token is not None and self._purged_since(key[1], fill_token):
            logger.debug(f"Cache fill dropped, {key[1]} was purged meanwhile")
            return False

        lifetime = self.default_ttl if ttl is None else ttl
        if lifetime <= 0:
            return False
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self.clock() + lifetime)
        logger.debug(f"Cache SET: {key[0]} {key[1]}?{key[2]} (TTL: {lifetime}s)")
        return True

    def warm(self, key: CacheKey | str, value: Any, ttl: float | None = None) -> bool:
        """Pre-load a response, e.g. published listings at start-up.

        A bare path is taken as a GET with no query.
        """
        if isinstance(key, str):
            key = make_key("GET", key)
        return self.set(key, value, ttl)

    def _purged_since(self, path: str, token: int) -> bool:
        return any(
            seq > token and path_has_prefix(path, prefix)
            for prefix, seq in self._last_purge.items()
        )

    def _record_purge(self, prefix: str) -> None:
        self._purge_seq += 1
        self._last_purge[prefix.rstrip("/")] = self._purge_seq

    def purge_prefix(self, prefix: str) -> int:
        """Remove every entry whose path falls under ``prefix``.

        Returns:
            Number of entries removed
        """
        self._record_purge(prefix)
        doomed = [key for key in self._entries if path_has_prefix(key[1], prefix)]
        for key in doomed:
            del self._entries[key]
        log_sync_event(
            logger,
            "cache_purge",
            message=f"Cleared {len(doomed)} cache entries matching: {prefix}",
            prefix=prefix,
            purged=len(doomed),
        )
        return len(doomed)

    def clear(self) -> int:
        """Remove all entries; returns how many there were."""
        self._record_purge("")
        count = len(self._entries)
        self._entries.clear()
        log_sync_event(
            logger, "cache_purge", message=f"Cleared all {count} cache entries", prefix=None, purged=count
        )
        return count

    def prune_expired(self) -> int:
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def reset(self) -> None:
        """Drop entries, counters and purge history."""
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        self._purge_seq = 0
        self._last_purge.clear()

    def stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "keys": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "enabled": self.enabled,
        }
