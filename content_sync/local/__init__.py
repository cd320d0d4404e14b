"""
Local fallback storage.

Per-device store used when the remote store is unreachable.
"""

from .store import FileFallbackStore, LocalFallbackStore, MemoryFallbackStore

__all__ = [
    "LocalFallbackStore",
    "FileFallbackStore",
    "MemoryFallbackStore",
]
