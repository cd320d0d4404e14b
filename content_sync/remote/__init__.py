"""
Remote store clients.

The remote store is the authoritative backend. Every failure surfaces as
either a TransportError or an ApplicationError.
"""

from .base import RemoteStore
from .http import HttpRemoteStore, is_json_content_type

__all__ = [
    "RemoteStore",
    "HttpRemoteStore",
    "is_json_content_type",
]
