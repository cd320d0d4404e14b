"""
Settings for the content sync layer.

Configuration can be provided directly, via environment variables, or from a
YAML file.

Environment Variables:
    CONTENT_SYNC_API_BASE_URL: Remote store base URL (default: http://localhost:3000/api)
    CONTENT_SYNC_REMOTE_ENABLED: Call the remote store at all (default: true)
    CONTENT_SYNC_FALLBACK_ENABLED: Use the local fallback store on transport failures (default: true)
    CONTENT_SYNC_PROPAGATE_CHANGES: Publish sync signals after writes (default: true)
    CONTENT_SYNC_REQUEST_TIMEOUT_MS: Bound on each remote call (default: 10000)
    CONTENT_SYNC_LOCAL_PATH: Directory of the fallback store (default: ~/.content_sync/store)
    CONTENT_SYNC_MARKER_PATH: Shared marker file for cross-context signals
    CONTENT_SYNC_ENABLE_RESPONSE_CACHING: Server-side response cache (default: true)
    CONTENT_SYNC_CACHE_TTL: Default TTL in seconds (default: 3600)
    CONTENT_SYNC_CACHE_TTL_ARTICLE / _EVENT / _RECORDING: Per-type TTL overrides
    CONTENT_SYNC_API_PREFIX: Path prefix of the cached API routes (default: /api)

YAML file:

```yaml
content_sync:
  api_base_url: "https://example.org/api"
  fallback_enabled: true
  request_timeout_ms: 5000
  cache_ttls:
    article: 1800
    event: 3600
```
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError
from .records import ResourceType

ENV_PREFIX = "CONTENT_SYNC_"

DEFAULT_CACHE_TTLS: dict[ResourceType, int] = {
    ResourceType.ARTICLE: 1800,
    ResourceType.EVENT: 3600,
    ResourceType.RECORDING: 7200,
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

_BOOL_SETTINGS = (
    "remote_enabled",
    "fallback_enabled",
    "propagate_changes",
    "mirror_remote_results",
    "cache_enabled",
)


def _parse_bool(setting: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(setting, f"expected a boolean, got {value!r}")


def _parse_positive_int(setting: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(setting, f"expected an integer, got {value!r}") from None
    if number <= 0:
        raise ConfigurationError(setting, f"must be > 0, got {number}")
    return number


@dataclass
class SyncSettings:
    """Settings for the access layer, signal bus and response cache.

    Attributes:
        api_base_url: Base URL of the remote store API
        remote_enabled: Whether to call the remote store
        fallback_enabled: Whether transport failures fall back to the local store
        propagate_changes: Whether successful writes publish sync signals
        request_timeout_ms: Timeout applied to every remote call
        mirror_remote_results: Copy successful remote writes into the local store
        local_path: Directory holding the fallback store files
        marker_path: Shared marker file used for cross-context signals
        cache_enabled: Whether the response cache middleware caches anything
        cache_default_ttl: TTL (seconds) for resource types without an override
        cache_ttls: Per resource type TTL (seconds)
        api_prefix: Path prefix the cached API routes live under
    """

    api_base_url: str = "http://localhost:3000/api"
    remote_enabled: bool = True
    fallback_enabled: bool = True
    propagate_changes: bool = True
    request_timeout_ms: int = 10_000
    mirror_remote_results: bool = True

    local_path: str | None = None
    marker_path: str | None = None

    cache_enabled: bool = True
    cache_default_ttl: int = 3600
    cache_ttls: dict[ResourceType, int] = field(default_factory=lambda: dict(DEFAULT_CACHE_TTLS))
    api_prefix: str = "/api"

    def __post_init__(self) -> None:
        self.api_base_url = self.api_base_url.rstrip("/")
        for name in _BOOL_SETTINGS:
            setattr(self, name, _parse_bool(name, getattr(self, name)))
        self.request_timeout_ms = _parse_positive_int("request_timeout_ms", self.request_timeout_ms)
        self.cache_default_ttl = _parse_positive_int("cache_default_ttl", self.cache_default_ttl)
        self.cache_ttls = {
            ResourceType.parse(key): _parse_positive_int(f"cache_ttls.{key}", ttl)
            for key, ttl in self.cache_ttls.items()
        }
        if not self.api_prefix.startswith("/"):
            raise ConfigurationError("api_prefix", "must start with '/'")
        self.api_prefix = self.api_prefix.rstrip("/") or "/"
        if not self.remote_enabled and not self.fallback_enabled:
            raise ConfigurationError(
                "remote_enabled", "remote and fallback stores cannot both be disabled"
            )

    @property
    def request_timeout(self) -> float:
        """Timeout in seconds."""
        return self.request_timeout_ms / 1000.0

    @property
    def store_path(self) -> Path:
        if self.local_path:
            return Path(self.local_path).expanduser()
        return Path.home() / ".content_sync" / "store"

    @property
    def signal_marker_path(self) -> Path:
        if self.marker_path:
            return Path(self.marker_path).expanduser()
        return self.store_path / "lastSync.signal"

    def ttl_for(self, resource_type: ResourceType | str) -> int:
        return self.cache_ttls.get(ResourceType.parse(resource_type), self.cache_default_ttl)

    def route_prefix(self, resource_type: ResourceType | str) -> str:
        """Path prefix of a resource type's API routes, e.g. ``/api/articles``."""
        route = ResourceType.parse(resource_type).route
        base = "" if self.api_prefix == "/" else self.api_prefix
        return f"{base}/{route}"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SyncSettings:
        """Build settings from a plain mapping, coercing string values."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(", ".join(sorted(unknown)), "unknown setting")

        kwargs: dict[str, Any] = {}
        for name, value in data.items():
            if value is None:
                continue
            if name in _BOOL_SETTINGS:
                kwargs[name] = _parse_bool(name, value)
            elif name == "cache_ttls":
                if not isinstance(value, Mapping):
                    raise ConfigurationError(name, "expected a mapping of resource type to seconds")
                ttls = dict(DEFAULT_CACHE_TTLS)
                for key, ttl in value.items():
                    try:
                        rtype = ResourceType.parse(key)
                    except ValueError as e:
                        raise ConfigurationError(f"cache_ttls.{key}", str(e)) from None
                    ttls[rtype] = _parse_positive_int(f"cache_ttls.{key}", ttl)
                kwargs[name] = ttls
            else:
                kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> SyncSettings:
        """Create settings from ``CONTENT_SYNC_*`` environment variables."""
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {}
        for name in (
            "api_base_url",
            "remote_enabled",
            "fallback_enabled",
            "propagate_changes",
            "request_timeout_ms",
            "mirror_remote_results",
            "local_path",
            "marker_path",
            "cache_default_ttl",
            "api_prefix",
        ):
            value = env.get(ENV_PREFIX + name.upper())
            if value is not None:
                data[name] = value

        caching = env.get(ENV_PREFIX + "ENABLE_RESPONSE_CACHING")
        if caching is not None:
            data["cache_enabled"] = caching
        default_ttl = env.get(ENV_PREFIX + "CACHE_TTL")
        if default_ttl is not None:
            data["cache_default_ttl"] = default_ttl

        ttls = {}
        for rtype in ResourceType:
            value = env.get(f"{ENV_PREFIX}CACHE_TTL_{rtype.name}")
            if value is not None:
                ttls[rtype.value] = value
        if ttls:
            data["cache_ttls"] = ttls

        return cls.from_mapping(data)

    @classmethod
    def from_yaml(cls, path: Path | str) -> SyncSettings:
        """Load settings from the ``content_sync`` section of a YAML file."""
        config_path = Path(path).expanduser()
        try:
            with open(config_path) as f:
                document = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(str(config_path), "file not found") from None
        except yaml.YAMLError as e:
            raise ConfigurationError(str(config_path), f"invalid YAML: {e}") from None

        if not isinstance(document, Mapping):
            raise ConfigurationError(str(config_path), "expected a mapping at the top level")
        section = document.get("content_sync", {})
        if not isinstance(section, Mapping):
            raise ConfigurationError("content_sync", "expected a mapping")
        return cls.from_mapping(section)
