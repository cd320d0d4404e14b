"""
aiohttp integration for the response cache.

The middleware wraps routes registered under a resource type's prefix:

- GET without an Authorization header: served from the cache when fresh
  (``X-Cache: HIT``); otherwise the handler runs and a 200 JSON body that is
  not ``{"success": false}`` is stored (``X-Cache: MISS``).
- POST/PUT/PATCH/DELETE: after a 2xx response the whole prefix is purged.

Example:
    >>> app = web.Application()
    >>> cache = ResponseCache(default_ttl=settings.cache_default_ttl)
    >>> setup_response_cache(app, cache, settings)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from aiohttp import web

from ..config import SyncSettings
from ..exceptions import ContentSyncError
from ..records import ResourceType
from .response_cache import ResponseCache, make_key, path_has_prefix

if TYPE_CHECKING:
    from ..access import DataAccessLayer

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

RESPONSE_CACHE_KEY = web.AppKey("response_cache", ResponseCache)


def routes_from_settings(settings: SyncSettings) -> dict[str, float]:
    """Route prefix -> TTL for every resource type."""
    return {settings.route_prefix(rtype): settings.ttl_for(rtype) for rtype in ResourceType}


def _cacheable_body(response: web.StreamResponse) -> Any | None:
    if not isinstance(response, web.Response) or response.status != 200:
        return None
    if response.content_type != "application/json" or response.text is None:
        return None
    try:
        body = json.loads(response.text)
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("success") is False:
        return None
    return body


def response_cache_middleware(
    cache: ResponseCache,
    routes: Mapping[str, float],
):
    """Build the read-path/write-path middleware.

    Args:
        cache: Shared cache instance
        routes: Route prefix -> TTL in seconds; other paths pass through
    """
    # Longest prefix first so nested prefixes win.
    prefixes = sorted(routes, key=len, reverse=True)

    def match(path: str) -> str | None:
        for prefix in prefixes:
            if path_has_prefix(path, prefix):
                return prefix
        return None

    @web.middleware
    async def middleware(request: web.Request, handler) -> web.StreamResponse:
        prefix = match(request.path)
        if prefix is None or not cache.enabled:
            return await handler(request)

        if request.method == "GET":
            if request.headers.get("Authorization"):
                return await handler(request)

            key = make_key("GET", request.path, request.query_string)
            cached = cache.get(key)
            if cached is not None:
                return web.json_response(cached, headers={"X-Cache": "HIT"})

            token = cache.fill_token()
            response = await handler(request)
            body = _cacheable_body(response)
            if body is not None and cache.set(key, body, routes[prefix], fill_token=token):
                response.headers["X-Cache"] = "MISS"
            return response

        if request.method in MUTATING_METHODS:
            try:
                response = await handler(request)
            except web.HTTPException as exc:
                if 200 <= exc.status < 300:
                    cache.purge_prefix(prefix)
                raise
            if 200 <= response.status < 300:
                cache.purge_prefix(prefix)
            return response

        return await handler(request)

    return middleware


async def cache_stats_handler(request: web.Request) -> web.Response:
    cache = request.app[RESPONSE_CACHE_KEY]
    return web.json_response({"success": True, "data": cache.stats()})


async def cache_purge_handler(request: web.Request) -> web.Response:
    """Purge by prefix (JSON body ``{"prefix": ...}``), or everything."""
    cache = request.app[RESPONSE_CACHE_KEY]
    prefix = None
    if request.can_read_body:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response(
                {"success": False, "message": "Request body must be JSON"}, status=400
            )
        if not isinstance(body, dict):
            return web.json_response(
                {"success": False, "message": "Request body must be an object"}, status=400
            )
        prefix = body.get("prefix")
        if prefix is not None and (not isinstance(prefix, str) or not prefix.startswith("/")):
            return web.json_response(
                {"success": False, "message": "prefix must be a path starting with '/'"},
                status=400,
            )

    purged = cache.purge_prefix(prefix) if prefix else cache.clear()
    return web.json_response({"success": True, "data": {"purged": purged, "prefix": prefix}})


def setup_response_cache(
    app: web.Application,
    cache: ResponseCache,
    settings: SyncSettings,
    admin_prefix: str = "/cache",
) -> None:
    """Install the middleware and the admin routes on ``app``."""
    cache.enabled = settings.cache_enabled
    app[RESPONSE_CACHE_KEY] = cache
    app.middlewares.append(response_cache_middleware(cache, routes_from_settings(settings)))
    app.router.add_get(f"{admin_prefix}/stats", cache_stats_handler)
    app.router.add_post(f"{admin_prefix}/purge", cache_purge_handler)
    logger.info(
        f"Response cache {'enabled' if cache.enabled else 'disabled'} "
        f"for {', '.join(sorted(routes_from_settings(settings)))}"
    )


async def warm_published_listings(
    cache: ResponseCache,
    access: DataAccessLayer,
    settings: SyncSettings,
) -> int:
    """Pre-load ``?published=true`` listings for every resource type.

    A type whose read fails is skipped; its first request fills it later.

    Returns:
        Number of listings loaded
    """
    warmed = 0
    for rtype in ResourceType:
        try:
            records = await access.read_published(rtype)
        except ContentSyncError as e:
            logger.warning(f"Cache warm-up skipped {rtype.route}: {e}")
            continue
        key = make_key("GET", settings.route_prefix(rtype), "published=true")
        body = {"success": True, "data": [record.to_dict() for record in records]}
        if cache.warm(key, body, settings.ttl_for(rtype)):
            warmed += 1
    logger.info(f"Cache warmed with {warmed} published listings")
    return warmed
