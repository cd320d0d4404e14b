"""
HTTP remote store client.

Talks to the site's JSON API, which wraps every response in an envelope:

    {"success": true, "data": ...}
    {"success": false, "message": "Validation error", "errors": [...]}

The response content type is checked before the body is parsed. A reverse
proxy or misconfigured deployment can answer with an HTML page (often with a
200 status); such a body is a TransportError and is never read as data.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from ..exceptions import ApplicationError, RecordValidationError, TransportError
from ..records import ContentRecord, ResourceType
from .base import RemoteStore

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPES = ("application/json",)


def is_json_content_type(content_type: str | None) -> bool:
    """True for application/json and structured-suffix types like application/problem+json."""
    if not content_type:
        return False
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime in JSON_CONTENT_TYPES or (mime.startswith("application/") and mime.endswith("+json"))


def _filters_to_params(filters: Mapping[str, Any] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for key, value in (filters or {}).items():
        if key == "status" and str(getattr(value, "value", value)) == "published":
            params["published"] = "true"
        elif key == "published":
            params["published"] = "true" if value else "false"
        elif isinstance(value, bool):
            params[key] = "true" if value else "false"
        else:
            params[key] = str(getattr(value, "value", value))
    return params


class HttpRemoteStore(RemoteStore):
    """aiohttp client for the remote content API.

    Example:
        >>> async with HttpRemoteStore("https://example.org/api", timeout=5.0) as remote:
        ...     articles = await remote.list_records(ResourceType.ARTICLE)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API root, e.g. ``https://example.org/api``
            timeout: Seconds before an in-flight call is abandoned
            session: Optional shared session (not closed by this client)
            headers: Extra headers sent with every request (e.g. Authorization)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Accept": "application/json", **self.headers},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        path: str,
        json_body: Mapping[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        """Send a request and return the envelope's ``data``.

        Raises:
            TransportError: Timeout, connection failure, non-JSON body
            ApplicationError: Well-formed error envelope
        """
        url = f"{self.base_url}{path}"
        try:
            return await asyncio.wait_for(
                self._send(method, url, json_body, params),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            logger.warning(f"Remote {method} {url} timed out after {self.timeout}s")
            raise TransportError("timeout", url=url, cause=e) from e
        except aiohttp.ClientError as e:
            logger.warning(f"Remote {method} {url} failed: {e}")
            raise TransportError("connection failed", url=url, cause=e) from e

    async def _send(
        self,
        method: str,
        url: str,
        json_body: Mapping[str, Any] | None,
        params: Mapping[str, str] | None,
    ) -> Any:
        session = await self._get_session()
        async with session.request(
            method,
            url,
            json=dict(json_body) if json_body is not None else None,
            params=params,
            headers={"Accept": "application/json", **self.headers},
        ) as response:
            content_type = response.headers.get("Content-Type")
            if not is_json_content_type(content_type):
                logger.warning(
                    f"Remote {method} {url} answered {response.status} "
                    f"with unexpected content type {content_type!r}"
                )
                raise TransportError(
                    "unexpected content type",
                    url=url,
                    status=response.status,
                    content_type=content_type,
                )

            try:
                body = json.loads(await response.text())
            except (UnicodeDecodeError, ValueError) as e:
                raise TransportError(
                    "malformed JSON body", url=url, cause=e, status=response.status
                ) from e

            if not isinstance(body, dict):
                raise TransportError(
                    "response body is not an envelope object", url=url, status=response.status
                )

            if response.status >= 400 or body.get("success") is False:
                raise ApplicationError(
                    status=response.status,
                    message=body.get("message") or body.get("error"),
                    errors=body.get("errors"),
                    url=url,
                )

            return body.get("data")

    def _path(self, resource_type: ResourceType, record_id: str | None = None) -> str:
        path = f"/{resource_type.route}"
        if record_id is not None:
            path += f"/{record_id}"
        return path

    def _parse_record(self, resource_type: ResourceType, data: Any, url: str) -> ContentRecord:
        if not isinstance(data, dict):
            raise TransportError("record payload is not an object", url=url)
        try:
            return ContentRecord.from_dict(resource_type, data)
        except RecordValidationError as e:
            raise TransportError("malformed record", url=url, cause=e) from e

    async def list_records(
        self,
        resource_type: ResourceType,
        filters: Mapping[str, Any] | None = None,
    ) -> list[ContentRecord]:
        path = self._path(resource_type)
        data = await self.request("GET", path, params=_filters_to_params(filters))
        if data is None:
            return []
        if not isinstance(data, list):
            raise TransportError("list payload is not an array", url=self.base_url + path)
        return [self._parse_record(resource_type, item, self.base_url + path) for item in data]

    async def get_record(self, resource_type: ResourceType, record_id: str) -> ContentRecord:
        path = self._path(resource_type, record_id)
        data = await self.request("GET", path)
        if data is None:
            raise ApplicationError(404, f"{resource_type.value} not found", url=self.base_url + path)
        return self._parse_record(resource_type, data, self.base_url + path)

    async def create_record(
        self,
        resource_type: ResourceType,
        data: Mapping[str, Any],
    ) -> ContentRecord:
        path = self._path(resource_type)
        result = await self.request("POST", path, json_body=data)
        return self._parse_record(resource_type, result, self.base_url + path)

    async def update_record(
        self,
        resource_type: ResourceType,
        record_id: str,
        changes: Mapping[str, Any],
    ) -> ContentRecord:
        path = self._path(resource_type, record_id)
        result = await self.request("PUT", path, json_body=changes)
        return self._parse_record(resource_type, result, self.base_url + path)

    async def delete_record(self, resource_type: ResourceType, record_id: str) -> ContentRecord | None:
        path = self._path(resource_type, record_id)
        result = await self.request("DELETE", path)
        if isinstance(result, dict) and ("id" in result or "_id" in result):
            return self._parse_record(resource_type, result, self.base_url + path)
        return None
