"""Tests for the aiohttp remote store client against a local test server."""

import asyncio

import pytest
from aiohttp import web

from content_sync.access import DataAccessLayer
from content_sync.exceptions import ApplicationError, TransportError
from content_sync.local import MemoryFallbackStore
from content_sync.records import ResourceType
from content_sync.remote import HttpRemoteStore, is_json_content_type

ARTICLE_ROW = {
    "id": "7",
    "title": "Welcome",
    "content": "Hello",
    "status": "published",
    "createdAt": "2026-01-01T00:00:00+00:00",
    "updatedAt": "2026-01-01T00:00:00+00:00",
}


def build_app(seen: dict) -> web.Application:
    async def list_articles(request):
        seen["query"] = dict(request.query)
        return web.json_response({"success": True, "data": [ARTICLE_ROW]})

    async def create_article(request):
        body = await request.json()
        seen["created"] = body
        if not body.get("title"):
            return web.json_response(
                {
                    "success": False,
                    "message": "Validation error",
                    "errors": [{"msg": "Title is required"}],
                },
                status=400,
            )
        return web.json_response({"success": True, "data": {**body, "id": "8"}}, status=201)

    async def get_article(request):
        if request.match_info["id"] != "7":
            return web.json_response({"success": False, "message": "Article not found"}, status=404)
        return web.json_response({"success": True, "data": ARTICLE_ROW})

    async def update_article(request):
        return web.json_response({"success": False, "message": "Article is locked"})

    async def delete_article(request):
        return web.json_response({"success": True, "message": "Article deleted"})

    async def maintenance_page(request):
        return web.Response(text="<html><body>Back soon</body></html>", content_type="text/html")

    async def bad_gateway_page(request):
        return web.Response(
            status=502, text="<html><body>Bad gateway</body></html>", content_type="text/html"
        )

    async def bare_list(request):
        return web.json_response([1, 2, 3])

    async def slow_event(request):
        await asyncio.sleep(1.0)
        return web.json_response({"success": True, "data": None})

    async def undecodable(request):
        return web.Response(
            body=b'{"success": true, "data": ["\xff\xfe"]}', content_type="application/json"
        )

    async def problem(request):
        return web.Response(
            status=500, text='{"detail": "boom"}', content_type="application/problem+json"
        )

    app = web.Application()
    app.router.add_get("/api/articles", list_articles)
    app.router.add_post("/api/articles", create_article)
    app.router.add_get("/api/articles/{id}", get_article)
    app.router.add_put("/api/articles/{id}", update_article)
    app.router.add_delete("/api/articles/{id}", delete_article)
    app.router.add_get("/api/recordings", maintenance_page)
    app.router.add_post("/api/recordings", bad_gateway_page)
    app.router.add_get("/api/recordings/{id}", problem)
    app.router.add_get("/api/events", bare_list)
    app.router.add_get("/api/events/{id}", slow_event)
    app.router.add_post("/api/events", undecodable)
    return app


@pytest.fixture
def seen():
    return {}


@pytest.fixture
async def api(aiohttp_server, seen):
    server = await aiohttp_server(build_app(seen))
    async with HttpRemoteStore(str(server.make_url("/api")), timeout=0.3) as remote:
        yield remote


class TestContentTypeClassification:
    """Tests for is_json_content_type."""

    def test_json_types(self):
        """JSON and +json types are JSON."""
        assert is_json_content_type("application/json")
        assert is_json_content_type("application/json; charset=utf-8")
        assert is_json_content_type("application/problem+json")

    def test_other_types(self):
        """HTML, text and missing types are not."""
        assert not is_json_content_type("text/html; charset=utf-8")
        assert not is_json_content_type("text/plain")
        assert not is_json_content_type(None)


class TestSuccessfulCalls:
    """Tests for well-formed success envelopes."""

    async def test_list_records(self, api):
        """Listing parses the envelope's data array."""
        records = await api.list_records(ResourceType.ARTICLE)

        assert len(records) == 1
        assert records[0].id == "7"
        assert records[0].title == "Welcome"
        assert records[0].is_published

    async def test_published_filter_becomes_query(self, api, seen):
        """A published status filter is sent as ?published=true."""
        await api.list_records(ResourceType.ARTICLE, {"status": "published"})
        assert seen["query"] == {"published": "true"}

    async def test_get_record(self, api):
        """A single record is parsed from data."""
        record = await api.get_record(ResourceType.ARTICLE, "7")
        assert record.payload.content == "Hello"

    async def test_create_record(self, api, seen):
        """Creates POST the wire dict and return the stored record."""
        record = await api.create_record(
            ResourceType.ARTICLE, {"title": "New", "content": "Body", "status": "draft"}
        )

        assert record.id == "8"
        assert seen["created"]["title"] == "New"

    async def test_delete_without_echo(self, api):
        """A delete that returns no record yields None."""
        assert await api.delete_record(ResourceType.ARTICLE, "7") is None


class TestApplicationErrors:
    """Tests for well-formed rejections."""

    async def test_validation_error_envelope(self, api):
        """A 400 envelope becomes an ApplicationError with its reasons."""
        with pytest.raises(ApplicationError) as exc_info:
            await api.create_record(ResourceType.ARTICLE, {"title": "", "content": "Body"})

        assert exc_info.value.status == 400
        assert exc_info.value.user_message == "Validation error: Title is required"

    async def test_not_found(self, api):
        """A 404 envelope is an ApplicationError."""
        with pytest.raises(ApplicationError) as exc_info:
            await api.get_record(ResourceType.ARTICLE, "99")

        assert exc_info.value.is_not_found
        assert exc_info.value.remote_message == "Article not found"

    async def test_success_false_with_200(self, api):
        """success: false is a rejection even with status 200."""
        with pytest.raises(ApplicationError) as exc_info:
            await api.update_record(ResourceType.ARTICLE, "7", {"title": "Edited"})
        assert exc_info.value.remote_message == "Article is locked"

    async def test_problem_json_without_envelope(self, api):
        """An error status with a JSON object lacking success is an ApplicationError."""
        with pytest.raises(ApplicationError) as exc_info:
            await api.get_record(ResourceType.RECORDING, "1")

        assert exc_info.value.status == 500
        assert exc_info.value.remote_message == "HTTP 500"


class TestTransportErrors:
    """Tests for responses that are not well-formed JSON envelopes."""

    async def test_html_page_with_200(self, api):
        """An HTML body is a TransportError even with status 200."""
        with pytest.raises(TransportError) as exc_info:
            await api.list_records(ResourceType.RECORDING)

        assert exc_info.value.reason == "unexpected content type"
        assert exc_info.value.status == 200
        assert exc_info.value.content_type.startswith("text/html")

    async def test_html_error_page(self, api):
        """An HTML error page is a TransportError, not an ApplicationError."""
        with pytest.raises(TransportError):
            await api.create_record(ResourceType.RECORDING, {"title": "T"})

    async def test_body_not_an_object(self, api):
        """A JSON array body is not an envelope."""
        with pytest.raises(TransportError):
            await api.list_records(ResourceType.EVENT)

    async def test_body_not_utf8(self, api):
        """A JSON body that does not decode is a malformed body."""
        with pytest.raises(TransportError) as exc_info:
            await api.create_record(ResourceType.EVENT, {"title": "T"})

        assert exc_info.value.reason == "malformed JSON body"

    async def test_undecodable_body_falls_back(self, api):
        """The access layer treats an undecodable body as a transport failure."""
        access = DataAccessLayer(api, MemoryFallbackStore())

        record = await access.create(
            "event",
            {"title": "Fair", "date": "2026-04-18", "location": "Hall", "description": "x"},
        )

        assert record.is_local

    async def test_timeout(self, api):
        """A call exceeding the timeout is a TransportError."""
        with pytest.raises(TransportError) as exc_info:
            await api.get_record(ResourceType.EVENT, "1")
        assert exc_info.value.reason == "timeout"

    async def test_connection_refused(self, aiohttp_unused_port):
        """Nothing listening is a TransportError."""
        port = aiohttp_unused_port()
        async with HttpRemoteStore(f"http://127.0.0.1:{port}/api", timeout=2.0) as remote:
            with pytest.raises(TransportError) as exc_info:
                await remote.list_records(ResourceType.ARTICLE)
        assert exc_info.value.reason == "connection failed"
