"""
Tests for the caching API client.
"""

import json

import aiohttp
import pytest
from unittest.mock import AsyncMock, MagicMock, call, patch

from bizdir.api_client import (
    ApiClient,
    ApiClientError,
    ApiResponse,
    RequestCacheOptions,
    RetryPolicy,
    build_cache_key
)
from bizdir.shared.config import APIClientSettings


def make_response(status=200, body=None, headers=None):
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    text = body if isinstance(body, str) or body is None else json.dumps(body)
    response.text = AsyncMock(return_value=text or "")
    return response


def make_context(response):
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


@pytest.fixture
def session():
    """Mock aiohttp session returning an empty JSON list."""
    session = MagicMock()
    session.request.return_value.__aenter__.return_value = make_response(body=[])
    session.close = AsyncMock()
    return session


@pytest.fixture
def api_settings():
    return APIClientSettings(base_url="https://api.example.com", retry_attempts=3, retry_delay_seconds=0)


@pytest.fixture
def client(session, registry, api_settings):
    """API client caching into the general cache."""
    return ApiClient(cache=registry.general, settings=api_settings, session=session)


class TestCacheKey:
    """Test request cache keys."""

    def test_key_format(self):
        assert build_cache_key("get", "/businesses") == "api-GET-/businesses-{}"

    def test_key_is_deterministic(self):
        first = build_cache_key("POST", "/search", {"b": 2, "a": 1}, {"z": 1, "y": [1, 2]})
        second = build_cache_key("POST", "/search", {"a": 1, "b": 2}, {"y": [1, 2], "z": 1})
        assert first == second
        assert first == 'api-POST-/search?a=1&b=2-{"y":[1,2],"z":1}'


class TestRequests:
    """Test request execution."""

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, client, session):
        session.request.return_value.__aenter__.return_value = make_response(body={"id": 1})

        response = await client.get("/businesses/1")

        assert response.data == {"id": 1}
        assert response.status == 200
        assert response.from_cache is False
        args, kwargs = session.request.call_args
        assert args == ("GET", "https://api.example.com/businesses/1")
        assert kwargs["headers"]["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self, client, session):
        await client.post("/reviews", body={"rating": 5})

        args, kwargs = session.request.call_args
        assert args[0] == "POST"
        assert json.loads(kwargs["data"]) == {"rating": 5}

    @pytest.mark.asyncio
    async def test_plain_text_body(self, client, session):
        session.request.return_value.__aenter__.return_value = make_response(body="OK")
        response = await client.delete("/reviews/1")
        assert response.data == "OK"

    @pytest.mark.asyncio
    async def test_params_forwarded(self, client, session):
        await client.get("/businesses", params={"limit": 5})
        _, kwargs = session.request.call_args
        assert kwargs["params"] == {"limit": 5}

    def test_response_header_lookup(self):
        response = ApiResponse(data=None, headers={"content-range": "0-0/12"})
        assert response.header("Content-Range") == "0-0/12"
        assert response.header("ETag") is None


class TestCaching:
    """Test read-through response caching."""

    @pytest.mark.asyncio
    async def test_second_request_served_from_cache(self, client, session):
        session.request.return_value.__aenter__.return_value = make_response(body=[{"id": 1}])

        first = await client.get("/businesses", cache=RequestCacheOptions())
        second = await client.get("/businesses", cache=RequestCacheOptions())

        assert first.from_cache is False
        assert second.from_cache is True
        assert second.data == [{"id": 1}]
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_default_ttl_and_tags(self, client, registry):
        await client.get("/businesses", cache=RequestCacheOptions())

        entry = registry.general._entries["api-GET-/businesses-{}"]
        assert entry.ttl == 5 * 60 * 1000
        assert entry.tags == {"api"}

    @pytest.mark.asyncio
    async def test_custom_ttl_and_tags(self, client, registry):
        await client.get("/businesses", cache=RequestCacheOptions(ttl=1000, tags=["businesses"]))

        entry = registry.general._entries["api-GET-/businesses-{}"]
        assert entry.ttl == 1000
        assert entry.tags == {"businesses"}

    @pytest.mark.asyncio
    async def test_empty_body_served_from_cache(self, client, session):
        session.request.return_value.__aenter__.return_value = make_response(status=204, body=None)

        first = await client.get("/reviews/1/flags", cache=RequestCacheOptions())
        second = await client.get("/reviews/1/flags", cache=RequestCacheOptions())

        assert first.data is None
        assert second.from_cache is True
        assert second.data is None
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_no_caching_without_options(self, client, session, registry):
        await client.get("/businesses")
        await client.get("/businesses")
        assert session.request.call_count == 2
        assert len(registry.general) == 0

    @pytest.mark.asyncio
    async def test_disabled_cache_option(self, client, session):
        await client.get("/businesses", cache=RequestCacheOptions(enabled=False))
        await client.get("/businesses", cache=RequestCacheOptions(enabled=False))
        assert session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_cache(self, client, registry):
        await client.get("/businesses", cache=RequestCacheOptions())
        await client.get("/reviews", cache=RequestCacheOptions(tags=["reviews"]))

        assert client.invalidate_cache(["api", "reviews"]) == 2
        assert len(registry.general) == 0


class TestRetries:
    """Test retry and failure behavior."""

    @pytest.mark.asyncio
    async def test_retry_then_success(self, client, session):
        session.request.side_effect = [
            make_context(make_response(status=500, body="error")),
            make_context(make_response(body={"ok": True})),
        ]

        response = await client.get("/businesses")

        assert response.data == {"ok": True}
        assert session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_linear_backoff_then_error(self, session, registry):
        client = ApiClient(base_url="https://api.example.com", cache=registry.general, session=session)
        session.request.return_value.__aenter__.return_value = make_response(status=503, body="unavailable")

        with patch("bizdir.api_client.client.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(ApiClientError) as exc_info:
                await client.get("/businesses", retry=RetryPolicy(attempts=3, delay=1.0))

        assert exc_info.value.status == 503
        assert session.request.call_count == 3
        assert sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_network_error(self, client, session):
        session.request.side_effect = aiohttp.ClientConnectionError("connection refused")

        with pytest.raises(ApiClientError) as exc_info:
            await client.get("/businesses")

        assert exc_info.value.status is None
        assert "connection refused" in exc_info.value.message
        assert session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_failed_request_not_cached(self, client, session, registry):
        session.request.return_value.__aenter__.return_value = make_response(status=404, body="missing")

        with pytest.raises(ApiClientError):
            await client.get("/businesses/99", cache=RequestCacheOptions())

        assert len(registry.general) == 0

    def test_retry_policy_validation(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0)


class TestInterceptors:
    """Test request, response and error interceptors."""

    @pytest.mark.asyncio
    async def test_request_interceptor(self, client, session):
        def add_auth(request):
            request.headers["Authorization"] = "Bearer token"
            return request

        client.add_request_interceptor(add_auth)
        await client.get("/profiles")

        _, kwargs = session.request.call_args
        assert kwargs["headers"]["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_async_response_interceptor(self, client, session):
        session.request.return_value.__aenter__.return_value = make_response(body=[1, 2, 3])

        async def count_rows(response):
            response.data = {"rows": response.data, "count": len(response.data)}
            return response

        client.add_response_interceptor(count_rows)
        response = await client.get("/businesses")

        assert response.data == {"rows": [1, 2, 3], "count": 3}

    @pytest.mark.asyncio
    async def test_error_interceptor(self, client, session):
        session.request.return_value.__aenter__.return_value = make_response(status=401, body="denied")

        def rewrite(error):
            return ApiClientError("Please sign in again", status=error.status)

        client.add_error_interceptor(rewrite)

        with pytest.raises(ApiClientError) as exc_info:
            await client.get("/profiles")

        assert exc_info.value.message == "Please sign in again"
        assert exc_info.value.status == 401

    @pytest.mark.asyncio
    async def test_non_exception_from_error_interceptor_ignored(self, client, session):
        session.request.return_value.__aenter__.return_value = make_response(status=500, body="boom")
        client.add_error_interceptor(lambda error: "handled")

        with pytest.raises(ApiClientError) as exc_info:
            await client.get("/profiles")

        assert exc_info.value.status == 500


class TestSessionLifecycle:
    """Test session ownership."""

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self, client, session):
        await client.close()
        session.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_owned_session(self, api_settings):
        with patch("bizdir.api_client.client.aiohttp.ClientSession") as session_cls:
            session_cls.return_value.close = AsyncMock()

            async with ApiClient(settings=api_settings) as client:
                assert client.session is session_cls.return_value

            session_cls.return_value.close.assert_awaited_once()
            assert client.session is None
