"""
Tests for the Supabase data source.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from bizdir.api_client import (
    ApiResponse,
    DataSourceError,
    SupabaseDataSource,
    parse_content_range
)
from bizdir.shared.config import SupabaseSettings


@pytest.fixture
def api_client():
    """Mock API client returning no rows."""
    client = MagicMock()
    client.get = AsyncMock(return_value=ApiResponse(data=[]))
    return client


@pytest.fixture
def source(api_client):
    return SupabaseDataSource(api_client)


class TestContentRange:
    """Test count header parsing."""

    @pytest.mark.parametrize("header, expected", [
        ("0-0/3573", 3573),
        ("*/0", 0),
        ("0-24/*", None),
        (None, None),
        ("", None),
    ])
    def test_parse(self, header, expected):
        assert parse_content_range(header) == expected

    def test_malformed(self):
        with pytest.raises(DataSourceError):
            parse_content_range("0-0/many")


class TestQueries:
    """Test PostgREST query construction."""

    @pytest.mark.asyncio
    async def test_count_businesses(self, source, api_client):
        api_client.get.return_value = ApiResponse(data=[{"id": 1}], headers={"Content-Range": "0-0/42"})

        assert await source.count_businesses() == 42
        args, kwargs = api_client.get.call_args
        assert args == ("businesses",)
        assert kwargs["headers"] == {"Prefer": "count=exact"}

    @pytest.mark.asyncio
    async def test_list_businesses_filters(self, source, api_client):
        await source.list_businesses(category="tech", verified=True, order_by="rating", descending=True, limit=20)

        _, kwargs = api_client.get.call_args
        assert kwargs["params"] == {
            "select": "*",
            "limit": 20,
            "category": "eq.tech",
            "verified": "eq.true",
            "order": "rating.desc",
        }

    @pytest.mark.asyncio
    async def test_list_without_limit(self, source, api_client):
        await source.list_businesses(order_by="created_at", limit=None)
        _, kwargs = api_client.get.call_args
        assert "limit" not in kwargs["params"]
        assert kwargs["params"]["order"] == "created_at.asc"

    @pytest.mark.asyncio
    async def test_search_businesses(self, source, api_client):
        await source.search_businesses("AI, (startups)")

        _, kwargs = api_client.get.call_args
        or_filter = kwargs["params"]["or"]
        assert or_filter.startswith("(businessname.ilike.*AI")
        assert "description.ilike." in or_filter
        assert "category.ilike." in or_filter
        assert "," not in or_filter[1:-1].replace(",description", "").replace(",category", "")

    @pytest.mark.asyncio
    async def test_search_by_location(self, source, api_client):
        await source.search_by_location("Huntsville")
        _, kwargs = api_client.get.call_args
        assert kwargs["params"]["location"] == "ilike.*Huntsville*"

    @pytest.mark.asyncio
    async def test_get_profile(self, source, api_client):
        api_client.get.return_value = ApiResponse(data=[{"id": "42"}])
        assert await source.get_profile("42") == {"id": "42"}

        api_client.get.return_value = ApiResponse(data=[])
        assert await source.get_profile("43") is None

    @pytest.mark.asyncio
    async def test_saved_businesses_embed(self, source, api_client):
        await source.list_saved_businesses("42")
        args, kwargs = api_client.get.call_args
        assert args == ("saved_businesses",)
        assert kwargs["params"] == {"select": "*,businesses(*)", "user_id": "eq.42"}

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_list(self, source, api_client):
        api_client.get.return_value = ApiResponse(data=None)
        assert await source.list_businesses() == []

    @pytest.mark.asyncio
    async def test_unexpected_payload(self, source, api_client):
        api_client.get.return_value = ApiResponse(data={"message": "not a list"})
        with pytest.raises(DataSourceError):
            await source.search_businesses("tech")


class TestClientFactory:
    """Test PostgREST client construction."""

    def test_create_client_headers(self):
        settings = SupabaseSettings(supabase_url="https://abc.supabase.co", supabase_anon_key="anon")
        client = SupabaseDataSource.create_client(settings)

        assert client.base_url == "https://abc.supabase.co/rest/v1"
        assert client.default_headers["apikey"] == "anon"
        assert client.default_headers["Authorization"] == "Bearer anon"
        assert client.cache is None
