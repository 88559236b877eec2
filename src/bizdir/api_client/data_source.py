"""
Supabase data source.

Issues PostgREST queries for the directory tables through ``ApiClient``.
Results are plain row dicts; caching happens in the domain caches, not at
the HTTP layer.
"""
from typing import Any, Dict, List, Optional, Protocol

import structlog

from ..shared.config import SupabaseSettings
from .client import ApiClient, ApiClientError, RetryPolicy

logger = structlog.get_logger(__name__)


class DataSourceError(ApiClientError):
    """Raised when the backend returns an unexpected payload."""
    pass


class DirectoryDataSource(Protocol):
    """Read operations the caches and services need from the backend."""

    async def count_businesses(self) -> Optional[int]: ...

    async def list_businesses(self, category: Optional[str] = None, verified: Optional[bool] = None,
                              order_by: Optional[str] = None, descending: bool = False,
                              limit: Optional[int] = 50) -> List[Dict[str, Any]]: ...

    async def search_businesses(self, term: str, limit: int = 50) -> List[Dict[str, Any]]: ...

    async def search_by_location(self, location: str, limit: int = 50) -> List[Dict[str, Any]]: ...

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    async def list_saved_businesses(self, user_id: str) -> List[Dict[str, Any]]: ...


def parse_content_range(value: Optional[str]) -> Optional[int]:
    """Extract the total from a ``Content-Range`` header such as ``0-24/3573``."""
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1].strip()
    if total == "*":
        return None
    try:
        return int(total)
    except ValueError:
        raise DataSourceError(f"Malformed Content-Range header: {value}")


def _escape_like(term: str) -> str:
    # PostgREST reserves commas and parentheses inside or=() filters
    return term.replace(",", " ").replace("(", " ").replace(")", " ").strip()


class SupabaseDataSource:
    """Directory queries against the Supabase REST endpoint."""

    BUSINESSES = "businesses"
    PROFILES = "profiles"
    SAVED_BUSINESSES = "saved_businesses"

    def __init__(self, client: ApiClient, retry: Optional[RetryPolicy] = None):
        self.client = client
        self.retry = retry

    @classmethod
    def create_client(cls, settings: SupabaseSettings, api_settings=None) -> ApiClient:
        """Build an ``ApiClient`` preconfigured for PostgREST."""
        headers = {}
        if settings.supabase_anon_key:
            headers = {
                "apikey": settings.supabase_anon_key,
                "Authorization": f"Bearer {settings.supabase_anon_key}",
            }
        if settings.supabase_schema and settings.supabase_schema != "public":
            headers["Accept-Profile"] = settings.supabase_schema
        return ApiClient(base_url=settings.rest_url(), settings=api_settings, default_headers=headers)

    async def _rows(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await self.client.get(table, params={"select": "*", **params}, retry=self.retry)
        if response.data is None:
            return []
        if not isinstance(response.data, list):
            raise DataSourceError(f"Expected a list of rows from {table}", status=response.status, endpoint=table)
        return response.data

    async def count_businesses(self) -> Optional[int]:
        response = await self.client.get(
            self.BUSINESSES,
            params={"select": "id", "limit": 1},
            headers={"Prefer": "count=exact"},
            retry=self.retry,
        )
        total = parse_content_range(response.header("Content-Range"))
        logger.debug("Counted businesses", total=total)
        return total

    async def list_businesses(self, category: Optional[str] = None, verified: Optional[bool] = None,
                              order_by: Optional[str] = None, descending: bool = False,
                              limit: Optional[int] = 50) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if limit is not None:
            params["limit"] = limit
        if category is not None:
            params["category"] = f"eq.{category}"
        if verified is not None:
            params["verified"] = f"eq.{str(verified).lower()}"
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        return await self._rows(self.BUSINESSES, params)

    async def search_businesses(self, term: str, limit: int = 50) -> List[Dict[str, Any]]:
        pattern = f"*{_escape_like(term)}*"
        params = {
            "or": f"(businessname.ilike.{pattern},description.ilike.{pattern},category.ilike.{pattern})",
            "limit": limit,
        }
        return await self._rows(self.BUSINESSES, params)

    async def search_by_location(self, location: str, limit: int = 50) -> List[Dict[str, Any]]:
        params = {"location": f"ilike.*{_escape_like(location)}*", "limit": limit}
        return await self._rows(self.BUSINESSES, params)

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._rows(self.PROFILES, {"id": f"eq.{user_id}", "limit": 1})
        return rows[0] if rows else None

    async def list_saved_businesses(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._rows(self.SAVED_BUSINESSES, {"select": "*,businesses(*)", "user_id": f"eq.{user_id}"})
