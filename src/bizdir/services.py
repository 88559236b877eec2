"""
Cached directory services.

Read paths used by the application screens: full listings, category
listings, filtered search and search suggestions, all served from the
named caches.
"""
import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .api_client.data_source import DirectoryDataSource
from .shared.caching.cache_manager import CacheOptions, CachePriority
from .shared.caching.cache_warming import search_cache_key
from .shared.caching.invalidation import CacheInvalidator, InvalidationEvent
from .shared.caching.registry import CacheRegistry
from .shared.logging_config import get_logger

MINUTE_MS = 60 * 1000


class SearchFilters(BaseModel):
    """Optional narrowing of search results."""
    category: Optional[str] = None
    location: Optional[str] = None
    verified: Optional[bool] = None
    rating: Optional[float] = None
    tags: Optional[List[str]] = None

    def cache_fragment(self) -> str:
        return json.dumps(self.model_dump(exclude_none=True), sort_keys=True, separators=(",", ":"))

    def matches(self, row: Dict[str, Any]) -> bool:
        if self.category is not None and (row.get("category") or "").lower() != self.category.lower():
            return False
        if self.location is not None and self.location.lower() not in (row.get("location") or "").lower():
            return False
        if self.verified is not None and bool(row.get("verified")) != self.verified:
            return False
        if self.rating is not None and (row.get("rating") or 0) < self.rating:
            return False
        if self.tags:
            row_tags = set(row.get("tags") or [])
            if not row_tags.issuperset(self.tags):
                return False
        return True


class BusinessDirectoryService:
    """Business listings and search backed by the named caches."""

    ALL_BUSINESSES_KEY = "businesses-all"

    listing_options = CacheOptions(ttl=5 * MINUTE_MS, priority=CachePriority.HIGH, tags=["businesses"])
    search_options = CacheOptions(priority=CachePriority.HIGH, tags=["search", "results"])
    suggestion_options = CacheOptions(ttl=60 * MINUTE_MS, priority=CachePriority.NORMAL, tags=["suggestions"])

    search_stale_ttl = 1 * MINUTE_MS
    search_fresh_ttl = 10 * MINUTE_MS

    def __init__(self, registry: CacheRegistry, data_source: DirectoryDataSource,
                 invalidator: Optional[CacheInvalidator] = None):
        self.registry = registry
        self.data_source = data_source
        self.invalidator = invalidator or CacheInvalidator(registry)
        self.logger = get_logger(__name__, 'directory_service')

    async def list_all_businesses(self) -> List[Dict[str, Any]]:
        """All businesses, newest first."""
        async def load():
            rows = await self.data_source.list_businesses(order_by="created_at", descending=True, limit=None)
            return rows or []

        return await self.registry.business.memoize(self.ALL_BUSINESSES_KEY, load, self.listing_options)

    async def businesses_by_category(self, category: str) -> List[Dict[str, Any]]:
        async def load():
            rows = await self.data_source.list_businesses(category=category)
            return rows or []

        options = self.listing_options.merge(tags=["businesses", "categories"], ttl=15 * MINUTE_MS)
        return await self.registry.business.memoize(f"businesses-category-{category}", load, options)

    @staticmethod
    def search_cache_key(query: str, filters: Optional[SearchFilters] = None) -> str:
        return search_cache_key(query, filters.cache_fragment() if filters else "{}")

    async def search(self, query: str, filters: Optional[SearchFilters] = None) -> List[Dict[str, Any]]:
        """
        Search businesses by free text.

        Results younger than a minute are served directly; older ones are
        served while a refresh runs in the background.
        """
        query = query.strip()
        if not query:
            return []
        if isinstance(filters, dict):
            filters = SearchFilters(**filters)

        async def load():
            rows = await self.data_source.search_businesses(query)
            rows = rows or []
            if filters:
                rows = [row for row in rows if filters.matches(row)]
            self.logger.debug(f"Search for {query!r} returned {len(rows)} results", operation="search")
            return rows

        return await self.registry.search.stale_while_revalidate(
            self.search_cache_key(query, filters),
            load,
            stale_ttl=self.search_stale_ttl,
            fresh_ttl=self.search_fresh_ttl,
            options=self.search_options,
        )

    async def search_suggestions(self, partial_query: str) -> List[str]:
        """Query completions for a partially typed search."""
        partial_query = partial_query.strip()
        if len(partial_query) <= 2:
            return []

        async def load():
            suggestions = [
                f"{partial_query} companies",
                f"{partial_query} services",
                f"{partial_query} near me",
                f"best {partial_query}",
                f"{partial_query} reviews",
            ]
            return suggestions

        return await self.registry.search.memoize(f"suggestions:{partial_query}", load, self.suggestion_options)

    def invalidate_business(self, business_id: str, event_type: str = "business.updated") -> int:
        """Drop every cached view that may contain ``business_id``."""
        return self.invalidator.process_event(
            InvalidationEvent(event_type=event_type, resource_id=str(business_id), source="directory_service")
        )
