"""
Cache warming for the business directory.

Each orchestrator knows which keys its domain should preload and how to
fetch them; the cache store executes the fetches and stores the results.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

from pydantic import BaseModel, Field

from ..logging_config import get_logger
from ..metrics_collector import MetricsCollector, get_metrics_collector
from .cache_manager import AdvancedCacheService, CacheOptions, CachePriority, WarmupReport, WarmupTask
from .registry import CacheDomain, CacheRegistry

if TYPE_CHECKING:
    from ...api_client.data_source import DirectoryDataSource

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

AIResponder = Callable[[str], Awaitable[Dict[str, Any]]]
TrendingProvider = Callable[[], Awaitable[List[Dict[str, Any]]]]


def search_cache_key(query: str, filters_fragment: str = "{}") -> str:
    """Key shared by search warmup and the directory search read path."""
    return f"search:{query}:{filters_fragment}"


class WarmupConfig(BaseModel):
    """What each domain preloads."""
    popular_categories: List[str] = Field(
        default_factory=lambda: ['tech', 'healthcare', 'manufacturing', 'aerospace'])
    popular_searches: List[str] = Field(
        default_factory=lambda: ['AI companies', 'Tech startups', 'Birmingham', 'Huntsville'])
    popular_locations: List[str] = Field(
        default_factory=lambda: ['Birmingham', 'Huntsville', 'Mobile', 'Montgomery'])
    ai_common_queries: List[str] = Field(
        default_factory=lambda: ['business analysis', 'market insights', 'recommendations'])
    listing_limit: int = 50
    featured_limit: int = 20
    verified_limit: int = 100
    recommendation_limit: int = 10


@dataclass
class WarmupBatch:
    """Tasks that share the same cache options."""
    tasks: List[WarmupTask]
    options: CacheOptions


@dataclass
class WarmupRunStats:
    """Running statistics for one orchestrator."""
    run_count: int = 0
    success_count: int = 0
    error_count: int = 0
    avg_duration: float = 0.0
    last_run: Optional[datetime] = None
    last_report: Optional[WarmupReport] = None

    def record(self, report: WarmupReport) -> None:
        self.run_count += 1
        self.last_run = datetime.now(timezone.utc)
        self.last_report = report
        if report.succeeded:
            self.success_count += 1
        else:
            self.error_count += 1
        self.avg_duration = (self.avg_duration * (self.run_count - 1) + report.duration_seconds) / self.run_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_count': self.run_count,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'success_rate': self.success_count / self.run_count if self.run_count > 0 else 0,
            'avg_duration': self.avg_duration,
            'last_run': self.last_run.isoformat() if self.last_run else None,
            'last_failed_keys': self.last_report.failed_keys if self.last_report else [],
        }


class WarmupOrchestrator:
    """Base class for per-domain warmups."""

    domain: CacheDomain = CacheDomain.GENERAL

    def __init__(self, cache: AdvancedCacheService, data_source: "DirectoryDataSource",
                 config: Optional[WarmupConfig] = None, metrics: Optional[MetricsCollector] = None):
        self.cache = cache
        self.data_source = data_source
        self.config = config or WarmupConfig()
        self.logger = get_logger(__name__, f'{self.domain.value}_cache_warmup')
        self.metrics = metrics or get_metrics_collector()
        self.stats = WarmupRunStats()

    @classmethod
    def for_registry(cls, registry: CacheRegistry, data_source: "DirectoryDataSource",
                     config: Optional[WarmupConfig] = None, **kwargs) -> 'WarmupOrchestrator':
        return cls(registry.get(cls.domain), data_source, config, **kwargs)

    @property
    def name(self) -> str:
        return self.domain.value

    def plan(self) -> List[WarmupBatch]:
        """Return the batches this domain preloads."""
        raise NotImplementedError

    async def warmup(self) -> WarmupReport:
        """Run every planned batch concurrently; never raises for fetch failures."""
        self.logger.info(f"Starting {self.name} cache warmup", operation="warmup")
        report = await self._run_batches(self.plan())
        self.stats.record(report)

        try:
            timer = self.metrics.get_timer('cache_warmup_duration', 'Cache warmup duration')
            timer.record(report.duration_seconds, domain=self.name, status='success' if report.succeeded else 'partial')
        except Exception as e:  # noqa: BLE001
            self.logger.debug(f"Metrics update failed: {e}", operation="warmup")

        if report.succeeded:
            self.logger.info(
                f"{self.name.capitalize()} cache warmup completed: {report.stored} stored, "
                f"{report.skipped} skipped in {report.duration_seconds:.2f}s",
                operation="warmup"
            )
        else:
            self.logger.warning(
                f"{self.name.capitalize()} cache warmup completed with {report.failed} failures",
                operation="warmup", failed_keys=report.failed_keys
            )
        return report

    async def _run_batches(self, batches: List[WarmupBatch]) -> WarmupReport:
        started = time.perf_counter()
        reports = await asyncio.gather(
            *(self.cache.warmup_tasks(batch.tasks, batch.options) for batch in batches)
        )
        combined = WarmupReport()
        for report in reports:
            combined = combined.merge(report)
        combined.duration_seconds = time.perf_counter() - started
        return combined


class SystemCacheWarmup(WarmupOrchestrator):
    """System-wide data: global stats, config and default preferences."""

    domain = CacheDomain.GENERAL

    DEFAULT_SYSTEM_CONFIG = {
        'cacheEnabled': True,
        'compressionEnabled': True,
        'analyticsEnabled': True,
    }
    DEFAULT_USER_PREFERENCES = {
        'theme': 'dark',
        'notifications': True,
        'autoRefresh': True,
    }

    def plan(self) -> List[WarmupBatch]:
        return [WarmupBatch(
            tasks=[
                WarmupTask('system-stats', self._load_system_stats),
                WarmupTask('system-config', self._load_system_config),
                WarmupTask('user-preferences', self._load_default_preferences),
            ],
            options=CacheOptions(ttl=HOUR_MS, priority=CachePriority.HIGH, tags=['system']),
        )]

    async def _load_system_stats(self) -> Dict[str, Any]:
        total = await self.data_source.count_businesses()
        return {
            'totalBusinesses': total or 0,
            'lastUpdated': int(time.time() * 1000),
        }

    async def _load_system_config(self) -> Dict[str, Any]:
        return dict(self.DEFAULT_SYSTEM_CONFIG)

    async def _load_default_preferences(self) -> Dict[str, Any]:
        return dict(self.DEFAULT_USER_PREFERENCES)

    async def warmup_user_session(self, user_id: str) -> WarmupReport:
        """Preload the profile and saved businesses of a signed-in user."""
        batch = WarmupBatch(
            tasks=[
                WarmupTask(f'user-{user_id}-preferences',
                           lambda: self.data_source.get_profile(user_id)),
                WarmupTask(f'user-{user_id}-saved-businesses',
                           lambda: self.data_source.list_saved_businesses(user_id)),
            ],
            options=CacheOptions(ttl=HOUR_MS, priority=CachePriority.HIGH, tags=['user', f'user:{user_id}']),
        )
        report = await self._run_batches([batch])
        self.logger.info(f"User-specific cache warmup completed for user: {user_id}",
                         operation="warmup_user_session", stored=report.stored, failed=report.failed)
        return report


class BusinessCacheWarmup(WarmupOrchestrator):
    """Per-category listings plus curated featured/verified sets."""

    domain = CacheDomain.BUSINESS

    def plan(self) -> List[WarmupBatch]:
        category_tasks = [
            WarmupTask(f'businesses-category-{category}', self._category_loader(category))
            for category in self.config.popular_categories
        ]
        curated_tasks = [
            WarmupTask('businesses-featured', self._load_featured),
            WarmupTask('businesses-verified', self._load_verified),
        ]
        return [
            WarmupBatch(category_tasks, CacheOptions(
                ttl=15 * MINUTE_MS, priority=CachePriority.HIGH, tags=['businesses', 'categories'])),
            WarmupBatch(curated_tasks, CacheOptions(
                ttl=12 * HOUR_MS, priority=CachePriority.HIGH, tags=['businesses', 'curated'])),
        ]

    def _category_loader(self, category: str):
        async def load():
            rows = await self.data_source.list_businesses(category=category, limit=self.config.listing_limit)
            return rows or []
        return load

    async def _load_featured(self) -> List[Dict[str, Any]]:
        rows = await self.data_source.list_businesses(
            verified=True, order_by='rating', descending=True, limit=self.config.featured_limit)
        return rows or []

    async def _load_verified(self) -> List[Dict[str, Any]]:
        rows = await self.data_source.list_businesses(verified=True, limit=self.config.verified_limit)
        return rows or []


class SearchCacheWarmup(WarmupOrchestrator):
    """Popular free-text and location-filtered search results."""

    domain = CacheDomain.SEARCH

    def plan(self) -> List[WarmupBatch]:
        options = CacheOptions(ttl=30 * MINUTE_MS, priority=CachePriority.NORMAL, tags=['search'])
        terms = list(dict.fromkeys(self.config.popular_searches))
        return [
            WarmupBatch([WarmupTask(search_cache_key(term), self._term_loader(term)) for term in terms], options),
            WarmupBatch([WarmupTask(f'search-location-{location}', self._location_loader(location))
                         for location in self.config.popular_locations], options),
        ]

    def _term_loader(self, term: str):
        async def load():
            rows = await self.data_source.search_businesses(term, limit=self.config.listing_limit)
            return rows or []
        return load

    def _location_loader(self, location: str):
        async def load():
            rows = await self.data_source.search_by_location(location, limit=self.config.listing_limit)
            return rows or []
        return load


async def canned_ai_response(query: str) -> Dict[str, Any]:
    """Default responder: a fixed, deterministic payload per query."""
    return {
        'query': query,
        'response': f'Cached AI response for: {query}',
        'confidence': 0.85,
    }


async def default_trending_recommendations() -> List[Dict[str, Any]]:
    return [
        {'type': 'trending', 'category': 'AI/ML', 'growth': '+25%'},
        {'type': 'trending', 'category': 'Fintech', 'growth': '+18%'},
        {'type': 'trending', 'category': 'Healthcare Tech', 'growth': '+22%'},
    ]


class AICacheWarmup(WarmupOrchestrator):
    """Canned AI responses and curated recommendation sets.

    The responder and trending provider are pluggable so real scoring can
    replace the deterministic defaults.
    """

    domain = CacheDomain.AI

    def __init__(self, cache: AdvancedCacheService, data_source: "DirectoryDataSource",
                 config: Optional[WarmupConfig] = None, metrics: Optional[MetricsCollector] = None,
                 responder: Optional[AIResponder] = None,
                 trending_provider: Optional[TrendingProvider] = None):
        super().__init__(cache, data_source, config, metrics)
        self.responder = responder or canned_ai_response
        self.trending_provider = trending_provider or default_trending_recommendations

    def plan(self) -> List[WarmupBatch]:
        response_tasks = [
            WarmupTask(f'ai-response-{query}', self._response_loader(query))
            for query in self.config.ai_common_queries
        ]
        recommendation_tasks = [
            WarmupTask('ai-recommendations-business', self._load_business_recommendations),
            WarmupTask('ai-recommendations-trending', self.trending_provider),
        ]
        return [
            WarmupBatch(response_tasks, CacheOptions(
                ttl=15 * MINUTE_MS, priority=CachePriority.NORMAL, tags=['ai', 'responses'])),
            WarmupBatch(recommendation_tasks, CacheOptions(
                ttl=HOUR_MS, priority=CachePriority.HIGH, tags=['ai', 'recommendations'])),
        ]

    def _response_loader(self, query: str):
        async def load():
            return await self.responder(query)
        return load

    async def _load_business_recommendations(self) -> List[Dict[str, Any]]:
        rows = await self.data_source.list_businesses(
            verified=True, order_by='rating', descending=True, limit=self.config.recommendation_limit)
        return rows or []

    async def warmup_user_specific(self, user_id: str) -> WarmupReport:
        """Preload recommendations built from a user's saved businesses."""
        async def load():
            saved = await self.data_source.list_saved_businesses(user_id)
            categories = sorted({
                (row.get('businesses') or {}).get('category')
                for row in saved or []
                if (row.get('businesses') or {}).get('category')
            })
            return {'userId': user_id, 'categories': categories, 'saved': len(saved or [])}

        batch = WarmupBatch(
            tasks=[WarmupTask(f'ai-recommendations-user-{user_id}', load)],
            options=CacheOptions(ttl=30 * MINUTE_MS, priority=CachePriority.HIGH,
                                 tags=['ai', 'user', f'user:{user_id}']),
        )
        return await self._run_batches([batch])


def create_default_orchestrators(registry: CacheRegistry, data_source: "DirectoryDataSource",
                                 config: Optional[WarmupConfig] = None,
                                 metrics: Optional[MetricsCollector] = None) -> Dict[CacheDomain, WarmupOrchestrator]:
    """Build one orchestrator per cache domain."""
    return {
        orchestrator_cls.domain: orchestrator_cls.for_registry(registry, data_source, config, metrics=metrics)
        for orchestrator_cls in (SystemCacheWarmup, BusinessCacheWarmup, SearchCacheWarmup, AICacheWarmup)
    }
