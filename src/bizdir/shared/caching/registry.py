"""
Named cache instances.

Each cache domain gets its own independently sized store so eviction and
tag invalidation in one domain never touch another.
"""

from enum import Enum
from typing import Callable, Dict, Iterator, Optional, Tuple

from ..config import CacheSettings
from ..logging_config import get_logger
from ..metrics_collector import MetricsCollector, get_metrics_collector
from .cache_manager import AdvancedCacheService, CacheConfig


class CacheDomain(str, Enum):
    """Cache domain enumeration."""
    GENERAL = "general"
    BUSINESS = "business"
    SEARCH = "search"
    AI = "ai"


class CacheRegistry:
    """Holds one cache store per domain."""

    def __init__(self, caches: Dict[CacheDomain, AdvancedCacheService],
                 metrics: Optional[MetricsCollector] = None):
        missing = [domain.value for domain in CacheDomain if domain not in caches]
        if missing:
            raise ValueError(f"Missing cache instances for: {', '.join(missing)}")
        self._caches = dict(caches)
        self.metrics = metrics or get_metrics_collector()
        self.logger = get_logger(__name__, 'cache_registry')

    @classmethod
    def from_settings(cls, settings: Optional[CacheSettings] = None,
                      clock: Optional[Callable[[], float]] = None,
                      metrics: Optional[MetricsCollector] = None) -> 'CacheRegistry':
        settings = settings or CacheSettings()
        metrics = metrics or get_metrics_collector()
        sizing = {
            CacheDomain.GENERAL: (settings.general_max_size, settings.general_default_ttl_ms),
            CacheDomain.BUSINESS: (settings.business_max_size, settings.business_default_ttl_ms),
            CacheDomain.SEARCH: (settings.search_max_size, settings.search_default_ttl_ms),
            CacheDomain.AI: (settings.ai_max_size, settings.ai_default_ttl_ms),
        }
        caches = {
            domain: AdvancedCacheService.from_config(
                CacheConfig(
                    name=domain.value,
                    max_size=max_size,
                    default_ttl=default_ttl,
                    compression_threshold=settings.compression_threshold,
                    single_flight=settings.single_flight,
                ),
                clock=clock,
                metrics=metrics,
            )
            for domain, (max_size, default_ttl) in sizing.items()
        }
        return cls(caches, metrics)

    @property
    def general(self) -> AdvancedCacheService:
        return self._caches[CacheDomain.GENERAL]

    @property
    def business(self) -> AdvancedCacheService:
        return self._caches[CacheDomain.BUSINESS]

    @property
    def search(self) -> AdvancedCacheService:
        return self._caches[CacheDomain.SEARCH]

    @property
    def ai(self) -> AdvancedCacheService:
        return self._caches[CacheDomain.AI]

    def get(self, domain) -> AdvancedCacheService:
        return self._caches[CacheDomain(domain)]

    def items(self) -> Iterator[Tuple[CacheDomain, AdvancedCacheService]]:
        return iter(self._caches.items())

    def __iter__(self) -> Iterator[AdvancedCacheService]:
        return iter(self._caches.values())

    def cleanup_all(self) -> Dict[str, int]:
        """Purge expired entries everywhere; return counts per domain."""
        purged = {domain.value: cache.cleanup() for domain, cache in self._caches.items()}
        total = sum(purged.values())
        if total:
            self.logger.info(f"Stale cache cleanup removed {total} entries", operation="cleanup_all", **purged)
        return purged

    def clear_all(self) -> None:
        for cache in self._caches.values():
            cache.clear()

    def get_stats(self) -> Dict[str, Dict]:
        return {domain.value: cache.get_stats().to_dict() for domain, cache in self._caches.items()}

    def publish_metrics(self) -> None:
        """Push current hit rates to the metrics collector."""
        for domain, cache in self._caches.items():
            self.metrics.set_cache_hit_rate(domain.value, cache.get_stats().hit_rate)

    async def wait_for_background_tasks(self) -> None:
        for cache in self._caches.values():
            await cache.wait_for_background_tasks()
