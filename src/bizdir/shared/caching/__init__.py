"""
In-memory caching system for the business directory.

This module provides:
- A bounded TTL cache store with tags, priorities and compression
- Named cache instances per data domain
- Warmup orchestrators and a lifecycle-managed initializer
- Event-driven cross-domain invalidation
"""

from .cache_manager import (
    CachePriority,
    CacheOptions,
    CacheEntry,
    CacheStats,
    CacheConfig,
    WarmupTask,
    WarmupReport,
    AdvancedCacheService,
    cached
)

from .compression import CompressionError

from .registry import (
    CacheDomain,
    CacheRegistry
)

from .cache_warming import (
    WarmupConfig,
    WarmupBatch,
    WarmupOrchestrator,
    SystemCacheWarmup,
    BusinessCacheWarmup,
    SearchCacheWarmup,
    AICacheWarmup,
    create_default_orchestrators,
    search_cache_key
)

from .invalidation import (
    InvalidationRule,
    InvalidationEvent,
    CacheInvalidator,
    create_default_invalidation_rules
)

from .initializer import CacheInitializer

__all__ = [
    # Core classes
    'CachePriority',
    'CacheOptions',
    'CacheEntry',
    'CacheStats',
    'CacheConfig',
    'AdvancedCacheService',
    'CompressionError',

    # Named instances
    'CacheDomain',
    'CacheRegistry',

    # Cache warming
    'WarmupTask',
    'WarmupReport',
    'WarmupConfig',
    'WarmupBatch',
    'WarmupOrchestrator',
    'SystemCacheWarmup',
    'BusinessCacheWarmup',
    'SearchCacheWarmup',
    'AICacheWarmup',
    'create_default_orchestrators',
    'search_cache_key',
    'CacheInitializer',

    # Cache invalidation
    'InvalidationRule',
    'InvalidationEvent',
    'CacheInvalidator',
    'create_default_invalidation_rules',

    # Decorators
    'cached'
]
