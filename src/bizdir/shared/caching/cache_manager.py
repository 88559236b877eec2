"""
In-memory cache store for the business directory.

Provides a bounded key-value cache with TTL expiration, tag-based
invalidation, priority-aware eviction, memoization, stale-while-revalidate
reads and batch warmup. All TTLs and timestamps are in milliseconds.

The store is designed for a single asyncio event loop: map mutations are
synchronous, so the only interleaving points are awaited factories.
"""

import asyncio
import dataclasses
import functools
import inspect
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any, Awaitable, Callable, Dict, Iterable, List, Mapping,
    Optional, Pattern, Set, Tuple, Union
)

from ..logging_config import get_logger
from ..metrics_collector import MetricsCollector, get_metrics_collector
from . import compression
from .compression import CompressionError

DEFAULT_MAX_SIZE = 100
DEFAULT_TTL_MS = 5 * 60 * 1000
DEFAULT_COMPRESSION_THRESHOLD = 1024
WARMUP_TAG = "warmup"

Factory = Callable[[], Awaitable[Any]]
KeyFetcher = Callable[[str], Awaitable[Any]]


def wall_clock_ms() -> float:
    """Current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


class CachePriority(str, Enum):
    """Eviction class; low-priority entries are evicted first."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            lowered = value.lower()
            if lowered == "medium":
                return cls.NORMAL
            for member in cls:
                if member.value == lowered:
                    return member
        return None

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    CachePriority.LOW: 0,
    CachePriority.NORMAL: 1,
    CachePriority.HIGH: 2,
}

_OPTION_FIELDS = frozenset({"ttl", "priority", "tags", "compress"})


@dataclass
class CacheOptions:
    """Per-write cache options.

    ``ttl`` of ``None`` means the store's default TTL.
    """
    ttl: Optional[int] = None
    priority: CachePriority = CachePriority.NORMAL
    tags: List[str] = field(default_factory=list)
    compress: bool = False

    def __post_init__(self):
        self.priority = CachePriority(self.priority)
        self.tags = list(self.tags)
        if self.ttl is not None and self.ttl < 0:
            raise ValueError("ttl must not be negative")

    def merge(self, **overrides) -> 'CacheOptions':
        """Return a copy with the non-``None`` overrides applied."""
        unknown = set(overrides) - _OPTION_FIELDS
        if unknown:
            raise TypeError(f"Unknown cache options: {', '.join(sorted(unknown))}")
        values = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **values) if values else dataclasses.replace(self)


@dataclass
class CacheEntry:
    """Cache entry with metadata."""
    data: Any
    timestamp: float
    ttl: int
    priority: CachePriority = CachePriority.NORMAL
    tags: Set[str] = field(default_factory=set)
    access_count: int = 0
    last_accessed: float = 0.0
    compressed: bool = False
    size_bytes: int = 0

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_expired(self, now: float) -> bool:
        """Check if the cache entry is expired."""
        return now - self.timestamp > self.ttl

    def touch(self, now: float) -> None:
        """Update access information."""
        self.access_count += 1
        self.last_accessed = now

    def eviction_key(self) -> Tuple[int, float]:
        return (self.priority.rank, self.last_accessed)


@dataclass
class CacheStats:
    """Point-in-time cache statistics."""
    hits: int
    misses: int
    evictions: int
    total_requests: int
    hit_rate: float
    size: int
    max_size: int
    entries_by_priority: Dict[str, int]
    expired_entries: int
    memory_usage: int

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class CacheConfig:
    """Construction parameters for a cache store."""
    name: str = "general"
    max_size: int = DEFAULT_MAX_SIZE
    default_ttl: int = DEFAULT_TTL_MS
    compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD
    single_flight: bool = False


@dataclass
class WarmupTask:
    """A cache key paired with the async fetcher producing its value."""
    key: str
    fetcher: Factory


@dataclass
class WarmupReport:
    """Outcome of a warmup batch."""
    attempted: int = 0
    stored: int = 0
    skipped: int = 0
    failed: int = 0
    duration_seconds: float = 0.0
    failed_keys: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.failed == 0

    def merge(self, other: 'WarmupReport') -> 'WarmupReport':
        return WarmupReport(
            attempted=self.attempted + other.attempted,
            stored=self.stored + other.stored,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
            duration_seconds=max(self.duration_seconds, other.duration_seconds),
            failed_keys=self.failed_keys + other.failed_keys,
        )


class AdvancedCacheService:
    """Bounded in-memory cache with TTL, tags, priorities and warmup."""

    def __init__(
        self,
        name: str = "general",
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: int = DEFAULT_TTL_MS,
        compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD,
        single_flight: bool = False,
        clock: Optional[Callable[[], float]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if default_ttl < 0:
            raise ValueError("default_ttl must not be negative")

        self.name = name
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.compression_threshold = compression_threshold
        self.single_flight = single_flight

        self._clock = clock or wall_clock_ms
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        self._warming: Set[str] = set()
        self._inflight: Dict[str, asyncio.Future] = {}
        self._background_tasks: Set[asyncio.Task] = set()

        self.logger = get_logger(__name__, f"cache.{name}")
        self.metrics = metrics or get_metrics_collector()
        tags = {"cache": name}
        self._hit_counter = self.metrics.get_counter("cache_hits_total", "Cache hits", tags)
        self._miss_counter = self.metrics.get_counter("cache_misses_total", "Cache misses", tags)
        self._eviction_counter = self.metrics.get_counter("cache_evictions_total", "Cache evictions", tags)

    @classmethod
    def from_config(cls, config: CacheConfig, clock: Optional[Callable[[], float]] = None,
                    metrics: Optional[MetricsCollector] = None) -> 'AdvancedCacheService':
        return cls(
            name=config.name,
            max_size=config.max_size,
            default_ttl=config.default_ttl,
            compression_threshold=config.compression_threshold,
            single_flight=config.single_flight,
            clock=clock,
            metrics=metrics,
        )

    def __repr__(self) -> str:
        return f"AdvancedCacheService(name={self.name!r}, size={len(self._entries)}, max_size={self.max_size})"

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def keys(self) -> List[str]:
        return list(self._entries)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def set(self, key: str, data: Any, options: Optional[CacheOptions] = None, **overrides) -> None:
        """Store a value, evicting one entry first if the store is full."""
        if not key:
            raise ValueError("Cache key must be a non-empty string")
        opts = self._resolve_options(options, overrides)

        self.cleanup()
        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict_one()

        stored, compressed = data, False
        if opts.compress:
            stored, compressed = self._maybe_compress(key, data)

        now = self._clock()
        self._entries[key] = CacheEntry(
            data=stored,
            timestamp=now,
            ttl=opts.ttl,
            priority=opts.priority,
            tags=set(opts.tags),
            access_count=0,
            last_accessed=now,
            compressed=compressed,
            size_bytes=compression.serialized_size(stored),
        )

    def set_many(self, items: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]],
                 options: Optional[CacheOptions] = None, **overrides) -> None:
        pairs = items.items() if isinstance(items, Mapping) else items
        for key, data in pairs:
            self.set(key, data, options, **overrides)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or ``None`` when absent or expired."""
        hit, value = self._lookup(key)
        return value if hit else None

    def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        results = {}
        for key in keys:
            hit, value = self._lookup(key)
            if hit:
                results[key] = value
        return results

    def lookup(self, key: str) -> Tuple[bool, Any]:
        """Return ``(hit, value)`` so a cached ``None`` can be told apart from a miss."""
        return self._lookup(key)

    def has(self, key: str) -> bool:
        """Presence check that leaves counters and access stats alone."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return False
        return True

    async def memoize(self, key: str, factory: Factory, options: Optional[CacheOptions] = None,
                      **overrides) -> Any:
        """Return the cached value or compute, store and return it."""
        hit, value = self._lookup(key)
        if hit:
            return value

        if not self.single_flight:
            result = await factory()
            self.set(key, result, options, **overrides)
            return result

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._compute_and_store(key, factory, options, overrides))
            self._inflight[key] = pending
            pending.add_done_callback(functools.partial(self._clear_inflight, key))
        return await asyncio.shield(pending)

    async def stale_while_revalidate(self, key: str, factory: Factory, stale_ttl: int, fresh_ttl: int,
                                     options: Optional[CacheOptions] = None, **overrides) -> Any:
        """
        Serve cached data by age band.

        Younger than ``stale_ttl``: returned as is. Between ``stale_ttl`` and
        ``fresh_ttl``: returned as is while a background task refreshes it.
        Older, expired or absent: the factory is awaited and its result
        stored with ``ttl=fresh_ttl``.
        """
        if fresh_ttl < stale_ttl:
            raise ValueError("fresh_ttl must be greater than or equal to stale_ttl")
        overrides = {**overrides, "ttl": fresh_ttl}

        entry = self._entries.get(key)
        now = self._clock()
        if entry is not None and not entry.is_expired(now) and entry.age(now) < fresh_ttl:
            age = entry.age(now)
            entry.touch(now)
            self._record_hit(key)
            hit, value = self._read(key, entry)
            if hit:
                if age >= stale_ttl:
                    self._schedule_refresh(key, factory, options, overrides)
                return value
        else:
            if entry is not None and entry.is_expired(now):
                del self._entries[key]
            self._record_miss(key)

        result = await factory()
        self.set(key, result, options, **overrides)
        return result

    # -------------------------------------------------------------------------
    # Invalidation and maintenance
    # -------------------------------------------------------------------------

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_by_tag(self, tag: str) -> int:
        """Remove every entry carrying ``tag``; return how many were removed."""
        doomed = [key for key, entry in self._entries.items() if tag in entry.tags]
        for key in doomed:
            del self._entries[key]
        if doomed:
            self.logger.debug(f"Invalidated {len(doomed)} entries tagged {tag!r}",
                              operation="invalidate_by_tag", tag=tag)
        return len(doomed)

    def invalidate_by_pattern(self, pattern: Union[str, Pattern]) -> int:
        """Remove every entry whose key matches the regular expression."""
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        doomed = [key for key in self._entries if compiled.search(key)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        """Drop all entries and reset counters."""
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def cleanup(self) -> int:
        """Purge expired entries; return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self.logger.debug(f"Cache cleanup: removed {len(expired)} expired items", operation="cleanup")
        return len(expired)

    def get_stats(self) -> CacheStats:
        now = self._clock()
        by_priority = {priority.value: 0 for priority in CachePriority}
        expired = 0
        memory_usage = 0
        for entry in self._entries.values():
            by_priority[entry.priority.value] += 1
            memory_usage += entry.size_bytes
            if entry.is_expired(now):
                expired += 1

        total_requests = self._hits + self._misses
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            total_requests=total_requests,
            hit_rate=self._hits / total_requests if total_requests > 0 else 0.0,
            size=len(self._entries),
            max_size=self.max_size,
            entries_by_priority=by_priority,
            expired_entries=expired,
            memory_usage=memory_usage,
        )

    # -------------------------------------------------------------------------
    # Warmup
    # -------------------------------------------------------------------------

    async def warmup(self, keys: Iterable[str], fetcher: KeyFetcher,
                     options: Optional[CacheOptions] = None, **overrides) -> WarmupReport:
        """Populate ``keys`` concurrently using ``fetcher(key)``."""
        tasks = [WarmupTask(key, functools.partial(fetcher, key)) for key in keys]
        return await self.warmup_tasks(tasks, options, **overrides)

    async def warmup_tasks(self, tasks: List[WarmupTask], options: Optional[CacheOptions] = None,
                           **overrides) -> WarmupReport:
        """
        Run warmup tasks concurrently.

        Keys that are already cached or currently being warmed are skipped.
        A failing fetcher is logged and counted; it never aborts the batch.
        """
        base = options or CacheOptions(priority=CachePriority.HIGH)
        opts = self._resolve_options(base, overrides)
        if WARMUP_TAG not in opts.tags:
            opts.tags.append(WARMUP_TAG)

        report = WarmupReport(attempted=len(tasks))
        started = time.perf_counter()

        async def run(task: WarmupTask) -> None:
            if task.key in self._warming or self.has(task.key):
                report.skipped += 1
                return
            self._warming.add(task.key)
            try:
                data = await task.fetcher()
            except Exception as e:
                report.failed += 1
                report.failed_keys.append(task.key)
                self.logger.warning(
                    f"Cache warmup failed for key {task.key}: {e}",
                    operation="warmup", key=task.key, error=str(e)
                )
                return
            finally:
                self._warming.discard(task.key)
            self.set(task.key, data, opts)
            report.stored += 1

        await asyncio.gather(*(run(task) for task in tasks))
        report.duration_seconds = time.perf_counter() - started
        return report

    async def wait_for_background_tasks(self) -> None:
        """Wait until every scheduled background refresh has finished."""
        while True:
            pending = [task for task in self._background_tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _resolve_options(self, options: Optional[CacheOptions], overrides: Dict[str, Any]) -> CacheOptions:
        opts = (options or CacheOptions()).merge(**overrides)
        if opts.ttl is None:
            opts.ttl = self.default_ttl
        return opts

    def _lookup(self, key: str) -> Tuple[bool, Any]:
        entry = self._entries.get(key)
        if entry is None:
            self._record_miss(key)
            return False, None

        now = self._clock()
        if entry.is_expired(now):
            del self._entries[key]
            self._record_miss(key)
            return False, None

        entry.touch(now)
        self._record_hit(key)
        return self._read(key, entry)

    def _read(self, key: str, entry: CacheEntry) -> Tuple[bool, Any]:
        if not entry.compressed:
            return True, entry.data
        try:
            return True, compression.decompress(entry.data)
        except CompressionError as e:
            self.logger.error(f"Decompression failed for key {key}: {e}", operation="get", key=key)
            self._entries.pop(key, None)
            # the read was counted as a hit before decoding
            self._hits -= 1
            self._record_miss(key)
            return False, None

    def _maybe_compress(self, key: str, data: Any) -> Tuple[Any, bool]:
        if not compression.should_compress(data, self.compression_threshold):
            return data, False
        try:
            return compression.compress(data), True
        except CompressionError as e:
            self.logger.warning(f"Compression failed, storing uncompressed: {e}", operation="set", key=key)
            return data, False

    def _evict_one(self) -> None:
        if not self._entries:
            return
        victim, _ = min(self._entries.items(), key=lambda item: item[1].eviction_key())
        del self._entries[victim]
        self._evictions += 1
        self._safe_increment(self._eviction_counter)
        self.logger.debug(f"Evicted {victim}", operation="evict", key=victim)

    async def _compute_and_store(self, key: str, factory: Factory, options: Optional[CacheOptions],
                                 overrides: Dict[str, Any]) -> Any:
        result = await factory()
        self.set(key, result, options, **overrides)
        return result

    def _clear_inflight(self, key: str, future: asyncio.Future) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
        if not future.cancelled():
            # mark the exception retrieved; waiters re-raise it themselves
            future.exception()

    def _schedule_refresh(self, key: str, factory: Factory, options: Optional[CacheOptions],
                          overrides: Dict[str, Any]) -> None:
        task = asyncio.ensure_future(self._background_refresh(key, factory, options, overrides))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _background_refresh(self, key: str, factory: Factory, options: Optional[CacheOptions],
                                  overrides: Dict[str, Any]) -> None:
        try:
            result = await factory()
        except Exception as e:
            self.logger.warning(f"Background refresh failed for key {key}: {e}",
                                operation="stale_while_revalidate", key=key)
            return
        self.set(key, result, options, **overrides)

    def _record_hit(self, key: str) -> None:
        self._hits += 1
        self._safe_increment(self._hit_counter)
        self.logger.debug("Cache hit", operation="get", key=key)

    def _record_miss(self, key: str) -> None:
        self._misses += 1
        self._safe_increment(self._miss_counter)
        self.logger.debug("Cache miss", operation="get", key=key)

    def _safe_increment(self, counter) -> None:
        try:
            counter.increment()
        except Exception as e:  # noqa: BLE001 - metrics never affect cache behavior
            self.logger.debug(f"Metrics update failed: {e}", operation="metrics")


def _default_cache_key(func: Callable, args: tuple, kwargs: dict) -> str:
    key_parts = [func.__qualname__]
    key_parts.extend(str(arg) for arg in args)
    key_parts.extend(f"{k}={v}" for k, v in sorted(kwargs.items()))
    return ":".join(key_parts)


def cached(cache: AdvancedCacheService, key_func: Optional[Callable[..., str]] = None,
           options: Optional[CacheOptions] = None, **overrides):
    """Decorator for caching function results in ``cache``."""
    def decorator(func: Callable) -> Callable:
        def build_key(args, kwargs) -> str:
            if key_func:
                return key_func(*args, **kwargs)
            return _default_cache_key(func, args, kwargs)

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            return await cache.memoize(
                build_key(args, kwargs), lambda: func(*args, **kwargs), options, **overrides
            )

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            key = build_key(args, kwargs)
            hit, value = cache._lookup(key)
            if hit:
                return value
            result = func(*args, **kwargs)
            cache.set(key, result, options, **overrides)
            return result

        return async_wrapper if inspect.iscoroutinefunction(func) else sync_wrapper

    return decorator
