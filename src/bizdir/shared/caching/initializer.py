"""
Cache initialization and lifecycle.

The initializer runs every domain warmup once at startup, exposes a
per-user warmup for sign-in, and owns the periodic cleanup and re-warmup
loops. Nothing runs at import time: loops start with ``start()`` and end
with ``stop()``.
"""

import asyncio
from typing import Any, Dict, List, Optional

from ..config import CacheSettings
from ..logging_config import get_logger
from .cache_warming import AICacheWarmup, SystemCacheWarmup, WarmupOrchestrator
from .registry import CacheDomain, CacheRegistry


class CacheInitializer:
    """Coordinates startup warmup and background cache maintenance."""

    def __init__(self, registry: CacheRegistry, orchestrators: Dict[CacheDomain, WarmupOrchestrator],
                 settings: Optional[CacheSettings] = None):
        self.registry = registry
        self.orchestrators = dict(orchestrators)
        self.settings = settings or CacheSettings()
        self.logger = get_logger(__name__, 'cache_initializer')

        self._initialized = False
        self._init_task: Optional[asyncio.Future] = None

        self.running = False
        self._loop_tasks: List[asyncio.Task] = []

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def system(self) -> Optional[SystemCacheWarmup]:
        orchestrator = self.orchestrators.get(CacheDomain.GENERAL)
        return orchestrator if isinstance(orchestrator, SystemCacheWarmup) else None

    @property
    def ai(self) -> Optional[AICacheWarmup]:
        orchestrator = self.orchestrators.get(CacheDomain.AI)
        return orchestrator if isinstance(orchestrator, AICacheWarmup) else None

    async def initialize(self) -> None:
        """
        Warm every cache domain once.

        Concurrent callers share the same in-flight run; once it has
        completed further calls return immediately. Individual warmup
        failures are logged and never raised.
        """
        if self._initialized:
            return

        task = self._init_task
        if task is None:
            task = asyncio.ensure_future(self._run_initialization())
            self._init_task = task

        try:
            await asyncio.shield(task)
        except Exception as e:
            if self._init_task is task:
                self._init_task = None
            self.logger.error(f"Cache initialization failed: {e}", operation="initialize")
            raise

    async def _run_initialization(self) -> None:
        self.logger.info("Initializing cache system", operation="initialize")
        results = await self._warm_all()
        self._initialized = True

        failed = [name for name, result in results.items()
                  if isinstance(result, BaseException) or not result.succeeded]
        if failed:
            self.logger.warning(f"Cache system initialized with warmup failures in: {', '.join(failed)}",
                                operation="initialize")
        else:
            self.logger.info("Cache system initialized successfully", operation="initialize")

    async def _warm_all(self) -> Dict[str, Any]:
        names = [domain.value for domain in self.orchestrators]
        results = await asyncio.gather(
            *(orchestrator.warmup() for orchestrator in self.orchestrators.values()),
            return_exceptions=True
        )
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                self.logger.error(f"Warmup for {name} cache raised: {result}", operation="warmup")
        return dict(zip(names, results))

    async def warmup_user_specific_cache(self, user_id: str) -> Dict[str, Any]:
        """Warm user session data and per-user AI recommendations."""
        jobs = {}
        if self.system is not None:
            jobs['system'] = self.system.warmup_user_session(user_id)
        if self.ai is not None:
            jobs['ai'] = self.ai.warmup_user_specific(user_id)

        results = await asyncio.gather(*jobs.values(), return_exceptions=True)
        outcome = {}
        for name, result in zip(jobs, results):
            if isinstance(result, BaseException):
                self.logger.error(f"User-specific {name} warmup failed for {user_id}: {result}",
                                  operation="warmup_user_specific_cache", user_id=user_id)
            outcome[name] = result
        return outcome

    def invalidate_stale_cache(self) -> Dict[str, int]:
        """Purge expired entries from every named cache."""
        return self.registry.cleanup_all()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Initialize caches and start the maintenance loops."""
        if self.running:
            self.logger.warning("Cache initializer is already running", operation="start")
            return

        self.running = True
        try:
            await self.initialize()
        except Exception:
            self.running = False
            raise

        self._loop_tasks.append(asyncio.create_task(self._cleanup_worker()))
        if self.settings.periodic_warmup_enabled:
            self._loop_tasks.append(asyncio.create_task(self._warmup_worker()))
        self.logger.info("Cache maintenance loops started", operation="start")

    async def stop(self) -> None:
        """Cancel the maintenance loops and drain background refreshes."""
        if not self.running:
            return

        self.running = False
        for task in self._loop_tasks:
            task.cancel()
        for task in self._loop_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loop_tasks = []

        await self.registry.wait_for_background_tasks()
        self.logger.info("Cache maintenance loops stopped", operation="stop")

    async def _cleanup_worker(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(self.settings.cleanup_interval_seconds)
                self.invalidate_stale_cache()
                self.registry.publish_metrics()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in cache cleanup loop: {e}", operation="cleanup")

    async def _warmup_worker(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(self.settings.warmup_interval_seconds)
                self.logger.info("Running periodic cache warmup", operation="periodic_warmup")
                await self._warm_all()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in periodic warmup loop: {e}", operation="periodic_warmup")

    def get_status(self) -> Dict[str, Any]:
        return {
            'initialized': self._initialized,
            'running': self.running,
            'orchestrators': {
                domain.value: orchestrator.stats.to_dict()
                for domain, orchestrator in self.orchestrators.items()
            },
            'caches': self.registry.get_stats(),
        }
