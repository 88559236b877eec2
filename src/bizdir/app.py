"""
Composition root.

Builds the caches, the backend client, warmup orchestrators and
services from settings, and owns their lifecycle.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .api_client.client import ApiClient
from .api_client.data_source import DirectoryDataSource, SupabaseDataSource
from .services import BusinessDirectoryService
from .shared.caching.cache_warming import WarmupConfig, create_default_orchestrators
from .shared.caching.initializer import CacheInitializer
from .shared.caching.invalidation import CacheInvalidator
from .shared.caching.registry import CacheRegistry
from .shared.config import Settings, get_settings
from .shared.logging_config import get_logger, initialize_logging
from .shared.metrics_collector import MetricsCollector, get_metrics_collector


@dataclass
class DirectoryServices:
    """Every long-lived object of the directory client."""
    settings: Settings
    metrics: MetricsCollector
    registry: CacheRegistry
    backend_client: Optional[ApiClient]
    data_source: DirectoryDataSource
    initializer: CacheInitializer
    invalidator: CacheInvalidator
    api_client: ApiClient
    directory: BusinessDirectoryService

    @classmethod
    def create(cls, settings: Optional[Settings] = None, data_source: Optional[DirectoryDataSource] = None,
               metrics: Optional[MetricsCollector] = None, clock=None,
               warmup_config: Optional[WarmupConfig] = None) -> 'DirectoryServices':
        """
        Wire the application.

        Args:
            settings: Application settings; defaults to ``get_settings()``
            data_source: Backend used by warmups and services; defaults to
                Supabase over an ``ApiClient`` built from settings
            metrics: Metrics collector; defaults to the process-wide one
            clock: Epoch-millisecond clock for the caches
            warmup_config: Keys to preload per domain
        """
        settings = settings or get_settings()
        metrics = metrics or get_metrics_collector()

        registry = CacheRegistry.from_settings(settings.cache, clock=clock, metrics=metrics)

        backend_client = None
        if data_source is None:
            backend_client = SupabaseDataSource.create_client(settings.supabase, settings.api)
            data_source = SupabaseDataSource(backend_client)

        orchestrators = create_default_orchestrators(registry, data_source, warmup_config, metrics=metrics)
        initializer = CacheInitializer(registry, orchestrators, settings.cache)
        invalidator = CacheInvalidator(registry, metrics=metrics)
        api_client = ApiClient(cache=registry.general, settings=settings.api)
        directory = BusinessDirectoryService(registry, data_source, invalidator)

        return cls(
            settings=settings,
            metrics=metrics,
            registry=registry,
            backend_client=backend_client,
            data_source=data_source,
            initializer=initializer,
            invalidator=invalidator,
            api_client=api_client,
            directory=directory,
        )

    async def start(self, configure_logging: bool = False) -> None:
        """Connect clients, warm the caches and start maintenance loops."""
        if configure_logging:
            initialize_logging(self.settings)
        logger = get_logger(__name__, 'app')

        if self.backend_client is not None:
            await self.backend_client.connect()
        await self.api_client.connect()
        await self.initializer.start()
        logger.info(f"{self.settings.app_name} cache services started", operation="start",
                    environment=self.settings.environment.value)

    async def stop(self) -> None:
        """Stop loops, drain refreshes and close clients."""
        await self.initializer.stop()
        await self.api_client.close()
        if self.backend_client is not None:
            await self.backend_client.close()
        get_logger(__name__, 'app').info("Cache services stopped", operation="stop")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def get_status(self) -> Dict[str, Any]:
        return {
            'cache': self.initializer.get_status(),
            'invalidation': self.invalidator.get_stats(),
        }
