"""
Tests for application wiring and lifecycle.
"""

import pytest
from unittest.mock import AsyncMock, patch

from bizdir.app import DirectoryServices
from bizdir.api_client import SupabaseDataSource
from bizdir.shared.config import CacheSettings, Settings, SupabaseSettings


@pytest.fixture
def settings():
    return Settings(cache=CacheSettings(periodic_warmup_enabled=False))


class TestCreate:
    """Test composition."""

    def test_uses_injected_data_source(self, settings, data_source, metrics, clock):
        services = DirectoryServices.create(settings, data_source=data_source, metrics=metrics, clock=clock)

        assert services.backend_client is None
        assert services.data_source is data_source
        assert services.api_client.cache is services.registry.general
        assert services.directory.invalidator is services.invalidator

    def test_builds_supabase_source(self, metrics):
        settings = Settings(supabase=SupabaseSettings(supabase_url="https://abc.supabase.co",
                                                      supabase_anon_key="anon"))

        services = DirectoryServices.create(settings, metrics=metrics)

        assert isinstance(services.data_source, SupabaseDataSource)
        assert services.backend_client.base_url == "https://abc.supabase.co/rest/v1"


class TestLifecycle:
    """Test start and stop."""

    @pytest.mark.asyncio
    async def test_start_warms_and_stop_closes(self, settings, data_source, metrics, clock):
        services = DirectoryServices.create(settings, data_source=data_source, metrics=metrics, clock=clock)

        with patch("bizdir.api_client.client.aiohttp.ClientSession") as session_cls:
            session_cls.return_value.close = AsyncMock()

            async with services:
                assert services.initializer.is_initialized
                assert "businesses-featured" in services.registry.business

                status = services.get_status()
                assert status["cache"]["running"] is True
                assert "overall" in status["invalidation"]

            session_cls.return_value.close.assert_awaited_once()

        assert not services.initializer.running

    @pytest.mark.asyncio
    async def test_business_write_clears_listings(self, settings, data_source, metrics, clock):
        services = DirectoryServices.create(settings, data_source=data_source, metrics=metrics, clock=clock)
        await services.initializer.initialize()

        services.directory.invalidate_business(2)

        assert "businesses-featured" not in services.registry.business
        assert "system-stats" in services.registry.general
