"""
Tests for cache initialization and the maintenance lifecycle.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from bizdir.shared.caching import CacheDomain, CacheInitializer, create_default_orchestrators
from bizdir.shared.config import CacheSettings


def make_initializer(registry, data_source, metrics, **settings):
    orchestrators = create_default_orchestrators(registry, data_source, metrics=metrics)
    return CacheInitializer(registry, orchestrators, CacheSettings(**settings))


@pytest.fixture
def initializer(registry, data_source, metrics):
    """Initializer with slow loops so tests control timing."""
    return make_initializer(registry, data_source, metrics, periodic_warmup_enabled=False)


class TestInitialize:
    """Test one-time warmup."""

    @pytest.mark.asyncio
    async def test_warms_every_domain(self, initializer, registry):
        assert not initializer.is_initialized

        await initializer.initialize()

        assert initializer.is_initialized
        assert "system-stats" in registry.general
        assert "businesses-featured" in registry.business
        assert "search-location-Mobile" in registry.search
        assert "ai-recommendations-trending" in registry.ai

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_run(self, initializer, data_source):
        await asyncio.gather(*(initializer.initialize() for _ in range(5)))

        count_calls = [call for call in data_source.calls if call[0] == "count_businesses"]
        assert len(count_calls) == 1
        assert all(o.stats.run_count == 1 for o in initializer.orchestrators.values())

    @pytest.mark.asyncio
    async def test_repeat_call_is_noop(self, initializer, data_source):
        await initializer.initialize()
        calls_after_first = len(data_source.calls)

        await initializer.initialize()

        assert len(data_source.calls) == calls_after_first

    @pytest.mark.asyncio
    async def test_orchestrator_failure_does_not_raise(self, registry, data_source, metrics):
        broken = MagicMock()
        broken.warmup = AsyncMock(side_effect=RuntimeError("orchestrator crashed"))
        orchestrators = create_default_orchestrators(registry, data_source, metrics=metrics)
        orchestrators[CacheDomain.SEARCH] = broken
        initializer = CacheInitializer(registry, orchestrators, CacheSettings())

        await initializer.initialize()

        assert initializer.is_initialized
        assert "businesses-featured" in registry.business

    @pytest.mark.asyncio
    async def test_coordination_failure_allows_retry(self, initializer):
        with patch.object(initializer, "_warm_all", AsyncMock(side_effect=[RuntimeError("boom"), {}])):
            with pytest.raises(RuntimeError):
                await initializer.initialize()
            assert not initializer.is_initialized
            assert initializer._init_task is None

            await initializer.initialize()

        assert initializer.is_initialized


class TestUserSpecificWarmup:
    """Test sign-in warmup."""

    @pytest.mark.asyncio
    async def test_warms_user_keys(self, initializer, registry):
        results = await initializer.warmup_user_specific_cache("42")

        assert set(results) == {"system", "ai"}
        assert results["system"].stored == 2
        assert "user-42-preferences" in registry.general
        assert "user-42-saved-businesses" in registry.general
        assert "ai-recommendations-user-42" in registry.ai
        assert not initializer.is_initialized

    @pytest.mark.asyncio
    async def test_failures_isolated(self, initializer, data_source, registry):
        data_source.fail_on.add("get_profile")

        results = await initializer.warmup_user_specific_cache("42")

        assert results["system"].failed == 1
        assert "user-42-saved-businesses" in registry.general


class TestLifecycle:
    """Test maintenance loops."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, registry, data_source, metrics, clock):
        initializer = make_initializer(registry, data_source, metrics,
                                       cleanup_interval_seconds=0.01, periodic_warmup_enabled=False)

        await initializer.start()
        try:
            assert initializer.is_initialized
            assert initializer.running
            assert len(initializer._loop_tasks) == 1

            registry.search.set("short-lived", 1, ttl=10)
            clock.advance(20)
            await asyncio.sleep(0.05)

            assert "short-lived" not in registry.search._entries
        finally:
            await initializer.stop()

        assert not initializer.running
        assert initializer._loop_tasks == []

    @pytest.mark.asyncio
    async def test_start_and_stop_idempotent(self, initializer):
        await initializer.stop()
        await initializer.start()
        await initializer.start()
        assert len(initializer._loop_tasks) == 1
        await initializer.stop()
        await initializer.stop()
        assert not initializer.running

    @pytest.mark.asyncio
    async def test_periodic_warmup(self, registry, data_source, metrics):
        initializer = make_initializer(registry, data_source, metrics, warmup_interval_seconds=0.01)

        await initializer.start()
        try:
            await asyncio.sleep(0.05)
        finally:
            await initializer.stop()

        system = initializer.orchestrators[CacheDomain.GENERAL]
        assert system.stats.run_count >= 2

    def test_invalidate_stale_cache(self, initializer, registry, clock):
        registry.ai.set("old", 1, ttl=10)
        clock.advance(20)
        assert initializer.invalidate_stale_cache()["ai"] == 1

    @pytest.mark.asyncio
    async def test_status(self, initializer):
        await initializer.initialize()
        status = initializer.get_status()

        assert status["initialized"] is True
        assert status["running"] is False
        assert set(status["orchestrators"]) == {"general", "business", "search", "ai"}
        assert status["orchestrators"]["business"]["run_count"] == 1
        assert status["caches"]["business"]["size"] == 6
