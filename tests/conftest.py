"""
Shared fixtures for the cache layer test suite.
"""

import pytest

from bizdir.shared.caching import CacheRegistry
from bizdir.shared.metrics_collector import MetricsCollector


class FakeClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    """Deterministic clock for cache stores."""
    return FakeClock()


@pytest.fixture
def metrics():
    """Fresh metrics collector per test."""
    return MetricsCollector()


@pytest.fixture
def sample_businesses():
    """Rows shaped like the businesses table."""
    return [
        {
            "id": 1,
            "businessname": "Magic City AI",
            "category": "tech",
            "location": "Birmingham, AL",
            "rating": 4.8,
            "verified": True,
            "tags": ["ai", "software"],
        },
        {
            "id": 2,
            "businessname": "Rocket City Health",
            "category": "healthcare",
            "location": "Huntsville, AL",
            "rating": 4.1,
            "verified": False,
            "tags": ["clinic"],
        },
        {
            "id": 3,
            "businessname": "Gulf Coast Fabrication",
            "category": "manufacturing",
            "location": "Mobile, AL",
            "rating": 3.9,
            "verified": True,
            "tags": ["metal", "software"],
        },
    ]


class FakeDataSource:
    """In-memory stand-in for the Supabase data source."""

    def __init__(self, businesses, profiles=None, saved=None):
        self.businesses = businesses
        self.profiles = profiles or {}
        self.saved = saved or {}
        self.calls = []
        self.fail_on = set()

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    async def count_businesses(self):
        self._record("count_businesses")
        return len(self.businesses)

    async def list_businesses(self, category=None, verified=None, order_by=None, descending=False, limit=50):
        self._record("list_businesses", category, verified)
        rows = [
            row for row in self.businesses
            if (category is None or row["category"] == category)
            and (verified is None or row["verified"] == verified)
        ]
        if order_by:
            rows = sorted(rows, key=lambda row: row.get(order_by) or 0, reverse=descending)
        return rows[:limit] if limit is not None else rows

    async def search_businesses(self, term, limit=50):
        self._record("search_businesses", term)
        lowered = term.lower()
        return [
            row for row in self.businesses
            if lowered in row["businessname"].lower() or lowered in row["category"].lower()
        ][:limit]

    async def search_by_location(self, location, limit=50):
        self._record("search_by_location", location)
        return [row for row in self.businesses if location.lower() in row["location"].lower()][:limit]

    async def get_profile(self, user_id):
        self._record("get_profile", user_id)
        return self.profiles.get(user_id)

    async def list_saved_businesses(self, user_id):
        self._record("list_saved_businesses", user_id)
        return self.saved.get(user_id, [])


@pytest.fixture
def data_source(sample_businesses):
    """Fake backend with one signed-in user."""
    return FakeDataSource(
        sample_businesses,
        profiles={"42": {"id": "42", "theme": "light"}},
        saved={"42": [
            {"user_id": "42", "business_id": 1, "businesses": sample_businesses[0]},
            {"user_id": "42", "business_id": 3, "businesses": sample_businesses[2]},
        ]},
    )


@pytest.fixture
def registry(clock, metrics):
    """Named caches with default sizing."""
    return CacheRegistry.from_settings(clock=clock, metrics=metrics)
