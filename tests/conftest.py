"""
Shared pytest fixtures for the test suite.

Fixtures provide reusable test doubles and sample catalogs for both
unit and integration tests.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from ranking_engine.engine import InMemoryCatalog, Interaction, Item, RankingEngine

# fixed request time so freshness terms are reproducible
NOW = 1_700_000_000.0
DAY = 86400.0


# -----------------------------------------------------------------------------
# Mock Redis Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_async_redis():
    """
    Async mock Redis client for store, cache and API tests.
    """
    redis_mock = AsyncMock()
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.setex = AsyncMock(return_value=True)
    redis_mock.zrange = AsyncMock(return_value=[])
    redis_mock.aclose = AsyncMock()
    return redis_mock


# -----------------------------------------------------------------------------
# Mock Qdrant Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_async_qdrant():
    """
    Async mock Qdrant client.
    """
    qdrant_mock = AsyncMock()
    qdrant_mock.get_collections = AsyncMock(return_value=MagicMock(collections=[]))
    qdrant_mock.retrieve = AsyncMock(return_value=[])
    qdrant_mock.query_points = AsyncMock(return_value=MagicMock(points=[]))
    qdrant_mock.scroll = AsyncMock(return_value=([], None))
    qdrant_mock.count = AsyncMock(return_value=MagicMock(count=0))
    qdrant_mock.close = AsyncMock()
    return qdrant_mock


# -----------------------------------------------------------------------------
# Sample Data Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sample_items():
    """A small shoe/clothing catalog with overlapping categories."""
    return [
        Item(
            item_id="shoe-1",
            title="Red running shoes",
            categories=("shoes", "sport"),
            popularity=120.0,
            published_at=NOW - 2 * DAY,
            attributes={"color": "red", "size": ["42", "43"]},
        ),
        Item(
            item_id="shoe-2",
            title="Red leather shoes",
            categories=("shoes", "formal"),
            popularity=80.0,
            published_at=NOW - 40 * DAY,
            attributes={"color": "red", "size": ["41"]},
        ),
        Item(
            item_id="shoe-3",
            title="Blue canvas shoes",
            categories=("shoes", "casual"),
            popularity=60.0,
            published_at=NOW - 5 * DAY,
            attributes={"color": "blue", "size": ["42"]},
        ),
        Item(
            item_id="shirt-1",
            title="Red cotton shirt",
            categories=("shirts", "casual"),
            popularity=200.0,
            published_at=NOW - 1 * DAY,
            attributes={"color": "red"},
        ),
        Item(
            item_id="hat-1",
            title="Wool hat",
            categories=("hats",),
            popularity=10.0,
            published_at=NOW - 100 * DAY,
            attributes={"color": "grey"},
        ),
    ]


@pytest.fixture
def sample_profiles():
    """user-1 bought shoe-1 and viewed shirt-1; user-2 bought shoe-1 and shoe-3."""
    return {
        "user-1": [
            Interaction("shoe-1", "purchase", NOW - 3 * DAY),
            Interaction("shirt-1", "view", NOW - 1 * DAY),
        ],
        "user-2": [
            Interaction("shoe-1", "purchase", NOW - 10 * DAY),
            Interaction("shoe-3", "purchase", NOW - 9 * DAY),
        ],
    }


@pytest.fixture
def catalog(sample_items, sample_profiles):
    return InMemoryCatalog(sample_items, sample_profiles)


@pytest.fixture
def engine(catalog):
    return RankingEngine(catalog, deadline_seconds=1.0)
