"""Unit tests for the Redis-backed popular pool cache."""

import json
import pytest
from unittest.mock import AsyncMock

from ranking_engine.config import REDIS_POOL_CACHE_KEY
from ranking_engine.engine import DiscoverRequest, Item, PoolCachingStore, RankingEngine
from ranking_engine.engine.retriever import CandidateRetriever


@pytest.fixture
def cached_store(catalog, mock_async_redis):
    return PoolCachingStore(catalog, mock_async_redis, ttl_seconds=60, max_items=3)


class TestPoolCachingStore:
    """Tests for PoolCachingStore.popular_items."""

    async def test_hit_serves_cached_pool(self, cached_store, mock_async_redis):
        mock_async_redis.get.return_value = json.dumps(
            [Item(item_id="cached", popularity=1.0).to_dict()]
        )
        items = await cached_store.popular_items(limit=2)
        assert [i.item_id for i in items] == ["cached"]
        mock_async_redis.setex.assert_not_awaited()

    async def test_miss_reads_store_and_fills_cache(
        self, cached_store, mock_async_redis
    ):
        items = await cached_store.popular_items(limit=2)
        assert [i.item_id for i in items] == ["shirt-1", "shoe-1"]

        key, ttl, payload = mock_async_redis.setex.call_args[0]
        assert key == REDIS_POOL_CACHE_KEY
        assert ttl == 60
        # the whole bounded pool is cached, not just the requested prefix
        assert [raw["item_id"] for raw in json.loads(payload)] == [
            "shirt-1",
            "shoe-1",
            "shoe-2",
        ]

    async def test_large_requests_bypass_cache(self, cached_store, mock_async_redis):
        items = await cached_store.popular_items(limit=10)
        assert len(items) == 5
        mock_async_redis.get.assert_not_awaited()

    async def test_cache_errors_fall_back_to_store(
        self, cached_store, mock_async_redis
    ):
        mock_async_redis.get = AsyncMock(side_effect=ConnectionError("down"))
        mock_async_redis.setex = AsyncMock(side_effect=ConnectionError("down"))
        items = await cached_store.popular_items(limit=1)
        assert [i.item_id for i in items] == ["shirt-1"]

    async def test_other_reads_are_delegated(self, cached_store):
        assert (await cached_store.get_item("hat-1")).title == "Wool hat"
        assert await cached_store.has_category("hats")
        profile = await cached_store.get_profile("user-1")
        assert len(profile.interactions) == 2
        filters = {"color": frozenset({"red"})}
        items = await cached_store.search_items(["shoes"], 10, filters)
        assert [i.item_id for i in items] == ["shoe-1", "shoe-2"]
        assert await cached_store.count_items(["shoes"], filters) == 2

    async def test_cached_pool_yields_same_ranking(
        self, catalog, cached_store, mock_async_redis
    ):
        """Serving the pool from the cache leaves the ranking unchanged."""

        def engine_over(store):
            return RankingEngine(store, retriever=CandidateRetriever(store, pool_size=3))

        request = DiscoverRequest(limit=3)
        direct = await engine_over(catalog).discover(request, now=0.0)
        on_miss = await engine_over(cached_store).discover(request, now=0.0)
        mock_async_redis.get.return_value = mock_async_redis.setex.call_args[0][2]
        on_hit = await engine_over(cached_store).discover(request, now=0.0)
        assert on_miss == on_hit
        assert on_hit.page == direct.page
