import json
from typing import Optional, Sequence

import redis.asyncio as redis

from ranking_engine.config import (
    POOL_CACHE_MAX_ITEMS,
    POOL_CACHE_TTL_SECONDS,
    REDIS_POOL_CACHE_KEY,
)
from ranking_engine.engine.models import Item, UserProfile
from ranking_engine.engine.store import Filters, ItemStore
from ranking_engine.logging import setup_logging
from ranking_engine.observability import metrics

logger = setup_logging("engine.log")


class PoolCachingStore:
    """
    Store wrapper that serves the popular pool from a bounded, TTL-keyed Redis
    entry. Holds at most `max_items` items; larger requests go to the store.
    Every other read is delegated untouched, and scoring never sees the cache.

    A broken cache is never fatal: errors are logged and the store is read.
    """

    def __init__(
        self,
        store: ItemStore,
        redis_client: redis.Redis,
        ttl_seconds: int = POOL_CACHE_TTL_SECONDS,
        max_items: int = POOL_CACHE_MAX_ITEMS,
        key: str = REDIS_POOL_CACHE_KEY,
    ):
        self.store = store
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.max_items = max_items
        self.key = key

    async def popular_items(self, limit: int) -> list[Item]:
        if limit > self.max_items:
            metrics.pool_cache_requests.labels(result="bypass").inc()
            return await self.store.popular_items(limit)

        try:
            cached = await self.redis.get(self.key)
            if cached:
                pool = [Item.from_dict(raw) for raw in json.loads(cached)]
                metrics.pool_cache_requests.labels(result="hit").inc()
                return pool[:limit]
            metrics.pool_cache_requests.labels(result="miss").inc()
        except Exception as e:
            metrics.pool_cache_requests.labels(result="error").inc()
            logger.warning(f"Popular pool cache read failed, reading store: {e}")

        pool = await self.store.popular_items(self.max_items)
        try:
            await self.redis.setex(
                self.key,
                self.ttl_seconds,
                json.dumps([item.to_dict() for item in pool]),
            )
        except Exception as e:
            logger.warning(f"Popular pool cache write failed: {e}")
        return pool[:limit]

    async def get_item(self, item_id: str) -> Optional[Item]:
        return await self.store.get_item(item_id)

    async def get_items(self, item_ids: Sequence[str]) -> list[Item]:
        return await self.store.get_items(item_ids)

    async def related_items(self, item_id: str, limit: int) -> list[Item]:
        return await self.store.related_items(item_id, limit)

    async def items_by_category(self, category: str, limit: int) -> list[Item]:
        return await self.store.items_by_category(category, limit)

    async def has_category(self, category: str) -> bool:
        return await self.store.has_category(category)

    async def search_items(
        self,
        tokens: Sequence[str],
        limit: int,
        filters: Optional[Filters] = None,
    ) -> list[Item]:
        return await self.store.search_items(tokens, limit, filters)

    async def count_items(
        self, tokens: Sequence[str], filters: Optional[Filters] = None
    ) -> int:
        return await self.store.count_items(tokens, filters)

    async def get_profile(self, user_id: str) -> UserProfile:
        return await self.store.get_profile(user_id)
