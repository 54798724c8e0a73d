"""
Production item & profile store.

Items live in a Qdrant collection (payload = item fields plus the indexed
fields built by `item_payload`, vector = item embedding used for related-item
lookups). Category, search and filter reads are pushed down as payload filters
and ordered by the float-indexed `popularity` field.
Interaction histories and the popular pool live in Redis:

    user:history:<user_id>   zset, member = {"item_id", "type"} JSON, score = timestamp
    global:popular_items     JSON list of {"item_id", "score"}, most popular first
"""

import json
import time
import uuid
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

import redis.asyncio as redis
from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models

from ranking_engine.config import (
    QDRANT_COLLECTION_NAME,
    REDIS_POPULAR_KEY,
    REDIS_USER_HISTORY_PREFIX,
)
from ranking_engine.engine.errors import StoreUnavailableError
from ranking_engine.engine.models import (
    CATEGORY_ATTRIBUTES,
    Interaction,
    Item,
    UserProfile,
)
from ranking_engine.engine.store import Filters
from ranking_engine.logging import setup_logging
from ranking_engine.observability import metrics, store_span

logger = setup_logging("store.log")

ITEM_ID_NAMESPACE = uuid.UUID("6f1c1f9e-9b7e-4d0e-8a51-2f4f7f3b2a10")


def point_id(item_id: str) -> str:
    """Qdrant point ids must be ints or UUIDs, item ids are opaque strings."""
    return str(uuid.uuid5(ITEM_ID_NAMESPACE, item_id))


def item_payload(item: Item) -> dict[str, Any]:
    """
    Item fields plus the derived, indexed fields the read paths filter on:

        search_tokens    query tokens of the item text
        categories_norm  casefolded categories
        filter_values    attribute name -> casefolded values, as search filters see them
        popularity       float index used to order scrolls
    """
    payload = item.to_dict()
    payload["search_tokens"] = sorted(item.search_tokens)
    payload["categories_norm"] = sorted({c.casefold() for c in item.categories})
    names = set(item.attributes) | set(CATEGORY_ATTRIBUTES)
    payload["filter_values"] = {
        name: sorted(item.attribute_values(name)) for name in sorted(names)
    }
    return payload


def build_item_filter(
    excluded_item_ids: Optional[Iterable[str]] = None,
    categories: Optional[Sequence[str]] = None,
    tokens: Optional[Sequence[str]] = None,
    filters: Optional[Filters] = None,
) -> Optional[models.Filter]:
    """
    Args:
        excluded_item_ids: Item ids to leave out (e.g. the seed item itself)
        categories: Include only items tagged with any of these categories (any case)
        tokens: Include only items whose search tokens contain any of these
        filters: Attribute name -> accepted values; all names must match, any value

    Returns:
        Qdrant Filter object or None if no filters specified
    """
    must_conditions: list[models.Condition] = []
    must_not_conditions: list[models.Condition] = []

    excluded = [point_id(i) for i in excluded_item_ids or ()]
    if excluded:
        must_not_conditions.append(models.HasIdCondition(has_id=excluded))

    if categories:
        must_conditions.append(
            models.FieldCondition(
                key="categories_norm",
                match=models.MatchAny(any=[c.casefold() for c in categories]),
            )
        )

    if tokens:
        must_conditions.append(
            models.FieldCondition(
                key="search_tokens",
                match=models.MatchAny(any=list(tokens)),
            )
        )

    for name, accepted in sorted((filters or {}).items()):
        must_conditions.append(
            models.FieldCondition(
                key=f"filter_values.{name}",
                match=models.MatchAny(any=sorted(accepted)),
            )
        )

    if not must_conditions and not must_not_conditions:
        return None

    return models.Filter(
        must=must_conditions if must_conditions else None,
        must_not=must_not_conditions if must_not_conditions else None,
    )


def parse_item(payload: Optional[dict[str, Any]]) -> Item:
    try:
        return Item.from_dict(payload or {})
    except (KeyError, TypeError, ValueError) as e:
        raise StoreUnavailableError(f"Corrupt item payload: {e}") from e


def parse_interaction(member: str, timestamp: float) -> Interaction:
    try:
        data = json.loads(member)
        return Interaction(
            item_id=str(data["item_id"]),
            interaction_type=data.get("type", "view"),
            timestamp=float(timestamp),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise StoreUnavailableError(f"Corrupt interaction record: {e}") from e


class QdrantRedisStore:
    def __init__(
        self,
        redis_client: redis.Redis,
        qdrant_client: AsyncQdrantClient,
        collection_name: str = QDRANT_COLLECTION_NAME,
    ):
        self.redis = redis_client
        self.qdrant = qdrant_client
        self.collection_name = collection_name

    async def _call(
        self,
        operation: str,
        backend: str,
        call: Callable[[], Awaitable[Any]],
        **attributes: Any,
    ) -> Any:
        start = time.time()
        try:
            with store_span(operation, backend, **attributes):
                return await call()
        except Exception as e:
            logger.error(f"{backend} {operation} failed: {e}")
            raise StoreUnavailableError(
                f"{backend} {operation} failed: {e}",
                {"backend": backend, "operation": operation},
            ) from e
        finally:
            metrics.store_operation_duration.labels(operation=operation).observe(
                time.time() - start
            )

    async def get_item(self, item_id: str) -> Optional[Item]:
        items = await self.get_items([item_id])
        return items[0] if items else None

    async def get_items(self, item_ids: Sequence[str]) -> list[Item]:
        if not item_ids:
            return []
        points = await self._call(
            "retrieve",
            "qdrant",
            lambda: self.qdrant.retrieve(
                collection_name=self.collection_name,
                ids=[point_id(i) for i in item_ids],
                with_payload=True,
            ),
            ids_count=len(item_ids),
        )
        by_id = {}
        for point in points:
            item = parse_item(point.payload)
            by_id[item.item_id] = item
        # qdrant doesn't preserve request order
        return [by_id[i] for i in item_ids if i in by_id]

    async def related_items(self, item_id: str, limit: int) -> list[Item]:
        result = await self._call(
            "query_points",
            "qdrant",
            lambda: self.qdrant.query_points(
                collection_name=self.collection_name,
                query=point_id(item_id),
                limit=limit,
                with_payload=True,
                query_filter=build_item_filter(excluded_item_ids=[item_id]),
            ),
            limit=limit,
            purpose="related_items",
        )
        return [parse_item(point.payload) for point in result.points]

    async def _scroll(
        self, scroll_filter: Optional[models.Filter], limit: int, purpose: str
    ) -> list[Item]:
        """Most popular points matching `scroll_filter`, ties by item id."""
        records, _ = await self._call(
            "scroll",
            "qdrant",
            lambda: self.qdrant.scroll(
                collection_name=self.collection_name,
                scroll_filter=scroll_filter,
                limit=limit,
                order_by=models.OrderBy(
                    key="popularity", direction=models.Direction.DESC
                ),
                with_payload=True,
            ),
            limit=limit,
            purpose=purpose,
        )
        items = [parse_item(record.payload) for record in records]
        items.sort(key=lambda item: (-item.popularity, item.item_id))
        return items

    async def _count(
        self, count_filter: Optional[models.Filter], exact: bool, purpose: str
    ) -> int:
        result = await self._call(
            "count",
            "qdrant",
            lambda: self.qdrant.count(
                collection_name=self.collection_name,
                count_filter=count_filter,
                exact=exact,
            ),
            purpose=purpose,
        )
        return result.count

    async def items_by_category(self, category: str, limit: int) -> list[Item]:
        return await self._scroll(
            build_item_filter(categories=[category]), limit, "items_by_category"
        )

    async def has_category(self, category: str) -> bool:
        count = await self._count(
            build_item_filter(categories=[category]),
            exact=False,
            purpose="has_category",
        )
        return count > 0

    async def search_items(
        self,
        tokens: Sequence[str],
        limit: int,
        filters: Optional[Filters] = None,
    ) -> list[Item]:
        return await self._scroll(
            build_item_filter(tokens=tokens, filters=filters), limit, "search"
        )

    async def count_items(
        self, tokens: Sequence[str], filters: Optional[Filters] = None
    ) -> int:
        return await self._count(
            build_item_filter(tokens=tokens, filters=filters),
            exact=True,
            purpose="search_total",
        )

    async def popular_items(self, limit: int) -> list[Item]:
        raw = await self._call(
            "get",
            "redis",
            lambda: self.redis.get(REDIS_POPULAR_KEY),
            key=REDIS_POPULAR_KEY,
        )
        if not raw:
            logger.warning(f"Popular pool key '{REDIS_POPULAR_KEY}' is empty in Redis!")
            return []
        try:
            ranked_ids = [str(entry["item_id"]) for entry in json.loads(raw)][:limit]
        except (KeyError, TypeError, ValueError) as e:
            raise StoreUnavailableError(f"Corrupt popular pool: {e}") from e
        return await self.get_items(ranked_ids)

    async def get_profile(self, user_id: str) -> UserProfile:
        history_key = f"{REDIS_USER_HISTORY_PREFIX}{user_id}"
        history = await self._call(
            "zrange",
            "redis",
            lambda: self.redis.zrange(history_key, 0, -1, withscores=True),
            key=history_key,
        )
        interactions = tuple(
            parse_interaction(member, timestamp) for member, timestamp in history or []
        )
        return UserProfile(user_id=user_id, interactions=interactions)
