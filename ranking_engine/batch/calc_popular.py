import json

import redis
from qdrant_client import QdrantClient

from ranking_engine.config import (
    DISCOVERY_POOL_SIZE,
    QDRANT_COLLECTION_NAME,
    QDRANT_HOST,
    QDRANT_PORT,
    REDIS_HOST,
    REDIS_POOL_CACHE_KEY,
    REDIS_PORT,
    REDIS_POPULAR_KEY,
)
from ranking_engine.engine.models import Item
from ranking_engine.logging import setup_logging

logger = setup_logging("calc_popular.log")

SCROLL_BATCH = 1000


def read_all_items(client: QdrantClient) -> list[Item]:
    logger.info(f"Scrolling items from Qdrant collection '{QDRANT_COLLECTION_NAME}'...")
    items = []
    offset = None
    while True:
        records, offset = client.scroll(
            collection_name=QDRANT_COLLECTION_NAME,
            limit=SCROLL_BATCH,
            offset=offset,
            with_payload=True,
        )
        items.extend(Item.from_dict(record.payload or {}) for record in records)
        if offset is None:
            break
    return items


def get_popular_items(items: list[Item], k: int = DISCOVERY_POOL_SIZE) -> list[dict]:
    """
    most popular first, ties by item id so reruns on the same data give the
    same pool. freshness is blended in at ranking time, not here.
    """
    ranked = sorted(items, key=lambda item: (-item.popularity, item.item_id))
    return [
        {"item_id": item.item_id, "score": float(item.popularity)}
        for item in ranked[:k]
    ]


def save_to_redis(data_list: list[dict]):
    logger.info(f"Connecting to Redis at {REDIS_HOST}:{REDIS_PORT}...")
    try:
        r = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, decode_responses=True)
        r.set(REDIS_POPULAR_KEY, json.dumps(data_list))
        # the cached copy of the old pool is stale now
        r.delete(REDIS_POOL_CACHE_KEY)
        logger.info(
            f"Successfully saved {len(data_list)} popular items to '{REDIS_POPULAR_KEY}'"
        )
    except Exception as e:
        logger.error(f"Failed to write to Redis: {e}")
        raise e


def main():
    client = QdrantClient(host=QDRANT_HOST, port=QDRANT_PORT)
    try:
        items = read_all_items(client)
        payload = get_popular_items(items)
        save_to_redis(payload)
    finally:
        client.close()


if __name__ == "__main__":
    main()
