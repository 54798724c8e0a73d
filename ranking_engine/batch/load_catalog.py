import hashlib
import json
import sys
from pathlib import Path

import numpy as np
import redis
from qdrant_client import QdrantClient
from qdrant_client.models import Distance, PayloadSchemaType, PointStruct, VectorParams

from ranking_engine.config import (
    CATALOG_PATH,
    QDRANT_COLLECTION_NAME,
    QDRANT_HOST,
    QDRANT_PORT,
    REDIS_HOST,
    REDIS_PORT,
    REDIS_USER_HISTORY_PREFIX,
    USER_HISTORY_MAX_LENGTH,
    VECTOR_SIZE,
)
from ranking_engine.engine.models import CATEGORY_ATTRIBUTES, Item
from ranking_engine.logging import setup_logging
from ranking_engine.stores.qdrant_redis import item_payload, point_id

logger = setup_logging("loader.log")


def get_redis_client():
    return redis.Redis(host=REDIS_HOST, port=REDIS_PORT, decode_responses=True)


def get_qdrant_client():
    return QdrantClient(host=QDRANT_HOST, port=QDRANT_PORT)


def hashed_feature_vector(item: Item, size: int = VECTOR_SIZE) -> list[float]:
    """
    fallback embedding for items shipped without a vector:
    feature-hash categories and search tokens into `size` buckets.
    """
    vector = np.zeros(size, dtype=np.float32)
    features = [f"cat:{c}" for c in item.categories] + sorted(item.search_tokens)
    for feature in features:
        digest = hashlib.md5(feature.encode("utf-8")).digest()
        bucket = int.from_bytes(digest[:4], "little") % size
        # categories weigh more than free-text tokens
        vector[bucket] += 2.0 if feature.startswith("cat:") else 1.0
    norm = np.linalg.norm(vector)
    if norm > 0:
        vector /= norm
    return vector.tolist()


def payload_indexes(raw_items: list[dict]) -> list[tuple[str, PayloadSchemaType]]:
    """
    Payload indexes backing the store's reads: keyword indexes for the category,
    token and attribute filters, a float index for popularity-ordered scrolls.
    """
    names = set(CATEGORY_ATTRIBUTES)
    for raw in raw_items:
        names.update(raw.get("attributes") or {})
    indexes = [
        ("categories_norm", PayloadSchemaType.KEYWORD),
        ("search_tokens", PayloadSchemaType.KEYWORD),
    ]
    indexes += [
        (f"filter_values.{name}", PayloadSchemaType.KEYWORD) for name in sorted(names)
    ]
    indexes.append(("popularity", PayloadSchemaType.FLOAT))
    return indexes


def load_items_to_qdrant(raw_items: list[dict]):
    logger.info("Loading items to Qdrant...")
    client = get_qdrant_client()

    # delete existing collection if it exists, then create a new one
    if client.collection_exists(collection_name=QDRANT_COLLECTION_NAME):
        logger.info("Deleting existing Qdrant collection...")
        client.delete_collection(collection_name=QDRANT_COLLECTION_NAME)

    logger.info("Creating Qdrant collection...")
    client.create_collection(
        collection_name=QDRANT_COLLECTION_NAME,
        vectors_config=VectorParams(size=VECTOR_SIZE, distance=Distance.COSINE),
    )
    for field_name, schema in payload_indexes(raw_items):
        client.create_payload_index(
            collection_name=QDRANT_COLLECTION_NAME,
            field_name=field_name,
            field_schema=schema,
        )

    points = []
    batch_size = 5000
    for i, raw in enumerate(raw_items):
        item = Item.from_dict(raw)
        vector = raw.get("vector") or hashed_feature_vector(item)
        if len(vector) != VECTOR_SIZE:
            raise ValueError(
                f"Item {item.item_id} has a {len(vector)}-d vector, expected {VECTOR_SIZE}"
            )
        points.append(
            PointStruct(
                id=point_id(item.item_id),
                vector=[float(x) for x in vector],
                payload=item_payload(item),
            )
        )

        if len(points) >= batch_size:
            client.upload_points(collection_name=QDRANT_COLLECTION_NAME, points=points)
            print(f"Uploaded {i + 1} items...", end="\r")
            points = []

    if points:
        client.upload_points(collection_name=QDRANT_COLLECTION_NAME, points=points)

    logger.info(
        f"Successfully uploaded {len(raw_items)} items to Qdrant collection "
        f"'{QDRANT_COLLECTION_NAME}'."
    )


def load_histories_to_redis(profiles: dict[str, list[dict]]):
    logger.info("Loading interaction histories to Redis...")
    r = get_redis_client()

    try:
        pipe = r.pipeline()
        for user_id, interactions in profiles.items():
            history_key = f"{REDIS_USER_HISTORY_PREFIX}{user_id}"
            pipe.delete(history_key)
            members = {
                json.dumps(
                    {"item_id": str(raw["item_id"]), "type": raw.get("type", "view")},
                    sort_keys=True,
                ): float(raw.get("timestamp", 0.0))
                for raw in interactions
            }
            if members:
                pipe.zadd(history_key, members)
                # keep only the most recent interactions
                pipe.zremrangebyrank(history_key, 0, -(USER_HISTORY_MAX_LENGTH + 1))
        pipe.execute()
        logger.info(f"Successfully loaded histories for {len(profiles)} users.")
    finally:
        r.close()


def read_catalog(path: Path) -> dict:
    logger.info(f"Reading catalog from {path}...")
    with open(path) as f:
        return json.load(f)


def main():
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else CATALOG_PATH
    try:
        catalog = read_catalog(path)
        load_items_to_qdrant(catalog.get("items", []))
        load_histories_to_redis(catalog.get("profiles", {}))
        logger.info("Loader finished successfully!")
    except Exception as e:
        logger.error(f"Loader failed: {e}")
        raise


if __name__ == "__main__":
    main()
