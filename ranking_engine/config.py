import os
from pathlib import Path

# data paths
DATA_DIR = Path("data")
CATALOG_PATH = Path(os.getenv("CATALOG_PATH", str(DATA_DIR / "catalog.json")))

# redis
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_USER_HISTORY_PREFIX = "user:history:"  # zset, score = interaction timestamp
REDIS_POPULAR_KEY = "global:popular_items"
REDIS_POOL_CACHE_KEY = "cache:pool:popular"
USER_HISTORY_MAX_LENGTH = 100

# qdrant
QDRANT_HOST = os.getenv("QDRANT_HOST", "localhost")
QDRANT_PORT = int(os.getenv("QDRANT_PORT", 6333))
QDRANT_COLLECTION_NAME = "items"
VECTOR_SIZE = 32

# request handling
REQUEST_DEADLINE_SECONDS = float(os.getenv("REQUEST_DEADLINE_SECONDS", 2.0))
MAX_LIMIT = 100
DEFAULT_RECOMMENDATION_LIMIT = 10
DEFAULT_SEARCH_LIMIT = 20
DEFAULT_DISCOVER_LIMIT = 20
DEFAULT_DIVERSITY_FACTOR = 0.3

# retrieval
HISTORY_WINDOW = 5  # most recent interactions used as seeds
RELATED_PER_SEED = 50
SEARCH_CANDIDATE_LIMIT = 500
DISCOVERY_POOL_SIZE = 200
CATEGORY_SEED_PREFIX = "category:"

# scoring
MATCH_WEIGHT = 1.0
AFFINITY_WEIGHT = 1.0
FRESHNESS_WEIGHT = 0.3
POPULARITY_WEIGHT = 0.2
FRESHNESS_HALF_LIFE_DAYS = 30.0
INTERACTION_WEIGHTS = {
    "purchase": 1.0,
    "favorite": 0.8,
    "add_to_cart": 0.5,
    "watch": 0.3,
    "view": 0.2,
    "click": 0.1,
}
DEFAULT_INTERACTION_WEIGHT = 0.1

# popular pool cache
POOL_CACHE_TTL_SECONDS = 1800  # 30 minutes
POOL_CACHE_MAX_ITEMS = 200
