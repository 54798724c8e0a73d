from ranking_engine.engine.cache import PoolCachingStore
from ranking_engine.engine.errors import (
    InvalidInputError,
    NotFoundError,
    RankingError,
    RankingTimeoutError,
    StoreUnavailableError,
)
from ranking_engine.engine.models import (
    CandidateSet,
    DiscoverRequest,
    Interaction,
    Item,
    RankingResult,
    RecommendationRequest,
    ResultPage,
    ScoredItem,
    SearchRequest,
    UserProfile,
)
from ranking_engine.engine.orchestrator import RankingEngine, RequestLifecycle, Stage
from ranking_engine.engine.scorer import RankingWeights
from ranking_engine.engine.store import InMemoryCatalog, ItemStore

__all__ = [
    "CandidateSet",
    "DiscoverRequest",
    "InMemoryCatalog",
    "Interaction",
    "InvalidInputError",
    "Item",
    "ItemStore",
    "NotFoundError",
    "PoolCachingStore",
    "RankingEngine",
    "RankingError",
    "RankingResult",
    "RankingTimeoutError",
    "RankingWeights",
    "RecommendationRequest",
    "RequestLifecycle",
    "ResultPage",
    "ScoredItem",
    "SearchRequest",
    "Stage",
    "StoreUnavailableError",
    "UserProfile",
]
