import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

from ranking_engine.config import (
    CATEGORY_SEED_PREFIX,
    DEFAULT_INTERACTION_WEIGHT,
    DISCOVERY_POOL_SIZE,
    HISTORY_WINDOW,
    INTERACTION_WEIGHTS,
    RELATED_PER_SEED,
    SEARCH_CANDIDATE_LIMIT,
)
from ranking_engine.engine.errors import InvalidInputError, NotFoundError
from ranking_engine.engine.models import (
    CandidateSet,
    DiscoverRequest,
    Item,
    RecommendationRequest,
    SearchRequest,
    UserProfile,
    tokenize,
)
from ranking_engine.engine.store import ItemStore
from ranking_engine.logging import setup_logging
from ranking_engine.observability import metrics

logger = setup_logging("engine.log")

# which retrieval path produced the candidates
SOURCE_SEED = "seed"
SOURCE_CATEGORY = "category"
SOURCE_HISTORY = "history"
SOURCE_POPULAR = "popular"
SOURCE_SEARCH = "search"


@dataclass(frozen=True)
class Retrieval:
    candidates: CandidateSet
    source: str
    affinity: Mapping[str, float] = field(default_factory=dict)
    query_tokens: tuple[str, ...] = ()
    history_size: int = 0
    # matches before the candidate cap, when the path can count them
    total: Optional[int] = None


def category_affinity(weighted_items: list[tuple[Item, float]]) -> dict[str, float]:
    """
    Category -> weight profile built from seed items, scaled so the strongest
    category has weight 1.0.
    """
    totals: dict[str, float] = defaultdict(float)
    for item, weight in weighted_items:
        for category in item.categories:
            totals[category] += weight
    if not totals:
        return {}
    top = max(totals.values())
    if top <= 0:
        return {}
    return {category: value / top for category, value in sorted(totals.items())}


class CandidateRetriever:
    def __init__(
        self,
        store: ItemStore,
        history_window: int = HISTORY_WINDOW,
        related_per_seed: int = RELATED_PER_SEED,
        search_limit: int = SEARCH_CANDIDATE_LIMIT,
        pool_size: int = DISCOVERY_POOL_SIZE,
    ):
        self.store = store
        self.history_window = history_window
        self.related_per_seed = related_per_seed
        self.search_limit = search_limit
        self.pool_size = pool_size

    async def retrieve(
        self,
        request: Union[RecommendationRequest, SearchRequest, DiscoverRequest],
        profile: Optional[UserProfile] = None,
    ) -> Retrieval:
        if isinstance(request, RecommendationRequest):
            return await self.for_recommendation(
                request, profile or UserProfile(request.user_id)
            )
        if isinstance(request, SearchRequest):
            return await self.for_search(request)
        if isinstance(request, DiscoverRequest):
            return await self.for_discovery(request, profile)
        raise InvalidInputError(f"Unsupported request type: {type(request).__name__}")

    async def for_recommendation(
        self, request: RecommendationRequest, profile: UserProfile
    ) -> Retrieval:
        excluded = set(profile.interacted_ids())
        history_size = len(profile.interactions)

        if request.based_on is not None:
            retrieval = await self._from_seed(request.based_on)
            excluded.add(request.based_on)
        elif profile.interactions:
            retrieval = await self._from_history(profile)
        else:
            retrieval = None

        if retrieval is not None:
            candidates = self._exclude(retrieval.candidates, excluded)
            if candidates or retrieval.source != SOURCE_HISTORY:
                return Retrieval(
                    candidates=candidates,
                    source=retrieval.source,
                    affinity=retrieval.affinity,
                    history_size=history_size,
                )
            logger.info(
                f"History seeds of user {profile.user_id} yielded no unseen items, "
                "falling back to popular pool"
            )

        # cold start
        pool = CandidateSet(await self.store.popular_items(self.pool_size))
        return Retrieval(
            candidates=self._exclude(pool, excluded),
            source=SOURCE_POPULAR,
            history_size=history_size,
        )

    async def _from_seed(self, based_on: str) -> Retrieval:
        if based_on.startswith(CATEGORY_SEED_PREFIX):
            category = based_on[len(CATEGORY_SEED_PREFIX):]
            if not await self.store.has_category(category):
                raise NotFoundError("Category", category)
            return await self._from_category(category)

        seed = await self.store.get_item(based_on)
        if seed is not None:
            related = await self.store.related_items(seed.item_id, self.related_per_seed)
            return Retrieval(
                candidates=CandidateSet(related),
                source=SOURCE_SEED,
                affinity=category_affinity([(seed, 1.0)]),
            )

        # bare tokens that are not item ids may still name a category
        if await self.store.has_category(based_on):
            return await self._from_category(based_on)
        raise NotFoundError("Item", based_on)

    async def _from_category(self, category: str) -> Retrieval:
        items = await self.store.items_by_category(category, self.pool_size)
        return Retrieval(
            candidates=CandidateSet(items),
            source=SOURCE_CATEGORY,
            affinity={category: 1.0},
        )

    async def _from_history(self, profile: UserProfile) -> Retrieval:
        recent = profile.recent(self.history_window)
        seed_ids = [interaction.item_id for interaction in recent]

        # fan out one related-items read per seed; gather keeps argument order,
        # so the merge below does not depend on completion order
        seed_items, *related_lists = await asyncio.gather(
            self.store.get_items(seed_ids),
            *(
                self.store.related_items(seed_id, self.related_per_seed)
                for seed_id in seed_ids
            ),
        )

        candidates = CandidateSet(
            item for related in related_lists for item in related
        )

        weights = {
            interaction.item_id: INTERACTION_WEIGHTS.get(
                interaction.interaction_type, DEFAULT_INTERACTION_WEIGHT
            )
            for interaction in recent
        }
        affinity = category_affinity(
            [
                (item, weights.get(item.item_id, DEFAULT_INTERACTION_WEIGHT))
                for item in seed_items
            ]
        )
        return Retrieval(candidates=candidates, source=SOURCE_HISTORY, affinity=affinity)

    async def for_search(self, request: SearchRequest) -> Retrieval:
        # an empty query browses the whole catalog by popularity, narrowed by
        # the filters; filters run inside the store, before the candidate cap
        tokens = tuple(tokenize(request.query))
        for name in request.filters:
            metrics.filter_applied.labels(attribute=name).inc()

        items, total = await asyncio.gather(
            self.store.search_items(tokens, self.search_limit, request.filters),
            self.store.count_items(tokens, request.filters),
        )
        if total > len(items):
            logger.info(
                f"Search matched {total} items, ranking the top {len(items)} by popularity"
            )
        return Retrieval(
            candidates=CandidateSet(items),
            source=SOURCE_SEARCH,
            query_tokens=tokens,
            total=total,
        )

    async def for_discovery(
        self, request: DiscoverRequest, profile: Optional[UserProfile] = None
    ) -> Retrieval:
        pool = CandidateSet(await self.store.popular_items(self.pool_size))
        if request.user_id is None or profile is None:
            return Retrieval(candidates=pool, source=SOURCE_POPULAR)
        return Retrieval(
            candidates=self._exclude(pool, profile.interacted_ids()),
            source=SOURCE_POPULAR,
            history_size=len(profile.interactions),
        )

    def _exclude(self, candidates: CandidateSet, excluded) -> CandidateSet:
        remaining = candidates.without(excluded)
        dropped = len(candidates) - len(remaining)
        if dropped:
            metrics.items_excluded_history.inc(dropped)
        return remaining
