import asyncio
import time
from collections import Counter
from contextlib import contextmanager
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from ranking_engine.config import REQUEST_DEADLINE_SECONDS
from ranking_engine.engine.errors import RankingError, RankingTimeoutError
from ranking_engine.engine.models import (
    DiscoverRequest,
    RankingContext,
    RankingResult,
    RecommendationRequest,
    ResultPage,
    ScoredItem,
    SearchRequest,
)
from ranking_engine.engine.paginator import slice_page, take_page
from ranking_engine.engine.reranker import compute_diversity, rerank
from ranking_engine.engine.retriever import (
    SOURCE_POPULAR,
    CandidateRetriever,
    Retrieval,
)
from ranking_engine.engine.scorer import RankingWeights, score
from ranking_engine.engine.store import ItemStore
from ranking_engine.logging import setup_logging
from ranking_engine.observability import metrics, stage_span

logger = setup_logging("engine.log")

MAX_SUGGESTIONS = 5
RECOMMENDATION_FACTORS = ("affinity", "freshness", "popularity")


class Stage(str, Enum):
    VALIDATED = "validated"
    RETRIEVING = "retrieving"
    SCORING = "scoring"
    RERANKING = "reranking"
    PAGINATING = "paginating"
    COMPLETED = "completed"
    FAILED = "failed"


_TERMINAL = {Stage.COMPLETED, Stage.FAILED}

_NEXT = {
    None: Stage.VALIDATED,
    Stage.VALIDATED: Stage.RETRIEVING,
    Stage.RETRIEVING: Stage.SCORING,
    Stage.SCORING: Stage.RERANKING,
    Stage.RERANKING: Stage.PAGINATING,
    Stage.PAGINATING: Stage.COMPLETED,
}


class RequestLifecycle:
    """
    Per-request state machine:

        validated -> retrieving -> scoring -> reranking -> paginating -> completed

    with `failed` reachable from every non-terminal state.
    """

    def __init__(self, flow: str):
        self.flow = flow
        self.stage: Optional[Stage] = None
        self.history: list[Stage] = []
        self.error: Optional[BaseException] = None

    @property
    def finished(self) -> bool:
        return self.stage in _TERMINAL

    def advance(self, stage: Stage) -> None:
        if stage is Stage.FAILED:
            if self.finished:
                raise RuntimeError(f"cannot fail a {self.stage.value} request")
        elif _NEXT.get(self.stage) is not stage:
            current = self.stage.value if self.stage else "new"
            raise RuntimeError(f"illegal transition {current} -> {stage.value}")
        self.stage = stage
        self.history.append(stage)

    def fail(self, error: BaseException) -> None:
        if self.finished:
            return
        self.error = error
        self.advance(Stage.FAILED)
        kind = error.kind if isinstance(error, RankingError) else "internal"
        metrics.ranking_failures.labels(flow=self.flow, kind=kind).inc()

    @contextmanager
    def enter(self, stage: Stage):
        self.advance(stage)
        start = time.perf_counter()
        try:
            with stage_span(self.flow, stage.value) as span:
                yield span
        finally:
            metrics.stage_duration.labels(flow=self.flow, stage=stage.value).observe(
                time.perf_counter() - start
            )


def category_suggestions(
    items: Sequence[ScoredItem], k: int = MAX_SUGGESTIONS
) -> list[str]:
    """Most frequent categories among `items`, ties by name."""
    counts = Counter(
        category for scored in items for category in scored.item.categories
    )
    ranked = sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))
    return [category for category, _ in ranked[:k]]


def page_factors(
    items: Sequence[ScoredItem], names: Sequence[str] = RECOMMENDATION_FACTORS
) -> dict[str, float]:
    """Mean of each scoring signal over `items`; 0 for an empty page."""
    if not items:
        return {name: 0.0 for name in names}
    return {
        name: sum(s.signals.get(name, 0.0) for s in items) / len(items)
        for name in names
    }


def recommendation_confidence(
    history_size: int, page: ResultPage, scored: Sequence[ScoredItem]
) -> float:
    """History depth (up to 0.5) plus half the mean normalized score of the page."""
    if not page.items:
        return 0.0
    scores = [s.score for s in scored]
    low, high = min(scores), max(scores)
    spread = high - low
    normalized = [
        (s.score - low) / spread if spread > 0 else 1.0 for s in page.items
    ]
    confidence = min(history_size / 20, 0.5) + 0.5 * sum(normalized) / len(normalized)
    return min(confidence, 1.0)


class RankingEngine:
    """
    Composes retrieval, scoring, diversity re-ranking and pagination into the
    recommendation, search and discovery flows under a per-request deadline.

    The engine never retries: store failures and timeouts reach the caller as
    typed `RankingError`s. Partial rankings are never returned.
    """

    def __init__(
        self,
        store: ItemStore,
        weights: Optional[RankingWeights] = None,
        deadline_seconds: float = REQUEST_DEADLINE_SECONDS,
        retriever: Optional[CandidateRetriever] = None,
    ):
        self.store = store
        self.weights = weights or RankingWeights.default()
        self.deadline_seconds = deadline_seconds
        self.retriever = retriever or CandidateRetriever(store)

    async def get_recommendations(
        self, request: RecommendationRequest, now: Optional[float] = None
    ) -> RankingResult:
        lifecycle = RequestLifecycle("recommendation")
        return await self._run(
            lifecycle, request, lambda: self._recommend(lifecycle, request, now)
        )

    async def search(
        self, request: SearchRequest, now: Optional[float] = None
    ) -> RankingResult:
        lifecycle = RequestLifecycle("search")
        return await self._run(
            lifecycle, request, lambda: self._search(lifecycle, request, now)
        )

    async def discover(
        self, request: DiscoverRequest, now: Optional[float] = None
    ) -> RankingResult:
        lifecycle = RequestLifecycle("discovery")
        return await self._run(
            lifecycle, request, lambda: self._discover(lifecycle, request, now)
        )

    async def _run(
        self,
        lifecycle: RequestLifecycle,
        request,
        flow: Callable[[], Awaitable[RankingResult]],
    ) -> RankingResult:
        try:
            request.validate()
            lifecycle.advance(Stage.VALIDATED)
            result = await asyncio.wait_for(flow(), timeout=self.deadline_seconds)
        except asyncio.TimeoutError:
            stage = lifecycle.stage.value if lifecycle.stage else None
            error = RankingTimeoutError(
                f"{lifecycle.flow} request exceeded {self.deadline_seconds}s deadline",
                {"stage": stage},
            )
            lifecycle.fail(error)
            logger.error(f"{lifecycle.flow} request timed out while {stage}")
            raise error from None
        except RankingError as e:
            lifecycle.fail(e)
            logger.warning(f"{lifecycle.flow} request failed ({e.kind}): {e.message}")
            raise
        except Exception as e:
            lifecycle.fail(e)
            logger.error(f"{lifecycle.flow} request failed unexpectedly: {e}")
            raise

        lifecycle.advance(Stage.COMPLETED)
        metrics.ranking_requests.labels(flow=lifecycle.flow, source=result.source).inc()
        logger.info(
            f"{lifecycle.flow} completed: source={result.source} "
            f"returned={len(result.page.items)} total={result.page.total}"
        )
        return RankingResult(
            page=result.page,
            source=result.source,
            confidence=result.confidence,
            suggestions=result.suggestions,
            factors=result.factors,
            stages=tuple(stage.value for stage in lifecycle.history),
        )

    def _rank(
        self,
        lifecycle: RequestLifecycle,
        retrieval: Retrieval,
        context: RankingContext,
        diversity_factor: float,
        depth: int,
    ) -> tuple[list[ScoredItem], list[ScoredItem]]:
        metrics.candidates_retrieved.labels(flow=lifecycle.flow).observe(
            len(retrieval.candidates)
        )
        with lifecycle.enter(Stage.SCORING):
            scored = score(retrieval.candidates, context, self.weights)
        with lifecycle.enter(Stage.RERANKING):
            ranked = (
                rerank(scored, diversity_factor, min(depth, len(scored)))
                if scored
                else []
            )
        return scored, ranked

    async def _recommend(
        self,
        lifecycle: RequestLifecycle,
        request: RecommendationRequest,
        now: Optional[float],
    ) -> RankingResult:
        now = time.time() if now is None else now
        with lifecycle.enter(Stage.RETRIEVING):
            profile = await self.store.get_profile(request.user_id)
            retrieval = await self.retriever.for_recommendation(request, profile)

        context = RankingContext(
            mode="recommendation", now=now, affinity=retrieval.affinity
        )
        scored, ranked = self._rank(
            lifecycle, retrieval, context, request.diversity_factor, request.limit
        )

        with lifecycle.enter(Stage.PAGINATING):
            page = take_page(ranked, request.limit, total=len(scored))

        if len(page.items) >= 2:
            metrics.recommendation_diversity.observe(
                compute_diversity([s.features for s in page.items])
            )

        if retrieval.source == SOURCE_POPULAR:
            confidence = 0.5
        else:
            confidence = recommendation_confidence(retrieval.history_size, page, scored)
        return RankingResult(
            page=page,
            source=retrieval.source,
            confidence=confidence,
            factors=page_factors(page.items),
        )

    async def _search(
        self,
        lifecycle: RequestLifecycle,
        request: SearchRequest,
        now: Optional[float],
    ) -> RankingResult:
        now = time.time() if now is None else now
        with lifecycle.enter(Stage.RETRIEVING):
            retrieval = await self.retriever.for_search(request)

        context = RankingContext(
            mode="search", now=now, query_tokens=retrieval.query_tokens
        )
        scored, ranked = self._rank(
            lifecycle,
            retrieval,
            context,
            request.diversity_factor,
            request.offset + request.limit,
        )

        with lifecycle.enter(Stage.PAGINATING):
            total = len(scored) if retrieval.total is None else retrieval.total
            page = slice_page(ranked, request.limit, request.offset, total=total)

        return RankingResult(
            page=page,
            source=retrieval.source,
            suggestions=tuple(category_suggestions(page.items)),
        )

    async def _discover(
        self,
        lifecycle: RequestLifecycle,
        request: DiscoverRequest,
        now: Optional[float],
    ) -> RankingResult:
        now = time.time() if now is None else now
        with lifecycle.enter(Stage.RETRIEVING):
            profile = (
                await self.store.get_profile(request.user_id)
                if request.user_id is not None
                else None
            )
            retrieval = await self.retriever.for_discovery(request, profile)

        context = RankingContext(mode="discovery", now=now)
        scored, ranked = self._rank(lifecycle, retrieval, context, 0.0, request.limit)

        with lifecycle.enter(Stage.PAGINATING):
            page = take_page(ranked, request.limit, total=len(scored))

        return RankingResult(page=page, source=retrieval.source)
