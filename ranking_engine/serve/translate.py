"""
Translation from validated HTTP input to immutable engine requests, and from
engine results back to response payloads. Nothing untyped crosses into the
engine.
"""

from typing import Optional

from ranking_engine.config import (
    DEFAULT_DISCOVER_LIMIT,
    DEFAULT_DIVERSITY_FACTOR,
    DEFAULT_RECOMMENDATION_LIMIT,
)
from ranking_engine.engine.models import (
    DiscoverRequest,
    Item,
    RankingResult,
    RecommendationRequest,
    ScoredItem,
    SearchRequest,
)
from ranking_engine.serve.schemas import (
    DiscoverData,
    ItemPayload,
    RankedItem,
    RecommendationData,
    SearchBody,
    SearchData,
)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def to_recommendation_request(
    user_id: str,
    based_on: Optional[str] = None,
    limit: Optional[int] = None,
    diversity_factor: Optional[float] = None,
) -> RecommendationRequest:
    return RecommendationRequest(
        user_id=user_id.strip(),
        based_on=_clean(based_on),
        limit=DEFAULT_RECOMMENDATION_LIMIT if limit is None else limit,
        diversity_factor=(
            DEFAULT_DIVERSITY_FACTOR if diversity_factor is None else diversity_factor
        ),
    )


def to_search_request(body: SearchBody) -> SearchRequest:
    filters = {
        name.strip(): frozenset(v.strip() for v in values if v.strip())
        for name, values in body.filters.items()
        if name.strip()
    }
    return SearchRequest(
        query=body.query,
        user_id=_clean(body.user_id),
        filters=filters,
        limit=body.limit,
        offset=body.offset,
        diversity_factor=body.diversity_factor,
    )


def to_discover_request(
    user_id: Optional[str] = None, limit: Optional[int] = None
) -> DiscoverRequest:
    return DiscoverRequest(
        user_id=_clean(user_id),
        limit=DEFAULT_DISCOVER_LIMIT if limit is None else limit,
    )


def item_payload(item: Item) -> ItemPayload:
    return ItemPayload(**item.to_dict())


def ranked_item(scored: ScoredItem) -> RankedItem:
    return RankedItem(**scored.item.to_dict(), score=round(scored.score, 6))


def recommendation_data(user_id: str, result: RankingResult) -> RecommendationData:
    return RecommendationData(
        user_id=user_id,
        source=result.source,
        items=[ranked_item(s) for s in result.page.items],
        total=result.page.total,
        limit=result.page.limit,
        confidence=round(result.confidence, 4),
        factors={name: round(value, 4) for name, value in result.factors.items()},
    )


def search_data(
    request: SearchRequest, result: RankingResult, processing_time_ms: float
) -> SearchData:
    return SearchData(
        query=request.query,
        items=[ranked_item(s) for s in result.page.items],
        total=result.page.total,
        limit=result.page.limit,
        offset=result.page.offset,
        suggestions=list(result.suggestions),
        processing_time_ms=round(processing_time_ms, 2),
    )


def discover_data(result: RankingResult) -> DiscoverData:
    items = [item_payload(s.item) for s in result.page.items]
    return DiscoverData(items=items, total=len(items))
