import math
from dataclasses import dataclass
from typing import Iterable

from ranking_engine.config import (
    AFFINITY_WEIGHT,
    FRESHNESS_HALF_LIFE_DAYS,
    FRESHNESS_WEIGHT,
    MATCH_WEIGHT,
    POPULARITY_WEIGHT,
)
from ranking_engine.engine.models import Item, RankingContext, ScoredItem

SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class RankingWeights:
    match: float = MATCH_WEIGHT
    affinity: float = AFFINITY_WEIGHT
    freshness: float = FRESHNESS_WEIGHT
    popularity: float = POPULARITY_WEIGHT
    freshness_half_life_days: float = FRESHNESS_HALF_LIFE_DAYS

    @classmethod
    def default(cls) -> "RankingWeights":
        return cls()


def match_strength(item: Item, query_tokens: Iterable[str]) -> float:
    """Fraction of the query tokens found in the item's indexed text."""
    tokens = set(query_tokens)
    if not tokens:
        return 0.0
    return len(tokens & item.search_tokens) / len(tokens)


def affinity_strength(item: Item, affinity: dict[str, float]) -> float:
    """Share of the seed/profile category mass covered by the item's categories."""
    total = sum(affinity.values())
    if total <= 0:
        return 0.0
    covered = sum(affinity.get(category, 0.0) for category in set(item.categories))
    return covered / total


def freshness(item: Item, now: float, half_life_days: float) -> float:
    """Exponential decay with item age; 1.0 when published at `now`."""
    if item.published_at is None or half_life_days <= 0:
        return 0.0
    age_days = max(0.0, now - item.published_at) / SECONDS_PER_DAY
    return 0.5 ** (age_days / half_life_days)


def popularity(item: Item) -> float:
    # log scale so a few viral items can't dominate everything else
    return math.log1p(max(item.popularity, 0.0))


def feature_vocabulary(items: Iterable[Item]) -> list[str]:
    return sorted({category for item in items for category in item.categories})


def feature_vector(item: Item, vocabulary: list[str]) -> tuple[float, ...]:
    categories = set(item.categories)
    return tuple(1.0 if category in categories else 0.0 for category in vocabulary)


def score(
    candidates: Iterable[Item],
    context: RankingContext,
    weights: RankingWeights,
) -> list[ScoredItem]:
    """
    Attach a relevance score and a diversity feature vector to every candidate.

    The score is a weighted sum of the mode-specific signal (query match for
    search, seed/profile affinity for recommendations, nothing for discovery),
    a freshness term computed against `context.now`, and a log-scaled
    popularity term. The unweighted signal values are kept on each scored
    item. Pure: same candidates, context and weights give the same output.
    """
    items = list(candidates)
    vocabulary = feature_vocabulary(items)
    affinity = dict(context.affinity)

    scored = []
    for item in items:
        signals = {}
        value = 0.0
        if context.mode == "search":
            signals["match"] = match_strength(item, context.query_tokens)
            value += weights.match * signals["match"]
        elif context.mode == "recommendation":
            signals["affinity"] = affinity_strength(item, affinity)
            value += weights.affinity * signals["affinity"]
        signals["freshness"] = freshness(
            item, context.now, weights.freshness_half_life_days
        )
        signals["popularity"] = popularity(item)
        value += weights.freshness * signals["freshness"]
        value += weights.popularity * signals["popularity"]
        scored.append(
            ScoredItem(
                item=item,
                score=value,
                features=feature_vector(item, vocabulary),
                signals=signals,
            )
        )
    return scored
