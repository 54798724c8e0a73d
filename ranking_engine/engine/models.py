"""
Value types shared by every stage of the ranking pipeline.

Items and profiles are read references owned by the store. Requests are
immutable and validated by the engine before any processing starts. Scored
items and result pages are created per request and never shared.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Optional

from ranking_engine.config import (
    DEFAULT_DISCOVER_LIMIT,
    DEFAULT_DIVERSITY_FACTOR,
    DEFAULT_RECOMMENDATION_LIMIT,
    DEFAULT_SEARCH_LIMIT,
    MAX_LIMIT,
)
from ranking_engine.engine.errors import InvalidInputError

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)

CATEGORY_ATTRIBUTES = ("category", "categories")


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens, duplicates removed, first occurrence order kept."""
    seen: dict[str, None] = {}
    for token in _TOKEN_RE.findall(text.casefold()):
        seen.setdefault(token, None)
    return list(seen)


@dataclass(frozen=True)
class Item:
    item_id: str
    title: str = ""
    description: str = ""
    categories: tuple[str, ...] = ()
    popularity: float = 0.0
    published_at: Optional[float] = None  # unix seconds
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def search_tokens(self) -> frozenset[str]:
        parts = [self.title, self.description, " ".join(self.categories)]
        for value in self.attributes.values():
            if isinstance(value, (list, tuple, set, frozenset)):
                parts.extend(str(v) for v in value)
            else:
                parts.append(str(value))
        return frozenset(tokenize(" ".join(parts)))

    def attribute_values(self, name: str) -> frozenset[str]:
        """Values of `name` as casefolded strings; categories are addressable too."""
        if name in CATEGORY_ATTRIBUTES and name not in self.attributes:
            raw: Any = self.categories
        else:
            raw = self.attributes.get(name)
        if raw is None:
            return frozenset()
        if isinstance(raw, (list, tuple, set, frozenset)):
            return frozenset(str(v).casefold() for v in raw)
        return frozenset({str(raw).casefold()})

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "title": self.title,
            "description": self.description,
            "categories": list(self.categories),
            "popularity": self.popularity,
            "published_at": self.published_at,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Item":
        published_at = data.get("published_at")
        return cls(
            item_id=str(data["item_id"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            categories=tuple(data.get("categories") or ()),
            popularity=float(data.get("popularity") or 0.0),
            published_at=float(published_at) if published_at is not None else None,
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass(frozen=True)
class Interaction:
    item_id: str
    interaction_type: str
    timestamp: float


@dataclass(frozen=True)
class UserProfile:
    user_id: str
    interactions: tuple[Interaction, ...] = ()

    def recent(self, window: int) -> list[Interaction]:
        """Most recent interactions first, one per item, at most `window` of them."""
        # stable sort keeps later-recorded interactions first on equal timestamps
        ordered = sorted(
            reversed(self.interactions), key=lambda i: i.timestamp, reverse=True
        )
        seen: set[str] = set()
        result = []
        for interaction in ordered:
            if interaction.item_id in seen:
                continue
            seen.add(interaction.item_id)
            result.append(interaction)
            if len(result) >= window:
                break
        return result

    def interacted_ids(self) -> frozenset[str]:
        return frozenset(i.item_id for i in self.interactions)


def _check_limit(limit: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidInputError("limit must be an integer", {"limit": limit})
    if limit <= 0 or limit > MAX_LIMIT:
        raise InvalidInputError(
            f"limit must be between 1 and {MAX_LIMIT}", {"limit": limit}
        )


def _check_diversity(diversity_factor: float) -> None:
    if isinstance(diversity_factor, bool) or not isinstance(
        diversity_factor, (int, float)
    ):
        raise InvalidInputError(
            "diversity_factor must be a number",
            {"diversity_factor": diversity_factor},
        )
    if not 0.0 <= diversity_factor <= 1.0:
        raise InvalidInputError(
            "diversity_factor must be within [0, 1]",
            {"diversity_factor": diversity_factor},
        )


@dataclass(frozen=True)
class RecommendationRequest:
    user_id: str
    based_on: Optional[str] = None  # item id or category token
    limit: int = DEFAULT_RECOMMENDATION_LIMIT
    diversity_factor: float = DEFAULT_DIVERSITY_FACTOR

    def validate(self) -> None:
        if not isinstance(self.user_id, str) or not self.user_id.strip():
            raise InvalidInputError("user_id must be a non-empty string")
        if self.based_on is not None and not str(self.based_on).strip():
            raise InvalidInputError("based_on must not be blank")
        _check_limit(self.limit)
        _check_diversity(self.diversity_factor)


@dataclass(frozen=True)
class SearchRequest:
    query: str = ""
    user_id: Optional[str] = None
    filters: Mapping[str, frozenset[str]] = field(default_factory=dict)
    limit: int = DEFAULT_SEARCH_LIMIT
    offset: int = 0
    diversity_factor: float = 0.0

    def __post_init__(self):
        # normalise accepted value sets so matching is case-insensitive
        normalized = {
            str(name): frozenset(str(v).casefold() for v in values)
            for name, values in (self.filters or {}).items()
        }
        object.__setattr__(self, "filters", normalized)

    def validate(self) -> None:
        if not isinstance(self.query, str):
            raise InvalidInputError("query must be a string")
        _check_limit(self.limit)
        if isinstance(self.offset, bool) or not isinstance(self.offset, int):
            raise InvalidInputError("offset must be an integer", {"offset": self.offset})
        if self.offset < 0:
            raise InvalidInputError("offset must be non-negative", {"offset": self.offset})
        _check_diversity(self.diversity_factor)
        for name, values in self.filters.items():
            if not values:
                raise InvalidInputError(
                    f"filter '{name}' has no accepted values", {"filter": name}
                )


@dataclass(frozen=True)
class DiscoverRequest:
    user_id: Optional[str] = None
    limit: int = DEFAULT_DISCOVER_LIMIT

    def validate(self) -> None:
        if self.user_id is not None and not str(self.user_id).strip():
            raise InvalidInputError("user_id must not be blank when given")
        _check_limit(self.limit)


class CandidateSet:
    """Ordered, duplicate-free sequence of items. First occurrence of an id wins."""

    def __init__(self, items: Iterable[Item] = ()):
        seen: dict[str, Item] = {}
        for item in items:
            seen.setdefault(item.item_id, item)
        self._items = tuple(seen.values())

    def __iter__(self) -> Iterator[Item]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    @property
    def ids(self) -> list[str]:
        return [item.item_id for item in self._items]

    def without(self, excluded: Iterable[str]) -> "CandidateSet":
        excluded = set(excluded)
        return CandidateSet(i for i in self._items if i.item_id not in excluded)


@dataclass(frozen=True)
class RankingContext:
    """What the scorer knows about the request besides the candidates."""

    mode: str  # "recommendation", "search" or "discovery"
    now: float
    query_tokens: tuple[str, ...] = ()
    affinity: Mapping[str, float] = field(default_factory=dict)  # category -> weight


@dataclass(frozen=True)
class ScoredItem:
    item: Item
    score: float
    features: tuple[float, ...] = ()
    # unweighted signal values behind `score`, keyed by signal name
    signals: Mapping[str, float] = field(default_factory=dict)

    @property
    def item_id(self) -> str:
        return self.item.item_id


@dataclass(frozen=True)
class ResultPage:
    items: tuple[ScoredItem, ...]
    total: int
    limit: int
    offset: int = 0


@dataclass(frozen=True)
class RankingResult:
    page: ResultPage
    source: str
    confidence: float = 1.0
    suggestions: tuple[str, ...] = ()
    # mean signal values of the returned page
    factors: Mapping[str, float] = field(default_factory=dict)
    stages: tuple[str, ...] = ()
