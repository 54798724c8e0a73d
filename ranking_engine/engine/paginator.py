from typing import Optional, Sequence

from ranking_engine.engine.errors import InvalidInputError
from ranking_engine.engine.models import ResultPage, ScoredItem


def take_page(
    ranked: Sequence[ScoredItem], limit: int, total: Optional[int] = None
) -> ResultPage:
    """Prefix of the ranked list; `total` defaults to the full list size."""
    return slice_page(ranked, limit, 0, total)


def slice_page(
    ranked: Sequence[ScoredItem],
    limit: int,
    offset: int,
    total: Optional[int] = None,
) -> ResultPage:
    """
    Items at positions [offset, offset + limit). An offset past the end gives
    an empty page that still reports the full total.
    """
    if limit <= 0:
        raise InvalidInputError("limit must be positive", {"limit": limit})
    if offset < 0:
        raise InvalidInputError("offset must be non-negative", {"offset": offset})
    return ResultPage(
        items=tuple(ranked[offset : offset + limit]),
        total=len(ranked) if total is None else total,
        limit=limit,
        offset=offset,
    )
