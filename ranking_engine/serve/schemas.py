from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional

from ranking_engine.config import DEFAULT_SEARCH_LIMIT, MAX_LIMIT


class ItemPayload(BaseModel):
    item_id: str
    title: str = ""
    description: str = ""
    categories: List[str] = Field(default_factory=list)
    popularity: float = 0.0
    published_at: Optional[float] = None  # unix seconds
    attributes: Dict[str, Any] = Field(default_factory=dict)


class RankedItem(ItemPayload):
    score: float


class RecommendationData(BaseModel):
    user_id: str
    source: str  # "seed", "category", "history" or "popular"
    items: List[RankedItem]
    total: int
    limit: int
    confidence: float
    # mean affinity, freshness and popularity signals of the returned items
    factors: Dict[str, float] = {}


class RecommendationEnvelope(BaseModel):
    success: bool = True
    data: RecommendationData


class SearchBody(BaseModel):
    query: str = ""
    user_id: Optional[str] = None
    filters: Dict[str, List[str]] = Field(default_factory=dict)
    limit: int = Field(DEFAULT_SEARCH_LIMIT, gt=0, le=MAX_LIMIT)
    offset: int = Field(0, ge=0)
    diversity_factor: float = Field(0.0, ge=0.0, le=1.0)


class SearchData(BaseModel):
    query: str
    items: List[RankedItem]
    total: int
    limit: int
    offset: int
    suggestions: List[str] = Field(default_factory=list)
    processing_time_ms: float


class SearchEnvelope(BaseModel):
    success: bool = True
    data: SearchData


class DiscoverData(BaseModel):
    items: List[ItemPayload]
    total: int  # always len(items)


class DiscoverEnvelope(BaseModel):
    success: bool = True
    data: DiscoverData


class ErrorDetail(BaseModel):
    kind: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: ErrorDetail
