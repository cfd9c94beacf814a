"""Pydantic models for the item store and enrichment pipeline."""

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator

from .config import (
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_MIN_KEYWORD_WEIGHT,
    DEFAULT_MIN_SIMILARITY,
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    PRIORITIES,
)


class WeightedKeyword(BaseModel):
    """A keyword with its per-item weight."""

    # LLM output uses "keyword"; storage and the rest of the code use "word"
    word: str = Field(validation_alias=AliasChoices("word", "keyword"))
    weight: float = 1.0


class ScoredConcept(BaseModel):
    """A high-level concept with its per-item confidence."""

    name: str = Field(validation_alias=AliasChoices("name", "concept"))
    confidence: float = 1.0


class EnrichedMetadata(BaseModel):
    """Output of keyword/concept extraction for one item."""

    keywords: list[WeightedKeyword] = Field(default_factory=list)
    concepts: list[ScoredConcept] = Field(default_factory=list)
    embedding: bytes  # Quantized, one byte per dimension
    summary: str
    search_index: str = ""  # Space-joined keywords


class Item(BaseModel):
    """A stored item."""

    id: int
    type: str
    title: str
    description: str = ""
    content: str = ""
    status: str = DEFAULT_STATUS
    priority: str = DEFAULT_PRIORITY
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    ai_summary: str | None = None
    search_index: str | None = None
    embedding: bytes | None = Field(default=None, exclude=True)  # Internal only
    created_at: datetime
    updated_at: datetime


class ItemCreate(BaseModel):
    """Fields accepted when creating an item."""

    type: str
    title: str
    description: str = ""
    content: str = ""
    status: str = DEFAULT_STATUS
    priority: str = DEFAULT_PRIORITY
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    related: list[int] = Field(default_factory=list)

    @field_validator("priority")
    @classmethod
    def _check_priority(cls, value: str) -> str:
        value = value.upper()
        if value not in PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}")
        return value


class ItemUpdate(BaseModel):
    """Partial update. Only fields explicitly set are applied.

    ``related`` replaces all existing manual relations when provided.
    """

    type: str | None = None
    title: str | None = None
    description: str | None = None
    content: str | None = None
    status: str | None = None
    priority: str | None = None
    category: str | None = None
    tags: list[str] | None = None
    related: list[int] | None = None

    @field_validator("priority")
    @classmethod
    def _check_priority(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.upper()
        if value not in PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}")
        return value

    def provided(self) -> dict:
        """Fields the caller actually supplied (explicit None included)."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class RelatedItem(BaseModel):
    """A ranked related item. Produced fresh on every query."""

    id: int
    score: float
    reason: str


class RelationThresholds(BaseModel):
    """Minimum scores for the relation strategies."""

    min_keyword_weight: float = DEFAULT_MIN_KEYWORD_WEIGHT
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    min_similarity: float = DEFAULT_MIN_SIMILARITY


StrategyName = Literal["keywords", "concepts", "embedding", "hybrid", "manual"]


class RelationStrategy(BaseModel):
    """Caller-supplied configuration for unified relation search."""

    strategy: StrategyName | None = None  # None means hybrid
    weights: dict[str, float] | None = None
    thresholds: RelationThresholds | None = None


class RelationEdge(BaseModel):
    """An edge in a related-items response."""

    source: int
    target: int
    type: str  # 'manual' or 'strategy-based'


class RelatedItemDetail(BaseModel):
    """Item summary returned with related-item queries (no content)."""

    id: int
    type: str
    title: str
    description: str = ""
    status: str
    priority: str
    tags: list[str] = Field(default_factory=list)
    search_score: float | None = None
    search_reason: str | None = None
    distance: int = 1


class RelatedItemsResponse(BaseModel):
    """Response for get_related_items."""

    items: list[RelatedItemDetail] = Field(default_factory=list)
    edges: list[RelationEdge] = Field(default_factory=list)
    strategy: str = "manual"
    weights: dict[str, float] | None = None


class ItemKeywords(BaseModel):
    """Stored keyword/concept associations for one item."""

    id: int
    keywords: list[WeightedKeyword] = Field(default_factory=list)
    concepts: list[ScoredConcept] = Field(default_factory=list)


class CleanupResult(BaseModel):
    """Result of orphaned vocabulary cleanup."""

    keywords_removed: int = 0
    concepts_removed: int = 0
