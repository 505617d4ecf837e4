"""
Pydantic models for the connection memory search pipeline.

Covers cached embeddings, stored facts, search queries and the paginated
result envelope returned to callers.
"""

from datetime import datetime
from enum import Enum
from typing import Generic, List, Optional, Sequence, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class EmbeddingFeatureType(str, Enum):
    """Tags recording which feature a cached embedding was produced for."""

    FACT = "FACT"
    QUERY = "QUERY"


class AIFeature(str, Enum):
    """Features that own a configurable system prompt."""

    QUERY_EXPANSION = "query_expansion"


class CachedEmbedding(BaseModel):
    """
    A cached text -> vector mapping.

    At most one row exists per distinct ``text``; rows are never deleted
    by the pipeline.
    """

    id: str = Field(description="Opaque identifier of the cache row")
    text: str = Field(description="Exact text the vector was computed from")
    embedding: List[float] = Field(description="Fixed-length embedding vector")
    feature_type: List[EmbeddingFeatureType] = Field(
        default_factory=list, description="Features this embedding serves"
    )
    created_at: datetime
    updated_at: datetime

    class Config:
        use_enum_values = True


class TextEmbedding(BaseModel):
    """An embedding handed to callers, flagged as fresh or cached."""

    text: str
    embedding: List[float]
    is_fresh: bool = Field(description="True when computed by the provider on this call")
    cached_embedding_id: Optional[str] = Field(
        default=None, description="Cache row id (None when the cache write failed)"
    )


class SystemPrompt(BaseModel):
    """A system prompt resolved for a feature."""

    feature: AIFeature
    text: str
    source: str = Field(description="Where the prompt was loaded from")
    updated_at: datetime


class Fact(BaseModel):
    """A fact remembered about one of a user's connections."""

    id: str
    text: str
    connection_id: str
    user_id: str
    embedding_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SearchQuery(BaseModel):
    """Transient description of one similarity search request."""

    raw_text: str
    expanded_text: Optional[str] = None
    owner_scope: str = Field(min_length=1, description="User whose facts may match")
    connection_id: Optional[str] = Field(
        default=None, description="Optionally narrow the scope to one connection"
    )
    similarity_threshold: float = Field(ge=0.0, le=1.0)
    limit: int = Field(gt=0)
    offset: int = Field(default=0, ge=0)

    @property
    def text(self) -> str:
        """Text that is embedded: the expansion when present, else the raw text."""
        return self.expanded_text or self.raw_text


class SearchResult(BaseModel):
    """A fact matched by similarity search."""

    record_id: str = Field(description="Id of the matched fact")
    similarity_score: float
    text: str
    connection_id: str
    user_id: str
    created_at: datetime


class ConnectionMatch(BaseModel):
    """A connection ranked by its best matching fact."""

    connection_id: str
    similarity_score: float = Field(description="Score of the best matching fact")
    best_fact: SearchResult


class Page(BaseModel, Generic[T]):
    """
    One page of an offset-paginated result set.

    ``next_cursor`` is set iff the page is full, which signals that more
    items are likely available.
    """

    items: List[T] = Field(default_factory=list)
    next_cursor: Optional[int] = None

    @classmethod
    def from_window(cls, items: Sequence[T], offset: int, page_size: int) -> "Page[T]":
        items = list(items)
        next_cursor = offset + page_size if len(items) == page_size else None
        return cls(items=items, next_cursor=next_cursor)

    @classmethod
    def empty(cls) -> "Page[T]":
        return cls(items=[], next_cursor=None)
