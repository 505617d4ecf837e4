"""Data models for linkmemory."""

from .schema import (
    AIFeature,
    CachedEmbedding,
    ConnectionMatch,
    EmbeddingFeatureType,
    Fact,
    Page,
    SearchQuery,
    SearchResult,
    SystemPrompt,
    TextEmbedding,
)

__all__ = [
    "AIFeature",
    "CachedEmbedding",
    "ConnectionMatch",
    "EmbeddingFeatureType",
    "Fact",
    "Page",
    "SearchQuery",
    "SearchResult",
    "SystemPrompt",
    "TextEmbedding",
]
