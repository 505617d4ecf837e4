"""Tests for the pydantic models."""

import pytest
from pydantic import ValidationError

from linkmemory.models.schema import CachedEmbedding, EmbeddingFeatureType, Page, SearchQuery


def test_full_page_carries_cursor():
    page = Page[int].from_window([1, 2, 3], offset=6, page_size=3)

    assert page.items == [1, 2, 3]
    assert page.next_cursor == 9


def test_short_page_has_no_cursor():
    page = Page[int].from_window([1, 2], offset=6, page_size=3)

    assert page.next_cursor is None


def test_empty_page():
    page = Page[str].empty()

    assert page.items == []
    assert page.next_cursor is None


def test_query_text_prefers_expansion():
    query = SearchQuery(raw_text="engineer", owner_scope="u", similarity_threshold=0.4, limit=10)

    assert query.text == "engineer"
    query.expanded_text = "engineer, developer"
    assert query.text == "engineer, developer"


@pytest.mark.parametrize(
    "overrides",
    [
        {"similarity_threshold": 1.1},
        {"similarity_threshold": -0.1},
        {"limit": 0},
        {"offset": -1},
        {"owner_scope": ""},
    ],
)
def test_query_validation(overrides):
    values = {"raw_text": "q", "owner_scope": "u", "similarity_threshold": 0.4, "limit": 10}
    values.update(overrides)

    with pytest.raises(ValidationError):
        SearchQuery(**values)


def test_cached_embedding_stores_tag_values():
    cached = CachedEmbedding(
        id="1",
        text="t",
        embedding=[0.1],
        feature_type=[EmbeddingFeatureType.QUERY],
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-01T00:00:00+00:00",
    )

    assert cached.feature_type == ["QUERY"]
