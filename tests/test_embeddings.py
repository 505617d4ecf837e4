"""Tests for the cached embedder and the FastEmbed provider."""

from unittest.mock import patch

import numpy as np
import pytest

from conftest import FakeEmbeddingProvider
from linkmemory.core.embeddings import CachedEmbedder, EmbeddingProvider, FastEmbedProvider
from linkmemory.errors import EmbeddingError, StoreError
from linkmemory.models.schema import EmbeddingFeatureType


@pytest.mark.asyncio
async def test_second_call_is_served_from_cache(embedder, provider):
    first = await embedder.get_embedding("machine learning")
    second = await embedder.get_embedding("machine learning")

    assert first.is_fresh is True
    assert second.is_fresh is False
    assert first.embedding == second.embedding
    assert first.cached_embedding_id == second.cached_embedding_id
    assert provider.calls == ["machine learning"]


@pytest.mark.asyncio
async def test_feature_types_are_recorded(embedder, embedding_store):
    await embedder.get_embedding("investor", (EmbeddingFeatureType.FACT,))

    cached = await embedding_store.get("investor")
    assert cached.feature_type == ["FACT"]


@pytest.mark.asyncio
async def test_cache_write_failure_still_returns_vector(embedder, embedding_store, monkeypatch):
    async def failing_put(*args, **kwargs):
        raise StoreError("disk full")

    monkeypatch.setattr(embedding_store, "put", failing_put)

    result = await embedder.get_embedding("designer")

    assert result.is_fresh is True
    assert result.cached_embedding_id is None
    assert len(result.embedding) == 4


@pytest.mark.asyncio
async def test_provider_failure_propagates_without_caching(embedder, provider, embedding_store):
    provider.error = EmbeddingError("model crashed")

    with pytest.raises(EmbeddingError):
        await embedder.get_embedding("designer")

    assert await embedding_store.get("designer") is None


@pytest.mark.asyncio
async def test_provider_is_retried_within_budget(embedding_store):
    class FlakyProvider(FakeEmbeddingProvider):
        async def embed(self, text):
            if not self.calls:
                self.calls.append(text)
                raise EmbeddingError("warming up")
            return await super().embed(text)

    provider = FlakyProvider()
    embedder = CachedEmbedder(provider, embedding_store, max_attempts=2, timeout=5.0)

    result = await embedder.get_embedding("designer")

    assert result.is_fresh is True
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_get_many_embeds_only_misses_in_order(embedder, provider):
    await embedder.get_embedding("b")
    provider.calls.clear()

    results = await embedder.get_many_embeddings(["c", "b", "a", "c"])

    assert [r.text for r in results] == ["c", "b", "a"]
    assert [r.is_fresh for r in results] == [True, False, True]
    assert provider.calls == ["c", "a"]


@pytest.mark.asyncio
async def test_get_many_with_no_texts(embedder, provider):
    assert await embedder.get_many_embeddings([]) == []
    assert provider.calls == []


def test_fake_provider_satisfies_protocol():
    assert isinstance(FakeEmbeddingProvider(), EmbeddingProvider)


@pytest.mark.asyncio
async def test_fastembed_provider_wraps_model_errors():
    provider = FastEmbedProvider(model_name="test-model", dimension=4)

    with patch.object(provider, "_get_model", side_effect=RuntimeError("no weights")):
        with pytest.raises(EmbeddingError, match="no weights"):
            await provider.embed("text")


@pytest.mark.asyncio
async def test_fastembed_provider_checks_dimension():
    provider = FastEmbedProvider(model_name="test-model", dimension=4)

    class Model:
        def embed(self, texts):
            return iter([np.array([0.1, 0.2, 0.3])])

    provider._model = Model()
    with pytest.raises(EmbeddingError, match="expected 4"):
        await provider.embed("text")


@pytest.mark.asyncio
async def test_fastembed_provider_returns_list():
    provider = FastEmbedProvider(model_name="test-model", dimension=4)

    class Model:
        def embed(self, texts):
            return iter([np.array([0.1, 0.2, 0.3, 0.4], dtype=np.float32)])

    provider._model = Model()
    vector = await provider.embed("text")

    assert isinstance(vector, list)
    assert len(vector) == 4
