import hashlib
import math
import os
from typing import Dict, List, Optional

# Tests run against an in-process Qdrant and never reach external services
os.environ["ANTHROPIC_API_KEY"] = "test-key"
os.environ["QDRANT_URL"] = ":memory:"
os.environ["EMBEDDING_DIMENSION"] = "4"
os.environ["EXPANSION_RETRY_DELAY"] = "0"

import pytest
import pytest_asyncio

from linkmemory.config import reload_settings
from linkmemory.core.embeddings import CachedEmbedder
from linkmemory.core.search import SimilaritySearchEngine
from linkmemory.db.embedding_store import EmbeddingStore
from linkmemory.db.fact_store import FactStore
from linkmemory.db.qdrant import QdrantDB
from linkmemory.models.schema import TextEmbedding

DIM = 4


def unit_vector(cosine: float) -> List[float]:
    """Vector whose cosine similarity with QUERY_VECTOR equals ``cosine``."""
    return [cosine, math.sqrt(1.0 - cosine * cosine), 0.0, 0.0]


QUERY_VECTOR = [1.0, 0.0, 0.0, 0.0]


class FakeEmbeddingProvider:
    """Deterministic provider: known texts map to fixed vectors, others to a hash."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, dimension: int = DIM):
        self.vectors = dict(vectors or {})
        self.dimension = dimension
        self.calls: List[str] = []
        self.error: Optional[Exception] = None

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if text in self.vectors:
            return list(self.vectors[text])
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(b + 1) / 256.0 for b in digest[: self.dimension]]


def text_embedding(text: str, vector: List[float], cached_id: Optional[str] = None) -> TextEmbedding:
    return TextEmbedding(text=text, embedding=vector, is_fresh=True, cached_embedding_id=cached_id)


@pytest.fixture(autouse=True)
def settings():
    return reload_settings()


@pytest_asyncio.fixture
async def db():
    database = QdrantDB(url=":memory:", embedding_dim=DIM)
    await database.ensure_collections()
    yield database
    await database.close()


@pytest.fixture
def embedding_store(db):
    return EmbeddingStore(db, timeout=5.0)


@pytest.fixture
def fact_store(db):
    return FactStore(db, timeout=5.0)


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def embedder(provider, embedding_store):
    return CachedEmbedder(provider, embedding_store, max_attempts=1, timeout=5.0)


@pytest.fixture
def engine(fact_store):
    return SimilaritySearchEngine(fact_store)
