"""
Embedding generation with a write-through cache.

FastEmbed runs the model locally; the cache in front of it means each
distinct text is embedded once.
"""

import asyncio
from typing import Iterable, List, Optional, Protocol, Sequence, runtime_checkable

from fastembed import TextEmbedding as FastEmbedModel
from loguru import logger

from linkmemory.config import get_settings
from linkmemory.core.retry import Deadline, bounded, retry
from linkmemory.db.embedding_store import EmbeddingStore, to_stored_vector
from linkmemory.errors import EmbeddingError
from linkmemory.models.schema import EmbeddingFeatureType, TextEmbedding


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns text into a fixed-length vector."""

    dimension: int

    async def embed(self, text: str) -> List[float]:
        """Return the embedding for ``text``."""


class FastEmbedProvider:
    """
    Generates dense embeddings with FastEmbed.

    The model is loaded lazily on first use and inference runs in a worker
    thread so the event loop is never blocked.
    """

    def __init__(self, model_name: Optional[str] = None, dimension: Optional[int] = None):
        settings = get_settings()
        self.model_name = model_name or settings.embedding_model
        self.dimension = dimension or settings.embedding_dimension
        self._model: Optional[FastEmbedModel] = None

    def _get_model(self) -> FastEmbedModel:
        if self._model is None:
            logger.info(f"Loading embedding model: {self.model_name}")
            self._model = FastEmbedModel(model_name=self.model_name)
            logger.success(f"Embedding model loaded successfully ({self.dimension} dims)")
        return self._model

    def load(self) -> None:
        """Load the model eagerly (used by the init command)."""
        self._get_model()

    def _embed_sync(self, text: str) -> List[float]:
        embeddings = list(self._get_model().embed([text]))
        if not embeddings:
            raise EmbeddingError("Failed to generate embeddings")
        return embeddings[0].tolist()

    async def embed(self, text: str) -> List[float]:
        logger.debug(f"Generating embedding for text ({len(text)} chars)")
        try:
            vector = await asyncio.to_thread(self._embed_sync, text)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding model failed: {e}") from e

        if len(vector) != self.dimension:
            raise EmbeddingError(
                f"Model returned {len(vector)} dims, expected {self.dimension}"
            )
        return vector


class CachedEmbedder:
    """
    Embeds text through the cache.

    On a miss the provider is called and the result written to the store
    before returning. A failed cache write is logged and the freshly computed
    vector is still returned; provider and lookup failures propagate.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: EmbeddingStore,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.provider = provider
        self.store = store
        self.max_attempts = max_attempts or settings.embedding_max_attempts
        self.timeout = timeout if timeout is not None else settings.embedding_timeout

    async def _generate(self, text: str, deadline: Optional[Deadline]) -> List[float]:
        return await retry(
            lambda: self.provider.embed(text),
            self.max_attempts,
            deadline=deadline,
            attempt_timeout=self.timeout,
            description="Embedding generation",
        )

    async def _embed_and_cache(
        self,
        text: str,
        feature_types: Sequence[EmbeddingFeatureType],
        deadline: Optional[Deadline],
    ) -> TextEmbedding:
        vector = await self._generate(text, deadline)

        try:
            cached = await self.store.put(text, vector, feature_types, deadline=deadline)
        except ValueError:
            raise
        except Exception as e:
            logger.warning(f"Failed to cache embedding, returning uncached vector: {e}")
            return TextEmbedding(
                text=text,
                embedding=to_stored_vector(vector),
                is_fresh=True,
                cached_embedding_id=None,
            )

        return TextEmbedding(
            text=text,
            embedding=cached.embedding,
            is_fresh=True,
            cached_embedding_id=cached.id,
        )

    async def get_embedding(
        self,
        text: str,
        feature_types: Sequence[EmbeddingFeatureType] = (EmbeddingFeatureType.QUERY,),
        deadline: Optional[Deadline] = None,
    ) -> TextEmbedding:
        """
        Get the embedding for a text, computing and caching it on a miss.

        Args:
            text: Exact text to embed
            feature_types: Tags recorded on a newly cached row
            deadline: Optional request deadline

        Returns:
            TextEmbedding flagged fresh (computed now) or cached
        """
        existing = await self.store.get(text, deadline=deadline)
        if existing is not None:
            logger.debug(f"Embedding cache hit ({existing.id[:8]}...)")
            return TextEmbedding(
                text=text,
                embedding=existing.embedding,
                is_fresh=False,
                cached_embedding_id=existing.id,
            )

        logger.debug("Embedding cache miss")
        return await self._embed_and_cache(text, feature_types, deadline)

    async def get_many_embeddings(
        self,
        texts: Iterable[str],
        feature_types: Sequence[EmbeddingFeatureType] = (EmbeddingFeatureType.FACT,),
        deadline: Optional[Deadline] = None,
    ) -> List[TextEmbedding]:
        """
        Bulk variant of ``get_embedding``.

        Looks all texts up in one request and embeds only the misses, one at
        a time. Results follow the order of first appearance in ``texts``.
        """
        ordered = list(dict.fromkeys(texts))
        if not ordered:
            return []

        existing = await self.store.get_many(ordered, deadline=deadline)
        results: List[TextEmbedding] = []
        for text in ordered:
            cached = existing.get(text)
            if cached is not None:
                results.append(
                    TextEmbedding(
                        text=text,
                        embedding=cached.embedding,
                        is_fresh=False,
                        cached_embedding_id=cached.id,
                    )
                )
            else:
                results.append(await self._embed_and_cache(text, feature_types, deadline))

        logger.debug(
            f"Embedded {len(ordered)} text(s), "
            f"{sum(1 for r in results if r.is_fresh)} fresh"
        )
        return results
