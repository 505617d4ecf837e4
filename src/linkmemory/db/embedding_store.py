"""
Embedding cache persisted in Qdrant.

Rows are keyed by the exact text (case and whitespace sensitive). The point
id is derived from the text hash, so concurrent writes for the same text land
on a single point instead of creating duplicates.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
from loguru import logger
from qdrant_client.models import PointStruct

from linkmemory.config import get_settings
from linkmemory.core.retry import Deadline, bounded
from linkmemory.db.qdrant import QdrantDB, calculate_text_id
from linkmemory.errors import DeadlineExceededError, StoreError
from linkmemory.models.schema import CachedEmbedding, EmbeddingFeatureType


def to_stored_vector(embedding: Sequence[float]) -> List[float]:
    """Round a vector to the float32 precision the store keeps."""
    return np.asarray(embedding, dtype=np.float32).tolist()


class EmbeddingStore:
    """Write-through cache of text -> embedding mappings."""

    def __init__(self, db: QdrantDB, timeout: Optional[float] = None):
        self.db = db
        self.collection_name = db.cache_collection
        self.embedding_dim = db.embedding_dim
        self.timeout = timeout if timeout is not None else get_settings().store_timeout

    def _to_cached(self, record: Any) -> CachedEmbedding:
        payload = record.payload or {}
        return CachedEmbedding(
            id=str(record.id),
            text=payload["text"],
            embedding=list(record.vector),
            feature_type=payload.get("feature_type", []),
            created_at=payload["created_at"],
            updated_at=payload["updated_at"],
        )

    async def _retrieve(self, texts: Iterable[str], deadline: Optional[Deadline]) -> list:
        ids = [calculate_text_id(text) for text in texts]
        if not ids:
            return []
        try:
            return await bounded(
                self.db.client.retrieve(
                    collection_name=self.collection_name,
                    ids=ids,
                    with_payload=True,
                    with_vectors=True,
                ),
                deadline=deadline,
                timeout=self.timeout,
            )
        except DeadlineExceededError:
            raise
        except Exception as e:
            raise StoreError(f"Embedding cache lookup failed: {e}") from e

    async def get(
        self, text: str, deadline: Optional[Deadline] = None
    ) -> Optional[CachedEmbedding]:
        """
        Look up the cached embedding for an exact text.

        Args:
            text: Text to look up (no normalization is applied)
            deadline: Optional request deadline

        Returns:
            The cached embedding, or None on a cache miss
        """
        for record in await self._retrieve([text], deadline):
            # Guard against hash collisions: the text itself is the key
            if (record.payload or {}).get("text") == text:
                return self._to_cached(record)
        return None

    async def get_many(
        self, texts: Iterable[str], deadline: Optional[Deadline] = None
    ) -> Dict[str, CachedEmbedding]:
        """
        Bulk lookup.

        Returns:
            Mapping of text -> cached embedding, containing only the texts found
        """
        wanted = set(texts)
        found: Dict[str, CachedEmbedding] = {}
        for record in await self._retrieve(sorted(wanted), deadline):
            text = (record.payload or {}).get("text")
            if text in wanted:
                found[text] = self._to_cached(record)

        logger.debug(f"Embedding cache: {len(found)}/{len(wanted)} hits")
        return found

    async def _write(self, awaitable: Any, deadline: Optional[Deadline]) -> None:
        try:
            await bounded(awaitable, deadline=deadline, timeout=self.timeout)
        except DeadlineExceededError:
            raise
        except Exception as e:
            raise StoreError(f"Embedding cache write failed: {e}") from e

    async def put(
        self,
        text: str,
        embedding: Sequence[float],
        feature_types: Iterable[EmbeddingFeatureType] = (),
        deadline: Optional[Deadline] = None,
    ) -> CachedEmbedding:
        """
        Store an embedding for a text.

        A row that already exists for ``text`` keeps its vector, tags and
        ``created_at``; only ``updated_at`` is refreshed and the stored row is
        returned. The returned embedding carries the stored (float32) values
        so a later ``get`` yields the identical vector.

        Raises:
            ValueError: If the vector length does not match the collection
            StoreError: If the write fails
        """
        if len(embedding) != self.embedding_dim:
            raise ValueError(
                f"Embedding has {len(embedding)} dims, expected {self.embedding_dim}"
            )

        now = datetime.now(timezone.utc)
        existing = await self.get(text, deadline=deadline)
        if existing is not None:
            await self._write(
                self.db.client.set_payload(
                    collection_name=self.collection_name,
                    payload={"updated_at": now.isoformat()},
                    points=[existing.id],
                    wait=True,
                ),
                deadline,
            )
            logger.debug(f"Embedding {existing.id[:8]}... already cached, kept existing row")
            return existing.model_copy(update={"updated_at": now})

        vector = to_stored_vector(embedding)
        tags = sorted({EmbeddingFeatureType(t).value for t in feature_types})
        point_id = calculate_text_id(text)

        await self._write(
            self.db.client.upsert(
                collection_name=self.collection_name,
                points=[
                    PointStruct(
                        id=point_id,
                        vector=vector,
                        payload={
                            "text": text,
                            "feature_type": tags,
                            "created_at": now.isoformat(),
                            "updated_at": now.isoformat(),
                        },
                    )
                ],
                wait=True,
            ),
            deadline,
        )

        logger.debug(f"Cached embedding {point_id[:8]}... for text ({len(text)} chars)")
        return CachedEmbedding(
            id=point_id,
            text=text,
            embedding=vector,
            feature_type=tags,
            created_at=now,
            updated_at=now,
        )
