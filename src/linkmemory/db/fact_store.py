"""
Fact storage in Qdrant.

Each fact is a point carrying its embedding and a payload with the owning
user and connection. Similarity queries are always scoped by user.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

from loguru import logger
from qdrant_client.models import (
    FieldCondition,
    Filter,
    FilterSelector,
    HasIdCondition,
    MatchAny,
    MatchValue,
    PointStruct,
)

from linkmemory.config import get_settings
from linkmemory.core.retry import Deadline, bounded
from linkmemory.db.qdrant import QdrantDB
from linkmemory.errors import DeadlineExceededError, FactNotFoundError, StoreError
from linkmemory.models.schema import Fact, TextEmbedding

ScoredFact = Tuple[Fact, float]


def scope_filter(user_id: str, connection_id: Optional[str] = None) -> Filter:
    """Build the payload filter restricting a query to one owner."""
    conditions = [FieldCondition(key="user_id", match=MatchValue(value=user_id))]
    if connection_id is not None:
        conditions.append(
            FieldCondition(key="connection_id", match=MatchValue(value=connection_id))
        )
    return Filter(must=conditions)


class FactStore:
    """CRUD and similarity queries over the fact collection."""

    def __init__(self, db: QdrantDB, timeout: Optional[float] = None):
        self.db = db
        self.collection_name = db.fact_collection
        self.timeout = timeout if timeout is not None else get_settings().store_timeout

    async def _call(self, awaitable: Any, action: str, deadline: Optional[Deadline] = None) -> Any:
        try:
            return await bounded(awaitable, deadline=deadline, timeout=self.timeout)
        except DeadlineExceededError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to {action}: {e}") from e

    @staticmethod
    def _to_fact(point: Any) -> Fact:
        payload = point.payload or {}
        return Fact(
            id=str(point.id),
            text=payload["text"],
            connection_id=payload["connection_id"],
            user_id=payload["user_id"],
            embedding_id=payload.get("embedding_id"),
            created_at=payload["created_at"],
            updated_at=payload["updated_at"],
        )

    @staticmethod
    def _payload(fact: Fact) -> dict:
        return {
            "text": fact.text,
            "connection_id": fact.connection_id,
            "user_id": fact.user_id,
            "embedding_id": fact.embedding_id,
            "created_at": fact.created_at.isoformat(),
            "updated_at": fact.updated_at.isoformat(),
        }

    async def add(
        self,
        user_id: str,
        connection_id: str,
        embeddings: Sequence[TextEmbedding],
        deadline: Optional[Deadline] = None,
    ) -> List[Fact]:
        """
        Store one fact per embedding.

        Returns:
            The created facts, in input order
        """
        if not embeddings:
            return []

        now = datetime.now(timezone.utc)
        facts = [
            Fact(
                id=str(uuid.uuid4()),
                text=embedding.text,
                connection_id=connection_id,
                user_id=user_id,
                embedding_id=embedding.cached_embedding_id,
                created_at=now,
                updated_at=now,
            )
            for embedding in embeddings
        ]
        points = [
            PointStruct(id=fact.id, vector=list(embedding.embedding), payload=self._payload(fact))
            for fact, embedding in zip(facts, embeddings)
        ]

        await self._call(
            self.db.client.upsert(collection_name=self.collection_name, points=points, wait=True),
            "add facts",
            deadline,
        )
        logger.info(f"Added {len(facts)} fact(s) to connection {connection_id}")
        return facts

    async def get(self, fact_id: str, connection_id: str) -> Fact:
        """
        Fetch a fact, verifying it belongs to ``connection_id``.

        Raises:
            FactNotFoundError: If the fact does not exist in that connection
        """
        try:
            uuid.UUID(fact_id)
        except ValueError:
            raise FactNotFoundError(fact_id, connection_id) from None

        records = await self._call(
            self.db.client.retrieve(
                collection_name=self.collection_name, ids=[fact_id], with_payload=True
            ),
            "retrieve fact",
        )
        for record in records:
            fact = self._to_fact(record)
            if fact.connection_id == connection_id:
                return fact
        raise FactNotFoundError(fact_id, connection_id)

    async def get_by_texts(self, connection_id: str, texts: Sequence[str]) -> List[Fact]:
        """Facts of a connection whose text exactly matches one of ``texts``."""
        if not texts:
            return []

        query_filter = Filter(
            must=[
                FieldCondition(key="connection_id", match=MatchValue(value=connection_id)),
                FieldCondition(key="text", match=MatchAny(any=list(texts))),
            ]
        )
        return await self._scroll(query_filter)

    async def list_for_connection(self, connection_id: str) -> List[Fact]:
        query_filter = Filter(
            must=[FieldCondition(key="connection_id", match=MatchValue(value=connection_id))]
        )
        facts = await self._scroll(query_filter)
        return sorted(facts, key=lambda f: (f.created_at, f.id), reverse=True)

    async def _scroll(self, query_filter: Filter) -> List[Fact]:
        facts: List[Fact] = []
        offset = None
        while True:
            points, offset = await self._call(
                self.db.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=query_filter,
                    limit=256,
                    offset=offset,
                    with_payload=True,
                    with_vectors=False,
                ),
                "scroll facts",
            )
            facts.extend(self._to_fact(p) for p in points)
            if offset is None:
                return facts

    async def update(
        self, fact_id: str, connection_id: str, embedding: TextEmbedding
    ) -> Fact:
        """
        Replace a fact's text and vector, keeping its id and creation time.

        Raises:
            FactNotFoundError: If the fact does not exist in that connection
        """
        current = await self.get(fact_id, connection_id)
        updated = current.model_copy(
            update={
                "text": embedding.text,
                "embedding_id": embedding.cached_embedding_id,
                "updated_at": datetime.now(timezone.utc),
            }
        )
        await self._call(
            self.db.client.upsert(
                collection_name=self.collection_name,
                points=[
                    PointStruct(
                        id=updated.id,
                        vector=list(embedding.embedding),
                        payload=self._payload(updated),
                    )
                ],
                wait=True,
            ),
            "update fact",
        )
        logger.debug(f"Updated fact {fact_id}")
        return updated

    async def delete(self, fact_id: str, connection_id: str) -> None:
        """
        Delete a fact from a connection.

        Raises:
            FactNotFoundError: If the fact does not exist in that connection
        """
        await self.get(fact_id, connection_id)
        await self._call(
            self.db.client.delete(
                collection_name=self.collection_name,
                points_selector=FilterSelector(
                    filter=Filter(
                        must=[
                            HasIdCondition(has_id=[fact_id]),
                            FieldCondition(
                                key="connection_id", match=MatchValue(value=connection_id)
                            ),
                        ]
                    )
                ),
                wait=True,
            ),
            "delete fact",
        )
        logger.debug(f"Deleted fact {fact_id}")

    async def delete_all(self, connection_id: str) -> None:
        await self._call(
            self.db.client.delete(
                collection_name=self.collection_name,
                points_selector=FilterSelector(
                    filter=Filter(
                        must=[
                            FieldCondition(
                                key="connection_id", match=MatchValue(value=connection_id)
                            )
                        ]
                    )
                ),
                wait=True,
            ),
            "delete facts",
        )
        logger.info(f"Deleted all facts of connection {connection_id}")

    async def count(self, user_id: Optional[str] = None) -> int:
        count_filter = scope_filter(user_id) if user_id else None
        result = await self._call(
            self.db.client.count(
                collection_name=self.collection_name, count_filter=count_filter, exact=True
            ),
            "count facts",
        )
        return result.count

    async def query_similar(
        self,
        query_vector: Sequence[float],
        user_id: str,
        connection_id: Optional[str] = None,
        score_threshold: Optional[float] = None,
        limit: int = 10,
        deadline: Optional[Deadline] = None,
    ) -> List[ScoredFact]:
        """
        Top ``limit`` facts of a user by cosine similarity.

        Filtering by threshold happens inside the store, before ranking.
        """
        response = await self._call(
            self.db.client.query_points(
                collection_name=self.collection_name,
                query=list(query_vector),
                query_filter=scope_filter(user_id, connection_id),
                score_threshold=score_threshold,
                limit=limit,
                with_payload=True,
                with_vectors=False,
            ),
            "query facts",
            deadline,
        )
        return [(self._to_fact(p), p.score) for p in response.points]

    async def query_similar_by_connection(
        self,
        query_vector: Sequence[float],
        user_id: str,
        score_threshold: Optional[float] = None,
        limit: int = 10,
        deadline: Optional[Deadline] = None,
    ) -> List[ScoredFact]:
        """
        Best matching fact for each of the top ``limit`` connections of a user.
        """
        response = await self._call(
            self.db.client.query_points_groups(
                collection_name=self.collection_name,
                group_by="connection_id",
                query=list(query_vector),
                query_filter=scope_filter(user_id),
                score_threshold=score_threshold,
                limit=limit,
                group_size=1,
                with_payload=True,
                with_vectors=False,
            ),
            "query connections",
            deadline,
        )
        return [
            (self._to_fact(group.hits[0]), group.hits[0].score)
            for group in response.groups
            if group.hits
        ]
