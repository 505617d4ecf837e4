"""
Connection memory: the facts a user remembers about their connections.

All operations are scoped to one user. Fact texts are embedded through the
shared embedding cache, so re-adding a known text never calls the model.
"""

import asyncio
from typing import Dict, List, Optional, Sequence

from loguru import logger

from linkmemory.core.embeddings import CachedEmbedder
from linkmemory.core.search import SimilaritySearchEngine
from linkmemory.db.fact_store import FactStore
from linkmemory.models.schema import EmbeddingFeatureType, Fact, Page, SearchResult

FACT_FEATURES = (EmbeddingFeatureType.FACT,)


class ConnectionMemory:
    """Fact memory of a single user."""

    def __init__(
        self,
        user_id: str,
        embedder: CachedEmbedder,
        fact_store: FactStore,
        engine: SimilaritySearchEngine,
        default_similarity: float = 0.2,
    ):
        self.user_id = user_id
        self.embedder = embedder
        self.fact_store = fact_store
        self.engine = engine
        self.default_similarity = default_similarity

    async def add_facts(self, connection_id: str, facts: Sequence[str]) -> List[Fact]:
        """Add several facts to a connection."""
        if not facts:
            return []

        embeddings = await self.embedder.get_many_embeddings(facts, FACT_FEATURES)
        return await self.fact_store.add(self.user_id, connection_id, embeddings)

    async def add_fact(self, connection_id: str, fact_text: str) -> Fact:
        """Add a single fact; surrounding whitespace is trimmed."""
        embedding = await self.embedder.get_embedding(fact_text.strip(), FACT_FEATURES)
        facts = await self.fact_store.add(self.user_id, connection_id, [embedding])
        return facts[0]

    async def search_facts(
        self,
        search_topic: Optional[str] = None,
        similarity: Optional[float] = None,
        limit: int = 10,
        offset: int = 0,
        connection_id: Optional[str] = None,
    ) -> Page[SearchResult]:
        """
        Search facts by semantic similarity to ``search_topic``.

        No topic yields an empty page.
        """
        if not search_topic or not search_topic.strip():
            return Page[SearchResult].empty()

        embedding = await self.embedder.get_embedding(search_topic)
        return await self.engine.search(
            self.user_id,
            embedding.embedding,
            self.default_similarity if similarity is None else similarity,
            limit,
            offset,
            connection_id=connection_id,
        )

    async def get_related_facts(
        self, topics: Sequence[str], similarity: Optional[float] = None, limit: int = 5
    ) -> Dict[str, List[SearchResult]]:
        """Search each topic independently; returns topic -> matching facts."""
        pages = await asyncio.gather(
            *(self.search_facts(topic, similarity=similarity, limit=limit) for topic in topics)
        )
        return {topic: page.items for topic, page in zip(topics, pages)}

    async def delete_fact(self, connection_id: str, fact_id: str) -> None:
        await self.fact_store.delete(fact_id, connection_id)

    async def delete_facts(self, connection_id: str, fact_ids: Sequence[str]) -> None:
        for fact_id in fact_ids:
            await self.fact_store.delete(fact_id, connection_id)

    async def delete_all_facts(self, connection_id: str) -> None:
        await self.fact_store.delete_all(connection_id)

    async def update_fact(self, connection_id: str, fact_id: str, new_text: str) -> Fact:
        """Replace a fact's text and re-embed it."""
        embedding = await self.embedder.get_embedding(new_text.strip(), FACT_FEATURES)
        return await self.fact_store.update(fact_id, connection_id, embedding)

    async def update_facts(self, connection_id: str, facts: Sequence[Fact]) -> List[Fact]:
        updated = []
        for fact in facts:
            updated.append(await self.update_fact(connection_id, fact.id, fact.text))
        return updated

    async def upsert_facts(
        self, connection_id: str, facts: Sequence[str], with_delete: bool = True
    ) -> List[Fact]:
        """
        Make a connection's facts match ``facts``.

        Texts not yet stored are added, stored ones are refreshed and, with
        ``with_delete``, stored facts missing from ``facts`` are removed.

        Returns:
            Added facts followed by refreshed ones
        """
        if not facts:
            return []

        existing = await self.fact_store.get_by_texts(connection_id, facts)
        existing_texts = {f.text for f in existing}
        new_texts = [text for text in facts if text not in existing_texts]

        added = await self.add_facts(connection_id, new_texts)
        refreshed = await self.update_facts(connection_id, existing)

        if with_delete:
            wanted = set(facts)
            stale = [
                f.id
                for f in await self.fact_store.list_for_connection(connection_id)
                if f.text not in wanted
            ]
            await self.delete_facts(connection_id, stale)
            if stale:
                logger.info(f"Removed {len(stale)} stale fact(s) from connection {connection_id}")

        return added + refreshed

    async def find_similar_facts(
        self,
        fact_text: str,
        similarity: float = 0.9,
        limit: int = 5,
        connection_id: Optional[str] = None,
    ) -> Page[SearchResult]:
        """Facts nearly identical to ``fact_text`` (useful for deduplication)."""
        return await self.search_facts(
            fact_text, similarity=similarity, limit=limit, connection_id=connection_id
        )

    async def fact_exists(
        self, fact_text: str, similarity: float = 0.95, connection_id: Optional[str] = None
    ) -> bool:
        page = await self.find_similar_facts(
            fact_text, similarity=similarity, limit=1, connection_id=connection_id
        )
        return len(page.items) > 0

    async def add_fact_if_new(
        self, connection_id: str, fact_text: str, similarity: float = 0.9
    ) -> Optional[Fact]:
        """Add a fact unless the connection already holds a near-duplicate."""
        if await self.fact_exists(fact_text, similarity=similarity, connection_id=connection_id):
            logger.debug(f"Skipping duplicate fact for connection {connection_id}")
            return None
        return await self.add_fact(connection_id, fact_text)
