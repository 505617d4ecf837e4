"""
Similarity search over a user's facts.

``SimilaritySearchEngine`` ranks stored facts against a query vector with a
caller-supplied threshold and offset pagination. ``SearchPipeline`` runs the
full request: optional query expansion, cached embedding, then search.
"""

from typing import Awaitable, Callable, List, Optional, Sequence

from loguru import logger

from linkmemory.config import Settings, get_settings
from linkmemory.core.embeddings import CachedEmbedder
from linkmemory.core.expansion import QueryExpander
from linkmemory.core.retry import Deadline
from linkmemory.db.fact_store import FactStore, ScoredFact
from linkmemory.models.schema import (
    ConnectionMatch,
    EmbeddingFeatureType,
    Page,
    SearchQuery,
    SearchResult,
)


def _validate_window(similarity_threshold: float, limit: int, offset: int) -> None:
    if not 0.0 <= similarity_threshold <= 1.0:
        raise ValueError(f"similarity_threshold must be within [0, 1], got {similarity_threshold}")
    if limit <= 0:
        raise ValueError(f"limit must be > 0, got {limit}")
    if offset < 0:
        raise ValueError(f"offset must be >= 0, got {offset}")


async def _fetch_through_ties(
    fetch: Callable[[int], Awaitable[List[ScoredFact]]], needed: int
) -> List[ScoredFact]:
    """
    Fetch the top ``needed`` candidates plus every candidate tied with the last one.

    The store breaks score ties in its own order, so a plain top-k cut could
    keep an arbitrary subset of the records tied at the boundary. The fetch
    is widened until the store returns a score strictly below the cut.
    """
    fetch_limit = needed
    while True:
        candidates = await fetch(fetch_limit)
        if len(candidates) < fetch_limit:
            return candidates
        scores = sorted((score for _, score in candidates), reverse=True)
        if scores[-1] < scores[needed - 1]:
            return candidates
        fetch_limit *= 2


def _to_result(fact_and_score: ScoredFact) -> SearchResult:
    fact, score = fact_and_score
    return SearchResult(
        record_id=fact.id,
        similarity_score=score,
        text=fact.text,
        connection_id=fact.connection_id,
        user_id=fact.user_id,
        created_at=fact.created_at,
    )


class SimilaritySearchEngine:
    """
    Threshold-filtered, similarity-ranked search with stable ordering.

    Results are ordered by score descending, then by creation time and id
    descending, so identical calls return identical pages.
    """

    def __init__(self, fact_store: FactStore):
        self.fact_store = fact_store

    @staticmethod
    def _rank(candidates: Sequence[ScoredFact], similarity_threshold: float) -> List[ScoredFact]:
        # Threshold 0 disables filtering altogether
        if similarity_threshold > 0:
            candidates = [c for c in candidates if c[1] >= similarity_threshold]
        return sorted(
            candidates,
            key=lambda c: (c[1], c[0].created_at, c[0].id),
            reverse=True,
        )

    async def search(
        self,
        owner_scope: str,
        query_vector: Sequence[float],
        similarity_threshold: float,
        limit: int,
        offset: int = 0,
        connection_id: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> Page[SearchResult]:
        """
        Rank the owner's facts against ``query_vector``.

        Args:
            owner_scope: User whose facts may match
            query_vector: Embedding of the query
            similarity_threshold: Minimum score (inclusive); 0 disables filtering
            limit: Page size
            offset: Number of ranked results to skip
            connection_id: Optionally restrict to one connection
            deadline: Optional request deadline

        Returns:
            Page of results; ``next_cursor`` is ``offset + limit`` iff the page is full
        """
        _validate_window(similarity_threshold, limit, offset)

        candidates = await _fetch_through_ties(
            lambda fetch_limit: self.fact_store.query_similar(
                query_vector,
                owner_scope,
                connection_id=connection_id,
                score_threshold=similarity_threshold if similarity_threshold > 0 else None,
                limit=fetch_limit,
                deadline=deadline,
            ),
            offset + limit,
        )
        ranked = self._rank(candidates, similarity_threshold)
        window = [_to_result(c) for c in ranked[offset:offset + limit]]

        logger.debug(
            f"Fact search for {owner_scope}: {len(ranked)} candidate(s) >= {similarity_threshold}, "
            f"returning {len(window)} (offset={offset}, limit={limit})"
        )
        return Page[SearchResult].from_window(window, offset, limit)

    async def search_connections(
        self,
        owner_scope: str,
        query_vector: Sequence[float],
        similarity_threshold: float,
        limit: int,
        offset: int = 0,
        deadline: Optional[Deadline] = None,
    ) -> Page[ConnectionMatch]:
        """
        Rank the owner's connections by their best matching fact.

        Same threshold, ordering and cursor rules as ``search``.
        """
        _validate_window(similarity_threshold, limit, offset)

        candidates = await _fetch_through_ties(
            lambda fetch_limit: self.fact_store.query_similar_by_connection(
                query_vector,
                owner_scope,
                score_threshold=similarity_threshold if similarity_threshold > 0 else None,
                limit=fetch_limit,
                deadline=deadline,
            ),
            offset + limit,
        )
        ranked = self._rank(candidates, similarity_threshold)
        window = [
            ConnectionMatch(
                connection_id=fact.connection_id,
                similarity_score=score,
                best_fact=_to_result((fact, score)),
            )
            for fact, score in ranked[offset:offset + limit]
        ]
        return Page[ConnectionMatch].from_window(window, offset, limit)


class SearchPipeline:
    """
    Runs one search request end to end.

    expand (optional) -> embed through the cache -> similarity search. The
    stages run sequentially under a single request deadline.
    """

    def __init__(
        self,
        expander: QueryExpander,
        embedder: CachedEmbedder,
        engine: SimilaritySearchEngine,
        settings: Optional[Settings] = None,
    ):
        self.expander = expander
        self.embedder = embedder
        self.engine = engine
        self.settings = settings or get_settings()

    def build_query(
        self,
        user_id: str,
        text: str,
        expand: bool = False,
        similarity_threshold: Optional[float] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        connection_id: Optional[str] = None,
    ) -> SearchQuery:
        """Fill in defaults and validate a request."""
        if similarity_threshold is None:
            similarity_threshold = (
                self.settings.expanded_search_similarity_threshold
                if expand
                else self.settings.search_similarity_threshold
            )
        return SearchQuery(
            raw_text=text,
            owner_scope=user_id,
            connection_id=connection_id,
            similarity_threshold=similarity_threshold,
            limit=limit if limit is not None else self.settings.search_page_size,
            offset=offset,
        )

    async def _embed_query(
        self, query: SearchQuery, expand: bool, deadline: Deadline
    ) -> List[float]:
        if expand:
            query.expanded_text = await self.expander.expand(query.raw_text, deadline=deadline)
        embedding = await self.embedder.get_embedding(
            query.text, (EmbeddingFeatureType.QUERY,), deadline=deadline
        )
        return embedding.embedding

    async def search(
        self,
        user_id: str,
        text: str,
        *,
        expand: bool = False,
        similarity_threshold: Optional[float] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        connection_id: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> Page[SearchResult]:
        """
        Search a user's facts for ``text``.

        A blank query returns an empty page without calling any collaborator.
        Expansion failures are absorbed; embedding and store failures propagate.
        """
        query = self.build_query(
            user_id, text, expand, similarity_threshold, limit, offset, connection_id
        )
        if not query.raw_text.strip():
            return Page[SearchResult].empty()

        deadline = deadline or Deadline.after(self.settings.request_timeout)
        logger.info(f"Searching facts for user {user_id}: '{text[:100]}' (expand={expand})")

        vector = await self._embed_query(query, expand, deadline)
        return await self.engine.search(
            query.owner_scope,
            vector,
            query.similarity_threshold,
            query.limit,
            query.offset,
            connection_id=query.connection_id,
            deadline=deadline,
        )

    async def search_connections(
        self,
        user_id: str,
        text: str,
        *,
        expand: bool = False,
        similarity_threshold: Optional[float] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        deadline: Optional[Deadline] = None,
    ) -> Page[ConnectionMatch]:
        """Search a user's connections by their facts; see ``search``."""
        query = self.build_query(user_id, text, expand, similarity_threshold, limit, offset)
        if not query.raw_text.strip():
            return Page[ConnectionMatch].empty()

        deadline = deadline or Deadline.after(self.settings.request_timeout)
        logger.info(f"Searching connections for user {user_id}: '{text[:100]}' (expand={expand})")

        vector = await self._embed_query(query, expand, deadline)
        return await self.engine.search_connections(
            query.owner_scope,
            vector,
            query.similarity_threshold,
            query.limit,
            query.offset,
            deadline=deadline,
        )
