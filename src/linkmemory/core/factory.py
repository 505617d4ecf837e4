"""
Builds the pipeline's collaborators once and wires them together.

Components receive their dependencies as constructor arguments, so tests can
assemble the same graph around doubles.
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from linkmemory.config import Settings, get_settings
from linkmemory.core.embeddings import CachedEmbedder, EmbeddingProvider, FastEmbedProvider
from linkmemory.core.expansion import QueryExpander
from linkmemory.core.memory import ConnectionMemory
from linkmemory.core.search import SearchPipeline, SimilaritySearchEngine
from linkmemory.db.embedding_store import EmbeddingStore
from linkmemory.db.fact_store import FactStore
from linkmemory.db.qdrant import QdrantDB
from linkmemory.llm.client import ChatClient, ClaudeClient
from linkmemory.llm.prompts import FilePromptStore


@dataclass
class MemoryServices:
    """Container for the wired pipeline."""

    settings: Settings
    db: QdrantDB
    embedding_store: EmbeddingStore
    fact_store: FactStore
    provider: EmbeddingProvider
    embedder: CachedEmbedder
    chat_client: ChatClient
    prompt_store: FilePromptStore
    expander: QueryExpander
    engine: SimilaritySearchEngine
    pipeline: SearchPipeline

    def memory_for(self, user_id: str) -> ConnectionMemory:
        """Connection memory scoped to one user."""
        return ConnectionMemory(
            user_id,
            self.embedder,
            self.fact_store,
            self.engine,
            default_similarity=self.settings.fact_similarity_threshold,
        )

    async def close(self) -> None:
        await self.db.close()


def create_services(
    settings: Optional[Settings] = None,
    db: Optional[QdrantDB] = None,
    provider: Optional[EmbeddingProvider] = None,
    chat_client: Optional[ChatClient] = None,
    prompt_store: Optional[FilePromptStore] = None,
) -> MemoryServices:
    """
    Construct every collaborator from settings.

    Any collaborator passed in is used as-is instead of being built.
    """
    settings = settings or get_settings()

    db = db or QdrantDB(
        url=settings.qdrant_url,
        api_key=settings.qdrant_api_key,
        embedding_dim=settings.embedding_dimension,
        fact_collection=settings.fact_collection_name,
        cache_collection=settings.embedding_cache_collection_name,
    )
    embedding_store = EmbeddingStore(db, timeout=settings.store_timeout)
    fact_store = FactStore(db, timeout=settings.store_timeout)

    provider = provider or FastEmbedProvider(
        model_name=settings.embedding_model, dimension=settings.embedding_dimension
    )
    embedder = CachedEmbedder(
        provider,
        embedding_store,
        max_attempts=settings.embedding_max_attempts,
        timeout=settings.embedding_timeout,
    )

    chat_client = chat_client or ClaudeClient(
        api_key=settings.anthropic_api_key,
        model=settings.expansion_model,
        max_tokens=settings.expansion_max_tokens,
    )
    prompt_store = prompt_store or FilePromptStore(settings.prompts_dir)
    expander = QueryExpander(
        chat_client,
        prompt_store,
        max_attempts=settings.expansion_max_attempts,
        retry_delay=settings.expansion_retry_delay,
        temperature=settings.expansion_temperature,
        timeout=settings.llm_timeout,
    )

    engine = SimilaritySearchEngine(fact_store)
    pipeline = SearchPipeline(expander, embedder, engine, settings=settings)

    logger.debug("Memory services created")
    return MemoryServices(
        settings=settings,
        db=db,
        embedding_store=embedding_store,
        fact_store=fact_store,
        provider=provider,
        embedder=embedder,
        chat_client=chat_client,
        prompt_store=prompt_store,
        expander=expander,
        engine=engine,
        pipeline=pipeline,
    )
