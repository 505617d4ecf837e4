"""
Qdrant client and collection management.

Owns the async client and the two collections the pipeline relies on:
the fact collection (searched by cosine similarity) and the embedding cache.
"""

import hashlib
import uuid
from typing import Optional

from loguru import logger
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import Distance, PayloadSchemaType, VectorParams

from linkmemory.config import get_settings

IN_MEMORY_URL = ":memory:"


def calculate_text_id(text: str) -> str:
    """
    Calculate a deterministic point ID for a text using SHA-256 converted to UUID.

    Args:
        text: The exact text

    Returns:
        UUID string derived from the SHA-256 hash (first 16 bytes)
    """
    hash_bytes = hashlib.sha256(text.encode("utf-8")).digest()
    return str(uuid.UUID(bytes=hash_bytes[:16]))


class QdrantDB:
    """
    Async Qdrant database client for connection memory.

    Manages the fact collection and the embedding cache collection.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        embedding_dim: Optional[int] = None,
        fact_collection: Optional[str] = None,
        cache_collection: Optional[str] = None,
        client: Optional[AsyncQdrantClient] = None,
    ):
        """
        Initialize the Qdrant client.

        Args:
            url: Optional Qdrant URL, or ':memory:' (uses settings if not provided)
            api_key: Optional API key (uses settings if not provided)
            embedding_dim: Vector size for both collections
            fact_collection: Name of the fact collection
            cache_collection: Name of the embedding cache collection
            client: Pre-built client (skips connection setup)
        """
        settings = get_settings()
        self.url = url or settings.qdrant_url
        self.api_key = api_key or settings.qdrant_api_key
        self.embedding_dim = embedding_dim or settings.embedding_dimension
        self.fact_collection = fact_collection or settings.fact_collection_name
        self.cache_collection = cache_collection or settings.embedding_cache_collection_name

        if client is not None:
            self.client = client
        elif self.url == IN_MEMORY_URL:
            logger.info("Using in-process Qdrant store")
            self.client = AsyncQdrantClient(location=IN_MEMORY_URL)
        else:
            logger.info(f"Connecting to Qdrant at {self.url}")
            self.client = AsyncQdrantClient(url=self.url, api_key=self.api_key)

    async def check_connection(self) -> bool:
        """
        Check if Qdrant is accessible.

        Returns:
            True if connection is successful
        """
        try:
            collections = await self.client.get_collections()
            logger.debug(f"Qdrant accessible. Collections: {len(collections.collections)}")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to Qdrant: {e}")
            return False

    async def collection_exists(self, name: str) -> bool:
        collections = (await self.client.get_collections()).collections
        exists = any(c.name == name for c in collections)
        logger.debug(f"Collection '{name}' exists: {exists}")
        return exists

    async def _create_collection(
        self, name: str, distance: Distance, indexed_fields: tuple[str, ...]
    ) -> None:
        if await self.collection_exists(name):
            logger.info(f"Collection '{name}' already exists")
            return

        logger.info(f"Creating collection '{name}' with {self.embedding_dim} dims ({distance.value})")
        await self.client.create_collection(
            collection_name=name,
            vectors_config=VectorParams(size=self.embedding_dim, distance=distance),
        )
        for field_name in indexed_fields:
            await self.client.create_payload_index(
                collection_name=name,
                field_name=field_name,
                field_schema=PayloadSchemaType.KEYWORD,
            )
        logger.success(f"Collection '{name}' created successfully")

    async def ensure_collections(self) -> None:
        """
        Create both collections if they do not exist yet.

        The fact collection uses cosine distance for similarity search. The
        cache collection uses dot product so stored vectors are returned
        exactly as written (cosine would normalize them on insert).
        """
        await self._create_collection(
            self.fact_collection,
            Distance.COSINE,
            ("user_id", "connection_id", "text"),
        )
        await self._create_collection(
            self.cache_collection,
            Distance.DOT,
            ("text",),
        )

    async def get_collection_info(self, name: str) -> dict:
        """
        Get information about a collection.

        Returns:
            Dict with collection statistics
        """
        try:
            if not await self.collection_exists(name):
                return {
                    "exists": False,
                    "message": f"Collection '{name}' does not exist",
                }

            info = await self.client.get_collection(collection_name=name)
            vectors = info.config.params.vectors

            return {
                "exists": True,
                "name": name,
                "points_count": info.points_count or 0,
                "status": info.status.value if hasattr(info.status, "value") else str(info.status),
                "config": {
                    "vector_size": getattr(vectors, "size", self.embedding_dim),
                    "distance": getattr(getattr(vectors, "distance", None), "value", "unknown"),
                },
            }

        except Exception as e:
            logger.error(f"Failed to get collection info: {e}")
            return {"exists": False, "error": str(e)}

    async def close(self) -> None:
        await self.client.close()
