"""
Configuration management for linkmemory.

Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env file if it exists
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Anthropic API Configuration (query expansion)
    anthropic_api_key: str = Field(
        ..., description="Anthropic API key used for query expansion"
    )
    expansion_model: str = Field(
        default="claude-haiku-4-5-20251001",
        description="Chat model used to expand search queries",
    )
    expansion_max_tokens: int = Field(
        default=256, description="Maximum tokens for an expansion response", gt=0
    )
    expansion_temperature: float = Field(
        default=0.0, description="Decoding temperature for expansion", ge=0.0, le=1.0
    )
    expansion_max_attempts: int = Field(
        default=3, description="Attempts before expansion falls back to the raw query", gt=0
    )
    expansion_retry_delay: float = Field(
        default=0.0, description="Delay between expansion attempts in seconds", ge=0.0
    )

    # Qdrant Configuration
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant server URL (':memory:' for an in-process store)",
    )
    qdrant_api_key: Optional[str] = Field(
        default=None, description="Qdrant API key (optional)"
    )
    fact_collection_name: str = Field(
        default="fact", description="Collection holding connection facts"
    )
    embedding_cache_collection_name: str = Field(
        default="ai_cached_embedding",
        description="Collection holding cached text embeddings",
    )

    # Embedding Configuration
    embedding_model: str = Field(
        default="BAAI/bge-large-en-v1.5",
        description="FastEmbed model for dense embeddings (1024 dims)",
    )
    embedding_dimension: int = Field(
        default=1024, description="Dimension of dense embedding vectors", gt=0
    )
    embedding_max_attempts: int = Field(
        default=1, description="Attempts per embedding call (1 = no retry)", gt=0
    )

    # Search Configuration
    search_similarity_threshold: float = Field(
        default=0.4, description="Threshold for unexpanded queries", ge=0.0, le=1.0
    )
    expanded_search_similarity_threshold: float = Field(
        default=0.3, description="Threshold for expanded queries", ge=0.0, le=1.0
    )
    fact_similarity_threshold: float = Field(
        default=0.2, description="Default threshold for fact lookups", ge=0.0, le=1.0
    )
    search_page_size: int = Field(
        default=10, description="Default number of results per page", gt=0
    )

    # Deadlines (seconds)
    llm_timeout: float = Field(default=30.0, description="Per-call chat model timeout", gt=0)
    embedding_timeout: float = Field(default=30.0, description="Per-call embedding timeout", gt=0)
    store_timeout: float = Field(default=10.0, description="Per-call store timeout", gt=0)
    request_timeout: float = Field(default=60.0, description="Deadline for one search request", gt=0)

    # Logging Configuration
    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_file: Optional[str] = Field(
        default=None, description="Path to log file (None = no file logging)"
    )

    # System prompts
    prompts_dir: Path = Field(
        default=PROJECT_ROOT / "prompts",
        description="Directory containing per-feature system prompts",
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields in .env


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings instance.

    Returns:
        Settings: The application settings.

    Raises:
        ValueError: If required environment variables are missing.
    """
    global _settings
    if _settings is None:
        try:
            _settings = Settings()
        except Exception as e:
            raise ValueError(
                f"Failed to load settings. Make sure you have a .env file with required variables. Error: {e}"
            ) from e
    return _settings


def reload_settings() -> Settings:
    """
    Reload settings from environment variables.

    Useful for testing or when environment variables change.

    Returns:
        Settings: The reloaded settings.
    """
    global _settings
    _settings = None
    return get_settings()
