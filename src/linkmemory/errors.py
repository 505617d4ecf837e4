"""Exception hierarchy for linkmemory."""


class LinkMemoryError(Exception):
    """Base class for all linkmemory errors."""


class SystemPromptNotFoundError(LinkMemoryError, LookupError):
    """No system prompt is configured for a feature."""

    def __init__(self, feature: str, detail: str = ""):
        self.feature = feature
        message = f"No system prompt found for {feature}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class EmbeddingError(LinkMemoryError):
    """The embedding provider failed or returned an unusable vector."""


class StoreError(LinkMemoryError):
    """The vector store rejected or failed a request."""


class FactNotFoundError(StoreError, LookupError):
    """A fact id does not exist in the requested connection."""

    def __init__(self, fact_id: str, connection_id: str):
        self.fact_id = fact_id
        self.connection_id = connection_id
        super().__init__(f"Fact {fact_id} not found in connection {connection_id}")


class DeadlineExceededError(LinkMemoryError, TimeoutError):
    """An external call or request ran past its deadline."""
