"""linkmemory - semantic search over a user's connection memory."""

__version__ = "0.1.0"
