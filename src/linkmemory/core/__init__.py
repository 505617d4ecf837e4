"""Core functionality: embeddings, query expansion, search and memory."""

# Note: Imports removed from __init__ to avoid circular import issues.
# Import directly from submodules instead:
#   from linkmemory.core.search import SearchPipeline
#   from linkmemory.core.factory import create_services

__all__ = []
