"""Utility modules for fieldkb.

- **errors** -- Exception hierarchy rooted at KnowledgeBaseError; each
  layer (embedding, storage, reranking, configuration) raises its own
  subclass so callers can handle failures granularly.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **background** -- fire-and-forget task holder used for cache writes
  that must never block or fail the caller.
"""

from fieldkb.utils.background import BackgroundTasks
from fieldkb.utils.errors import (
    ConfigurationError,
    EmbeddingError,
    KnowledgeBaseError,
    NativeVectorUnavailableError,
    RerankerError,
    VectorStoreError,
)
from fieldkb.utils.logging import (
    configure_logging,
    configure_logging_from_settings,
    get_logger,
)

__all__ = [
    "BackgroundTasks",
    "ConfigurationError",
    "EmbeddingError",
    "KnowledgeBaseError",
    "NativeVectorUnavailableError",
    "RerankerError",
    "VectorStoreError",
    "configure_logging",
    "configure_logging_from_settings",
    "get_logger",
]
