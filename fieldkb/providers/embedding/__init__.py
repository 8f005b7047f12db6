"""Embedding provider implementations.

Two implementations of IEmbeddingProvider:
    1. OpenAICompatibleEmbeddingProvider -- remote ``/embeddings`` API.
       Used whenever ``OPENAI_API_KEY`` is configured.
    2. HashEmbeddingProvider -- deterministic local pseudo-embedding.
       Used when no credential is configured (dev, CI, offline demos).

:func:`create_embedding_provider` picks between them from settings.
"""

from fieldkb.config.settings import Settings
from fieldkb.interfaces.embedding_provider import IEmbeddingProvider
from fieldkb.providers.embedding.hash_embedding_provider import (
    HashEmbeddingProvider,
    pseudo_embedding,
)
from fieldkb.providers.embedding.openai_compatible_embedding_provider import (
    MODEL_DIMENSIONS,
    OpenAICompatibleEmbeddingProvider,
    dimension_for_model,
)


def create_embedding_provider(settings: Settings) -> IEmbeddingProvider:
    """Return the remote provider when credentials exist, else the hash fallback."""
    if settings.has_embedding_credentials():
        return OpenAICompatibleEmbeddingProvider(settings)
    return HashEmbeddingProvider(settings.openai_embedding_model)


__all__ = [
    "MODEL_DIMENSIONS",
    "HashEmbeddingProvider",
    "OpenAICompatibleEmbeddingProvider",
    "create_embedding_provider",
    "dimension_for_model",
    "pseudo_embedding",
]
