"""Interface for the component that turns knowledge base text into vectors.

The rest of the package treats a provider as a black box: text in, one
vector per text out, plus the model name stored next to each vector.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Implementations (fieldkb/providers/embedding/):
#   OpenAICompatibleEmbeddingProvider -- remote /embeddings endpoint via the openai SDK
#   HashEmbeddingProvider             -- deterministic local pseudo-embedding
class IEmbeddingProvider(ABC):
    """Contract for text-embedding backends used by the embedding service.

    Vectors produced here are cached by
    :class:`~fieldkb.interfaces.embedding_cache.IEmbeddingCache` and stored
    by :class:`~fieldkb.interfaces.vector_store_provider.IVectorStoreProvider`.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of chunk, FAQ or query texts.

        Parameters
        ----------
        texts:
            One or more text strings.  Remote implementations send the whole
            batch in a single request.

        Returns
        -------
        list[list[float]]
            One vector per input, in input order, each of length
            :meth:`get_dimension`.

        Raises
        ------
        fieldkb.utils.errors.EmbeddingError
            On HTTP or transport failure, or a malformed response.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Embed one text; equivalent to ``embed([text])[0]``."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Vector length produced by this provider.

        Constant for the lifetime of the provider; the vector store uses it
        to decide which stored vectors are comparable.
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier recorded alongside each embedding."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier for this provider (used in logs and errors)."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and can be called."""
