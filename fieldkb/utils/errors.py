"""Custom exception hierarchy for fieldkb.

All knowledge-base exceptions inherit from :class:`KnowledgeBaseError`,
which carries an optional ``provider_name`` so error handlers can identify
which backend (e.g. "openai", "sqlite", "cohere") caused the failure.

The hierarchy is organized by subsystem layer:

    KnowledgeBaseError  (base -- catch-all for any fieldkb error)
    +-- EmbeddingError               (embedding provider call failed)
    +-- VectorStoreError             (document/chunk/FAQ storage or search failed)
    |   +-- NativeVectorUnavailableError  (native vector extension missing)
    +-- RerankerError                (reranker API call failed)
    +-- ConfigurationError           (startup / missing config)

Cache failures have no exception type on purpose: the embedding cache
logs and swallows its own errors, so nothing above it ever sees them.
"""


class KnowledgeBaseError(Exception):
    """Base exception for all fieldkb errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which backend triggered the error.  The
    ``__str__`` method prefixes the provider name in brackets for
    structured log output, e.g. ``[openai] Embedding API error (500)``.
    """

    def __init__(
        self,
        message: str = "An unexpected knowledge base error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Embedding / reranking providers
# ---------------------------------------------------------------------------


class EmbeddingError(KnowledgeBaseError):
    """Raised when the embedding provider fails or returns an unusable response."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RerankerError(KnowledgeBaseError):
    """Raised when a reranker API call fails.

    Never leaves the reranker adapter: it is caught there and the keyword
    scorer is used instead.
    """

    def __init__(
        self,
        message: str = "Reranking failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Storage errors
# ---------------------------------------------------------------------------


class VectorStoreError(KnowledgeBaseError):
    """Raised when a vector store read or write fails."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NativeVectorUnavailableError(VectorStoreError):
    """Raised by operations that require the native vector extension."""

    def __init__(
        self,
        message: str = "Native vector support is not available",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class ConfigurationError(KnowledgeBaseError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
