"""Remote embeddings through the ``openai`` SDK.

Any server exposing an OpenAI-shaped ``/embeddings`` route can be targeted
with ``OPENAI_BASE_URL``.  One ``embed()`` call is one HTTP request, however
many texts it carries; failures surface as :class:`EmbeddingError`.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from fieldkb.config.settings import Settings
from fieldkb.interfaces.embedding_provider import IEmbeddingProvider
from fieldkb.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_DIMENSION = 1536

# Known embedding model dimensions.  Unknown models fall back to 1536.
MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "intfloat/multilingual-e5-large-instruct": 1024,
    "nomic-embed-text": 768,
}


def dimension_for_model(model: str) -> int:
    """Return the vector dimension produced by *model*."""
    return MODEL_DIMENSIONS.get(model, DEFAULT_DIMENSION)


class OpenAICompatibleEmbeddingProvider(IEmbeddingProvider):
    """Batched remote embeddings for chunks, FAQs and queries.

    Parameters
    ----------
    settings:
        Supplies the API key, base URL, model name and request timeout.
    http_client:
        Optional pre-built ``httpx.AsyncClient`` handed to the SDK.  Tests
        pass one wired to an ``httpx.MockTransport``.
    max_retries:
        SDK-level retry count for transient failures.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        max_retries: int = 2,
    ) -> None:
        self._api_key = settings.openai_api_key
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = dimension_for_model(self._model)

        client_kwargs: dict = {
            "api_key": self._api_key or "missing",
            "timeout": settings.embedding_timeout_seconds,
            "max_retries": max_retries,
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url
        if http_client is not None:
            client_kwargs["http_client"] = http_client

        self._client = openai.AsyncOpenAI(**client_kwargs)

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed every text of *texts* in one API request."""
        if not texts:
            return []

        try:
            response = await self._client.embeddings.create(input=texts, model=self._model)
        except openai.APIStatusError as exc:
            raise EmbeddingError(
                message=f"Embedding API error ({exc.status_code}): {exc.response.text}",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise EmbeddingError(
                message=f"Embedding API request failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        # The API documents ``index`` on each item; don't trust list order.
        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(texts):
            raise EmbeddingError(
                message=f"Embedding API returned {len(items)} vectors for {len(texts)} inputs",
                provider_name=self.get_provider_name(),
            )

        logger.info(
            "embedding_batch_complete",
            model=self._model,
            batch_size=len(texts),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return [list(item.embedding) for item in items]

    async def embed_single(self, text: str) -> list[float]:
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return "openai_embedding"

    def is_available(self) -> bool:
        """Credentials present; the hash fallback is used otherwise."""
        return bool(self._api_key)
