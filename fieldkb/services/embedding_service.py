"""Embedding service -- the single source of vectors for the knowledge base.

Sits between callers (ingestion, search, the in-memory vector search) and
the embedding provider:

1. **Cache first** -- single texts go through ``cache.get``, batches
   through ``cache.get_many``.
2. **Provider for misses** -- all misses of a batch are sent to the
   provider in one call.
3. **Write-back in the background** -- fresh vectors are written to the
   cache by a detached task.  The caller never waits on it and a cache
   failure never fails the embed call.  A burst of identical cold queries
   may therefore all reach the provider.
"""

from __future__ import annotations

import numpy as np
import structlog

from fieldkb.interfaces.embedding_cache import IEmbeddingCache
from fieldkb.interfaces.embedding_provider import IEmbeddingProvider
from fieldkb.models.kb import CacheEntry, EmbeddingResult
from fieldkb.utils.background import BackgroundTasks

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingService:
    """Cache-aware embedding orchestration.

    Parameters
    ----------
    provider:
        Remote or fallback embedding backend.
    cache:
        Content-addressed embedding cache (may be disabled).
    background:
        Holder for detached cache write-backs.  Share one holder with the
        cache so that :meth:`drain` covers both.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        cache: IEmbeddingCache,
        background: BackgroundTasks | None = None,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._background = background or BackgroundTasks(logger)

    async def embed(self, text: str) -> EmbeddingResult:
        """Return the embedding for *text*, from cache when possible.

        Raises
        ------
        fieldkb.utils.errors.EmbeddingError
            If the provider call fails.
        """
        cached = await self._cache.get(text)
        if cached is not None:
            return cached

        embedding = await self._provider.embed_single(text)
        model = self._provider.get_model_name()
        self._background.spawn(
            self._cache.set(text, embedding, model), "embedding_cache_write_failed"
        )
        return EmbeddingResult(embedding=embedding, model=model, from_cache=False)

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed *texts*, preserving input order.

        Cached vectors and freshly computed ones are placed back by their
        original index, so the output lines up with *texts* no matter which
        positions hit the cache.
        """
        if not texts:
            return []

        cached = await self._cache.get_many(texts)
        results: list[EmbeddingResult | None] = [cached.get(text) for text in texts]
        miss_indices = [i for i, result in enumerate(results) if result is None]

        if miss_indices:
            miss_texts = [texts[i] for i in miss_indices]
            vectors = await self._provider.embed(miss_texts)
            model = self._provider.get_model_name()
            for index, vector in zip(miss_indices, vectors, strict=True):
                results[index] = EmbeddingResult(embedding=vector, model=model, from_cache=False)

            self._background.spawn(
                self._cache.set_many(
                    [
                        CacheEntry(text=text, embedding=vector, model=model)
                        for text, vector in zip(miss_texts, vectors, strict=True)
                    ]
                ),
                "embedding_cache_write_failed",
            )

        logger.debug(
            "embedding_batch_resolved",
            total=len(texts),
            cache_hits=len(texts) - len(miss_indices),
        )
        return [result for result in results if result is not None]

    @staticmethod
    def cosine_similarity(a: list[float], b: list[float]) -> float:
        """Cosine of the angle between *a* and *b*, in ``[-1, 1]``.

        Returns ``0.0`` when either vector has zero magnitude.

        Raises
        ------
        ValueError
            If the vectors have different dimensions.
        """
        if len(a) != len(b):
            raise ValueError(f"Vector dimensions don't match: {len(a)} vs {len(b)}")

        va = np.asarray(a, dtype=np.float64)
        vb = np.asarray(b, dtype=np.float64)
        norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
        if norm == 0.0:
            return 0.0
        similarity = float(np.dot(va, vb) / norm)
        return max(-1.0, min(1.0, similarity))

    def get_dimension(self) -> int:
        return self._provider.get_dimension()

    def get_model_name(self) -> str:
        return self._provider.get_model_name()

    async def drain(self) -> None:
        """Wait for outstanding cache write-backs (shutdown and tests)."""
        await self._background.drain()
