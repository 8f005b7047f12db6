"""Query-time orchestrator for knowledge base retrieval (the RAG read path).

Flow of :meth:`KnowledgeBaseSearchService.search`:

1. Embed the query (cache-aware).
2. Search chunks and FAQs concurrently with a relaxed threshold
   (``min_score * 0.8``) so reranking still has candidates to promote.
   A failure in either search fails the whole call.
3. Merge both lists and sort by descending score.
4. Rerank when a reranker is available; a non-empty reranked list is
   authoritative (already limited and filtered by the reranker).
5. Otherwise take the first ``top_k`` of the merged list, *then* drop
   anything under the final ``min_score``.  Fewer than ``top_k`` results
   can therefore come back.
6. Strip metadata unless the caller asked for it.
7. Render the hits into a markdown context block for the language model.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Coroutine
from typing import Any

import structlog

from fieldkb.interfaces.embedding_cache import IEmbeddingCache
from fieldkb.interfaces.reranker_provider import IRerankerProvider
from fieldkb.interfaces.vector_store_provider import IVectorStoreProvider
from fieldkb.models.kb import (
    SOURCE_LABELS,
    CacheStats,
    KbSource,
    KbStats,
    SearchOptions,
    SearchResponse,
    SearchResult,
)
from fieldkb.services.embedding_service import EmbeddingService
from fieldkb.services.support_intent import is_support_question

logger = structlog.get_logger(logger_name=__name__)

RELAXED_THRESHOLD_FACTOR = 0.8

CONTEXT_HEADING = "## Knowledge Base Context"
CONTEXT_SEPARATOR = "\n\n---\n\n"

# Narrow lookups: (initial threshold, final threshold when reranked).
_FAQ_THRESHOLDS = (0.6, 0.7)
_DOCS_THRESHOLDS = (0.5, 0.6)


def format_context(results: list[SearchResult]) -> str:
    """Render *results* as one markdown block; empty input gives ``""``."""
    if not results:
        return ""
    sections = [
        f"### {r.title or r.source_ref} ({SOURCE_LABELS.get(r.source, r.source.value)})\n{r.content}"
        for r in results
    ]
    return f"{CONTEXT_HEADING}\n\n{CONTEXT_SEPARATOR.join(sections)}"


async def _gather_or_cancel(
    *searches: Coroutine[Any, Any, list[SearchResult]],
) -> list[list[SearchResult]]:
    """Run *searches* concurrently; the first failure cancels the others.

    Every sibling has finished or been cancelled before the error propagates.
    """
    tasks = [asyncio.create_task(search) for search in searches]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class KnowledgeBaseSearchService:
    """Retrieval over document chunks and FAQ entries.

    Parameters
    ----------
    embedding_service:
        Embeds queries.
    vector_store:
        Answers chunk and FAQ similarity searches.
    reranker:
        Optional second-pass scorer.  ``None`` or unavailable means results
        are ranked by vector similarity alone.
    cache:
        Embedding cache, only consulted for :meth:`get_stats`.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: IVectorStoreProvider,
        reranker: IRerankerProvider | None = None,
        cache: IEmbeddingCache | None = None,
    ) -> None:
        self._embedding_service = embedding_service
        self._vector_store = vector_store
        self._reranker = reranker
        self._cache = cache

    def _reranker_available(self) -> bool:
        return self._reranker is not None and self._reranker.is_available()

    async def _rerank(
        self, query: str, candidates: list[SearchResult], top_k: int, min_score: float
    ) -> list[SearchResult]:
        """Run the reranker; any failure counts as "no usable output"."""
        if self._reranker is None:
            return []
        try:
            return list(
                await self._reranker.rerank(query, candidates, top_k=top_k, min_score=min_score)
            )
        except Exception as exc:
            logger.warning("kb_rerank_failed", error=str(exc), error_type=type(exc).__name__)
            return []

    # ------------------------------------------------------------------
    # Canonical search
    # ------------------------------------------------------------------

    async def search(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """Retrieve the best chunks and FAQs for *query*.

        Raises
        ------
        fieldkb.utils.errors.EmbeddingError
            If the query cannot be embedded.
        fieldkb.utils.errors.VectorStoreError
            If either the chunk or the FAQ search fails.
        """
        opts = options or SearchOptions()
        started = time.perf_counter()

        use_reranking = opts.use_reranking and self._reranker_available()
        fetch_k = max(opts.top_k, opts.initial_top_k) if use_reranking else opts.top_k
        relaxed_min = opts.min_score * RELAXED_THRESHOLD_FACTOR

        embedded = await self._embedding_service.embed(query)
        search_faqs = opts.sources is None or KbSource.FAQ in opts.sources

        chunk_search = self._vector_store.search_chunks(
            embedded.embedding, top_k=fetch_k, min_score=relaxed_min, sources=opts.sources
        )
        if search_faqs:
            chunk_results, faq_results = await _gather_or_cancel(
                chunk_search,
                self._vector_store.search_faqs(
                    embedded.embedding, top_k=fetch_k, min_score=relaxed_min
                ),
            )
        else:
            chunk_results, faq_results = await chunk_search, []

        merged = sorted([*chunk_results, *faq_results], key=lambda r: r.score, reverse=True)

        results: list[SearchResult] = []
        reranked = False
        if use_reranking and merged:
            results = await self._rerank(query, merged, opts.top_k, opts.min_score)
            reranked = bool(results)

        if not reranked:
            results = [r for r in merged[: opts.top_k] if r.score >= opts.min_score]

        if not opts.include_metadata:
            results = [r.model_copy(update={"metadata": None}) for r in results]

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "kb_search_complete",
            query_length=len(query),
            chunk_candidates=len(chunk_results),
            faq_candidates=len(faq_results),
            results=len(results),
            reranked=reranked,
            search_time_ms=round(elapsed_ms, 1),
        )
        return SearchResponse(
            query=query,
            results=results,
            total_results=len(results),
            search_time_ms=elapsed_ms,
            reranked=reranked,
            native_vector_used=self._vector_store.native_vector_enabled,
            formatted_context=format_context(results),
        )

    # ------------------------------------------------------------------
    # Narrow variants
    # ------------------------------------------------------------------

    async def search_faq(self, query: str, top_k: int = 3) -> list[SearchResult]:
        """Look up FAQ entries only, with stricter thresholds than :meth:`search`."""
        initial_min, reranked_min = _FAQ_THRESHOLDS
        embedded = await self._embedding_service.embed(query)
        candidates = await self._vector_store.search_faqs(
            embedded.embedding, top_k=top_k * 2, min_score=initial_min
        )
        return await self._finish_narrow(query, candidates, top_k, initial_min, reranked_min)

    async def search_docs(self, query: str, top_k: int = 5) -> list[SearchResult]:
        """Look up documentation chunks only, with stricter thresholds than :meth:`search`."""
        initial_min, reranked_min = _DOCS_THRESHOLDS
        embedded = await self._embedding_service.embed(query)
        candidates = await self._vector_store.search_chunks(
            embedded.embedding,
            top_k=top_k * 2,
            min_score=initial_min,
            sources=[KbSource.DOCS],
        )
        return await self._finish_narrow(query, candidates, top_k, initial_min, reranked_min)

    async def _finish_narrow(
        self,
        query: str,
        candidates: list[SearchResult],
        top_k: int,
        initial_min: float,
        reranked_min: float,
    ) -> list[SearchResult]:
        if candidates and self._reranker_available():
            reranked = await self._rerank(query, candidates, top_k, reranked_min)
            if reranked:
                return reranked
        return [r for r in candidates if r.score >= initial_min][:top_k]

    # ------------------------------------------------------------------
    # Routing and introspection
    # ------------------------------------------------------------------

    @staticmethod
    def is_support_question(message: str) -> bool:
        return is_support_question(message)

    async def get_stats(self) -> KbStats:
        store_stats = await self._vector_store.get_stats()
        cache_stats = await self._cache.get_stats() if self._cache is not None else CacheStats()
        return KbStats(
            **store_stats.model_dump(),
            reranker_available=self._reranker_available(),
            cache_stats=cache_stats,
        )
