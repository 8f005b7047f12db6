"""Abstract base class for second-pass rerankers.

A reranker rescores a small pool of first-pass search hits against the
original query.  The search service treats it as optional: when
:meth:`IRerankerProvider.is_available` is ``False`` or :meth:`rerank`
returns nothing, it falls back to its own score ordering.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from fieldkb.models.kb import RerankedResult, SearchResult


# Concrete implementations:
#   RerankerProvider -- Cohere rerank / OpenAI chat scoring / keyword fallback
# Located in: fieldkb/providers/reranker/
class IRerankerProvider(ABC):
    """Contract for reranking backends."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if a reranking backend is configured."""

    @abstractmethod
    async def rerank(
        self,
        query: str,
        candidates: list[SearchResult],
        top_k: int = 5,
        min_score: float = 0.5,
    ) -> list[RerankedResult]:
        """Rescore *candidates* against *query*.

        Parameters
        ----------
        query:
            The user's original query text.
        candidates:
            First-pass hits, typically more than *top_k*.
        top_k:
            Maximum number of results to return.
        min_score:
            Results whose rerank score is below this value are dropped.

        Returns
        -------
        list[RerankedResult]
            Sorted by descending rerank score, already filtered and limited.
            Implementations must not raise; an empty list signals "no
            usable reranking".
        """
