"""Reranker implementations."""

from fieldkb.providers.reranker.reranker_provider import (
    COHERE_RERANK_URL,
    RerankerProvider,
    parse_scores,
)

__all__ = ["COHERE_RERANK_URL", "RerankerProvider", "parse_scores"]
