"""Deterministic pseudo-embedding used when no provider credential is set.

The vectors carry no semantic meaning.  They exist so that ingestion,
caching, storage and search run end to end without network access, and so
that the "no provider" path goes through exactly the same downstream code
as the real one.
"""

from __future__ import annotations

import math

import structlog

from fieldkb.interfaces.embedding_provider import IEmbeddingProvider
from fieldkb.providers.embedding.openai_compatible_embedding_provider import (
    dimension_for_model,
)

logger = structlog.get_logger(logger_name=__name__)

_HASH_SEED = 5381
_HASH_MASK = 0xFFFFFFFF
_WORD_WEIGHT = 2.0


def _rolling_hash(h: int, char: str) -> int:
    return (h * 31 + ord(char)) & _HASH_MASK


def pseudo_embedding(text: str, dimension: int) -> list[float]:
    """Return a unit-length vector derived only from *text*.

    Every character advances a rolling hash whose ``sin`` is added to a
    bucket chosen from the hash and the character position; every
    whitespace-delimited word does the same with a word-level hash and a
    larger weight.  The result is L2-normalised.  Empty text (or text whose
    contributions cancel out) yields the zero vector.
    """
    vector = [0.0] * dimension

    h = _HASH_SEED
    for i, char in enumerate(text):
        h = _rolling_hash(h, char)
        vector[(h + i) % dimension] += math.sin(h)

    for word in text.lower().split():
        wh = _HASH_SEED
        for char in word:
            wh = _rolling_hash(wh, char)
        vector[wh % dimension] += math.sin(wh) * _WORD_WEIGHT

    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0.0:
        return vector
    return [v / norm for v in vector]


class HashEmbeddingProvider(IEmbeddingProvider):
    """Local fallback provider built on :func:`pseudo_embedding`.

    Reports the configured model's dimension so vectors stay comparable
    with anything already stored for that model.
    """

    def __init__(self, model: str = "text-embedding-3-small") -> None:
        self._model = model
        self._dimension = dimension_for_model(model)
        logger.warning(
            "embedding_fallback_active",
            msg="No embedding credential configured; using deterministic pseudo-embeddings.",
            dimension=self._dimension,
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [pseudo_embedding(text, self._dimension) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        return pseudo_embedding(text, self._dimension)

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return "hash_fallback"

    def is_available(self) -> bool:
        return True
