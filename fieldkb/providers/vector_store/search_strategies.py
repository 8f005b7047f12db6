"""Similarity search strategies for :class:`SQLiteVectorStore`.

Two implementations of one small interface, chosen once when the store
initialises:

- :class:`NativeVectorSearch` -- pushes scoring into SQLite through the
  ``sqlite-vec`` extension.  Cosine distance is turned into similarity
  (``1 - distance``); source filter, minimum score, ordering and the
  ``LIMIT`` all run in SQL.
- :class:`InMemoryVectorSearch` -- loads a bounded working set of rows
  and scores them in Python with
  :meth:`EmbeddingService.cosine_similarity`.  No extension required.

Both receive an open ``aiosqlite`` connection (``row_factory`` already set
to :class:`aiosqlite.Row`) and return hits sorted by descending score.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

import aiosqlite
import sqlite_vec

from fieldkb.models.kb import KbSource, SearchResult
from fieldkb.services.embedding_service import EmbeddingService

# Upper bound on rows scored per query by the in-memory strategy.
IN_MEMORY_CANDIDATE_LIMIT = 1000


def _load_json(value: str | None) -> Any:
    if not value:
        return None
    return json.loads(value)


def _chunk_result(row: aiosqlite.Row, score: float) -> SearchResult:
    return SearchResult(
        id=row["id"],
        content=row["content"],
        score=score,
        source=KbSource(row["source"]),
        source_ref=row["source_id"],
        title=row["title"],
        metadata=_load_json(row["metadata"]),
    )


def _faq_result(row: aiosqlite.Row, score: float) -> SearchResult:
    return SearchResult(
        id=row["id"],
        content=row["answer"],
        score=score,
        source=KbSource.FAQ,
        source_ref=row["id"],
        title=row["question"],
        metadata={"category": row["category"]},
    )


def _source_filter(sources: list[KbSource] | None) -> tuple[str, list[str]]:
    if not sources:
        return "", []
    placeholders = ",".join("?" for _ in sources)
    return f" AND d.source IN ({placeholders})", [KbSource(s).value for s in sources]


class VectorSearchStrategy(ABC):
    """How a similarity query is executed against the knowledge base tables."""

    name: str

    @abstractmethod
    async def search_chunks(
        self,
        db: aiosqlite.Connection,
        query_embedding: list[float],
        top_k: int,
        min_score: float,
        sources: list[KbSource] | None,
    ) -> list[SearchResult]:
        """Return active chunks scoring at least *min_score*, best first."""

    @abstractmethod
    async def search_faqs(
        self,
        db: aiosqlite.Connection,
        query_embedding: list[float],
        top_k: int,
        min_score: float,
    ) -> list[SearchResult]:
        """Return active FAQ entries scoring at least *min_score*, best first."""


# ---------------------------------------------------------------------------
# Native (sqlite-vec)
# ---------------------------------------------------------------------------

_NATIVE_CHUNKS_SQL = """\
SELECT * FROM (
    SELECT c.id, c.content, c.metadata, d.source, d.source_id, d.title,
           vec_distance_cosine(c.embedding_vector, ?) AS distance
    FROM kb_chunks c
    JOIN kb_documents d ON c.document_id = d.id
    WHERE d.is_active = 1
      AND c.embedding_vector IS NOT NULL{source_filter}
)
WHERE 1 - distance >= ?
ORDER BY distance ASC
LIMIT ?;
"""

_NATIVE_FAQS_SQL = """\
SELECT * FROM (
    SELECT id, question, answer, category,
           vec_distance_cosine(embedding_vector, ?) AS distance
    FROM kb_faqs
    WHERE is_active = 1
      AND embedding_vector IS NOT NULL
)
WHERE 1 - distance >= ?
ORDER BY distance ASC
LIMIT ?;
"""


class NativeVectorSearch(VectorSearchStrategy):
    """Similarity search executed by the ``sqlite-vec`` extension.

    A stored vector whose dimension differs from the query makes
    ``vec_distance_cosine`` raise, so the whole query fails.  Rows not yet
    converted (``embedding_vector IS NULL``) are invisible to this strategy
    until :meth:`SQLiteVectorStore.migrate_to_vector` runs.
    """

    name = "native"

    async def search_chunks(
        self,
        db: aiosqlite.Connection,
        query_embedding: list[float],
        top_k: int,
        min_score: float,
        sources: list[KbSource] | None,
    ) -> list[SearchResult]:
        source_sql, source_params = _source_filter(sources)
        sql = _NATIVE_CHUNKS_SQL.format(source_filter=source_sql)
        params = (
            sqlite_vec.serialize_float32(query_embedding),
            *source_params,
            min_score,
            top_k,
        )
        cursor = await db.execute(sql, params)
        rows = await cursor.fetchall()
        return [_chunk_result(row, 1.0 - row["distance"]) for row in rows]

    async def search_faqs(
        self,
        db: aiosqlite.Connection,
        query_embedding: list[float],
        top_k: int,
        min_score: float,
    ) -> list[SearchResult]:
        params = (
            sqlite_vec.serialize_float32(query_embedding),
            min_score,
            top_k,
        )
        cursor = await db.execute(_NATIVE_FAQS_SQL, params)
        rows = await cursor.fetchall()
        return [_faq_result(row, 1.0 - row["distance"]) for row in rows]


# ---------------------------------------------------------------------------
# In-memory brute force
# ---------------------------------------------------------------------------

_IN_MEMORY_CHUNKS_SQL = """\
SELECT c.id, c.content, c.embedding, c.metadata, d.source, d.source_id, d.title
FROM kb_chunks c
JOIN kb_documents d ON c.document_id = d.id
WHERE d.is_active = 1{source_filter}
LIMIT ?;
"""

_IN_MEMORY_FAQS_SQL = """\
SELECT id, question, answer, category, embedding
FROM kb_faqs
WHERE is_active = 1
LIMIT ?;
"""


class InMemoryVectorSearch(VectorSearchStrategy):
    """Brute-force cosine scoring over at most ``candidate_limit`` rows.

    Rows beyond the limit are never scored, so on large knowledge bases
    relevant entries can be missed.  Rows with an empty embedding are
    skipped; a row of a different dimension than the query raises
    ``ValueError`` from :meth:`EmbeddingService.cosine_similarity`.
    """

    name = "in_memory"

    def __init__(
        self,
        embedding_service: EmbeddingService,
        candidate_limit: int = IN_MEMORY_CANDIDATE_LIMIT,
    ) -> None:
        self._embedding_service = embedding_service
        self._candidate_limit = candidate_limit

    def _score_rows(
        self,
        rows: list[aiosqlite.Row],
        query_embedding: list[float],
        min_score: float,
    ) -> list[tuple[aiosqlite.Row, float]]:
        scored: list[tuple[aiosqlite.Row, float]] = []
        for row in rows:
            embedding = _load_json(row["embedding"])
            if not embedding:
                continue
            score = self._embedding_service.cosine_similarity(query_embedding, embedding)
            if score >= min_score:
                scored.append((row, score))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored

    async def search_chunks(
        self,
        db: aiosqlite.Connection,
        query_embedding: list[float],
        top_k: int,
        min_score: float,
        sources: list[KbSource] | None,
    ) -> list[SearchResult]:
        source_sql, source_params = _source_filter(sources)
        cursor = await db.execute(
            _IN_MEMORY_CHUNKS_SQL.format(source_filter=source_sql),
            (*source_params, self._candidate_limit),
        )
        rows = await cursor.fetchall()
        scored = self._score_rows(list(rows), query_embedding, min_score)
        return [_chunk_result(row, score) for row, score in scored[:top_k]]

    async def search_faqs(
        self,
        db: aiosqlite.Connection,
        query_embedding: list[float],
        top_k: int,
        min_score: float,
    ) -> list[SearchResult]:
        cursor = await db.execute(_IN_MEMORY_FAQS_SQL, (self._candidate_limit,))
        rows = await cursor.fetchall()
        scored = self._score_rows(list(rows), query_embedding, min_score)
        return [_faq_result(row, score) for row, score in scored[:top_k]]
