"""SQLite vector store provider adapter.

Implements :class:`IVectorStoreProvider` on a local SQLite database through
``aiosqlite`` (one connection per operation).  Documents, chunks and FAQ
entries live in three tables (plus ``kb_index_jobs``, one row per folder
ingestion run); every embedding is stored twice:

- ``embedding`` -- JSON float array, the source of truth, always written.
- ``embedding_vector`` -- float32 BLOB understood by the ``sqlite-vec``
  extension, filled best-effort when native vector support is active.

:meth:`SQLiteVectorStore.initialize` checks whether ``sqlite-vec`` can be
loaded and selects :class:`NativeVectorSearch` or
:class:`InMemoryVectorSearch` accordingly.  The choice is fixed for the
lifetime of the store.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite
import sqlite_vec
import structlog

from fieldkb.interfaces.vector_store_provider import IVectorStoreProvider
from fieldkb.models.kb import (
    JOB_PROCESSING,
    TERMINAL_JOB_STATUSES,
    ChunkRecord,
    DocumentRecord,
    FaqEntry,
    IndexProgress,
    KbSource,
    SearchResult,
    StoredChunk,
    StoredDocument,
    VectorMigrationResult,
    VectorStoreStats,
)
from fieldkb.providers.vector_store.search_strategies import (
    InMemoryVectorSearch,
    NativeVectorSearch,
    VectorSearchStrategy,
)
from fieldkb.services.embedding_service import EmbeddingService
from fieldkb.utils.errors import NativeVectorUnavailableError, VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER_NAME = "sqlite"
_DEFAULT_DB_PATH = Path("data/knowledge_base.db")
_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

_CREATE_TABLES_SQL = [
    f"""\
CREATE TABLE IF NOT EXISTS kb_documents (
    id          TEXT    PRIMARY KEY,
    source      TEXT    NOT NULL,
    source_id   TEXT    NOT NULL,
    title       TEXT    NOT NULL,
    content     TEXT    NOT NULL,
    hash        TEXT    NOT NULL,
    metadata    TEXT,
    is_active   INTEGER NOT NULL DEFAULT 1,
    indexed_at  TEXT    NOT NULL DEFAULT ({_NOW_SQL}),
    updated_at  TEXT    NOT NULL DEFAULT ({_NOW_SQL}),
    UNIQUE(source, source_id)
);
""",
    """\
CREATE TABLE IF NOT EXISTS kb_chunks (
    id                TEXT    PRIMARY KEY,
    document_id       TEXT    NOT NULL REFERENCES kb_documents(id) ON DELETE CASCADE,
    content           TEXT    NOT NULL,
    chunk_index       INTEGER NOT NULL,
    start_char        INTEGER NOT NULL,
    end_char          INTEGER NOT NULL,
    embedding         TEXT    NOT NULL,
    embedding_vector  BLOB,
    metadata          TEXT
);
""",
    f"""\
CREATE TABLE IF NOT EXISTS kb_faqs (
    id                TEXT    PRIMARY KEY,
    question          TEXT    NOT NULL,
    answer            TEXT    NOT NULL,
    category          TEXT,
    keywords          TEXT    NOT NULL DEFAULT '[]',
    priority          INTEGER NOT NULL DEFAULT 0,
    embedding         TEXT    NOT NULL,
    embedding_vector  BLOB,
    is_active         INTEGER NOT NULL DEFAULT 1,
    created_at        TEXT    NOT NULL DEFAULT ({_NOW_SQL}),
    updated_at        TEXT    NOT NULL DEFAULT ({_NOW_SQL})
);
""",
    f"""\
CREATE TABLE IF NOT EXISTS kb_index_jobs (
    id              TEXT    PRIMARY KEY,
    source          TEXT    NOT NULL,
    status          TEXT    NOT NULL,
    total_docs      INTEGER NOT NULL DEFAULT 0,
    processed_docs  INTEGER NOT NULL DEFAULT 0,
    failed_docs     INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL DEFAULT ({_NOW_SQL}),
    completed_at    TEXT
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_kb_documents_source ON kb_documents(source);",
    "CREATE INDEX IF NOT EXISTS idx_kb_chunks_document ON kb_chunks(document_id, chunk_index);",
    "CREATE INDEX IF NOT EXISTS idx_kb_faqs_active ON kb_faqs(is_active, priority);",
    "CREATE INDEX IF NOT EXISTS idx_kb_index_jobs_started ON kb_index_jobs(started_at);",
]

_UPSERT_DOCUMENT_SQL = f"""\
INSERT INTO kb_documents (id, source, source_id, title, content, hash, metadata)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(source, source_id)
DO UPDATE SET title      = excluded.title,
              content    = excluded.content,
              hash       = excluded.hash,
              metadata   = excluded.metadata,
              indexed_at = {_NOW_SQL},
              updated_at = {_NOW_SQL};
"""

_INSERT_CHUNK_SQL = """\
INSERT INTO kb_chunks
    (id, document_id, content, chunk_index, start_char, end_char, embedding, metadata)
VALUES (?, ?, ?, ?, ?, ?, ?, ?);
"""

_UPSERT_FAQ_SQL = f"""\
INSERT INTO kb_faqs (id, question, answer, category, keywords, priority, embedding, is_active)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET question   = excluded.question,
              answer     = excluded.answer,
              category   = excluded.category,
              keywords   = excluded.keywords,
              priority   = excluded.priority,
              embedding  = excluded.embedding,
              is_active  = excluded.is_active,
              embedding_vector = NULL,
              updated_at = {_NOW_SQL};
"""

# Empty embeddings have no float32 form; every other row is converted as-is.
_CONVERT_CHUNKS_SQL = """\
UPDATE kb_chunks
SET embedding_vector = vec_f32(embedding)
WHERE document_id = ? AND json_array_length(embedding) > 0;
"""

_CONVERT_FAQ_SQL = """\
UPDATE kb_faqs
SET embedding_vector = vec_f32(embedding)
WHERE id = ? AND json_array_length(embedding) > 0;
"""

_MIGRATE_CHUNKS_SQL = """\
UPDATE kb_chunks
SET embedding_vector = vec_f32(embedding)
WHERE embedding_vector IS NULL AND json_array_length(embedding) > 0;
"""

_MIGRATE_FAQS_SQL = """\
UPDATE kb_faqs
SET embedding_vector = vec_f32(embedding)
WHERE embedding_vector IS NULL AND json_array_length(embedding) > 0;
"""


async def _load_vector_extension(db: aiosqlite.Connection) -> None:
    await db.enable_load_extension(True)
    await db.load_extension(sqlite_vec.loadable_path())
    await db.enable_load_extension(False)


def _dump_json(value: object | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


class SQLiteVectorStore(IVectorStoreProvider):
    """Knowledge base store on SQLite with optional ``sqlite-vec`` search.

    Parameters
    ----------
    embedding_service:
        Provides the expected vector dimension and, for the in-memory
        strategy, cosine scoring.
    db_path:
        SQLite database file.
    native_vector_enabled:
        ``False`` skips the extension check and forces in-memory search.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        db_path: str | Path = _DEFAULT_DB_PATH,
        native_vector_enabled: bool = True,
    ) -> None:
        self._embedding_service = embedding_service
        self._db_path = Path(db_path)
        self._allow_native = native_vector_enabled
        self._native_vector_enabled = False
        self._strategy: VectorSearchStrategy | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create tables, then pick the search strategy once."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute("PRAGMA journal_mode=WAL")
                for table_sql in _CREATE_TABLES_SQL:
                    await db.execute(table_sql)
                for idx_sql in _CREATE_INDICES_SQL:
                    await db.execute(idx_sql)
                await db.commit()
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to initialise knowledge base tables: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        native = await self._detect_native_vector() if self._allow_native else False
        self._native_vector_enabled = native
        if native:
            self._strategy = NativeVectorSearch()
        else:
            self._strategy = InMemoryVectorSearch(self._embedding_service)

        logger.info(
            "vector_store_initialized",
            path=str(self._db_path),
            strategy=self._strategy.name,
            dimension=self._embedding_service.get_dimension(),
        )

    async def _detect_native_vector(self) -> bool:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await _load_vector_extension(db)
                cursor = await db.execute("SELECT vec_version()")
                (version,) = await cursor.fetchone()
        except Exception as exc:
            logger.warning(
                "native_vector_unavailable",
                error=str(exc),
                msg="Using in-memory similarity search.",
            )
            return False
        logger.info("native_vector_detected", version=version)
        return True

    @property
    def native_vector_enabled(self) -> bool:
        return self._native_vector_enabled

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON")
            if self._native_vector_enabled:
                await _load_vector_extension(db)
            yield db

    def _require_strategy(self) -> VectorSearchStrategy:
        if self._strategy is None:
            raise VectorStoreError(
                message="Vector store used before initialize()",
                provider_name=_PROVIDER_NAME,
            )
        return self._strategy

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search_chunks(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        min_score: float = 0.5,
        sources: list[KbSource] | None = None,
    ) -> list[SearchResult]:
        strategy = self._require_strategy()
        try:
            async with self._connect() as db:
                results = await strategy.search_chunks(
                    db, query_embedding, top_k, min_score, sources
                )
        except (aiosqlite.Error, ValueError) as exc:
            raise VectorStoreError(
                message=f"Chunk search failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        logger.debug(
            "chunk_search_complete",
            strategy=strategy.name,
            results=len(results),
            top_k=top_k,
            min_score=min_score,
        )
        return results

    async def search_faqs(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        min_score: float = 0.5,
    ) -> list[SearchResult]:
        strategy = self._require_strategy()
        try:
            async with self._connect() as db:
                results = await strategy.search_faqs(db, query_embedding, top_k, min_score)
        except (aiosqlite.Error, ValueError) as exc:
            raise VectorStoreError(
                message=f"FAQ search failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        logger.debug(
            "faq_search_complete",
            strategy=strategy.name,
            results=len(results),
            top_k=top_k,
            min_score=min_score,
        )
        return results

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def store_document(self, document: DocumentRecord, chunks: list[ChunkRecord]) -> str:
        """Upsert *document* and replace its chunk set in one transaction.

        Readers never observe the document with a partial chunk set: the
        upsert, the delete of the old chunks and the insert of the new ones
        commit together or not at all.  Converting the new embeddings to
        the native representation happens afterwards and is best-effort.
        """
        try:
            async with self._connect() as db:
                try:
                    await db.execute(
                        _UPSERT_DOCUMENT_SQL,
                        (
                            str(uuid.uuid4()),
                            document.source.value,
                            document.source_id,
                            document.title,
                            document.content,
                            document.hash,
                            _dump_json(document.metadata),
                        ),
                    )
                    cursor = await db.execute(
                        "SELECT id FROM kb_documents WHERE source = ? AND source_id = ?",
                        (document.source.value, document.source_id),
                    )
                    (document_id,) = await cursor.fetchone()
                    await db.execute("DELETE FROM kb_chunks WHERE document_id = ?", (document_id,))
                    await db.executemany(
                        _INSERT_CHUNK_SQL,
                        [
                            (
                                str(uuid.uuid4()),
                                document_id,
                                chunk.content,
                                chunk.chunk_index,
                                chunk.start_char,
                                chunk.end_char,
                                json.dumps(chunk.embedding),
                                _dump_json(chunk.metadata),
                            )
                            for chunk in chunks
                        ],
                    )
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise

                if self._native_vector_enabled and chunks:
                    try:
                        await db.execute(_CONVERT_CHUNKS_SQL, (document_id,))
                        await db.commit()
                    except aiosqlite.Error as exc:
                        logger.warning(
                            "chunk_vector_conversion_failed",
                            document_id=document_id,
                            error=str(exc),
                        )
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to store document {document.source_id}: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        logger.info(
            "kb_document_stored",
            source=document.source.value,
            source_id=document.source_id,
            document_id=document_id,
            chunks=len(chunks),
        )
        return document_id

    async def store_faq(self, faq: FaqEntry) -> str:
        faq_id = faq.id or str(uuid.uuid4())
        try:
            async with self._connect() as db:
                await db.execute(
                    _UPSERT_FAQ_SQL,
                    (
                        faq_id,
                        faq.question,
                        faq.answer,
                        faq.category,
                        json.dumps(faq.keywords, ensure_ascii=False),
                        faq.priority,
                        json.dumps(faq.embedding),
                        int(faq.is_active),
                    ),
                )
                await db.commit()

                if self._native_vector_enabled:
                    try:
                        await db.execute(_CONVERT_FAQ_SQL, (faq_id,))
                        await db.commit()
                    except aiosqlite.Error as exc:
                        logger.warning("faq_vector_conversion_failed", faq_id=faq_id, error=str(exc))
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to store FAQ: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        logger.debug("kb_faq_stored", faq_id=faq_id, updated=faq.id is not None)
        return faq_id

    async def delete_document(self, source: KbSource, source_id: str) -> bool:
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "DELETE FROM kb_documents WHERE source = ? AND source_id = ?",
                    (KbSource(source).value, source_id),
                )
                await db.commit()
                deleted = cursor.rowcount > 0
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to delete document {source_id}: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        if deleted:
            logger.info("kb_document_deleted", source=KbSource(source).value, source_id=source_id)
        return deleted

    async def mark_source_for_reindex(self, source: KbSource) -> int:
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    f"UPDATE kb_documents SET hash = '', updated_at = {_NOW_SQL} WHERE source = ?",
                    (KbSource(source).value,),
                )
                await db.commit()
                count = cursor.rowcount
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to reset hashes for {source}: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        logger.info("kb_source_marked_for_reindex", source=KbSource(source).value, documents=count)
        return count

    # ------------------------------------------------------------------
    # Index jobs
    # ------------------------------------------------------------------

    async def create_index_job(self, source: KbSource) -> str:
        job_id = str(uuid.uuid4())
        try:
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO kb_index_jobs (id, source, status) VALUES (?, ?, ?)",
                    (job_id, KbSource(source).value, JOB_PROCESSING),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to create index job: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        logger.info("kb_index_job_started", job_id=job_id, source=KbSource(source).value)
        return job_id

    async def update_index_job(
        self,
        job_id: str,
        *,
        status: str | None = None,
        total_docs: int | None = None,
        processed_docs: int | None = None,
        failed_docs: int | None = None,
        error_message: str | None = None,
    ) -> None:
        fields = {
            "status": status,
            "total_docs": total_docs,
            "processed_docs": processed_docs,
            "failed_docs": failed_docs,
            "error_message": error_message,
        }
        assignments = [f"{column} = ?" for column, value in fields.items() if value is not None]
        params: list[object] = [value for value in fields.values() if value is not None]
        if status in TERMINAL_JOB_STATUSES:
            assignments.append(f"completed_at = {_NOW_SQL}")
        if not assignments:
            return

        try:
            async with self._connect() as db:
                await db.execute(
                    f"UPDATE kb_index_jobs SET {', '.join(assignments)} WHERE id = ?",
                    (*params, job_id),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to update index job {job_id}: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

    async def get_index_job(self, job_id: str) -> IndexProgress | None:
        try:
            async with self._connect() as db:
                cursor = await db.execute("SELECT * FROM kb_index_jobs WHERE id = ?", (job_id,))
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to load index job {job_id}: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        if row is None:
            return None
        return IndexProgress(
            job_id=row["id"],
            status=row["status"],
            total_docs=row["total_docs"],
            processed_docs=row["processed_docs"],
            failed_docs=row["failed_docs"],
            error_message=row["error_message"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def needs_reindex(self, source: KbSource, source_id: str, content_hash: str) -> bool:
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "SELECT hash FROM kb_documents WHERE source = ? AND source_id = ?",
                    (KbSource(source).value, source_id),
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to look up document {source_id}: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        if row is None:
            return True
        return row["hash"] != content_hash

    async def get_document(self, source: KbSource, source_id: str) -> StoredDocument | None:
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "SELECT * FROM kb_documents WHERE source = ? AND source_id = ?",
                    (KbSource(source).value, source_id),
                )
                doc_row = await cursor.fetchone()
                if doc_row is None:
                    return None
                cursor = await db.execute(
                    "SELECT id, document_id, content, chunk_index, start_char, end_char, "
                    "embedding, metadata FROM kb_chunks WHERE document_id = ? "
                    "ORDER BY chunk_index",
                    (doc_row["id"],),
                )
                chunk_rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to load document {source_id}: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        chunks = [
            StoredChunk(
                id=row["id"],
                document_id=row["document_id"],
                content=row["content"],
                chunk_index=row["chunk_index"],
                start_char=row["start_char"],
                end_char=row["end_char"],
                embedding=json.loads(row["embedding"]),
                metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            )
            for row in chunk_rows
        ]
        return StoredDocument(
            id=doc_row["id"],
            source=KbSource(doc_row["source"]),
            source_id=doc_row["source_id"],
            title=doc_row["title"],
            content=doc_row["content"],
            hash=doc_row["hash"],
            metadata=json.loads(doc_row["metadata"]) if doc_row["metadata"] else None,
            is_active=bool(doc_row["is_active"]),
            indexed_at=doc_row["indexed_at"],
            updated_at=doc_row["updated_at"],
            chunks=chunks,
        )

    async def get_stats(self) -> VectorStoreStats:
        try:
            async with self._connect() as db:
                cursor = await db.execute("SELECT COUNT(*) FROM kb_documents WHERE is_active = 1")
                (total_documents,) = await cursor.fetchone()
                cursor = await db.execute("SELECT COUNT(*) FROM kb_chunks")
                (total_chunks,) = await cursor.fetchone()
                cursor = await db.execute("SELECT COUNT(*) FROM kb_faqs WHERE is_active = 1")
                (total_faqs,) = await cursor.fetchone()
                cursor = await db.execute(
                    "SELECT source, COUNT(*) AS n FROM kb_documents "
                    "WHERE is_active = 1 GROUP BY source"
                )
                by_source_rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to compute knowledge base stats: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        return VectorStoreStats(
            total_documents=total_documents,
            total_chunks=total_chunks,
            total_faqs=total_faqs,
            by_source={row["source"]: row["n"] for row in by_source_rows},
            native_vector_enabled=self._native_vector_enabled,
        )

    async def migrate_to_vector(self) -> VectorMigrationResult:
        if not self._native_vector_enabled:
            raise NativeVectorUnavailableError(
                message="sqlite-vec extension is not available",
                provider_name=_PROVIDER_NAME,
            )

        try:
            async with self._connect() as db:
                cursor = await db.execute(_MIGRATE_CHUNKS_SQL)
                chunks = cursor.rowcount
                cursor = await db.execute(_MIGRATE_FAQS_SQL)
                faqs = cursor.rowcount
                await db.commit()
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Vector migration failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        logger.info("kb_vector_migration_complete", chunks=chunks, faqs=faqs)
        return VectorMigrationResult(chunks=chunks, faqs=faqs)
