"""Unit tests for SQLiteVectorStore: storage, re-index bookkeeping and both search strategies."""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import pytest

from fieldkb.models.kb import ChunkRecord, DocumentRecord, FaqEntry, KbSource
from fieldkb.providers.vector_store.search_strategies import InMemoryVectorSearch
from fieldkb.providers.vector_store.sqlite_vector_store import SQLiteVectorStore
from fieldkb.services.embedding_service import EmbeddingService
from fieldkb.utils.errors import NativeVectorUnavailableError, VectorStoreError
from tests.conftest import TEST_DIMENSION

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _vec(*head: float) -> list[float]:
    """A TEST_DIMENSION vector whose first components are *head*."""
    return [*head, *([0.0] * (TEST_DIMENSION - len(head)))]


def _document(
    source_id: str = "guia-clientes.md",
    source: KbSource = KbSource.DOCS,
    content: str = "Como cadastrar clientes",
    content_hash: str = "hash-1",
    title: str = "Clientes",
) -> DocumentRecord:
    return DocumentRecord(
        source=source,
        source_id=source_id,
        title=title,
        content=content,
        hash=content_hash,
        metadata={"file_name": source_id},
    )


def _chunks(*embeddings: list[float]) -> list[ChunkRecord]:
    return [
        ChunkRecord(
            content=f"chunk {i}",
            chunk_index=i,
            start_char=i * 10,
            end_char=i * 10 + 10,
            embedding=embedding,
            metadata={"n": i},
        )
        for i, embedding in enumerate(embeddings)
    ]


def _faq(question: str, embedding: list[float], faq_id: str | None = None) -> FaqEntry:
    return FaqEntry(
        id=faq_id,
        question=question,
        answer=f"Resposta para {question}",
        category="geral",
        keywords=["ajuda"],
        embedding=embedding,
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestInitialize:
    @pytest.mark.asyncio
    async def test_creates_tables(self, vector_store: SQLiteVectorStore, db_path: Path) -> None:
        async with aiosqlite.connect(str(db_path)) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            tables = {row[0] for row in await cursor.fetchall()}
        assert {"kb_documents", "kb_chunks", "kb_faqs", "kb_index_jobs"} <= tables

    @pytest.mark.asyncio
    async def test_native_disabled_uses_in_memory(self, vector_store: SQLiteVectorStore) -> None:
        assert vector_store.native_vector_enabled is False
        stats = await vector_store.get_stats()
        assert stats.native_vector_enabled is False

    @pytest.mark.asyncio
    async def test_use_before_initialize_raises(
        self, embedding_service: EmbeddingService, db_path: Path
    ) -> None:
        store = SQLiteVectorStore(embedding_service, db_path=db_path)
        with pytest.raises(VectorStoreError, match="initialize"):
            await store.search_chunks(_vec(1.0))

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, vector_store: SQLiteVectorStore) -> None:
        await vector_store.store_document(_document(), _chunks(_vec(1.0)))
        await vector_store.initialize()
        assert (await vector_store.get_stats()).total_chunks == 1


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class TestStoreDocument:
    @pytest.mark.asyncio
    async def test_store_and_read_back(self, vector_store: SQLiteVectorStore) -> None:
        document_id = await vector_store.store_document(
            _document(), _chunks(_vec(1.0), _vec(0.0, 1.0))
        )
        stored = await vector_store.get_document(KbSource.DOCS, "guia-clientes.md")

        assert stored is not None
        assert stored.id == document_id
        assert stored.title == "Clientes"
        assert stored.hash == "hash-1"
        assert stored.metadata == {"file_name": "guia-clientes.md"}
        assert stored.is_active is True
        assert stored.indexed_at is not None
        assert [c.chunk_index for c in stored.chunks] == [0, 1]
        assert stored.chunks[1].embedding == _vec(0.0, 1.0)
        assert stored.chunks[0].metadata == {"n": 0}

    @pytest.mark.asyncio
    async def test_restore_replaces_chunks_and_keeps_id(self, vector_store: SQLiteVectorStore) -> None:
        first_id = await vector_store.store_document(
            _document(), _chunks(_vec(1.0), _vec(1.0), _vec(1.0))
        )
        second_id = await vector_store.store_document(
            _document(content="novo", content_hash="hash-2"), _chunks(_vec(0.5))
        )

        stored = await vector_store.get_document(KbSource.DOCS, "guia-clientes.md")
        assert second_id == first_id
        assert stored is not None
        assert stored.content == "novo"
        assert len(stored.chunks) == 1
        assert (await vector_store.get_stats()).total_chunks == 1

    @pytest.mark.asyncio
    async def test_same_source_id_in_different_sources(self, vector_store: SQLiteVectorStore) -> None:
        a = await vector_store.store_document(_document(source=KbSource.DOCS), _chunks(_vec(1.0)))
        b = await vector_store.store_document(
            _document(source=KbSource.HELP_CENTER), _chunks(_vec(1.0))
        )
        assert a != b

    @pytest.mark.asyncio
    async def test_get_missing_document(self, vector_store: SQLiteVectorStore) -> None:
        assert await vector_store.get_document(KbSource.DOCS, "nope.md") is None

    @pytest.mark.asyncio
    async def test_delete_cascades_to_chunks(self, vector_store: SQLiteVectorStore) -> None:
        await vector_store.store_document(_document(), _chunks(_vec(1.0), _vec(1.0)))

        assert await vector_store.delete_document(KbSource.DOCS, "guia-clientes.md") is True
        assert await vector_store.delete_document(KbSource.DOCS, "guia-clientes.md") is False
        stats = await vector_store.get_stats()
        assert stats.total_documents == 0
        assert stats.total_chunks == 0


class TestReindexBookkeeping:
    @pytest.mark.asyncio
    async def test_unknown_document_needs_reindex(self, vector_store: SQLiteVectorStore) -> None:
        assert await vector_store.needs_reindex(KbSource.DOCS, "new.md", "abc") is True

    @pytest.mark.asyncio
    async def test_same_hash_does_not(self, vector_store: SQLiteVectorStore) -> None:
        await vector_store.store_document(_document(), _chunks(_vec(1.0)))
        assert await vector_store.needs_reindex(KbSource.DOCS, "guia-clientes.md", "hash-1") is False
        assert await vector_store.needs_reindex(KbSource.DOCS, "guia-clientes.md", "hash-2") is True

    @pytest.mark.asyncio
    async def test_mark_source_resets_only_that_source(self, vector_store: SQLiteVectorStore) -> None:
        await vector_store.store_document(_document("a.md"), _chunks(_vec(1.0)))
        await vector_store.store_document(_document("b.md"), _chunks(_vec(1.0)))
        await vector_store.store_document(
            _document("faq-page", source=KbSource.HELP_CENTER), _chunks(_vec(1.0))
        )

        assert await vector_store.mark_source_for_reindex(KbSource.DOCS) == 2
        assert await vector_store.needs_reindex(KbSource.DOCS, "a.md", "hash-1") is True
        assert (
            await vector_store.needs_reindex(KbSource.HELP_CENTER, "faq-page", "hash-1") is False
        )


# ---------------------------------------------------------------------------
# FAQs
# ---------------------------------------------------------------------------


class TestStoreFaq:
    @pytest.mark.asyncio
    async def test_new_faq_gets_id(self, vector_store: SQLiteVectorStore) -> None:
        faq_id = await vector_store.store_faq(_faq("Como emitir boleto?", _vec(1.0)))
        assert faq_id
        assert (await vector_store.get_stats()).total_faqs == 1

    @pytest.mark.asyncio
    async def test_existing_id_updates(self, vector_store: SQLiteVectorStore) -> None:
        faq_id = await vector_store.store_faq(_faq("Pergunta antiga", _vec(1.0)))
        same_id = await vector_store.store_faq(_faq("Pergunta nova", _vec(1.0), faq_id=faq_id))

        results = await vector_store.search_faqs(_vec(1.0), top_k=5, min_score=0.5)
        assert same_id == faq_id
        assert len(results) == 1
        assert results[0].title == "Pergunta nova"


# ---------------------------------------------------------------------------
# Index jobs
# ---------------------------------------------------------------------------


class TestIndexJobs:
    @pytest.mark.asyncio
    async def test_new_job_is_processing(self, vector_store: SQLiteVectorStore) -> None:
        job_id = await vector_store.create_index_job(KbSource.DOCS)

        job = await vector_store.get_index_job(job_id)
        assert job is not None
        assert job.job_id == job_id
        assert job.status == "PROCESSING"
        assert job.total_docs == 0
        assert job.started_at is not None
        assert job.completed_at is None

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self, vector_store: SQLiteVectorStore) -> None:
        job_id = await vector_store.create_index_job(KbSource.DOCS)
        await vector_store.update_index_job(job_id, total_docs=5)
        await vector_store.update_index_job(job_id, processed_docs=2, failed_docs=1)

        job = await vector_store.get_index_job(job_id)
        assert job is not None
        assert (job.total_docs, job.processed_docs, job.failed_docs) == (5, 2, 1)
        assert job.status == "PROCESSING"
        assert job.completed_at is None

    @pytest.mark.asyncio
    async def test_terminal_status_sets_completed_at(self, vector_store: SQLiteVectorStore) -> None:
        job_id = await vector_store.create_index_job(KbSource.DOCS)
        await vector_store.update_index_job(
            job_id, status="FAILED", error_message="No markdown files found"
        )

        job = await vector_store.get_index_job(job_id)
        assert job is not None
        assert job.status == "FAILED"
        assert job.error_message == "No markdown files found"
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_unknown_job(self, vector_store: SQLiteVectorStore) -> None:
        assert await vector_store.get_index_job("missing") is None


# ---------------------------------------------------------------------------
# In-memory search
# ---------------------------------------------------------------------------


class TestInMemorySearch:
    @pytest.mark.asyncio
    async def test_chunks_ranked_and_thresholded(self, vector_store: SQLiteVectorStore) -> None:
        await vector_store.store_document(
            _document(),
            _chunks(_vec(1.0), _vec(0.8, 0.6), _vec(0.0, 1.0)),
        )

        results = await vector_store.search_chunks(_vec(1.0), top_k=5, min_score=0.5)

        assert [r.content for r in results] == ["chunk 0", "chunk 1"]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(0.8)
        assert results[0].source is KbSource.DOCS
        assert results[0].source_ref == "guia-clientes.md"
        assert results[0].title == "Clientes"
        assert results[0].metadata == {"n": 0}

    @pytest.mark.asyncio
    async def test_top_k(self, vector_store: SQLiteVectorStore) -> None:
        await vector_store.store_document(_document(), _chunks(*[_vec(1.0, 0.1 * i) for i in range(6)]))
        results = await vector_store.search_chunks(_vec(1.0), top_k=2, min_score=0.0)
        assert [r.content for r in results] == ["chunk 0", "chunk 1"]

    @pytest.mark.asyncio
    async def test_source_filter(self, vector_store: SQLiteVectorStore) -> None:
        await vector_store.store_document(_document("d.md"), _chunks(_vec(1.0)))
        await vector_store.store_document(
            _document("h", source=KbSource.HELP_CENTER), _chunks(_vec(1.0))
        )

        results = await vector_store.search_chunks(
            _vec(1.0), top_k=5, min_score=0.5, sources=[KbSource.HELP_CENTER]
        )
        assert [r.source for r in results] == [KbSource.HELP_CENTER]

    @pytest.mark.asyncio
    async def test_dimension_mismatch_fails_chunk_search(
        self, vector_store: SQLiteVectorStore
    ) -> None:
        await vector_store.store_document(_document("good.md"), _chunks(_vec(1.0)))
        await vector_store.store_document(
            _document("legacy.md"), _chunks([1.0] * (TEST_DIMENSION + 3))
        )

        with pytest.raises(VectorStoreError, match="dimension") as exc_info:
            await vector_store.search_chunks(_vec(1.0), top_k=5, min_score=0.0)
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_dimension_mismatch_fails_faq_search(self, vector_store: SQLiteVectorStore) -> None:
        await vector_store.store_faq(_faq("Pergunta antiga", [1.0, 0.0, 0.0]))

        with pytest.raises(VectorStoreError, match="dimension"):
            await vector_store.search_faqs(_vec(1.0), top_k=3, min_score=0.0)

    @pytest.mark.asyncio
    async def test_empty_embedding_rows_are_skipped(
        self, vector_store: SQLiteVectorStore, db_path: Path
    ) -> None:
        await vector_store.store_document(_document("good.md"), _chunks(_vec(1.0)))
        await vector_store.store_document(_document("empty.md"), _chunks(_vec(1.0)))
        async with aiosqlite.connect(str(db_path)) as db:
            await db.execute(
                "UPDATE kb_chunks SET embedding = '[]' WHERE document_id IN "
                "(SELECT id FROM kb_documents WHERE source_id = 'empty.md')"
            )
            await db.commit()

        results = await vector_store.search_chunks(_vec(1.0), top_k=5, min_score=0.0)
        assert [r.source_ref for r in results] == ["good.md"]

    @pytest.mark.asyncio
    async def test_faq_result_shape(self, vector_store: SQLiteVectorStore) -> None:
        faq_id = await vector_store.store_faq(_faq("Como pagar com PIX?", _vec(0.0, 1.0)))

        results = await vector_store.search_faqs(_vec(0.0, 1.0), top_k=3, min_score=0.5)

        assert len(results) == 1
        hit = results[0]
        assert hit.id == faq_id
        assert hit.source is KbSource.FAQ
        assert hit.source_ref == faq_id
        assert hit.title == "Como pagar com PIX?"
        assert hit.content == "Resposta para Como pagar com PIX?"
        assert hit.metadata == {"category": "geral"}

    @pytest.mark.asyncio
    async def test_no_matches_is_empty_list(self, vector_store: SQLiteVectorStore) -> None:
        assert await vector_store.search_chunks(_vec(1.0)) == []
        assert await vector_store.search_faqs(_vec(1.0)) == []

    @pytest.mark.asyncio
    async def test_candidate_limit_bounds_scan(
        self, vector_store: SQLiteVectorStore, embedding_service: EmbeddingService, db_path: Path
    ) -> None:
        await vector_store.store_document(_document(), _chunks(*[_vec(1.0)] * 5))
        strategy = InMemoryVectorSearch(embedding_service, candidate_limit=2)

        async with aiosqlite.connect(str(db_path)) as db:
            db.row_factory = aiosqlite.Row
            results = await strategy.search_chunks(db, _vec(1.0), 10, 0.0, None)
        assert len(results) == 2


class TestStats:
    @pytest.mark.asyncio
    async def test_counts_by_source(self, vector_store: SQLiteVectorStore) -> None:
        await vector_store.store_document(_document("a.md"), _chunks(_vec(1.0), _vec(1.0)))
        await vector_store.store_document(
            _document("h", source=KbSource.HELP_CENTER), _chunks(_vec(1.0))
        )
        await vector_store.store_faq(_faq("q", _vec(1.0)))

        stats = await vector_store.get_stats()
        assert stats.total_documents == 2
        assert stats.total_chunks == 3
        assert stats.total_faqs == 1
        assert stats.by_source == {"DOCS": 1, "HELP_CENTER": 1}

    @pytest.mark.asyncio
    async def test_migrate_requires_native(self, vector_store: SQLiteVectorStore) -> None:
        with pytest.raises(NativeVectorUnavailableError):
            await vector_store.migrate_to_vector()


# ---------------------------------------------------------------------------
# Native search (only where sqlite-vec can be loaded)
# ---------------------------------------------------------------------------


class TestNativeSearch:
    @pytest.fixture
    async def native_store(
        self, embedding_service: EmbeddingService, db_path: Path
    ) -> SQLiteVectorStore:
        store = SQLiteVectorStore(embedding_service, db_path=db_path, native_vector_enabled=True)
        await store.initialize()
        if not store.native_vector_enabled:
            pytest.skip("sqlite-vec extension cannot be loaded in this environment")
        return store

    @pytest.mark.asyncio
    async def test_chunks_ranked_by_similarity(self, native_store: SQLiteVectorStore) -> None:
        await native_store.store_document(
            _document(), _chunks(_vec(0.0, 1.0), _vec(1.0), _vec(0.8, 0.6))
        )

        results = await native_store.search_chunks(_vec(1.0), top_k=5, min_score=0.5)

        assert [r.content for r in results] == ["chunk 1", "chunk 2"]
        assert results[0].score == pytest.approx(1.0, abs=1e-5)
        assert results[1].score == pytest.approx(0.8, abs=1e-5)

    @pytest.mark.asyncio
    async def test_faqs(self, native_store: SQLiteVectorStore) -> None:
        await native_store.store_faq(_faq("Como emitir boleto?", _vec(1.0)))
        await native_store.store_faq(_faq("Esqueci a senha", _vec(0.0, 1.0)))

        results = await native_store.search_faqs(_vec(1.0), top_k=3, min_score=0.5)
        assert [r.title for r in results] == ["Como emitir boleto?"]

    @pytest.mark.asyncio
    async def test_wrong_dimension_fails_search(self, native_store: SQLiteVectorStore) -> None:
        await native_store.store_document(_document(), _chunks([1.0, 0.0]))

        with pytest.raises(VectorStoreError, match="dimension"):
            await native_store.search_chunks(_vec(1.0), min_score=0.0)

    @pytest.mark.asyncio
    async def test_migrate_converts_pending_rows(
        self, native_store: SQLiteVectorStore, db_path: Path
    ) -> None:
        await native_store.store_document(_document(), _chunks(_vec(1.0)))
        async with aiosqlite.connect(str(db_path)) as db:
            await db.execute("UPDATE kb_chunks SET embedding_vector = NULL")
            await db.commit()

        assert await native_store.search_chunks(_vec(1.0), min_score=0.0) == []
        result = await native_store.migrate_to_vector()
        assert result.chunks == 1
        assert len(await native_store.search_chunks(_vec(1.0), min_score=0.0)) == 1
