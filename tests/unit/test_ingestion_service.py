"""Unit tests for KnowledgeBaseIngestionService: change detection, chunk/embed/store and batch tallies."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from fieldkb.models.kb import ChunkOptions, FaqInput, KbDocument, KbSource
from fieldkb.providers.vector_store.sqlite_vector_store import SQLiteVectorStore
from fieldkb.services.embedding_service import EmbeddingService
from fieldkb.services.ingestion.ingestion_service import (
    KnowledgeBaseIngestionService,
    extract_title,
    faq_id_for,
    find_markdown_files,
    hash_content,
)
from fieldkb.utils.errors import VectorStoreError
from tests.conftest import CountingEmbeddingProvider, InMemoryEmbeddingCache

SHORT_CONTENT = "This is a short test document content."


@pytest.fixture
def service(
    embedding_service: EmbeddingService, vector_store: SQLiteVectorStore
) -> KnowledgeBaseIngestionService:
    return KnowledgeBaseIngestionService(embedding_service, vector_store)


def _doc(content: str = SHORT_CONTENT, source_id: str = "doc-1", **kwargs) -> KbDocument:
    return KbDocument(source=KbSource.DOCS, source_id=source_id, content=content, **kwargs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestExtractTitle:
    def test_h1_heading(self) -> None:
        assert extract_title("intro\n# Ordens de Serviço\ntexto", "fallback") == "Ordens de Serviço"

    def test_short_first_line(self) -> None:
        assert extract_title("Emitindo boletos\n\nPasso 1", "fallback") == "Emitindo boletos"

    def test_long_first_line_falls_back(self) -> None:
        assert extract_title("x" * 150, "guia.md") == "guia.md"

    def test_empty_content_falls_back(self) -> None:
        assert extract_title("", "guia.md") == "guia.md"


class TestHashContent:
    def test_stable_and_sensitive(self) -> None:
        assert hash_content("abc") == hash_content("abc")
        assert hash_content("abc") != hash_content("abd")


class TestFindMarkdownFiles:
    def test_skips_hidden_and_vendored_dirs(self, tmp_path: Path) -> None:
        (tmp_path / "guides").mkdir()
        (tmp_path / ".git").mkdir()
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "a.md").write_text("# A")
        (tmp_path / "notes.txt").write_text("ignored")
        (tmp_path / "guides" / "b.md").write_text("# B")
        (tmp_path / ".git" / "c.md").write_text("# C")
        (tmp_path / "node_modules" / "d.md").write_text("# D")

        files = find_markdown_files(tmp_path)
        assert [f.relative_to(tmp_path).as_posix() for f in files] == ["a.md", "guides/b.md"]

    def test_missing_folder(self, tmp_path: Path) -> None:
        assert find_markdown_files(tmp_path / "missing") == []


# ---------------------------------------------------------------------------
# Single documents
# ---------------------------------------------------------------------------


class TestIngestDocument:
    @pytest.mark.asyncio
    async def test_short_document_is_one_chunk(
        self, service: KnowledgeBaseIngestionService, vector_store: SQLiteVectorStore
    ) -> None:
        result = await service.ingest_document(_doc())

        assert result.success is True
        assert result.chunks_created == 1
        assert result.document_id

        stored = await vector_store.get_document(KbSource.DOCS, "doc-1")
        assert stored is not None
        assert stored.hash == hash_content(SHORT_CONTENT)
        assert stored.title == SHORT_CONTENT
        assert stored.chunks[0].start_char == 0
        assert stored.chunks[0].end_char == len(SHORT_CONTENT)

    @pytest.mark.asyncio
    async def test_unchanged_document_is_skipped(
        self,
        service: KnowledgeBaseIngestionService,
        embedding_provider: CountingEmbeddingProvider,
    ) -> None:
        await service.ingest_document(_doc())
        calls_after_first = len(embedding_provider.calls)

        second = await service.ingest_document(_doc())

        assert second.success is True
        assert second.chunks_created == 0
        assert second.document_id == ""
        assert len(embedding_provider.calls) == calls_after_first

    @pytest.mark.asyncio
    async def test_unchanged_document_makes_no_store_calls(
        self, embedding_service: EmbeddingService
    ) -> None:
        store = AsyncMock()
        store.needs_reindex.return_value = False
        service = KnowledgeBaseIngestionService(embedding_service, store)

        result = await service.ingest_document(_doc())

        assert result.chunks_created == 0
        store.store_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_changed_content_replaces_chunks(
        self, service: KnowledgeBaseIngestionService, vector_store: SQLiteVectorStore
    ) -> None:
        long_text = "\n\n".join(f"Seção {i}: " + "conteúdo " * 30 for i in range(6))
        first = await service.ingest_document(_doc(long_text))
        second = await service.ingest_document(_doc(SHORT_CONTENT))

        assert first.chunks_created > 1
        assert second.chunks_created == 1
        assert second.document_id == first.document_id
        stored = await vector_store.get_document(KbSource.DOCS, "doc-1")
        assert stored is not None
        assert len(stored.chunks) == 1

    @pytest.mark.asyncio
    async def test_explicit_title_and_metadata(
        self, service: KnowledgeBaseIngestionService, vector_store: SQLiteVectorStore
    ) -> None:
        await service.ingest_document(
            _doc(title="Financeiro", metadata={"area": "cobranca"})
        )
        stored = await vector_store.get_document(KbSource.DOCS, "doc-1")
        assert stored is not None
        assert stored.title == "Financeiro"
        assert stored.chunks[0].metadata == {"area": "cobranca"}

    @pytest.mark.asyncio
    async def test_chunk_options_override(self, service: KnowledgeBaseIngestionService) -> None:
        text = "palavra " * 100
        result = await service.ingest_document(
            _doc(text), ChunkOptions(max_chunk_size=100, overlap=0)
        )
        assert result.chunks_created >= 8

    @pytest.mark.asyncio
    async def test_embedding_failure_is_reported(
        self, vector_store: SQLiteVectorStore, memory_cache: InMemoryEmbeddingCache
    ) -> None:
        failing = EmbeddingService(CountingEmbeddingProvider(fail=True), memory_cache)
        service = KnowledgeBaseIngestionService(failing, vector_store)

        result = await service.ingest_document(_doc())

        assert result.success is False
        assert result.chunks_created == 0
        assert "500" in (result.error or "")
        assert await vector_store.get_document(KbSource.DOCS, "doc-1") is None

    @pytest.mark.asyncio
    async def test_store_failure_is_reported(self, embedding_service: EmbeddingService) -> None:
        store = AsyncMock()
        store.needs_reindex.return_value = True
        store.store_document.side_effect = VectorStoreError("disk I/O error", "sqlite")
        service = KnowledgeBaseIngestionService(embedding_service, store)

        result = await service.ingest_document(_doc())

        assert result.success is False
        assert result.error == "[sqlite] disk I/O error"


# ---------------------------------------------------------------------------
# Folders
# ---------------------------------------------------------------------------


class TestIngestDocsFolder:
    @pytest.mark.asyncio
    async def test_ingests_every_markdown_file(
        self, service: KnowledgeBaseIngestionService, vector_store: SQLiteVectorStore, tmp_path: Path
    ) -> None:
        docs = tmp_path / "docs"
        (docs / "financeiro").mkdir(parents=True)
        (docs / "clientes.md").write_text("# Clientes\n\nComo cadastrar clientes.", encoding="utf-8")
        (docs / "financeiro" / "pix.md").write_text("# PIX\n\nCobranças via PIX.", encoding="utf-8")

        progress = await service.ingest_docs_folder(docs)

        assert progress.status == "COMPLETED"
        assert progress.total_docs == 2
        assert progress.processed_docs == 2
        assert progress.failed_docs == 0
        assert progress.error_message is None

        stored = await vector_store.get_document(KbSource.DOCS, "financeiro/pix.md")
        assert stored is not None
        assert stored.title == "PIX"
        assert stored.metadata == {"file_path": "financeiro/pix.md", "file_name": "pix.md"}

    @pytest.mark.asyncio
    async def test_partial_failure_completes(
        self, service: KnowledgeBaseIngestionService, tmp_path: Path
    ) -> None:
        (tmp_path / "ok.md").write_text("# Ok", encoding="utf-8")
        (tmp_path / "broken.md").write_bytes(b"\xff\xfe\xfa invalid utf-8")

        progress = await service.ingest_docs_folder(tmp_path)

        assert progress.status == "COMPLETED"
        assert progress.processed_docs == 1
        assert progress.failed_docs == 1
        assert progress.error_message == "1 documents failed"

    @pytest.mark.asyncio
    async def test_all_failed(self, vector_store: SQLiteVectorStore, tmp_path: Path) -> None:
        failing = EmbeddingService(CountingEmbeddingProvider(fail=True), InMemoryEmbeddingCache())
        service = KnowledgeBaseIngestionService(failing, vector_store)
        (tmp_path / "a.md").write_text("# A", encoding="utf-8")

        progress = await service.ingest_docs_folder(tmp_path)
        assert progress.status == "FAILED"
        assert progress.failed_docs == 1

    @pytest.mark.asyncio
    async def test_empty_folder_fails(
        self, service: KnowledgeBaseIngestionService, tmp_path: Path
    ) -> None:
        progress = await service.ingest_docs_folder(tmp_path)
        assert progress.status == "FAILED"
        assert progress.total_docs == 0
        assert progress.error_message == "No markdown files found"


class TestIndexJobs:
    @pytest.mark.asyncio
    async def test_run_is_persisted_with_final_counts(
        self, service: KnowledgeBaseIngestionService, tmp_path: Path
    ) -> None:
        (tmp_path / "ok.md").write_text("# Ok", encoding="utf-8")
        (tmp_path / "broken.md").write_bytes(b"\xff\xfe\xfa invalid utf-8")

        progress = await service.ingest_docs_folder(tmp_path)
        assert progress.job_id

        job = await service.get_job_status(progress.job_id)
        assert job is not None
        assert job.status == "COMPLETED"
        assert job.total_docs == 2
        assert job.processed_docs == 1
        assert job.failed_docs == 1
        assert job.error_message == "1 documents failed"
        assert job.started_at is not None
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_empty_folder_job_is_failed(
        self, service: KnowledgeBaseIngestionService, tmp_path: Path
    ) -> None:
        progress = await service.ingest_docs_folder(tmp_path)

        job = await service.get_job_status(progress.job_id or "")
        assert job is not None
        assert job.status == "FAILED"
        assert job.error_message == "No markdown files found"

    @pytest.mark.asyncio
    async def test_counters_updated_after_each_file(
        self, embedding_service: EmbeddingService, tmp_path: Path
    ) -> None:
        store = AsyncMock()
        store.create_index_job.return_value = "job-7"
        store.needs_reindex.return_value = True
        store.store_document.return_value = "doc-id"
        service = KnowledgeBaseIngestionService(embedding_service, store)
        for name in ("a.md", "b.md", "c.md"):
            (tmp_path / name).write_text(f"# {name}", encoding="utf-8")

        progress = await service.ingest_docs_folder(tmp_path)

        assert progress.job_id == "job-7"
        store.create_index_job.assert_awaited_once_with(KbSource.DOCS)
        updates = [c.kwargs for c in store.update_index_job.await_args_list]
        assert updates[0] == {"total_docs": 3}
        assert [u["processed_docs"] for u in updates[1:4]] == [1, 2, 3]
        assert updates[-1]["status"] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_job_failed(
        self, embedding_service: EmbeddingService, tmp_path: Path
    ) -> None:
        store = AsyncMock()
        store.create_index_job.return_value = "job-9"
        store.needs_reindex.return_value = True
        store.update_index_job.side_effect = [VectorStoreError("database is locked"), None]
        service = KnowledgeBaseIngestionService(embedding_service, store)
        (tmp_path / "a.md").write_text("# A", encoding="utf-8")

        with pytest.raises(VectorStoreError, match="locked"):
            await service.ingest_docs_folder(tmp_path)

        final = store.update_index_job.await_args_list[-1]
        assert final.args == ("job-9",)
        assert final.kwargs["status"] == "FAILED"
        assert "locked" in final.kwargs["error_message"]

    @pytest.mark.asyncio
    async def test_unknown_job_id(self, service: KnowledgeBaseIngestionService) -> None:
        assert await service.get_job_status("no-such-job") is None


# ---------------------------------------------------------------------------
# FAQs and re-indexing
# ---------------------------------------------------------------------------


class TestIngestFaqs:
    @pytest.mark.asyncio
    async def test_counts_success_and_failure(self, embedding_service: EmbeddingService) -> None:
        store = AsyncMock()
        store.store_faq.side_effect = ["faq-1", VectorStoreError("locked"), "faq-3"]
        service = KnowledgeBaseIngestionService(embedding_service, store)

        summary = await service.ingest_faqs(
            [FaqInput(question=f"Pergunta {i}?", answer="Resposta") for i in range(3)]
        )

        assert summary.total == 3
        assert summary.success == 2
        assert summary.failed == 1

    @pytest.mark.asyncio
    async def test_faqs_are_searchable(
        self,
        service: KnowledgeBaseIngestionService,
        vector_store: SQLiteVectorStore,
        embedding_service: EmbeddingService,
    ) -> None:
        await service.ingest_faqs(
            [
                FaqInput(
                    question="Como emitir boleto?",
                    answer="Financeiro > Boletos > Novo.",
                    category="financeiro",
                    keywords=["boleto"],
                    priority=5,
                )
            ]
        )
        query = await embedding_service.embed("Como emitir boleto?")
        results = await vector_store.search_faqs(query.embedding, top_k=1, min_score=0.9)

        assert len(results) == 1
        assert results[0].content == "Financeiro > Boletos > Novo."

    @pytest.mark.asyncio
    async def test_reingest_updates_instead_of_duplicating(
        self, service: KnowledgeBaseIngestionService, vector_store: SQLiteVectorStore
    ) -> None:
        faqs = [FaqInput(question="Como emitir boleto?", answer="Financeiro > Boletos.")]
        await service.ingest_faqs(faqs)
        await service.ingest_faqs(
            [FaqInput(question="  como emitir   BOLETO? ", answer="Financeiro > Boletos > Novo.")]
        )

        stats = await vector_store.get_stats()
        assert stats.total_faqs == 1

    def test_faq_id_ignores_case_and_spacing(self) -> None:
        assert faq_id_for("Como emitir boleto?") == faq_id_for("  como  emitir BOLETO?")
        assert faq_id_for("Como emitir boleto?") != faq_id_for("Como emitir nota?")


class TestReindexSource:
    @pytest.mark.asyncio
    async def test_forces_reembedding(
        self,
        service: KnowledgeBaseIngestionService,
        embedding_provider: CountingEmbeddingProvider,
        embedding_service: EmbeddingService,
        memory_cache: InMemoryEmbeddingCache,
    ) -> None:
        await service.ingest_document(_doc())
        await embedding_service.drain()
        await memory_cache.clear()

        assert await service.reindex_source(KbSource.DOCS) == 1
        calls_before = len(embedding_provider.calls)
        result = await service.ingest_document(_doc())

        assert result.chunks_created == 1
        assert len(embedding_provider.calls) == calls_before + 1
