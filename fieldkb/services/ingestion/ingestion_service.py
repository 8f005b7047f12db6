"""Orchestrator for the knowledge base write path.

Pipeline stages: **hash -> change check -> chunk -> embed -> store**.

:class:`KnowledgeBaseIngestionService` coordinates the chunker, the
embedding service and the vector store without any of them knowing about
each other:

    1. SHA-256 of the content is compared with the stored hash; an
       unchanged document short-circuits before any embedding call.
    2. TextChunker -- splits the content into overlapping windows.
    3. EmbeddingService -- embeds every chunk in one batch.
    4. IVectorStoreProvider -- replaces the document and its chunks.

Single-document ingestion never raises: any failure comes back as
``IngestResult(success=False, error=...)`` so batch tooling can keep
going and report a tally.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import time
from pathlib import Path

import structlog

from fieldkb.interfaces.vector_store_provider import IVectorStoreProvider
from fieldkb.models.kb import (
    JOB_COMPLETED,
    JOB_FAILED,
    ChunkOptions,
    ChunkRecord,
    DocumentRecord,
    FaqEntry,
    FaqIngestSummary,
    FaqInput,
    IndexProgress,
    IngestResult,
    KbDocument,
    KbSource,
)
from fieldkb.services.embedding_service import EmbeddingService
from fieldkb.services.ingestion.chunker import TextChunker

logger = structlog.get_logger(logger_name=__name__)

_H1_PATTERN = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_MAX_TITLE_LINE = 100
_SKIPPED_DIRS = frozenset({"node_modules"})


def hash_content(content: str) -> str:
    """Return the SHA-256 hex digest used for change detection."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def faq_id_for(question: str) -> str:
    """Stable FAQ id derived from the normalised question text.

    Re-ingesting the same question updates the existing row instead of
    adding a duplicate.
    """
    normalised = " ".join(question.lower().split())
    return "faq-" + hashlib.sha256(normalised.encode("utf-8")).hexdigest()[:32]


def extract_title(content: str, fallback: str) -> str:
    """Resolve a title: first H1 heading, else a short first line, else *fallback*."""
    match = _H1_PATTERN.search(content)
    if match:
        return match.group(1).strip()

    first_line = content.split("\n", 1)[0].strip()
    if first_line and len(first_line) < _MAX_TITLE_LINE:
        return first_line
    return fallback


def find_markdown_files(root: Path) -> list[Path]:
    """Return every ``*.md`` file under *root*, skipping hidden and vendored dirs."""
    if not root.is_dir():
        logger.warning("docs_folder_not_found", path=str(root))
        return []

    files: list[Path] = []
    for entry in sorted(root.iterdir()):
        if entry.is_dir():
            if entry.name.startswith(".") or entry.name in _SKIPPED_DIRS:
                continue
            files.extend(find_markdown_files(entry))
        elif entry.is_file() and entry.suffix == ".md":
            files.append(entry)
    return files


class KnowledgeBaseIngestionService:
    """Ingests documents and FAQ entries into the knowledge base.

    Parameters
    ----------
    embedding_service:
        Produces chunk and FAQ-question embeddings (cache-aware).
    vector_store:
        Persists documents, chunks and FAQs.
    chunk_options:
        Default chunking parameters; a call can override them.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: IVectorStoreProvider,
        chunk_options: ChunkOptions | None = None,
    ) -> None:
        self._embedding_service = embedding_service
        self._vector_store = vector_store
        self._chunk_options = chunk_options or ChunkOptions()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def ingest_document(
        self,
        document: KbDocument,
        options: ChunkOptions | None = None,
    ) -> IngestResult:
        """Ingest one document, skipping all work when its content is unchanged.

        Parameters
        ----------
        document:
            The document to ingest.
        options:
            Chunking parameters for this call only.

        Returns
        -------
        IngestResult
            ``chunks_created == 0`` with ``success=True`` when the stored
            hash already matches.  Errors are reported, never raised.
        """
        started = time.perf_counter()
        try:
            content_hash = hash_content(document.content)
            if not await self._vector_store.needs_reindex(
                document.source, document.source_id, content_hash
            ):
                logger.debug("kb_document_unchanged", source_id=document.source_id)
                return IngestResult(document_id="", chunks_created=0, success=True)

            chunker = TextChunker.from_options(options or self._chunk_options)
            text_chunks = chunker.chunk(document.content)
            embeddings = await self._embedding_service.embed_batch(
                [chunk.content for chunk in text_chunks]
            )

            chunk_records = [
                ChunkRecord(
                    content=chunk.content,
                    chunk_index=index,
                    start_char=chunk.start_char,
                    end_char=chunk.end_char,
                    embedding=embedding.embedding,
                    metadata=document.metadata,
                )
                for index, (chunk, embedding) in enumerate(
                    zip(text_chunks, embeddings, strict=True)
                )
            ]

            document_id = await self._vector_store.store_document(
                DocumentRecord(
                    source=document.source,
                    source_id=document.source_id,
                    title=document.title or extract_title(document.content, document.source_id),
                    content=document.content,
                    hash=content_hash,
                    metadata=document.metadata,
                ),
                chunk_records,
            )
        except Exception as exc:
            logger.error(
                "kb_document_ingest_failed",
                source_id=document.source_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return IngestResult(document_id="", chunks_created=0, success=False, error=str(exc))

        logger.info(
            "kb_document_ingested",
            source_id=document.source_id,
            chunks=len(chunk_records),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return IngestResult(
            document_id=document_id, chunks_created=len(chunk_records), success=True
        )

    async def ingest_docs_folder(
        self,
        docs_path: str | Path,
        options: ChunkOptions | None = None,
    ) -> IndexProgress:
        """Ingest every markdown file below *docs_path* as a ``DOCS`` document.

        ``source_id`` is the file's path relative to *docs_path*.  The run is
        tracked as an index job whose counters are updated after every file,
        so :meth:`get_job_status` can follow it from another process.  The
        job ends ``FAILED`` when every file failed, when no markdown file
        was found, or when the walk itself failed.

        Raises:
            VectorStoreError: The job row itself could not be created.
        """
        root = Path(docs_path)
        job_id = await self._vector_store.create_index_job(KbSource.DOCS)

        try:
            progress = await self._run_docs_job(job_id, root, options)
        except BaseException as exc:
            await self._vector_store.update_index_job(
                job_id, status=JOB_FAILED, error_message=str(exc) or type(exc).__name__
            )
            raise

        logger.info(
            "docs_folder_ingested",
            path=str(root),
            job_id=job_id,
            status=progress.status,
            processed=progress.processed_docs,
            failed=progress.failed_docs,
        )
        return progress

    async def _run_docs_job(
        self, job_id: str, root: Path, options: ChunkOptions | None
    ) -> IndexProgress:
        try:
            files = find_markdown_files(root)
        except OSError as exc:
            logger.error("docs_folder_walk_failed", path=str(root), error=str(exc))
            return await self._finish_job(
                job_id,
                IndexProgress(job_id=job_id, status=JOB_FAILED, error_message=str(exc)),
            )

        logger.info("docs_folder_scan", path=str(root), files=len(files), job_id=job_id)
        await self._vector_store.update_index_job(job_id, total_docs=len(files))

        processed = 0
        failed = 0
        for file_path in files:
            if await self._ingest_docs_file(root, file_path, options):
                processed += 1
            else:
                failed += 1
            await self._vector_store.update_index_job(
                job_id, processed_docs=processed, failed_docs=failed
            )

        # An empty folder counts as "every file failed".
        if failed == len(files):
            status = JOB_FAILED
            error_message = f"{failed} documents failed" if files else "No markdown files found"
        else:
            status = JOB_COMPLETED
            error_message = f"{failed} documents failed" if failed else None

        return await self._finish_job(
            job_id,
            IndexProgress(
                job_id=job_id,
                status=status,
                total_docs=len(files),
                processed_docs=processed,
                failed_docs=failed,
                error_message=error_message,
            ),
        )

    async def _ingest_docs_file(
        self, root: Path, file_path: Path, options: ChunkOptions | None
    ) -> bool:
        relative = file_path.relative_to(root).as_posix()
        try:
            content = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("docs_file_read_failed", path=relative, error=str(exc))
            return False

        result = await self.ingest_document(
            KbDocument(
                source=KbSource.DOCS,
                source_id=relative,
                title=extract_title(content, file_path.stem),
                content=content,
                metadata={"file_path": relative, "file_name": file_path.name},
            ),
            options,
        )
        return result.success

    async def _finish_job(self, job_id: str, progress: IndexProgress) -> IndexProgress:
        await self._vector_store.update_index_job(
            job_id,
            status=progress.status,
            total_docs=progress.total_docs,
            processed_docs=progress.processed_docs,
            failed_docs=progress.failed_docs,
            error_message=progress.error_message,
        )
        return progress

    async def get_job_status(self, job_id: str) -> IndexProgress | None:
        """Return the persisted state of a folder ingestion job, or ``None``."""
        return await self._vector_store.get_index_job(job_id)

    # ------------------------------------------------------------------
    # FAQs and maintenance
    # ------------------------------------------------------------------

    async def ingest_faqs(self, faqs: list[FaqInput]) -> FaqIngestSummary:
        """Embed each FAQ question on its own and store it.

        Entries are keyed by :func:`faq_id_for`, so a repeated import updates
        rather than duplicates.  One entry failing does not stop the rest; the
        summary counts both.
        """
        success = 0
        failed = 0
        for faq in faqs:
            try:
                embedded = await self._embedding_service.embed(faq.question)
                await self._vector_store.store_faq(
                    FaqEntry(
                        id=faq_id_for(faq.question),
                        question=faq.question,
                        answer=faq.answer,
                        category=faq.category,
                        keywords=faq.keywords,
                        priority=faq.priority,
                        embedding=embedded.embedding,
                    )
                )
                success += 1
            except Exception as exc:
                logger.error("kb_faq_ingest_failed", question=faq.question, error=str(exc))
                failed += 1

        logger.info("kb_faqs_ingested", total=len(faqs), success=success, failed=failed)
        return FaqIngestSummary(total=len(faqs), success=success, failed=failed)

    async def reindex_source(self, source: KbSource) -> int:
        """Force every document of *source* to be re-embedded on its next ingest."""
        return await self._vector_store.mark_source_for_reindex(source)
