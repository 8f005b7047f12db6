"""Knowledge base data models for the fieldkb RAG subsystem.

Defines Pydantic v2 models for documents, chunks, FAQ entries, cached
embeddings, search results and the summaries returned by the ingestion
and search services.  All models use frozen config so that a result
handed to a caller can never be mutated behind the service's back.

RAG overview:
    1. INGESTION: help-center articles and docs are hashed, split into
       overlapping character windows (chunks) and embedded.
    2. STORAGE: chunks + embeddings live in SQLite next to a separate
       table of FAQ question/answer pairs.
    3. RETRIEVAL: a query is embedded and compared against chunks and
       FAQs in parallel; the merged hits are optionally reranked.
    4. CONTEXT: the surviving hits are rendered into one markdown block
       that a chat orchestrator hands to its language model.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class KbSource(str, Enum):
    """Where a knowledge base document came from."""

    DOCS = "DOCS"
    FAQ = "FAQ"
    HELP_CENTER = "HELP_CENTER"
    CUSTOM = "CUSTOM"


# Human-readable labels used in the LLM context headers.
SOURCE_LABELS: dict[KbSource, str] = {
    KbSource.DOCS: "Documentation",
    KbSource.FAQ: "FAQ",
    KbSource.HELP_CENTER: "Help Center",
    KbSource.CUSTOM: "Custom",
}


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class ChunkOptions(BaseModel):
    """Parameters of the character-window chunker."""

    model_config = ConfigDict(frozen=True)

    max_chunk_size: int = Field(default=1000, gt=0, description="Maximum characters per chunk.")
    overlap: int = Field(default=200, ge=0, description="Characters re-used from the previous chunk.")
    separators: tuple[str, ...] = Field(
        default=("\n\n", "\n", ". ", " "),
        description="Break-point separators in priority order (earliest wins).",
    )


class TextChunk(BaseModel):
    """A contiguous window of a document's text with absolute offsets."""

    model_config = ConfigDict(frozen=True)

    content: str
    chunk_index: int = Field(ge=0)
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Documents and chunks
# ---------------------------------------------------------------------------


class KbDocument(BaseModel):
    """A document submitted for ingestion.

    ``(source, source_id)`` identifies the document; re-submitting the same
    pair replaces the stored version when its content hash changed.
    """

    model_config = ConfigDict(frozen=True)

    source: KbSource
    source_id: str = Field(min_length=1)
    content: str
    title: str | None = None
    metadata: dict[str, Any] | None = None


class DocumentRecord(BaseModel):
    """Document row as written by the vector store."""

    model_config = ConfigDict(frozen=True)

    source: KbSource
    source_id: str
    title: str
    content: str
    hash: str
    metadata: dict[str, Any] | None = None


class ChunkRecord(BaseModel):
    """Chunk row as written by the vector store (embedding included)."""

    model_config = ConfigDict(frozen=True)

    content: str
    chunk_index: int = Field(ge=0)
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)
    embedding: list[float]
    metadata: dict[str, Any] | None = None


class StoredChunk(BaseModel):
    """A persisted chunk read back from storage."""

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    content: str
    chunk_index: int
    start_char: int
    end_char: int
    embedding: list[float] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None


class StoredDocument(BaseModel):
    """A persisted document with its chunks ordered by ``chunk_index``."""

    model_config = ConfigDict(frozen=True)

    id: str
    source: KbSource
    source_id: str
    title: str
    content: str
    hash: str
    metadata: dict[str, Any] | None = None
    is_active: bool = True
    indexed_at: datetime | None = None
    updated_at: datetime | None = None
    chunks: list[StoredChunk] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# FAQ entries
# ---------------------------------------------------------------------------


class FaqInput(BaseModel):
    """A question/answer pair submitted for ingestion."""

    model_config = ConfigDict(frozen=True)

    question: str = Field(min_length=1)
    answer: str
    category: str | None = None
    keywords: list[str] = Field(default_factory=list)
    priority: int = 0


class FaqEntry(FaqInput):
    """A FAQ entry with its question embedding.

    ``id`` set → update that entry; ``None`` → create a new one.
    """

    id: str | None = None
    embedding: list[float]
    is_active: bool = True


# ---------------------------------------------------------------------------
# Embeddings and the embedding cache
# ---------------------------------------------------------------------------


class EmbeddingResult(BaseModel):
    """One embedding vector together with the model that produced it."""

    model_config = ConfigDict(frozen=True)

    embedding: list[float]
    model: str
    from_cache: bool = False


class CacheEntry(BaseModel):
    """Input row for :meth:`IEmbeddingCache.set_many`."""

    model_config = ConfigDict(frozen=True)

    text: str
    embedding: list[float]
    model: str


class CacheStats(BaseModel):
    """Snapshot of the embedding cache table."""

    model_config = ConfigDict(frozen=True)

    total_entries: int = Field(default=0, ge=0)
    total_hits: int = Field(default=0, ge=0)
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class SearchResult(BaseModel):
    """A chunk hit or FAQ hit in one shape.

    For chunks ``source_ref`` is the parent document's ``source_id``; for
    FAQs it is the FAQ id, ``title`` is the question and ``content`` the answer.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    score: float = Field(description="Cosine similarity between the query and this hit.")
    source: KbSource
    source_ref: str
    title: str | None = None
    metadata: dict[str, Any] | None = None


class RerankedResult(SearchResult):
    """A search hit rescored by the reranker; ``score`` equals ``rerank_score``."""

    original_score: float
    rerank_score: float


class SearchOptions(BaseModel):
    """Options for :meth:`KnowledgeBaseSearchService.search`."""

    model_config = ConfigDict(frozen=True)

    top_k: int = Field(default=5, ge=1)
    min_score: float = Field(default=0.5, ge=-1.0, le=1.0)
    sources: list[KbSource] | None = None
    use_reranking: bool = True
    initial_top_k: int = Field(default=20, ge=1, description="Candidate pool size when reranking.")
    include_metadata: bool = False


class SearchResponse(BaseModel):
    """Result of one retrieval call, ready to hand to an LLM orchestrator."""

    model_config = ConfigDict(frozen=True)

    query: str
    results: list[SearchResult] = Field(default_factory=list)
    total_results: int = Field(default=0, ge=0)
    search_time_ms: float = Field(default=0.0, ge=0.0)
    reranked: bool = False
    native_vector_used: bool = False
    formatted_context: str = ""


# ---------------------------------------------------------------------------
# Ingestion summaries
# ---------------------------------------------------------------------------


class IngestResult(BaseModel):
    """Outcome of ingesting one document.  Failures never raise."""

    model_config = ConfigDict(frozen=True)

    document_id: str = ""
    chunks_created: int = Field(default=0, ge=0)
    success: bool
    error: str | None = None


class FaqIngestSummary(BaseModel):
    """Tally of a bulk FAQ ingestion run."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(default=0, ge=0)
    success: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)


JOB_PROCESSING = "PROCESSING"
JOB_COMPLETED = "COMPLETED"
JOB_FAILED = "FAILED"
TERMINAL_JOB_STATUSES = frozenset({JOB_COMPLETED, JOB_FAILED})


class IndexProgress(BaseModel):
    """State of a folder ingestion run, as returned and as persisted.

    ``job_id`` identifies the ``kb_index_jobs`` row that tracks the run;
    :meth:`KnowledgeBaseIngestionService.get_job_status` reads it back.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str | None = None
    status: str = Field(description='"PROCESSING", "COMPLETED" or "FAILED".')
    total_docs: int = Field(default=0, ge=0)
    processed_docs: int = Field(default=0, ge=0)
    failed_docs: int = Field(default=0, ge=0)
    error_message: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class VectorStoreStats(BaseModel):
    """Row counts of the knowledge base tables."""

    model_config = ConfigDict(frozen=True)

    total_documents: int = Field(default=0, ge=0)
    total_chunks: int = Field(default=0, ge=0)
    total_faqs: int = Field(default=0, ge=0)
    by_source: dict[str, int] = Field(default_factory=dict)
    native_vector_enabled: bool = False


class KbStats(VectorStoreStats):
    """Vector store counts plus reranker and cache status."""

    reranker_available: bool = False
    cache_stats: CacheStats = Field(default_factory=CacheStats)


class VectorMigrationResult(BaseModel):
    """Rows converted to the native vector representation."""

    model_config = ConfigDict(frozen=True)

    chunks: int = Field(default=0, ge=0)
    faqs: int = Field(default=0, ge=0)
