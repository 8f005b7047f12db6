"""Pydantic models shared by every fieldkb layer."""

from fieldkb.models.kb import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PROCESSING,
    SOURCE_LABELS,
    CacheEntry,
    CacheStats,
    ChunkOptions,
    ChunkRecord,
    DocumentRecord,
    EmbeddingResult,
    FaqEntry,
    FaqIngestSummary,
    FaqInput,
    IndexProgress,
    IngestResult,
    KbDocument,
    KbSource,
    KbStats,
    RerankedResult,
    SearchOptions,
    SearchResponse,
    SearchResult,
    StoredChunk,
    StoredDocument,
    TextChunk,
    VectorMigrationResult,
    VectorStoreStats,
)

__all__ = [
    "JOB_COMPLETED",
    "JOB_FAILED",
    "JOB_PROCESSING",
    "SOURCE_LABELS",
    "CacheEntry",
    "CacheStats",
    "ChunkOptions",
    "ChunkRecord",
    "DocumentRecord",
    "EmbeddingResult",
    "FaqEntry",
    "FaqIngestSummary",
    "FaqInput",
    "IndexProgress",
    "IngestResult",
    "KbDocument",
    "KbSource",
    "KbStats",
    "RerankedResult",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "StoredChunk",
    "StoredDocument",
    "TextChunk",
    "VectorMigrationResult",
    "VectorStoreStats",
]
