"""Knowledge base ingestion: chunking and the ingest orchestrator."""

from fieldkb.services.ingestion.chunker import TextChunker
from fieldkb.services.ingestion.ingestion_service import (
    KnowledgeBaseIngestionService,
    extract_title,
    faq_id_for,
    hash_content,
)

__all__ = [
    "KnowledgeBaseIngestionService",
    "TextChunker",
    "extract_title",
    "faq_id_for",
    "hash_content",
]
