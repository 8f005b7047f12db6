"""Abstract base class for the knowledge base vector store.

The store persists documents, their chunks and standalone FAQ entries
together with embedding vectors, and answers similarity queries over
chunks and FAQs.  How similarity is computed (native vector index or a
brute-force scan in process) is an implementation detail fixed once during
:meth:`IVectorStoreProvider.initialize`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from fieldkb.models.kb import (
    ChunkRecord,
    DocumentRecord,
    FaqEntry,
    IndexProgress,
    KbSource,
    SearchResult,
    StoredDocument,
    VectorMigrationResult,
    VectorStoreStats,
)


# Concrete implementations:
#   SQLiteVectorStore -- aiosqlite tables, sqlite-vec native search when loadable
# Located in: fieldkb/providers/vector_store/
class IVectorStoreProvider(ABC):
    """Contract for knowledge base storage and similarity search.

    Search failures propagate to the caller: an empty list always means
    "nothing matched", never "the query failed".
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and detect native vector support.

        Must be awaited once before any other method.  The detection result is
        exposed through :attr:`native_vector_enabled` and never re-checked.
        """

    @property
    @abstractmethod
    def native_vector_enabled(self) -> bool:
        """``True`` when similarity search runs inside the storage engine."""

    # -- Search ---------------------------------------------------------------

    @abstractmethod
    async def search_chunks(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        min_score: float = 0.5,
        sources: list[KbSource] | None = None,
    ) -> list[SearchResult]:
        """Return the *top_k* active chunks most similar to *query_embedding*.

        Parameters
        ----------
        query_embedding:
            The query vector.
        top_k:
            Maximum number of results.
        min_score:
            Minimum cosine similarity (inclusive).
        sources:
            Restrict the search to documents of these source types.

        Returns
        -------
        list[SearchResult]
            Hits sorted by descending score.
        """

    @abstractmethod
    async def search_faqs(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        min_score: float = 0.5,
    ) -> list[SearchResult]:
        """Return the *top_k* active FAQ entries whose question best matches."""

    # -- Writes ---------------------------------------------------------------

    @abstractmethod
    async def store_document(self, document: DocumentRecord, chunks: list[ChunkRecord]) -> str:
        """Upsert *document* and replace all of its chunks atomically.

        Returns the document id.
        """

    @abstractmethod
    async def store_faq(self, faq: FaqEntry) -> str:
        """Update the FAQ identified by ``faq.id`` or create a new one.  Returns its id."""

    @abstractmethod
    async def delete_document(self, source: KbSource, source_id: str) -> bool:
        """Delete a document and its chunks.  Returns ``True`` if it existed."""

    @abstractmethod
    async def mark_source_for_reindex(self, source: KbSource) -> int:
        """Reset the content hash of every document under *source*.

        Returns the number of documents affected.
        """

    # -- Index jobs -----------------------------------------------------------

    @abstractmethod
    async def create_index_job(self, source: KbSource) -> str:
        """Record a new ``PROCESSING`` ingestion run for *source*.  Returns its id."""

    @abstractmethod
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
        """Overwrite the given fields of a run.

        A terminal *status* (``COMPLETED`` or ``FAILED``) also stamps the
        completion time.
        """

    @abstractmethod
    async def get_index_job(self, job_id: str) -> IndexProgress | None:
        """Return the stored state of a run, or ``None`` for an unknown id."""

    # -- Reads ----------------------------------------------------------------

    @abstractmethod
    async def needs_reindex(self, source: KbSource, source_id: str, content_hash: str) -> bool:
        """Return ``False`` only when a stored document has exactly *content_hash*."""

    @abstractmethod
    async def get_document(self, source: KbSource, source_id: str) -> StoredDocument | None:
        """Return the document with its chunks in index order, or ``None``."""

    @abstractmethod
    async def get_stats(self) -> VectorStoreStats:
        """Return document/chunk/FAQ counts and per-source document counts."""

    @abstractmethod
    async def migrate_to_vector(self) -> VectorMigrationResult:
        """Convert stored float arrays into the native vector representation.

        Raises
        ------
        fieldkb.utils.errors.NativeVectorUnavailableError
            If native vector support was not detected at initialisation.
        """
