"""Vector store implementations and their similarity search strategies."""

from fieldkb.providers.vector_store.search_strategies import (
    IN_MEMORY_CANDIDATE_LIMIT,
    InMemoryVectorSearch,
    NativeVectorSearch,
    VectorSearchStrategy,
)
from fieldkb.providers.vector_store.sqlite_vector_store import SQLiteVectorStore

__all__ = [
    "IN_MEMORY_CANDIDATE_LIMIT",
    "InMemoryVectorSearch",
    "NativeVectorSearch",
    "SQLiteVectorStore",
    "VectorSearchStrategy",
]
