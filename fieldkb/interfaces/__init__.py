"""Abstract interfaces for every pluggable fieldkb backend.

Services depend only on these ABCs; concrete adapters in
``fieldkb/providers/`` are constructed and injected by
:func:`fieldkb.main.build_knowledge_base`.  Tests inject in-memory fakes.

    Interface              ->  Concrete implementations (in fieldkb/providers/)
    ----------------------------------------------------------------------
    IEmbeddingProvider     ->  OpenAICompatibleEmbeddingProvider,
                               HashEmbeddingProvider
    IEmbeddingCache        ->  SQLiteEmbeddingCache
    IVectorStoreProvider   ->  SQLiteVectorStore
    IRerankerProvider      ->  RerankerProvider
"""

from fieldkb.interfaces.embedding_cache import IEmbeddingCache
from fieldkb.interfaces.embedding_provider import IEmbeddingProvider
from fieldkb.interfaces.reranker_provider import IRerankerProvider
from fieldkb.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "IEmbeddingCache",
    "IEmbeddingProvider",
    "IRerankerProvider",
    "IVectorStoreProvider",
]
