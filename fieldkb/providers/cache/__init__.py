"""Embedding cache implementations."""

from fieldkb.providers.cache.sqlite_embedding_cache import SQLiteEmbeddingCache, hash_text

__all__ = ["SQLiteEmbeddingCache", "hash_text"]
