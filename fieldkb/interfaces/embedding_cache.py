"""Abstract base class for the content-addressed embedding cache.

Entries are keyed by a digest of the lower-cased, trimmed source text, so
``"Hello "`` and ``"hello"`` share one entry.  Every implementation must
behave as a best-effort layer: storage failures are logged and reported as
a miss (reads) or silently dropped (writes), never raised.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from fieldkb.models.kb import CacheEntry, CacheStats, EmbeddingResult


# Concrete implementations:
#   SQLiteEmbeddingCache -- aiosqlite table with TTL and LRU-style eviction
# Located in: fieldkb/providers/cache/
class IEmbeddingCache(ABC):
    """Contract for embedding cache backends.

    A disabled cache still implements every method: reads return ``None`` or
    an empty mapping, writes do nothing.  Callers never special-case it.
    """

    @abstractmethod
    async def get(self, text: str) -> EmbeddingResult | None:
        """Return the cached embedding for *text*, or ``None`` on miss/expiry.

        A hit refreshes the entry's hit counter and last-access time in a
        detached background task; the caller never waits on that write.
        """

    @abstractmethod
    async def get_many(self, texts: list[str]) -> dict[str, EmbeddingResult]:
        """Return a mapping ``text -> cached embedding`` containing hits only."""

    @abstractmethod
    async def set(self, text: str, embedding: list[float], model: str) -> None:
        """Insert or overwrite the entry for *text* and extend its TTL.

        Evicts the least-recently-accessed tenth of the capacity when the
        cache grows beyond its maximum size.
        """

    @abstractmethod
    async def set_many(self, entries: list[CacheEntry]) -> None:
        """Batch variant of :meth:`set`; eviction runs once after the batch."""

    @abstractmethod
    async def delete(self, text: str) -> bool:
        """Remove the entry for *text*.  Returns ``True`` if one was removed."""

    @abstractmethod
    async def clear(self) -> int:
        """Remove every entry.  Returns the number of rows deleted."""

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Remove expired entries.  Returns the number of rows deleted."""

    @abstractmethod
    async def get_stats(self) -> CacheStats:
        """Return entry count, total hits and the oldest/newest creation time."""

    @abstractmethod
    def is_enabled(self) -> bool:
        """Return ``True`` when the cache is active."""
