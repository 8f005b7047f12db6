"""SQLite-backed embedding cache.

Stores embeddings keyed by the SHA-256 of the lower-cased, trimmed text in
the ``kb_embedding_cache`` table of the knowledge base database.  Uses
``aiosqlite`` for async I/O with one connection per operation.

Entries expire ``ttl_ms`` after their last write.  When a write pushes the
table above ``max_size`` rows, the ``ceil(max_size * 0.1)`` entries with
the oldest ``last_accessed_at`` are evicted.

Every public method is best-effort: database errors are logged and turned
into a miss, a zero count or a no-op.  Hit-counter refreshes and expired
entry deletes triggered by reads run as detached background tasks.
"""

from __future__ import annotations

import hashlib
import json
import math
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import structlog

from fieldkb.interfaces.embedding_cache import IEmbeddingCache
from fieldkb.models.kb import CacheEntry, CacheStats, EmbeddingResult
from fieldkb.utils.background import BackgroundTasks

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge_base.db")
_DEFAULT_TTL_MS = 24 * 60 * 60 * 1000
_DEFAULT_MAX_SIZE = 10_000
_EVICTION_FRACTION = 0.1

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS kb_embedding_cache (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    text_hash         TEXT    NOT NULL UNIQUE,
    embedding         TEXT    NOT NULL,
    model             TEXT    NOT NULL,
    expires_at        REAL    NOT NULL,
    hit_count         INTEGER NOT NULL DEFAULT 0,
    last_accessed_at  REAL    NOT NULL,
    created_at        REAL    NOT NULL
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_kb_cache_expires ON kb_embedding_cache(expires_at);",
    "CREATE INDEX IF NOT EXISTS idx_kb_cache_accessed ON kb_embedding_cache(last_accessed_at);",
]

_UPSERT_SQL = """\
INSERT INTO kb_embedding_cache
    (text_hash, embedding, model, expires_at, hit_count, last_accessed_at, created_at)
VALUES (?, ?, ?, ?, 0, ?, ?)
ON CONFLICT(text_hash)
DO UPDATE SET embedding        = excluded.embedding,
              model            = excluded.model,
              expires_at       = excluded.expires_at,
              last_accessed_at = excluded.last_accessed_at;
"""

_SELECT_ONE_SQL = """\
SELECT text_hash, embedding, model, expires_at
FROM kb_embedding_cache
WHERE text_hash = ?;
"""

_TOUCH_SQL = """\
UPDATE kb_embedding_cache
SET hit_count = hit_count + 1, last_accessed_at = ?
WHERE text_hash = ?;
"""

_EVICT_SQL = """\
DELETE FROM kb_embedding_cache
WHERE id IN (
    SELECT id FROM kb_embedding_cache
    ORDER BY last_accessed_at ASC, id ASC
    LIMIT ?
);
"""


def hash_text(text: str) -> str:
    """Return the cache key for *text*: SHA-256 hex of its normalised form."""
    normalized = text.lower().strip()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def _to_datetime(epoch: float | None) -> datetime | None:
    if epoch is None:
        return None
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


class SQLiteEmbeddingCache(IEmbeddingCache):
    """Embedding cache persisted in SQLite.

    Parameters
    ----------
    db_path:
        SQLite database file (shared with the vector store by default).
    ttl_ms:
        Entry lifetime in milliseconds, counted from the last write.
    max_size:
        Maximum number of rows before eviction kicks in.
    enabled:
        When ``False`` every method is a no-op returning an empty result.
    background:
        Holder for detached hit-counter and expiry writes.
    clock:
        Returns the current time as epoch seconds.
    """

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        ttl_ms: int = _DEFAULT_TTL_MS,
        max_size: int = _DEFAULT_MAX_SIZE,
        enabled: bool = True,
        background: BackgroundTasks | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = Path(db_path)
        self._ttl_seconds = ttl_ms / 1000.0
        self._max_size = max_size
        self._enabled = enabled
        self._background = background or BackgroundTasks(logger)
        self._clock = clock

    @property
    def background(self) -> BackgroundTasks:
        return self._background

    async def initialize(self) -> None:
        """Create the cache table and indices if they don't exist."""
        if not self._enabled:
            logger.info("embedding_cache_disabled")
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_TABLE_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info(
            "embedding_cache_initialized",
            path=str(self._db_path),
            ttl_ms=int(self._ttl_seconds * 1000),
            max_size=self._max_size,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, text: str) -> EmbeddingResult | None:
        if not self._enabled:
            return None

        text_hash = hash_text(text)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(_SELECT_ONE_SQL, (text_hash,))
                row = await cursor.fetchone()
        except Exception as exc:
            logger.error("embedding_cache_get_failed", error=str(exc))
            return None

        if row is None:
            return None

        if row["expires_at"] < self._clock():
            self._background.spawn(
                self._delete_hash(text_hash), "embedding_cache_expired_delete_failed"
            )
            return None

        self._background.spawn(self._touch(text_hash), "embedding_cache_touch_failed")
        logger.debug("embedding_cache_hit", text_hash=text_hash[:8])
        return EmbeddingResult(
            embedding=json.loads(row["embedding"]), model=row["model"], from_cache=True
        )

    async def get_many(self, texts: list[str]) -> dict[str, EmbeddingResult]:
        if not self._enabled or not texts:
            return {}

        # Several texts can normalise to the same hash; all of them hit.
        texts_by_hash: dict[str, list[str]] = {}
        for text in texts:
            texts_by_hash.setdefault(hash_text(text), []).append(text)

        hashes = list(texts_by_hash)
        placeholders = ",".join("?" for _ in hashes)
        result: dict[str, EmbeddingResult] = {}
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT text_hash, embedding, model FROM kb_embedding_cache "
                    f"WHERE text_hash IN ({placeholders}) AND expires_at > ?",
                    (*hashes, self._clock()),
                )
                rows = await cursor.fetchall()
        except Exception as exc:
            logger.error("embedding_cache_get_many_failed", error=str(exc))
            return {}

        for row in rows:
            cached = EmbeddingResult(
                embedding=json.loads(row["embedding"]), model=row["model"], from_cache=True
            )
            for text in texts_by_hash[row["text_hash"]]:
                result[text] = cached
            self._background.spawn(
                self._touch(row["text_hash"]), "embedding_cache_touch_failed"
            )

        logger.debug("embedding_cache_batch", hits=len(result), requested=len(texts))
        return result

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set(self, text: str, embedding: list[float], model: str) -> None:
        await self.set_many([CacheEntry(text=text, embedding=embedding, model=model)])

    async def set_many(self, entries: list[CacheEntry]) -> None:
        if not self._enabled or not entries:
            return

        now = self._clock()
        expires_at = now + self._ttl_seconds
        params = [
            (hash_text(e.text), json.dumps(e.embedding), e.model, expires_at, now, now)
            for e in entries
        ]
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.executemany(_UPSERT_SQL, params)
                await db.commit()
                await self._evict_if_needed(db)
        except Exception as exc:
            logger.error("embedding_cache_set_failed", error=str(exc), entries=len(entries))
            return
        logger.debug("embedding_cache_stored", entries=len(entries))

    async def delete(self, text: str) -> bool:
        if not self._enabled:
            return False
        try:
            return await self._delete_hash(hash_text(text))
        except Exception as exc:
            logger.error("embedding_cache_delete_failed", error=str(exc))
            return False

    async def clear(self) -> int:
        if not self._enabled:
            return 0
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute("DELETE FROM kb_embedding_cache")
                await db.commit()
                deleted = cursor.rowcount
        except Exception as exc:
            logger.error("embedding_cache_clear_failed", error=str(exc))
            return 0
        logger.info("embedding_cache_cleared", deleted=deleted)
        return deleted

    async def cleanup_expired(self) -> int:
        if not self._enabled:
            return 0
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(
                    "DELETE FROM kb_embedding_cache WHERE expires_at < ?", (self._clock(),)
                )
                await db.commit()
                deleted = cursor.rowcount
        except Exception as exc:
            logger.error("embedding_cache_cleanup_failed", error=str(exc))
            return 0
        if deleted:
            logger.info("embedding_cache_expired_removed", deleted=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def get_stats(self) -> CacheStats:
        if not self._enabled:
            return CacheStats()
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT COUNT(*) AS total, COALESCE(SUM(hit_count), 0) AS hits, "
                    "MIN(created_at) AS oldest, MAX(created_at) AS newest "
                    "FROM kb_embedding_cache"
                )
                row = await cursor.fetchone()
        except Exception as exc:
            logger.error("embedding_cache_stats_failed", error=str(exc))
            return CacheStats()

        return CacheStats(
            total_entries=row["total"],
            total_hits=row["hits"],
            oldest_entry=_to_datetime(row["oldest"]),
            newest_entry=_to_datetime(row["newest"]),
        )

    def is_enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def hash_text(text: str) -> str:
        return hash_text(text)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _touch(self, text_hash: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_TOUCH_SQL, (self._clock(), text_hash))
            await db.commit()

    async def _delete_hash(self, text_hash: str) -> bool:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "DELETE FROM kb_embedding_cache WHERE text_hash = ?", (text_hash,)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def _evict_if_needed(self, db: aiosqlite.Connection) -> None:
        try:
            cursor = await db.execute("SELECT COUNT(*) FROM kb_embedding_cache")
            (count,) = await cursor.fetchone()
            if count <= self._max_size:
                return
            to_delete = math.ceil(self._max_size * _EVICTION_FRACTION)
            cursor = await db.execute(_EVICT_SQL, (to_delete,))
            await db.commit()
            logger.info("embedding_cache_evicted", evicted=cursor.rowcount, size_before=count)
        except Exception as exc:
            logger.error("embedding_cache_eviction_failed", error=str(exc))
