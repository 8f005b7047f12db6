"""Shared pytest fixtures for the fieldkb test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from fieldkb.config.settings import Settings
from fieldkb.interfaces.embedding_cache import IEmbeddingCache
from fieldkb.interfaces.embedding_provider import IEmbeddingProvider
from fieldkb.models.kb import CacheEntry, CacheStats, EmbeddingResult, KbSource, SearchResult
from fieldkb.providers.cache.sqlite_embedding_cache import hash_text
from fieldkb.providers.embedding.hash_embedding_provider import pseudo_embedding
from fieldkb.providers.vector_store.sqlite_vector_store import SQLiteVectorStore
from fieldkb.services.embedding_service import EmbeddingService
from fieldkb.utils.background import BackgroundTasks
from fieldkb.utils.errors import EmbeddingError

TEST_DIMENSION = 16


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> Settings:
    """Build a Settings instance that never reaches a real API."""
    defaults: dict[str, Any] = {
        "openai_api_key": "",
        "openai_base_url": "https://api.openai.com/v1",
        "cohere_api_key": "",
        "kb_reranker_enabled": True,
        "kb_native_vector_enabled": False,
    }
    defaults.update(overrides)
    return Settings(**defaults)


def make_result(
    result_id: str,
    score: float,
    source: KbSource = KbSource.DOCS,
    content: str | None = None,
    title: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> SearchResult:
    """Build a SearchResult with readable defaults."""
    return SearchResult(
        id=result_id,
        content=content if content is not None else f"content of {result_id}",
        score=score,
        source=source,
        source_ref=f"ref-{result_id}",
        title=title,
        metadata=metadata,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class CountingEmbeddingProvider(IEmbeddingProvider):
    """Deterministic provider that records every text it is asked to embed."""

    def __init__(self, dimension: int = TEST_DIMENSION, fail: bool = False) -> None:
        self.dimension = dimension
        self.fail = fail
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingError(message="Embedding API error (500): boom", provider_name="fake")
        return [pseudo_embedding(text, self.dimension) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        vectors = await self.embed([text])
        return vectors[0]

    def get_dimension(self) -> int:
        return self.dimension

    def get_model_name(self) -> str:
        return "fake-embedding-model"

    def get_provider_name(self) -> str:
        return "fake"

    def is_available(self) -> bool:
        return True

    @property
    def embedded_texts(self) -> list[str]:
        return [text for call in self.calls for text in call]


class InMemoryEmbeddingCache(IEmbeddingCache):
    """Dict-backed cache keyed the same way as the SQLite cache."""

    def __init__(self) -> None:
        self.entries: dict[str, EmbeddingResult] = {}

    async def get(self, text: str) -> EmbeddingResult | None:
        entry = self.entries.get(hash_text(text))
        return entry.model_copy(update={"from_cache": True}) if entry else None

    async def get_many(self, texts: list[str]) -> dict[str, EmbeddingResult]:
        found: dict[str, EmbeddingResult] = {}
        for text in texts:
            entry = await self.get(text)
            if entry is not None:
                found[text] = entry
        return found

    async def set(self, text: str, embedding: list[float], model: str) -> None:
        self.entries[hash_text(text)] = EmbeddingResult(embedding=embedding, model=model)

    async def set_many(self, entries: list[CacheEntry]) -> None:
        for entry in entries:
            await self.set(entry.text, entry.embedding, entry.model)

    async def delete(self, text: str) -> bool:
        return self.entries.pop(hash_text(text), None) is not None

    async def clear(self) -> int:
        count = len(self.entries)
        self.entries.clear()
        return count

    async def cleanup_expired(self) -> int:
        return 0

    async def get_stats(self) -> CacheStats:
        return CacheStats(total_entries=len(self.entries))

    def is_enabled(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "kb" / "knowledge_base.db"


@pytest.fixture
def background() -> BackgroundTasks:
    return BackgroundTasks()


@pytest.fixture
def embedding_provider() -> CountingEmbeddingProvider:
    return CountingEmbeddingProvider()


@pytest.fixture
def memory_cache() -> InMemoryEmbeddingCache:
    return InMemoryEmbeddingCache()


@pytest.fixture
async def embedding_service(
    embedding_provider: CountingEmbeddingProvider,
    memory_cache: InMemoryEmbeddingCache,
    background: BackgroundTasks,
) -> AsyncIterator[EmbeddingService]:
    service = EmbeddingService(embedding_provider, memory_cache, background=background)
    yield service
    await service.drain()


@pytest.fixture
async def vector_store(embedding_service: EmbeddingService, db_path: Path) -> SQLiteVectorStore:
    """SQLite store on the in-memory similarity strategy."""
    store = SQLiteVectorStore(embedding_service, db_path=db_path, native_vector_enabled=False)
    await store.initialize()
    return store
