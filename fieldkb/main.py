"""fieldkb composition root.

Constructs every provider and service from :class:`Settings`, awaits their
async initialisation (table creation, native vector detection) and hands back a
:class:`KnowledgeBase` container.  Nothing in the package holds ambient
global state: callers (a chat orchestrator, the CLI, tests) build one
container per process and pass its services around.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from fieldkb.config.settings import Settings
from fieldkb.interfaces.embedding_provider import IEmbeddingProvider
from fieldkb.providers.cache.sqlite_embedding_cache import SQLiteEmbeddingCache
from fieldkb.providers.embedding import create_embedding_provider
from fieldkb.providers.reranker.reranker_provider import RerankerProvider
from fieldkb.providers.vector_store.sqlite_vector_store import SQLiteVectorStore
from fieldkb.services.embedding_service import EmbeddingService
from fieldkb.services.ingestion.ingestion_service import KnowledgeBaseIngestionService
from fieldkb.services.search_service import KnowledgeBaseSearchService
from fieldkb.utils.background import BackgroundTasks
from fieldkb.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class KnowledgeBase:
    """Every wired component of one knowledge base instance."""

    settings: Settings
    embedding_provider: IEmbeddingProvider
    cache: SQLiteEmbeddingCache
    embedding_service: EmbeddingService
    vector_store: SQLiteVectorStore
    reranker: RerankerProvider
    ingestion: KnowledgeBaseIngestionService
    search: KnowledgeBaseSearchService
    background: BackgroundTasks
    http_client: httpx.AsyncClient

    async def close(self) -> None:
        """Finish pending cache writes and release HTTP connections."""
        await self.background.drain()
        await self.http_client.aclose()


def validate_settings(settings: Settings) -> None:
    """Reject settings the components cannot run with.

    Raises
    ------
    ConfigurationError
        A size, TTL or timeout is not positive, or no database path is set.
    """
    if settings.kb_cache_max_size <= 0:
        raise ConfigurationError(
            f"KB_CACHE_MAX_SIZE must be positive, got {settings.kb_cache_max_size}"
        )
    if settings.kb_cache_ttl_ms <= 0:
        raise ConfigurationError(f"KB_CACHE_TTL_MS must be positive, got {settings.kb_cache_ttl_ms}")
    if settings.embedding_timeout_seconds <= 0:
        raise ConfigurationError(
            "EMBEDDING_TIMEOUT_SECONDS must be positive, "
            f"got {settings.embedding_timeout_seconds}"
        )
    if not settings.kb_db_path.strip():
        raise ConfigurationError("KB_DB_PATH must not be empty")


async def build_knowledge_base(
    settings: Settings | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
) -> KnowledgeBase:
    """Construct, wire and initialise the knowledge base components.

    Parameters
    ----------
    settings:
        Configuration; read from the environment when omitted.
    embedding_provider:
        Overrides the provider chosen from settings (tests, custom backends).

    Raises
    ------
    ConfigurationError
        The settings fail :func:`validate_settings`.
    """
    app_settings = settings or Settings()
    validate_settings(app_settings)

    background = BackgroundTasks()
    provider = embedding_provider or create_embedding_provider(app_settings)
    cache = SQLiteEmbeddingCache(
        db_path=app_settings.kb_db_path,
        ttl_ms=app_settings.kb_cache_ttl_ms,
        max_size=app_settings.kb_cache_max_size,
        enabled=app_settings.kb_cache_enabled,
        background=background,
    )
    embedding_service = EmbeddingService(provider, cache, background=background)
    vector_store = SQLiteVectorStore(
        embedding_service,
        db_path=app_settings.kb_db_path,
        native_vector_enabled=app_settings.kb_native_vector_enabled,
    )
    http_client = httpx.AsyncClient(timeout=30.0)
    try:
        reranker = RerankerProvider(app_settings, http_client=http_client)
        await cache.initialize()
        await vector_store.initialize()
    except BaseException:
        await http_client.aclose()
        raise

    logger.info(
        "knowledge_base_ready",
        embedding_provider=provider.get_provider_name(),
        embedding_model=provider.get_model_name(),
        native_vector=vector_store.native_vector_enabled,
        reranker=reranker.get_provider_name(),
        cache_enabled=cache.is_enabled(),
    )

    return KnowledgeBase(
        settings=app_settings,
        embedding_provider=provider,
        cache=cache,
        embedding_service=embedding_service,
        vector_store=vector_store,
        reranker=reranker,
        ingestion=KnowledgeBaseIngestionService(embedding_service, vector_store),
        search=KnowledgeBaseSearchService(
            embedding_service, vector_store, reranker=reranker, cache=cache
        ),
        background=background,
        http_client=http_client,
    )
