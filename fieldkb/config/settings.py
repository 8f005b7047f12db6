"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ─────────────────────────────────────────────────
#
# pydantic-settings reads configuration from TWO sources (in priority order):
#
#   1. **Environment variables** -- e.g., OPENAI_API_KEY=sk-abc123
#      (highest priority -- always wins)
#   2. **.env file** -- key=value lines in the working directory's .env
#
# The mapping is automatic: field name `kb_cache_ttl_ms` maps to env var
# `KB_CACHE_TTL_MS`.  Defaults apply when neither source sets a field.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """fieldkb settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Embedding provider ===
    # Empty key = "not configured" → the deterministic local fallback
    # embedding is used instead of the remote API.
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_timeout_seconds: float = 30.0

    # === Embedding cache ===
    kb_cache_ttl_ms: int = 24 * 60 * 60 * 1000
    kb_cache_max_size: int = 10_000
    kb_cache_enabled: bool = True

    # === Knowledge base storage ===
    kb_db_path: str = "data/knowledge_base.db"
    # False skips the sqlite-vec check and forces in-memory similarity search.
    kb_native_vector_enabled: bool = True

    # === Reranker ===
    kb_reranker_enabled: bool = True
    kb_reranker_model: str = "gpt-4o-mini"
    cohere_api_key: str = ""
    cohere_rerank_model: str = "rerank-multilingual-v3.0"

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def has_embedding_credentials(self) -> bool:
        """Return ``True`` when the remote embedding provider can be used."""
        return bool(self.openai_api_key)

    def get_available_rerankers(self) -> list[str]:
        """Return reranker backends that have credentials configured, in priority order."""
        rerankers: list[str] = []
        if self.cohere_api_key:
            rerankers.append("cohere")
        if self.openai_api_key:
            rerankers.append("openai")
        return rerankers
