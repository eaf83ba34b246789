"""
Runtime configuration for the knowledge retrieval core.

All settings come from environment variables (optionally loaded from a
.env file). Components never read the environment themselves; they are
handed a Settings instance by create_retrieval_service().
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .constants import DEFAULT_EMBEDDING_CACHE_TTL, DEFAULT_EMBEDDING_DIMENSIONS

logger = logging.getLogger(__name__)

PARAM_BINDING_MODES = ("auto", "on", "off")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass
class Settings:
    """Connection, backend and provider settings."""

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "knowledge_graph"
    postgres_user: str = "admin"
    postgres_password: str = "password"

    pool_min: int = 1
    pool_max: int = 20
    statement_timeout_ms: int = 15000

    graph_name: str = "knowledge_graph"
    param_binding: str = "auto"
    tenant_setting_name: str = "app.current_tenant"

    vector_table: str = "vector_documents"
    text_search_config: str = "english"

    redis_url: Optional[str] = None
    embedding_cache_ttl: int = DEFAULT_EMBEDDING_CACHE_TTL

    embedding_provider: Optional[str] = None
    ollama_url: Optional[str] = None
    openai_api_key: Optional[str] = None
    embedding_model: Optional[str] = None
    embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS

    def __post_init__(self):
        if self.param_binding not in PARAM_BINDING_MODES:
            raise ValueError(
                f"AGE_PARAM_BINDING must be one of {PARAM_BINDING_MODES}, "
                f"got {self.param_binding!r}"
            )
        if self.pool_min < 1 or self.pool_max < self.pool_min:
            raise ValueError(
                f"Invalid pool bounds: min={self.pool_min}, max={self.pool_max}"
            )
        if self.statement_timeout_ms < 0:
            raise ValueError("DB_STATEMENT_TIMEOUT_MS cannot be negative")

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            load_env_file: Load a .env file first (existing variables win)

        Returns:
            Settings instance
        """
        if load_env_file:
            load_dotenv()

        return cls(
            postgres_host=os.getenv("POSTGRES_HOST", "localhost"),
            postgres_port=_env_int("POSTGRES_PORT", 5432),
            postgres_db=os.getenv("POSTGRES_DB", "knowledge_graph"),
            postgres_user=os.getenv("POSTGRES_USER", "admin"),
            postgres_password=os.getenv("POSTGRES_PASSWORD", "password"),
            pool_min=_env_int("DB_POOL_MIN", 1),
            pool_max=_env_int("DB_POOL_MAX", 20),
            statement_timeout_ms=_env_int("DB_STATEMENT_TIMEOUT_MS", 15000),
            graph_name=os.getenv("AGE_GRAPH_NAME", "knowledge_graph"),
            param_binding=os.getenv("AGE_PARAM_BINDING", "auto").lower(),
            tenant_setting_name=os.getenv("TENANT_SETTING_NAME", "app.current_tenant"),
            vector_table=os.getenv("VECTOR_TABLE", "vector_documents"),
            text_search_config=os.getenv("TEXT_SEARCH_CONFIG", "english"),
            redis_url=os.getenv("REDIS_URL") or None,
            embedding_cache_ttl=_env_int("EMBEDDING_CACHE_TTL", DEFAULT_EMBEDDING_CACHE_TTL),
            embedding_provider=(os.getenv("EMBEDDING_PROVIDER") or "").lower() or None,
            ollama_url=os.getenv("OLLAMA_URL") or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            embedding_model=os.getenv("EMBEDDING_MODEL") or None,
            embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", DEFAULT_EMBEDDING_DIMENSIONS),
        )
