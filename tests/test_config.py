"""
Unit tests for Settings.
"""

import pytest

from knowledge_core.config import Settings

ENV_VARS = [
    "POSTGRES_HOST", "POSTGRES_PORT", "DB_POOL_MIN", "DB_POOL_MAX",
    "DB_STATEMENT_TIMEOUT_MS", "AGE_GRAPH_NAME", "AGE_PARAM_BINDING",
    "REDIS_URL", "EMBEDDING_CACHE_TTL", "EMBEDDING_PROVIDER", "OLLAMA_URL",
    "OPENAI_API_KEY", "EMBEDDING_MODEL", "EMBEDDING_DIMENSIONS", "VECTOR_TABLE",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.mark.unit
class TestSettingsFromEnv:
    """Tests for Settings.from_env()."""

    def test_defaults(self, clean_env):
        settings = Settings.from_env(load_env_file=False)

        assert settings.postgres_host == "localhost"
        assert settings.statement_timeout_ms == 15000
        assert settings.param_binding == "auto"
        assert settings.redis_url is None
        assert settings.embedding_cache_ttl == 86400
        assert settings.embedding_provider is None
        assert settings.embedding_dimensions == 768

    def test_reads_environment(self, clean_env):
        clean_env.setenv("POSTGRES_PORT", "6543")
        clean_env.setenv("DB_STATEMENT_TIMEOUT_MS", "500")
        clean_env.setenv("AGE_PARAM_BINDING", "OFF")
        clean_env.setenv("REDIS_URL", "redis://cache:6379/1")
        clean_env.setenv("EMBEDDING_PROVIDER", "Ollama")
        clean_env.setenv("OLLAMA_URL", "http://ollama:11434")

        settings = Settings.from_env(load_env_file=False)

        assert settings.postgres_port == 6543
        assert settings.statement_timeout_ms == 500
        assert settings.param_binding == "off"
        assert settings.redis_url == "redis://cache:6379/1"
        assert settings.embedding_provider == "ollama"
        assert settings.ollama_url == "http://ollama:11434"

    def test_empty_values_mean_unset(self, clean_env):
        clean_env.setenv("REDIS_URL", "")
        clean_env.setenv("DB_POOL_MAX", " ")

        settings = Settings.from_env(load_env_file=False)

        assert settings.redis_url is None
        assert settings.pool_max == 20

    def test_non_integer(self, clean_env):
        clean_env.setenv("POSTGRES_PORT", "five")

        with pytest.raises(ValueError, match="POSTGRES_PORT"):
            Settings.from_env(load_env_file=False)


@pytest.mark.unit
class TestSettingsValidation:
    """Tests for Settings.__post_init__()."""

    def test_invalid_binding_mode(self):
        with pytest.raises(ValueError, match="AGE_PARAM_BINDING"):
            Settings(param_binding="sometimes")

    def test_invalid_pool_bounds(self):
        with pytest.raises(ValueError):
            Settings(pool_min=5, pool_max=2)

    def test_negative_timeout(self):
        with pytest.raises(ValueError):
            Settings(statement_timeout_ms=-1)
