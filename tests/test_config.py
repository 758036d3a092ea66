"""Tests for environment-driven configuration and the database factory."""

import pytest
from unittest.mock import patch

from config.database import DatabaseConfig, DatabaseFactory, DatabaseType
from config.settings import AppConfig, ChunkingConfig, CrawlConfig, EmbeddingsConfig
from indexer.errors import ConfigurationError
from indexer.sqlite_adapter import SQLiteAdapter


class TestCrawlConfig:

    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            config = CrawlConfig.from_env()
        assert config.max_pages == 100
        assert config.max_depth == 3
        assert config.concurrency == 5
        assert config.min_chars == 500
        assert config.enable_sitemap is True
        assert config.renderer == "playwright"

    def test_env_overrides(self):
        env = {
            "CRAWL_MAX_PAGES": "20",
            "CRAWL_MAX_DEPTH": "1",
            "CRAWL_CONCURRENCY": "3",
            "CRAWL_CONTENT_WAIT_SELECTOR": "#app",
            "ENABLE_SITEMAP": "false",
            "CRAWL_RENDERER": "HTTP",
        }
        with patch.dict("os.environ", env, clear=True):
            config = CrawlConfig.from_env()
        assert config.max_pages == 20
        assert config.max_depth == 1
        assert config.concurrency == 3
        assert config.content_wait_selector == "#app"
        assert config.enable_sitemap is False
        assert config.renderer == "http"

    def test_bad_integer_falls_back_to_default(self):
        with patch.dict("os.environ", {"CRAWL_MAX_PAGES": "lots"}, clear=True):
            assert CrawlConfig.from_env().max_pages == 100


class TestEmbeddingsConfig:

    def test_api_key_required(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ConfigurationError):
                EmbeddingsConfig.from_env()

    def test_retry_settings(self):
        env = {"OPENAI_API_KEY": "sk-test", "EMBEDDINGS_MAX_RETRIES": "2", "EMBEDDINGS_INITIAL_BACKOFF_MS": "250"}
        with patch.dict("os.environ", env, clear=True):
            config = EmbeddingsConfig.from_env()
        assert config.api_key == "sk-test"
        assert config.max_retries == 2
        assert config.initial_backoff_ms == 250


def test_app_config_from_env():
    env = {"OPENAI_API_KEY": "sk-test", "CHUNK_SIZE_TOKENS": "500", "KNOWLEDGE_INTERNAL_TOKEN": "secret",
           "LOG_JSON": "1", "LOG_FILE": "/var/log/knowledge.jsonl"}
    with patch.dict("os.environ", env, clear=True):
        config = AppConfig.from_env()
    assert config.chunking == ChunkingConfig(chunk_size_tokens=500, chunk_overlap_tokens=150)
    assert config.internal_token == "secret"
    assert config.log_json is True
    assert config.log_file == "/var/log/knowledge.jsonl"


class TestDatabaseConfig:

    def test_sqlite_by_default(self):
        with patch.dict("os.environ", {"SQLITE_PATH": "/tmp/test.db"}, clear=True):
            config = DatabaseConfig.from_env()
        assert config.type is DatabaseType.SQLITE
        assert config.sqlite_path == "/tmp/test.db"

    def test_postgres_from_env(self):
        env = {
            "KNOWLEDGE_DB_TYPE": "postgres",
            "DATABASE_URL": "postgresql://u:p@db:5432/knowledge",
            "POSTGRES_MAX_CONNECTIONS": "20",
        }
        with patch.dict("os.environ", env, clear=True):
            config = DatabaseConfig.from_env()
        assert config.type is DatabaseType.POSTGRESQL
        assert config.postgres.dsn == "postgresql://u:p@db:5432/knowledge"
        assert config.postgres.max_connections == 20

    @pytest.mark.asyncio
    async def test_factory_builds_sqlite_adapter(self, tmp_path):
        factory = DatabaseFactory()
        adapter = await factory.initialize(DatabaseConfig(sqlite_path=str(tmp_path / "factory.db")))

        assert isinstance(adapter, SQLiteAdapter)
        assert await adapter.get_client("00000000-0000-0000-0000-000000000000") is None

        await factory.close()
        assert factory._adapter is None
