import os
import sys

import pytest
import pytest_asyncio

# Add the parent directory to the path so tests can import the packages
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.settings import AppConfig, ChunkingConfig, CrawlConfig, EmbeddingsConfig
from indexer.models import EmbeddingModel
from indexer.sqlite_adapter import SQLiteAdapter
from fakes import FakeEmbeddingService


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddingService()


@pytest.fixture
def crawl_config():
    return CrawlConfig(
        max_pages=5,
        max_depth=1,
        concurrency=2,
        min_chars=200,
        enable_sitemap=True,
        respect_robots_txt=True,
        renderer="http",
    )


@pytest.fixture
def app_config(crawl_config):
    return AppConfig(
        crawl=crawl_config,
        chunking=ChunkingConfig(chunk_size_tokens=100, chunk_overlap_tokens=10),
        embeddings=EmbeddingsConfig(api_key="test-key"),
    )


@pytest_asyncio.fixture
async def storage(tmp_path):
    adapter = SQLiteAdapter(str(tmp_path / "knowledge.db"))
    await adapter.initialize()
    yield adapter
    await adapter.close()


@pytest_asyncio.fixture
async def client(storage):
    return await storage.create_client("Acme", EmbeddingModel.SMALL.value, "example.com")
