"""Application settings for the knowledge crawler.

Each section is a pydantic model that can be built from environment variables.
"""

import os
import logging
from typing import Optional

from pydantic import BaseModel, Field

from indexer.errors import ConfigurationError

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
DEFAULT_USER_AGENT = "KnowledgeCrawler/1.0"


def require_env(name: str) -> str:
    """Return a required environment variable or raise ConfigurationError."""
    value = os.getenv(name)
    if not value:
        logger.error(f"Missing required environment variable: {name}")
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return value


def int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}, using default {default}")
        return default


def float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}, using default {default}")
        return default


def bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if not raw:
        return default
    return raw.strip().lower() in _TRUE_VALUES


class CrawlConfig(BaseModel):
    """Crawl limits, timeouts and rendering options."""
    max_pages: int = Field(default=100, ge=1, description="Hard budget of pages per crawl")
    max_depth: int = Field(default=3, ge=0, description="Maximum link depth from the seeds")
    concurrency: int = Field(default=5, ge=1, description="Parallel page workers")
    content_wait_selector: Optional[str] = Field(default=None, description="CSS selector signalling content is ready")
    content_wait_timeout: float = Field(default=15.0, description="Seconds to wait for content readiness")
    navigation_timeout: float = Field(default=30.0, description="Seconds allowed for page navigation")
    fetch_timeout: float = Field(default=10.0, description="Seconds allowed for sitemap/robots fetches")
    min_chars: int = Field(default=500, ge=0, description="Minimum cleaned text length to ingest a page")
    enable_sitemap: bool = Field(default=True, description="Seed the frontier from sitemap.xml")
    respect_robots_txt: bool = Field(default=True, description="Honor robots.txt rules")
    renderer: str = Field(default="playwright", description="'playwright' or 'http'")
    user_agent: str = Field(default=DEFAULT_USER_AGENT)

    @classmethod
    def from_env(cls) -> 'CrawlConfig':
        return cls(
            max_pages=int_env('CRAWL_MAX_PAGES', 100),
            max_depth=int_env('CRAWL_MAX_DEPTH', 3),
            concurrency=int_env('CRAWL_CONCURRENCY', 5),
            content_wait_selector=os.getenv('CRAWL_CONTENT_WAIT_SELECTOR') or None,
            content_wait_timeout=float_env('CRAWL_CONTENT_WAIT_TIMEOUT', 15.0),
            navigation_timeout=float_env('CRAWL_NAVIGATION_TIMEOUT', 30.0),
            fetch_timeout=float_env('CRAWL_FETCH_TIMEOUT', 10.0),
            min_chars=int_env('CRAWL_MIN_CHARS', 500),
            enable_sitemap=bool_env('ENABLE_SITEMAP', True),
            respect_robots_txt=bool_env('CRAWL_RESPECT_ROBOTS', True),
            renderer=os.getenv('CRAWL_RENDERER', 'playwright').lower(),
            user_agent=os.getenv('CRAWL_USER_AGENT', DEFAULT_USER_AGENT),
        )


class ChunkingConfig(BaseModel):
    """Chunk budget in tokens; converted to characters by the chunker."""
    chunk_size_tokens: int = Field(default=900, ge=1)
    chunk_overlap_tokens: int = Field(default=150, ge=0)

    @classmethod
    def from_env(cls) -> 'ChunkingConfig':
        return cls(
            chunk_size_tokens=int_env('CHUNK_SIZE_TOKENS', 900),
            chunk_overlap_tokens=int_env('CHUNK_OVERLAP_TOKENS', 150),
        )


class EmbeddingsConfig(BaseModel):
    """OpenAI embeddings access and retry discipline."""
    api_key: str = Field(default="", description="OpenAI API key")
    base_url: Optional[str] = Field(default=None, description="Override for OpenAI-compatible endpoints")
    max_retries: int = Field(default=5, ge=0, description="Retries after the first attempt")
    initial_backoff_ms: int = Field(default=1000, ge=0)
    request_timeout: float = Field(default=60.0, description="Seconds per embeddings request")

    @classmethod
    def from_env(cls) -> 'EmbeddingsConfig':
        return cls(
            api_key=require_env('OPENAI_API_KEY'),
            base_url=os.getenv('OPENAI_BASE_URL') or None,
            max_retries=int_env('EMBEDDINGS_MAX_RETRIES', 5),
            initial_backoff_ms=int_env('EMBEDDINGS_INITIAL_BACKOFF_MS', 1000),
            request_timeout=float_env('EMBEDDINGS_REQUEST_TIMEOUT', 60.0),
        )


class AppConfig(BaseModel):
    """Top-level configuration."""
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None
    internal_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables."""
        return cls(
            crawl=CrawlConfig.from_env(),
            chunking=ChunkingConfig.from_env(),
            embeddings=EmbeddingsConfig.from_env(),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            log_json=bool_env('LOG_JSON', False),
            log_file=os.getenv('LOG_FILE') or None,
            internal_token=os.getenv('KNOWLEDGE_INTERNAL_TOKEN') or None,
        )
