"""Configuration for the knowledge crawler.

Environment-driven settings for crawling, chunking, embeddings and storage.
"""

from .settings import AppConfig, CrawlConfig, ChunkingConfig, EmbeddingsConfig
from .database import DatabaseConfig, DatabaseType, DatabaseFactory

__all__ = [
    'AppConfig',
    'CrawlConfig',
    'ChunkingConfig',
    'EmbeddingsConfig',
    'DatabaseConfig',
    'DatabaseType',
    'DatabaseFactory',
]
