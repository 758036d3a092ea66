"""Database configuration and factory.

SQLite for development and tests, PostgreSQL with pgvector for production.
Both adapters expose the same client/chunk operations.
"""

import os
import logging
from typing import Union, Optional
from enum import Enum
from pydantic import BaseModel, Field

from indexer.postgres_adapter import PostgresAdapter, PostgresConfig
from indexer.sqlite_adapter import SQLiteAdapter
from .settings import int_env

logger = logging.getLogger(__name__)

StorageAdapter = Union[PostgresAdapter, SQLiteAdapter]


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class DatabaseConfig(BaseModel):
    """Database configuration."""
    type: DatabaseType = Field(default=DatabaseType.SQLITE, description="Database type")

    # SQLite configuration
    sqlite_path: str = Field(default="knowledge.db", description="SQLite database path")

    # PostgreSQL configuration
    postgres: PostgresConfig = Field(default_factory=PostgresConfig, description="PostgreSQL configuration")

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Create configuration from environment variables."""
        db_type = os.getenv('KNOWLEDGE_DB_TYPE', 'sqlite').lower()

        if db_type in ('postgresql', 'postgres'):
            postgres_config = PostgresConfig(
                dsn=os.getenv('DATABASE_URL') or None,
                host=os.getenv('POSTGRES_HOST', 'localhost'),
                port=int_env('POSTGRES_PORT', 5432),
                database=os.getenv('POSTGRES_DB', 'knowledge'),
                user=os.getenv('POSTGRES_USER', 'knowledge'),
                password=os.getenv('POSTGRES_PASSWORD', ''),
                min_connections=int_env('POSTGRES_MIN_CONNECTIONS', 2),
                max_connections=int_env('POSTGRES_MAX_CONNECTIONS', 10),
                command_timeout=int_env('POSTGRES_COMMAND_TIMEOUT', 60)
            )
            return cls(type=DatabaseType.POSTGRESQL, postgres=postgres_config)

        return cls(
            type=DatabaseType.SQLITE,
            sqlite_path=os.getenv('SQLITE_PATH', 'knowledge.db'),
        )


class DatabaseFactory:
    """Builds and owns the storage adapter selected by DatabaseConfig."""

    def __init__(self):
        self._adapter: Optional[StorageAdapter] = None

    async def initialize(self, config: Optional[DatabaseConfig] = None) -> StorageAdapter:
        """Initialize database adapter based on configuration."""
        if config is None:
            config = DatabaseConfig.from_env()

        if config.type == DatabaseType.POSTGRESQL:
            logger.info("Initializing PostgreSQL adapter")
            self._adapter = PostgresAdapter(config.postgres)
        else:
            logger.info("Initializing SQLite adapter")
            self._adapter = SQLiteAdapter(config.sqlite_path)
        await self._adapter.initialize()

        logger.info(f"Database adapter initialized: {config.type.value}")
        return self._adapter

    async def close(self):
        """Close database connections."""
        if self._adapter:
            await self._adapter.close()
            self._adapter = None
            logger.info("Database adapter closed")
