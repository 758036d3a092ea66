"""PostgreSQL storage adapter for the knowledge crawler.

Clients and their chunks live in PostgreSQL with pgvector. Each embedding
model has its own chunk table since vector widths differ.
"""

import logging
import uuid
from typing import List, Optional, Sequence

import asyncpg
from pydantic import BaseModel

from .errors import ConfigurationError, DuplicateDomainError, EmbeddingDimensionError, StorageWriteError
from .models import ChunkWithEmbedding, Client, EmbeddingModel, SearchResult

logger = logging.getLogger(__name__)


class PostgresConfig(BaseModel):
    """PostgreSQL connection configuration."""
    dsn: Optional[str] = None
    host: str = "localhost"
    port: int = 5432
    database: str = "knowledge"
    user: str = "knowledge"
    password: str = ""
    min_connections: int = 2
    max_connections: int = 10
    command_timeout: int = 60


SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS vector;
CREATE EXTENSION IF NOT EXISTS pgcrypto;

CREATE TABLE IF NOT EXISTS clients (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    embedding_model TEXT NOT NULL CHECK (
      embedding_model IN ('text-embedding-3-small', 'text-embedding-3-large')
    ),
    main_domain TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_clients_main_domain ON clients (main_domain);

CREATE TABLE IF NOT EXISTS page_chunks_small (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    domain TEXT NOT NULL,
    url TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    chunk_hash TEXT NOT NULL,
    embedding vector(1536) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_page_chunks_small_client_domain ON page_chunks_small (client_id, domain);
CREATE INDEX IF NOT EXISTS idx_page_chunks_small_embedding_hnsw
    ON page_chunks_small USING hnsw (embedding vector_l2_ops);

CREATE TABLE IF NOT EXISTS page_chunks_large (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    domain TEXT NOT NULL,
    url TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    chunk_hash TEXT NOT NULL,
    embedding vector(3072) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_page_chunks_large_client_domain ON page_chunks_large (client_id, domain);
-- vector indexes stop at 2000 dimensions; halfvec goes to 4000
CREATE INDEX IF NOT EXISTS idx_page_chunks_large_embedding_hnsw
    ON page_chunks_large USING hnsw ((embedding::halfvec(3072)) halfvec_l2_ops);
"""


def to_vector_literal(embedding: Sequence[float]) -> str:
    """pgvector text representation, e.g. ``[0.1,0.2]``."""
    return "[" + ",".join(repr(float(x)) for x in embedding) + "]"


def _valid_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except (ValueError, TypeError):
        return False
    return True


def _client_from_row(row) -> Client:
    return Client(
        id=str(row['id']),
        name=row['name'],
        embedding_model=EmbeddingModel.from_stored(row['embedding_model']),
        main_domain=row['main_domain'],
        created_at=row['created_at'],
    )


class PostgresAdapter:
    """PostgreSQL adapter with pgvector support."""

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize connection pool and ensure schema exists."""
        try:
            if self.config.dsn:
                self.pool = await asyncpg.create_pool(
                    dsn=self.config.dsn,
                    min_size=self.config.min_connections,
                    max_size=self.config.max_connections,
                    command_timeout=self.config.command_timeout
                )
            else:
                self.pool = await asyncpg.create_pool(
                    host=self.config.host,
                    port=self.config.port,
                    database=self.config.database,
                    user=self.config.user,
                    password=self.config.password,
                    min_size=self.config.min_connections,
                    max_size=self.config.max_connections,
                    command_timeout=self.config.command_timeout
                )
            logger.info("PostgreSQL connection pool initialized")

            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
                logger.info("pgvector extension and knowledge schema ensured")

        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL: {e}")
            raise

    async def close(self):
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL connection pool closed")

    # ---------- clients ----------

    async def create_client(self, name: str, embedding_model, main_domain: str) -> Client:
        """Create a client.

        Raises:
            ConfigurationError: name or main_domain missing
            DuplicateDomainError: main_domain already belongs to another client
        """
        if not name or not name.strip():
            raise ConfigurationError("name is required")
        if not main_domain or not main_domain.strip():
            raise ConfigurationError("mainDomain is required")
        model = EmbeddingModel.parse(embedding_model)

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO clients (name, embedding_model, main_domain)
                    VALUES ($1, $2, $3)
                    RETURNING id, name, embedding_model, main_domain, created_at
                    """,
                    name.strip(), model.value, main_domain.strip()
                )
        except asyncpg.UniqueViolationError:
            logger.warning(f"Rejected client '{name}': mainDomain {main_domain} already registered")
            raise DuplicateDomainError(main_domain.strip())

        client = _client_from_row(row)
        logger.info(f"Created client {client.id} ({client.name}, {client.embedding_model.value})")
        return client

    async def get_client(self, client_id: str) -> Optional[Client]:
        if not _valid_uuid(client_id):
            return None
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, name, embedding_model, main_domain, created_at
                FROM clients
                WHERE id = $1::uuid
                """,
                str(client_id)
            )
        return _client_from_row(row) if row else None

    async def delete_client(self, client_id: str) -> bool:
        """Delete a client and, via cascade, all of its chunks.

        Returns False when no such client existed.
        """
        if not _valid_uuid(client_id):
            return False
        async with self.pool.acquire() as conn:
            deleted_id = await conn.fetchval(
                "DELETE FROM clients WHERE id = $1::uuid RETURNING id",
                str(client_id)
            )
        if deleted_id is None:
            logger.info(f"Delete requested for unknown client {client_id}")
            return False
        logger.info(f"Deleted client {client_id} and its chunks")
        return True

    # ---------- chunks ----------

    async def insert_chunk_for_client(self, client_id: str, model: EmbeddingModel,
                                      chunk: ChunkWithEmbedding) -> None:
        """Insert one chunk into the table of ``model``.

        Raises:
            EmbeddingDimensionError: embedding length differs from the model's
            StorageWriteError: the database rejected the row
        """
        model = EmbeddingModel(model)
        if len(chunk.embedding) != model.dimensions:
            raise EmbeddingDimensionError(model.value, model.dimensions, len(chunk.embedding))

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    f"""
                    INSERT INTO {model.table_name}
                        (client_id, domain, url, chunk_index, chunk_text, chunk_hash, embedding)
                    VALUES ($1::uuid, $2, $3, $4, $5, $6, $7::vector)
                    """,
                    str(client_id), chunk.domain, chunk.url, chunk.chunk_index,
                    chunk.text, chunk.chunk_hash, to_vector_literal(chunk.embedding)
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise StorageWriteError(f"Failed to insert chunk {chunk.chunk_index} of {chunk.url}: {e}") from e

    async def search_client_chunks(self, client_id: str, model: EmbeddingModel,
                                   query_embedding: Sequence[float], limit: int,
                                   domain: Optional[str] = None) -> List[SearchResult]:
        """Nearest chunks by L2 distance; ``score = 1 / (1 + distance)``."""
        model = EmbeddingModel(model)
        if len(query_embedding) != model.dimensions:
            raise EmbeddingDimensionError(model.value, model.dimensions, len(query_embedding))

        if model is EmbeddingModel.LARGE:
            distance = f"(embedding::halfvec({model.dimensions})) <-> $2::halfvec({model.dimensions})"
        else:
            distance = "embedding <-> $2::vector"

        params = [str(client_id), to_vector_literal(query_embedding)]
        domain_clause = ""
        if domain:
            params.append(domain)
            domain_clause = f"AND domain = ${len(params)}"
        params.append(limit)

        sql = f"""
            SELECT id, client_id, domain, url, chunk_index, chunk_text, created_at,
                   {distance} AS distance
            FROM {model.table_name}
            WHERE client_id = $1::uuid
              {domain_clause}
            ORDER BY {distance}
            LIMIT ${len(params)}
        """

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)

        return [
            SearchResult(
                id=str(row['id']),
                client_id=str(row['client_id']),
                domain=row['domain'],
                url=row['url'],
                chunk_index=row['chunk_index'],
                text=row['chunk_text'],
                score=1.0 / (1.0 + float(row['distance'])),
                created_at=row['created_at'],
            )
            for row in rows
        ]

    async def count_chunks_for_client(self, client_id: str, model: EmbeddingModel) -> int:
        model = EmbeddingModel(model)
        if not _valid_uuid(client_id):
            return 0
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                f"SELECT COUNT(*) FROM {model.table_name} WHERE client_id = $1::uuid",
                str(client_id)
            )
