"""SQLite storage adapter.

Same contract as PostgresAdapter for development and tests. Embeddings are
stored as float32 BLOBs and ranked with numpy.
"""

import sqlite3
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import numpy as np

from .errors import ConfigurationError, DuplicateDomainError, EmbeddingDimensionError, StorageWriteError
from .models import ChunkWithEmbedding, Client, EmbeddingModel, SearchResult

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS clients (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    embedding_model TEXT NOT NULL CHECK (
      embedding_model IN ('text-embedding-3-small', 'text-embedding-3-large')
    ),
    main_domain TEXT UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS page_chunks_small (
    id TEXT PRIMARY KEY,
    client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    domain TEXT NOT NULL,
    url TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    chunk_hash TEXT NOT NULL,
    embedding BLOB NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_page_chunks_small_client_domain ON page_chunks_small (client_id, domain);

CREATE TABLE IF NOT EXISTS page_chunks_large (
    id TEXT PRIMARY KEY,
    client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    domain TEXT NOT NULL,
    url TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    chunk_hash TEXT NOT NULL,
    embedding BLOB NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_page_chunks_large_client_domain ON page_chunks_large (client_id, domain);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _client_from_row(row: sqlite3.Row) -> Client:
    return Client(
        id=row['id'],
        name=row['name'],
        embedding_model=EmbeddingModel.from_stored(row['embedding_model']),
        main_domain=row['main_domain'],
        created_at=datetime.fromisoformat(row['created_at']),
    )


class SQLiteAdapter:
    """SQLite database adapter with the same interface as PostgresAdapter."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    async def initialize(self):
        """Initialize SQLite connection and ensure schema exists."""
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            self.conn.executescript(SCHEMA_SQL)
            self.conn.commit()
            logger.info(f"SQLite adapter initialized: {self.db_path}")

        except Exception as e:
            logger.error(f"Failed to initialize SQLite: {e}")
            raise

    async def close(self):
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("SQLite connection closed")

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

        client_id = str(uuid.uuid4())
        created_at = _now()
        try:
            self.conn.execute(
                """
                INSERT INTO clients (id, name, embedding_model, main_domain, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (client_id, name.strip(), model.value, main_domain.strip(), created_at)
            )
            self.conn.commit()
        except sqlite3.IntegrityError:
            self.conn.rollback()
            logger.warning(f"Rejected client '{name}': mainDomain {main_domain} already registered")
            raise DuplicateDomainError(main_domain.strip())

        logger.info(f"Created client {client_id} ({name.strip()}, {model.value})")
        return Client(
            id=client_id,
            name=name.strip(),
            embedding_model=model,
            main_domain=main_domain.strip(),
            created_at=datetime.fromisoformat(created_at),
        )

    async def get_client(self, client_id: str) -> Optional[Client]:
        row = self.conn.execute(
            "SELECT id, name, embedding_model, main_domain, created_at FROM clients WHERE id = ?",
            (str(client_id),)
        ).fetchone()
        return _client_from_row(row) if row else None

    async def delete_client(self, client_id: str) -> bool:
        """Delete a client and its chunks. Returns False when no such client existed."""
        cursor = self.conn.execute("DELETE FROM clients WHERE id = ?", (str(client_id),))
        self.conn.commit()
        if cursor.rowcount == 0:
            logger.info(f"Delete requested for unknown client {client_id}")
            return False
        logger.info(f"Deleted client {client_id} and its chunks")
        return True

    # ---------- chunks ----------

    async def insert_chunk_for_client(self, client_id: str, model: EmbeddingModel,
                                      chunk: ChunkWithEmbedding) -> None:
        """Insert one chunk into the table of ``model``."""
        model = EmbeddingModel(model)
        if len(chunk.embedding) != model.dimensions:
            raise EmbeddingDimensionError(model.value, model.dimensions, len(chunk.embedding))

        # Convert to float32 bytes for SQLite BLOB
        embedding_blob = np.asarray(chunk.embedding, dtype=np.float32).tobytes()
        try:
            self.conn.execute(
                f"""
                INSERT INTO {model.table_name}
                    (id, client_id, domain, url, chunk_index, chunk_text, chunk_hash, embedding, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (str(uuid.uuid4()), str(client_id), chunk.domain, chunk.url, chunk.chunk_index,
                 chunk.text, chunk.chunk_hash, embedding_blob, _now())
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StorageWriteError(f"Failed to insert chunk {chunk.chunk_index} of {chunk.url}: {e}") from e

    async def search_client_chunks(self, client_id: str, model: EmbeddingModel,
                                   query_embedding: Sequence[float], limit: int,
                                   domain: Optional[str] = None) -> List[SearchResult]:
        """Nearest chunks by L2 distance; ``score = 1 / (1 + distance)``."""
        model = EmbeddingModel(model)
        if len(query_embedding) != model.dimensions:
            raise EmbeddingDimensionError(model.value, model.dimensions, len(query_embedding))
        if limit <= 0:
            return []

        sql = f"""
            SELECT id, client_id, domain, url, chunk_index, chunk_text, embedding, created_at
            FROM {model.table_name}
            WHERE client_id = ?
        """
        params = [str(client_id)]
        if domain:
            sql += " AND domain = ?"
            params.append(domain)

        rows = self.conn.execute(sql, params).fetchall()
        if not rows:
            return []

        matrix = np.vstack([np.frombuffer(row['embedding'], dtype=np.float32) for row in rows])
        query = np.asarray(query_embedding, dtype=np.float32)
        distances = np.linalg.norm(matrix - query, axis=1)
        order = np.argsort(distances, kind='stable')[:limit]

        return [
            SearchResult(
                id=rows[i]['id'],
                client_id=rows[i]['client_id'],
                domain=rows[i]['domain'],
                url=rows[i]['url'],
                chunk_index=rows[i]['chunk_index'],
                text=rows[i]['chunk_text'],
                score=float(1.0 / (1.0 + distances[i])),
                created_at=datetime.fromisoformat(rows[i]['created_at']),
            )
            for i in order
        ]

    async def count_chunks_for_client(self, client_id: str, model: EmbeddingModel) -> int:
        model = EmbeddingModel(model)
        row = self.conn.execute(
            f"SELECT COUNT(*) AS n FROM {model.table_name} WHERE client_id = ?",
            (str(client_id),)
        ).fetchone()
        return row['n']
