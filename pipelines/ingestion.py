"""Shared ingestion path: text -> chunks -> embeddings -> storage.

Used by both the crawler and the document upload path. Callers are expected to
apply their own minimum-length filtering before handing text over.
"""

import logging
from typing import Optional

from config.settings import ChunkingConfig
from indexer.embeddings import EmbeddingService
from indexer.models import ChunkWithEmbedding, Client, IngestResult
from observability import prometheus_metrics as metrics
from .chunker import TextChunker

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Chunks, embeds and stores text for one client."""

    def __init__(self, storage, embeddings: EmbeddingService,
                 chunking: Optional[ChunkingConfig] = None):
        """Initialize the pipeline.

        Args:
            storage: Storage adapter (PostgresAdapter or SQLiteAdapter)
            embeddings: Embedding service used for the client's model
            chunking: Chunk budget; defaults to ChunkingConfig()
        """
        self.storage = storage
        self.embeddings = embeddings
        self.chunker = TextChunker.from_config(chunking or ChunkingConfig())

    async def ingest(self, text: str, url: str, domain: str, client: Client) -> IngestResult:
        """Ingest one page or document.

        Embedding failures propagate. A failed insert is logged and skipped;
        ``chunks_stored`` counts inserts that did not raise.
        """
        chunks = self.chunker.chunk(text, url, domain)
        if not chunks:
            logger.info(f"No chunks produced for {url}")
            return IngestResult(chunks_created=0, chunks_stored=0)

        model = client.embedding_model
        try:
            vectors = await self.embeddings.embed_batch([c.text for c in chunks], model)
        except Exception as e:
            logger.error(f"Embedding failed for URL {url}: {e}")
            raise

        stored = 0
        for chunk, vector in zip(chunks, vectors):
            row = ChunkWithEmbedding.from_chunk(chunk, vector)
            try:
                await self.storage.insert_chunk_for_client(client.id, model, row)
            except Exception as e:
                logger.error(f"Failed to store chunk {chunk.chunk_index} of {url}: {e}")
                metrics.record_chunk_insert(model.value, error=type(e).__name__)
                continue
            stored += 1
            metrics.record_chunk_insert(model.value)

        logger.info(f"Ingestion completed for {url}. chunks_created={len(chunks)}, chunks_stored={stored}")
        return IngestResult(chunks_created=len(chunks), chunks_stored=stored)
