"""Query-time similarity search for one client."""

import logging
from typing import List, Optional

from .embeddings import EmbeddingService
from .errors import ConfigurationError
from .models import Client, SearchResult
from observability import prometheus_metrics as metrics

logger = logging.getLogger(__name__)


class SearchService:
    """Embeds a query with the client's model and asks storage for the nearest chunks.

    Ranking is entirely storage's job; results are returned as-is.
    """

    def __init__(self, storage, embeddings: EmbeddingService):
        self.storage = storage
        self.embeddings = embeddings

    async def search(self, client: Client, query: str, limit: int = 10,
                     domain: Optional[str] = None) -> List[SearchResult]:
        if not query or not query.strip():
            raise ConfigurationError("query is required")
        if limit is None or limit <= 0:
            raise ConfigurationError("limit must be a positive integer")

        model = client.embedding_model
        try:
            query_embedding = await self.embeddings.embed(query, model)
            results = await self.storage.search_client_chunks(
                client.id, model, query_embedding, limit, domain=domain
            )
        except Exception as e:
            metrics.record_search(model.value, error=type(e).__name__)
            logger.error(f"Search failed for client {client.id}: {e}")
            raise

        metrics.record_search(model.value)
        logger.debug(f"Search for client {client.id} returned {len(results)} results (limit={limit})")
        return results
