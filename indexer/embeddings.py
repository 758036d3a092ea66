"""Embedding service backed by the OpenAI embeddings API.

The model is chosen per call (each client has its own), and every returned
vector is checked against the model's declared dimensionality before it can
reach storage.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from openai import AsyncOpenAI

from config.settings import EmbeddingsConfig
from indexer.errors import EmbeddingDimensionError, EmbeddingProviderError
from indexer.models import EmbeddingModel
from indexer.retry import RetryPolicy, retry_async
from observability import prometheus_metrics as metrics

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429}


def _status_of(exc: BaseException) -> Optional[int]:
    """Best-effort HTTP status of a provider exception."""
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable_embedding_error(exc: BaseException) -> bool:
    """Rate limits (429) and server-side failures (5xx) are retried."""
    if isinstance(exc, (EmbeddingDimensionError, EmbeddingProviderError)):
        return False
    status = _status_of(exc)
    if status is None:
        return False
    return status in RETRYABLE_STATUS_CODES or 500 <= status < 600


@dataclass
class EmbeddingBatch:
    """Vectors for one batch plus the provider's token accounting."""
    vectors: List[List[float]] = field(default_factory=list)
    prompt_tokens: int = 0
    total_tokens: int = 0


class EmbeddingService:
    """Batched embeddings with dimension validation and bounded retries."""

    def __init__(self,
                 config: EmbeddingsConfig,
                 client: Optional[AsyncOpenAI] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """Initialize embedding service.

        Args:
            config: Embeddings configuration (API key, retry budget, timeout)
            client: Pre-built OpenAI client, mainly for tests
            sleep: Awaitable used between retries
        """
        self.config = config
        # Retries are owned by our own policy, not the SDK's
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.request_timeout,
            max_retries=0,
        )
        self.retry_policy = RetryPolicy(
            max_retries=config.max_retries,
            initial_backoff=config.initial_backoff_ms / 1000.0,
            multiplier=2.0,
        )
        self._sleep = sleep

    async def embed_batch_with_usage(self, texts: List[str], model: EmbeddingModel) -> EmbeddingBatch:
        """Embed all texts in one request and return vectors with token usage."""
        if not texts:
            return EmbeddingBatch()

        model = EmbeddingModel(model)
        expected_dims = model.dimensions

        async def call_provider():
            return await self.client.embeddings.create(model=model.value, input=list(texts))

        try:
            response = await retry_async(
                call_provider,
                self.retry_policy,
                is_retryable_embedding_error,
                description=f"Embedding request ({model.value}, {len(texts)} texts)",
                sleep=self._sleep,
                on_retry=lambda *_: metrics.record_embedding_retry(model.value),
            )
        except Exception as e:
            metrics.record_embedding_request(model.value, error=type(e).__name__)
            raise

        rows = sorted(response.data, key=lambda row: getattr(row, "index", 0))
        vectors = [list(row.embedding) for row in rows]

        if len(vectors) != len(texts):
            metrics.record_embedding_request(model.value, error="count_mismatch")
            raise EmbeddingProviderError(
                f"Embedding API returned {len(vectors)} vectors for {len(texts)} inputs"
            )

        for vector in vectors:
            if len(vector) != expected_dims:
                metrics.record_embedding_request(model.value, error="dimension_mismatch")
                logger.error(
                    f"Embedding API returned dimension {len(vector)}, expected {expected_dims} "
                    f"for model '{model.value}'"
                )
                raise EmbeddingDimensionError(model.value, expected_dims, len(vector))

        usage = getattr(response, "usage", None)
        prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
        total_tokens = int(getattr(usage, "total_tokens", 0) or 0)
        metrics.record_embedding_request(model.value, tokens=total_tokens)
        logger.debug(f"Embedded {len(texts)} texts with {model.value} ({total_tokens} tokens)")

        return EmbeddingBatch(vectors=vectors, prompt_tokens=prompt_tokens, total_tokens=total_tokens)

    async def embed_batch(self, texts: List[str], model: EmbeddingModel) -> List[List[float]]:
        """Embed multiple texts for a given model."""
        batch = await self.embed_batch_with_usage(texts, model)
        return batch.vectors

    async def embed(self, text: str, model: EmbeddingModel) -> List[float]:
        """Single-text convenience wrapper."""
        vectors = await self.embed_batch([text], model)
        return vectors[0]

    async def close(self):
        await self.client.close()
