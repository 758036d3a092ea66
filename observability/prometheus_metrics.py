"""Prometheus metrics for the knowledge crawler."""

import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Custom registry so tests and embedded apps never collide with the default one
knowledge_registry = CollectorRegistry()

# Request metrics
request_count = Counter(
    'knowledge_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=knowledge_registry
)

request_duration = Histogram(
    'knowledge_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 60.0, 300.0],
    registry=knowledge_registry
)

# Crawl metrics
crawl_pages = Counter(
    'knowledge_crawl_pages_total',
    'Pages handled by the crawler, by outcome',
    ['outcome'],
    registry=knowledge_registry
)

crawl_duration = Histogram(
    'knowledge_crawl_duration_seconds',
    'Wall time of a full crawl run',
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600],
    registry=knowledge_registry
)

# Ingestion metrics
chunks_stored = Counter(
    'knowledge_chunks_stored_total',
    'Chunk inserts that did not raise',
    ['model'],
    registry=knowledge_registry
)

chunk_store_failures = Counter(
    'knowledge_chunk_store_failures_total',
    'Chunk inserts that raised',
    ['model'],
    registry=knowledge_registry
)

# Embedding metrics
embedding_requests = Counter(
    'knowledge_embedding_requests_total',
    'Embedding batch requests, by model and status',
    ['model', 'status'],
    registry=knowledge_registry
)

embedding_retries = Counter(
    'knowledge_embedding_retries_total',
    'Embedding retries after rate-limit or server errors',
    ['model'],
    registry=knowledge_registry
)

embedding_tokens = Counter(
    'knowledge_embedding_tokens_total',
    'Tokens billed by the embedding provider',
    ['model'],
    registry=knowledge_registry
)

# Search metrics
search_requests = Counter(
    'knowledge_search_requests_total',
    'Total number of search requests',
    ['model', 'status'],
    registry=knowledge_registry
)


def record_page_outcome(outcome: str) -> None:
    crawl_pages.labels(outcome=outcome).inc()


def record_chunk_insert(model: str, error: Optional[str] = None) -> None:
    if error:
        chunk_store_failures.labels(model=model).inc()
    else:
        chunks_stored.labels(model=model).inc()


def record_embedding_request(model: str, error: Optional[str] = None, tokens: int = 0) -> None:
    status = "error" if error else "success"
    embedding_requests.labels(model=model, status=status).inc()
    if tokens:
        embedding_tokens.labels(model=model).inc(tokens)


def record_embedding_retry(model: str) -> None:
    embedding_retries.labels(model=model).inc()


def record_search(model: str, error: Optional[str] = None) -> None:
    status = "error" if error else "success"
    search_requests.labels(model=model, status=status).inc()


class PrometheusMiddleware:
    """ASGI middleware recording request count and duration."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        method = request.method
        endpoint = self._normalize_endpoint(request.url.path)
        start_time = time.time()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            request_count.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
            request_duration.labels(method=method, endpoint=endpoint).observe(time.time() - start_time)

    def _normalize_endpoint(self, path: str) -> str:
        """Collapse client ids to keep label cardinality bounded."""
        import re
        return re.sub(r'/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '/{uuid}', path)


def setup_prometheus_metrics(app: FastAPI) -> None:
    """Attach the middleware and a /metrics endpoint to the app."""
    app.add_middleware(PrometheusMiddleware)

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint():
        return PlainTextResponse(generate_latest(knowledge_registry), media_type=CONTENT_TYPE_LATEST)

    logger.info("Prometheus metrics configured")
