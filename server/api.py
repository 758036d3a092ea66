"""HTTP API for the knowledge crawler.

Thin FastAPI layer over the crawl, upload, search and client operations.
Business logic lives in ``pipelines`` and ``indexer``.
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field

from config.database import DatabaseConfig, DatabaseFactory
from config.settings import AppConfig
from indexer.embeddings import EmbeddingService
from indexer.errors import ConfigurationError, DuplicateDomainError, ExtractionError
from indexer.search import SearchService
from observability.logging import setup_logging
from observability.prometheus_metrics import setup_prometheus_metrics
from pipelines.crawler import Crawler
from pipelines.documents import DocumentIngestor
from pipelines.ingestion import IngestionPipeline
from pipelines.rendering import PageRenderer, create_renderer

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10


class CreateClientRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    main_domain: Optional[str] = Field(default=None, alias="mainDomain")
    embedding_model: Optional[str] = Field(default=None, alias="embeddingModel")


class CrawlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: Optional[str] = Field(default=None, alias="clientId")
    domain: Optional[str] = None


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: Optional[str] = Field(default=None, alias="clientId")
    query: Optional[str] = None
    domain: Optional[str] = None
    limit: Optional[int] = None


@dataclass
class Services:
    """Everything a request handler needs, built once per app."""
    config: AppConfig
    storage: Any
    embeddings: EmbeddingService
    pipeline: IngestionPipeline
    crawler: Crawler
    documents: DocumentIngestor
    search: SearchService


def build_services(config: AppConfig, storage, embeddings: EmbeddingService,
                   renderer_factory: Callable[..., PageRenderer] = create_renderer) -> Services:
    pipeline = IngestionPipeline(storage, embeddings, config.chunking)
    return Services(
        config=config,
        storage=storage,
        embeddings=embeddings,
        pipeline=pipeline,
        crawler=Crawler(config.crawl, pipeline, renderer_factory=renderer_factory),
        documents=DocumentIngestor(pipeline, min_chars=config.crawl.min_chars),
        search=SearchService(storage, embeddings),
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services


def require_internal_token(request: Request, x_internal_token: Optional[str] = Header(default=None)):
    """Shared-secret check; open when no token is configured."""
    expected = request.app.state.config.internal_token
    if not expected:
        return
    if not x_internal_token or x_internal_token != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _load_client(services: Services, client_id: str):
    client = await services.storage.get_client(client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


def create_app(config: Optional[AppConfig] = None,
               storage=None,
               embeddings: Optional[EmbeddingService] = None,
               database_config: Optional[DatabaseConfig] = None,
               renderer_factory: Callable[..., PageRenderer] = create_renderer) -> FastAPI:
    """Build the FastAPI app.

    When ``storage`` and ``embeddings`` are given they are used as-is and the
    app owns no connections; otherwise both are created on startup from the
    environment.
    """
    config = config or AppConfig.from_env()
    setup_logging(level=config.log_level, log_file=config.log_file, use_json=config.log_json)
    database = DatabaseFactory()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_resources = getattr(app.state, "services", None) is None
        if owns_resources:
            adapter = await database.initialize(database_config)
            app.state.services = build_services(
                config, adapter, EmbeddingService(config.embeddings), renderer_factory
            )
            logger.info(f"Knowledge API started with {type(adapter).__name__}")
        try:
            yield
        finally:
            if owns_resources:
                await app.state.services.embeddings.close()
                await database.close()
                app.state.services = None

    app = FastAPI(title="Knowledge Crawler API", version="1.0.0", lifespan=lifespan)
    app.state.config = config
    app.state.services = None
    if storage is not None and embeddings is not None:
        app.state.services = build_services(config, storage, embeddings, renderer_factory)

    setup_prometheus_metrics(app)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/clients", status_code=201, dependencies=[Depends(require_internal_token)])
    async def create_client(req: CreateClientRequest, services: Services = Depends(get_services)):
        if not req.name:
            raise HTTPException(status_code=400, detail="name is required")
        if not req.main_domain:
            raise HTTPException(status_code=400, detail="mainDomain is required")

        try:
            client = await services.storage.create_client(req.name, req.embedding_model, req.main_domain)
        except DuplicateDomainError:
            raise HTTPException(status_code=409, detail="mainDomain already exists for another client")
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return {"client": client.to_dict(), "created": True}

    @app.delete("/clients/{client_id}", status_code=204, dependencies=[Depends(require_internal_token)])
    async def delete_client(client_id: str, services: Services = Depends(get_services)):
        deleted = await services.storage.delete_client(client_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Client not found")
        return Response(status_code=204)

    @app.post("/crawl", dependencies=[Depends(require_internal_token)])
    async def crawl(req: CrawlRequest, services: Services = Depends(get_services)):
        if not req.client_id or not req.domain:
            raise HTTPException(status_code=400, detail="clientId and domain are required")

        client = await _load_client(services, req.client_id)
        try:
            stats = await services.crawler.crawl(req.domain, client)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.error(f"Crawl failed for client={client.id}, domain={req.domain}: {e}")
            raise HTTPException(status_code=500, detail="Crawl failed")

        return {
            "status": "completed",
            "clientId": client.id,
            "domain": stats.domain,
            "pagesVisited": stats.pages_visited,
            "pagesStored": stats.pages_stored,
            "pagesSkipped": stats.pages_skipped,
            "pagesFailed": stats.pages_failed,
            "chunksStored": stats.chunks_stored,
            "totalDiscovered": stats.total_discovered,
            "durationSeconds": stats.duration,
        }

    @app.post("/upload-document", dependencies=[Depends(require_internal_token)])
    async def upload_document(file: Optional[UploadFile] = File(default=None),
                              clientId: Optional[str] = Form(default=None),
                              domain: Optional[str] = Form(default=None),
                              services: Services = Depends(get_services)):
        if not clientId:
            raise HTTPException(status_code=400, detail="clientId is required")
        if file is None:
            raise HTTPException(status_code=400, detail="file is required")

        client = await _load_client(services, clientId)
        data = await file.read()
        try:
            result = await services.documents.ingest_document(data, file.filename or "", client, domain=domain)
        except ExtractionError as e:
            raise HTTPException(status_code=400, detail=f"Could not extract text: {e}")
        except Exception as e:
            logger.error(f"Upload ingestion failed for client={client.id}, file={file.filename}: {e}")
            raise HTTPException(status_code=500, detail="Internal error")

        return result.to_dict()

    @app.post("/search", dependencies=[Depends(require_internal_token)])
    async def search(req: SearchRequest, services: Services = Depends(get_services)):
        if not req.client_id or not req.query:
            raise HTTPException(status_code=400, detail="clientId and query are required")

        client = await _load_client(services, req.client_id)
        limit = DEFAULT_SEARCH_LIMIT if req.limit is None else req.limit
        try:
            results = await services.search.search(client, req.query, limit=limit, domain=req.domain)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.error(f"Search failed for client={client.id}: {e}")
            raise HTTPException(status_code=500, detail="Search failed")

        return {"results": [r.to_dict() for r in results]}

    return app


def run():
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "server.api:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    run()
