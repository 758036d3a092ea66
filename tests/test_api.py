"""HTTP boundary tests using FastAPI's TestClient."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from config.settings import AppConfig, ChunkingConfig, CrawlConfig, EmbeddingsConfig
from indexer.sqlite_adapter import SQLiteAdapter
from server.api import create_app
from fakes import FakeEmbeddingService, FakeRenderer, html_page, long_text

DOCUMENT = "\n\n".join(
    f"Paragraph {i}: our refund policy covers unused items returned within 30 days." for i in range(15)
)


@pytest.fixture
def api_storage(tmp_path):
    adapter = SQLiteAdapter(str(tmp_path / "api.db"))
    asyncio.run(adapter.initialize())
    yield adapter
    asyncio.run(adapter.close())


@pytest.fixture
def api_config():
    return AppConfig(
        crawl=CrawlConfig(max_pages=5, max_depth=1, concurrency=2, min_chars=200,
                          enable_sitemap=False, respect_robots_txt=False, renderer="http"),
        chunking=ChunkingConfig(chunk_size_tokens=100, chunk_overlap_tokens=10),
        embeddings=EmbeddingsConfig(api_key="test-key"),
    )


@pytest.fixture
def renderer():
    return FakeRenderer({
        "https://example.com/": html_page("Home", long_text("our shop"), ["/faq"]),
        "https://example.com/faq": html_page("FAQ", long_text("the refund policy"), []),
    })


@pytest.fixture
def http(api_config, api_storage, renderer):
    app = create_app(config=api_config, storage=api_storage, embeddings=FakeEmbeddingService(),
                     renderer_factory=lambda cfg: renderer)
    return TestClient(app)


@pytest.fixture
def client_id(http):
    response = http.post("/clients", json={
        "name": "Acme", "mainDomain": "example.com", "embeddingModel": "text-embedding-3-small",
    })
    return response.json()["client"]["id"]


class TestHealth:

    def test_health(self, http):
        response = http.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_metrics_endpoint(self, http):
        http.get("/health")
        response = http.get("/metrics")
        assert response.status_code == 200
        assert "knowledge_http_requests_total" in response.text


class TestClients:

    def test_create_client(self, http):
        response = http.post("/clients", json={"name": "Acme", "mainDomain": "acme.com"})

        assert response.status_code == 201
        body = response.json()
        assert body["created"] is True
        assert body["client"]["mainDomain"] == "acme.com"
        assert body["client"]["embeddingModel"] == "text-embedding-3-small"

    def test_duplicate_domain_conflict(self, http, client_id):
        response = http.post("/clients", json={"name": "Copycat", "mainDomain": "example.com"})
        assert response.status_code == 409

    @pytest.mark.parametrize("payload", [{"mainDomain": "x.com"}, {"name": "No domain"}, {}])
    def test_missing_fields(self, http, payload):
        assert http.post("/clients", json=payload).status_code == 400

    def test_delete_client(self, http, client_id):
        assert http.delete(f"/clients/{client_id}").status_code == 204
        assert http.delete(f"/clients/{client_id}").status_code == 404

    def test_delete_unknown_client_is_not_found(self, http):
        response = http.delete("/clients/00000000-0000-0000-0000-000000000000")
        assert response.status_code == 404


class TestUploadAndSearch:

    def upload(self, http, client_id, content, filename="refunds.txt", **form):
        return http.post(
            "/upload-document",
            data={"clientId": client_id, **form},
            files={"file": (filename, content, "text/plain")},
        )

    def test_upload_then_search(self, http, client_id):
        upload = self.upload(http, client_id, DOCUMENT.encode())
        assert upload.status_code == 200
        body = upload.json()
        assert body["status"] == "ok"
        assert body["chunksStored"] == body["chunksCreated"] > 0

        response = http.post("/search", json={"clientId": client_id, "query": "refund policy", "limit": 3})

        assert response.status_code == 200
        results = response.json()["results"]
        assert 0 < len(results) <= 3
        assert set(results[0]) >= {"id", "url", "chunkIndex", "text", "score", "createdAt"}
        assert results[0]["url"] == "file://example.com/refunds.txt"
        scores = [r["score"] for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_short_upload_skipped(self, http, client_id):
        response = self.upload(http, client_id, b"tiny")
        assert response.status_code == 200
        assert response.json()["status"] == "skipped"

    def test_unsupported_upload(self, http, client_id):
        response = self.upload(http, client_id, b"GIF89a", filename="image.gif")
        assert response.status_code == 400

    def test_upload_requires_client(self, http):
        response = http.post("/upload-document", files={"file": ("a.txt", b"text", "text/plain")})
        assert response.status_code == 400

    def test_upload_unknown_client(self, http):
        response = self.upload(http, "11111111-1111-1111-1111-111111111111", DOCUMENT.encode())
        assert response.status_code == 404

    def test_search_validation(self, http, client_id):
        assert http.post("/search", json={"clientId": client_id}).status_code == 400
        assert http.post("/search", json={"clientId": client_id, "query": "x", "limit": 0}).status_code == 400
        assert http.post("/search", json={"clientId": "missing", "query": "x"}).status_code == 404

    def test_search_null_limit_uses_default(self, http, client_id):
        self.upload(http, client_id, DOCUMENT.encode())

        response = http.post("/search", json={"clientId": client_id, "query": "refund policy", "limit": None})

        assert response.status_code == 200
        assert 0 < len(response.json()["results"]) <= 10


class TestCrawl:

    def test_crawl_returns_counters(self, http, client_id, renderer):
        response = http.post("/crawl", json={"clientId": client_id, "domain": "example.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["pagesVisited"] == 2
        assert body["pagesStored"] == 2
        assert body["chunksStored"] > 0
        assert sorted(renderer.rendered) == ["https://example.com/", "https://example.com/faq"]

    def test_crawl_requires_fields(self, http, client_id):
        assert http.post("/crawl", json={"clientId": client_id}).status_code == 400

    def test_crawl_unknown_client(self, http):
        response = http.post("/crawl", json={"clientId": "missing", "domain": "example.com"})
        assert response.status_code == 404


class TestInternalToken:

    def test_token_required_when_configured(self, api_config, api_storage):
        config = api_config.model_copy(update={"internal_token": "s3cret"})
        http = TestClient(create_app(config=config, storage=api_storage, embeddings=FakeEmbeddingService()))

        payload = {"name": "Acme", "mainDomain": "acme.com"}
        assert http.post("/clients", json=payload).status_code == 401
        assert http.post("/clients", json=payload, headers={"X-Internal-Token": "wrong"}).status_code == 401
        assert http.post("/clients", json=payload, headers={"X-Internal-Token": "s3cret"}).status_code == 201
        assert http.get("/health").status_code == 200
