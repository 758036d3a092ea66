"""Tests for the SQLite storage adapter."""

import pytest

from indexer.errors import ConfigurationError, DuplicateDomainError, EmbeddingDimensionError, StorageWriteError
from indexer.models import ChunkWithEmbedding, EmbeddingModel


def unit_vector(dims, hot):
    vector = [0.0] * dims
    vector[hot] = 1.0
    return vector


def make_chunk(index, embedding, url="https://example.com/page", domain="example.com"):
    return ChunkWithEmbedding(url=url, domain=domain, chunk_index=index,
                              text=f"chunk {index}", embedding=embedding)


class TestClients:

    @pytest.mark.asyncio
    async def test_create_and_get_client(self, storage):
        client = await storage.create_client("Acme", "text-embedding-3-large", "acme.com")

        loaded = await storage.get_client(client.id)

        assert loaded.id == client.id
        assert loaded.name == "Acme"
        assert loaded.embedding_model is EmbeddingModel.LARGE
        assert loaded.main_domain == "acme.com"
        assert loaded.to_dict()["embeddingModel"] == "text-embedding-3-large"

    @pytest.mark.asyncio
    async def test_unknown_model_defaults_to_small(self, storage):
        client = await storage.create_client("Beta", None, "beta.com")
        assert client.embedding_model is EmbeddingModel.SMALL

    @pytest.mark.asyncio
    async def test_duplicate_domain_rejected(self, storage):
        await storage.create_client("First", "text-embedding-3-small", "example.com")

        with pytest.raises(DuplicateDomainError):
            await storage.create_client("Second", "text-embedding-3-small", "example.com")

        count = storage.conn.execute("SELECT COUNT(*) FROM clients").fetchone()[0]
        assert count == 1

    @pytest.mark.asyncio
    async def test_missing_fields_rejected(self, storage):
        with pytest.raises(ConfigurationError):
            await storage.create_client("NoDomain", "text-embedding-3-small", "")
        with pytest.raises(ConfigurationError):
            await storage.create_client(" ", "text-embedding-3-small", "x.com")

    @pytest.mark.asyncio
    async def test_get_unknown_client(self, storage):
        assert await storage.get_client("does-not-exist") is None

    @pytest.mark.asyncio
    async def test_delete_client_removes_chunks(self, storage, client):
        await storage.insert_chunk_for_client(client.id, EmbeddingModel.SMALL, make_chunk(0, unit_vector(1536, 0)))

        assert await storage.delete_client(client.id) is True
        assert await storage.get_client(client.id) is None
        assert await storage.count_chunks_for_client(client.id, EmbeddingModel.SMALL) == 0

    @pytest.mark.asyncio
    async def test_delete_missing_client_is_noop(self, storage):
        assert await storage.delete_client("missing-client") is False


class TestChunks:

    @pytest.mark.asyncio
    async def test_insert_routes_by_model(self, storage):
        small = await storage.create_client("Small", "text-embedding-3-small", "small.com")
        large = await storage.create_client("Large", "text-embedding-3-large", "large.com")

        await storage.insert_chunk_for_client(small.id, EmbeddingModel.SMALL, make_chunk(0, unit_vector(1536, 1)))
        await storage.insert_chunk_for_client(large.id, EmbeddingModel.LARGE, make_chunk(0, unit_vector(3072, 1)))

        small_rows = storage.conn.execute("SELECT COUNT(*) FROM page_chunks_small").fetchone()[0]
        large_rows = storage.conn.execute("SELECT COUNT(*) FROM page_chunks_large").fetchone()[0]
        assert (small_rows, large_rows) == (1, 1)

    @pytest.mark.asyncio
    async def test_wrong_dimension_rejected(self, storage, client):
        with pytest.raises(EmbeddingDimensionError):
            await storage.insert_chunk_for_client(client.id, EmbeddingModel.SMALL, make_chunk(0, [0.1] * 3072))
        assert await storage.count_chunks_for_client(client.id, EmbeddingModel.SMALL) == 0

    @pytest.mark.asyncio
    async def test_insert_for_unknown_client_is_storage_error(self, storage):
        with pytest.raises(StorageWriteError):
            await storage.insert_chunk_for_client("ghost", EmbeddingModel.SMALL, make_chunk(0, unit_vector(1536, 0)))

    @pytest.mark.asyncio
    async def test_reingest_adds_new_rows(self, storage, client):
        chunk = make_chunk(0, unit_vector(1536, 0))
        await storage.insert_chunk_for_client(client.id, EmbeddingModel.SMALL, chunk)
        await storage.insert_chunk_for_client(client.id, EmbeddingModel.SMALL, chunk)
        assert await storage.count_chunks_for_client(client.id, EmbeddingModel.SMALL) == 2


class TestSearch:

    @pytest.mark.asyncio
    async def test_results_ordered_by_score(self, storage, client):
        for index in range(5):
            await storage.insert_chunk_for_client(client.id, EmbeddingModel.SMALL,
                                                  make_chunk(index, unit_vector(1536, index)))

        query = unit_vector(1536, 3)
        results = await storage.search_client_chunks(client.id, EmbeddingModel.SMALL, query, limit=3)

        assert len(results) == 3
        assert results[0].chunk_index == 3
        assert results[0].score == pytest.approx(1.0)
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert all(r.client_id == client.id for r in results)

    @pytest.mark.asyncio
    async def test_search_is_scoped_to_client(self, storage, client):
        other = await storage.create_client("Other", "text-embedding-3-small", "other.com")
        await storage.insert_chunk_for_client(other.id, EmbeddingModel.SMALL, make_chunk(0, unit_vector(1536, 0)))

        results = await storage.search_client_chunks(client.id, EmbeddingModel.SMALL, unit_vector(1536, 0), limit=5)

        assert results == []

    @pytest.mark.asyncio
    async def test_domain_filter(self, storage, client):
        await storage.insert_chunk_for_client(client.id, EmbeddingModel.SMALL,
                                              make_chunk(0, unit_vector(1536, 0)))
        await storage.insert_chunk_for_client(client.id, EmbeddingModel.SMALL,
                                              make_chunk(1, unit_vector(1536, 0), url="file://uploads/a.pdf",
                                                         domain="uploads"))

        results = await storage.search_client_chunks(client.id, EmbeddingModel.SMALL, unit_vector(1536, 0),
                                                     limit=5, domain="uploads")

        assert [r.domain for r in results] == ["uploads"]
        assert results[0].url == "file://uploads/a.pdf"

    @pytest.mark.asyncio
    async def test_zero_limit(self, storage, client):
        await storage.insert_chunk_for_client(client.id, EmbeddingModel.SMALL, make_chunk(0, unit_vector(1536, 0)))
        assert await storage.search_client_chunks(client.id, EmbeddingModel.SMALL, unit_vector(1536, 0), 0) == []

    @pytest.mark.asyncio
    async def test_query_dimension_checked(self, storage, client):
        with pytest.raises(EmbeddingDimensionError):
            await storage.search_client_chunks(client.id, EmbeddingModel.SMALL, [0.1] * 10, limit=3)
