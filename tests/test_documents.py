"""Tests for uploaded document extraction and ingestion."""

import io

import pytest

from config.settings import ChunkingConfig
from indexer.errors import ExtractionError
from indexer.models import EmbeddingModel
from pipelines.documents import DocumentIngestor, extract_text, supported_extensions
from pipelines.ingestion import IngestionPipeline

LONG_TEXT = "\n\n".join(
    f"Section {i}. Warranty claims are handled by the support team within ten working days." for i in range(12)
)


def make_docx(paragraphs, table_rows=()):
    from docx import Document

    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    if table_rows:
        table = document.add_table(rows=len(table_rows), cols=len(table_rows[0]))
        for r, row in enumerate(table_rows):
            for c, value in enumerate(row):
                table.cell(r, c).text = value
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def make_pdf(lines):
    import fitz

    document = fitz.open()
    page = document.new_page()
    for n, line in enumerate(lines):
        page.insert_text((72, 72 + n * 16), line)
    data = document.tobytes()
    document.close()
    return data


class TestExtractText:

    def test_plain_text_and_markdown(self):
        assert extract_text(b"hello world", "notes.txt") == "hello world"
        assert extract_text("# Título".encode("utf-8"), "README.md") == "# Título"

    def test_latin1_fallback(self):
        assert extract_text("café".encode("latin-1"), "menu.txt") == "café"

    def test_docx_paragraphs_and_tables(self):
        data = make_docx(["Return policy", "Items can be returned."], [("Plan", "Price"), ("Pro", "10")])

        text = extract_text(data, "policy.DOCX")

        assert "Return policy" in text
        assert "Items can be returned." in text
        assert "Pro | 10" in text

    def test_pdf_text_layer(self):
        data = make_pdf(["Invoice terms", "Payment due in 30 days"])

        text = extract_text(data, "terms.pdf")

        assert "Invoice terms" in text
        assert "Payment due in 30 days" in text

    def test_unsupported_extension(self):
        with pytest.raises(ExtractionError, match=r"supported: \.docx, \.md, \.pdf, \.txt"):
            extract_text(b"\x89PNG", "diagram.png")
        with pytest.raises(ExtractionError):
            extract_text(b"data", "no_extension")

    def test_corrupt_pdf(self):
        with pytest.raises(ExtractionError):
            extract_text(b"definitely not a pdf", "broken.pdf")

    def test_supported_extensions(self):
        assert supported_extensions() == [".docx", ".md", ".pdf", ".txt"]


class TestDocumentIngestor:

    @pytest.fixture
    def ingestor(self, storage, fake_embeddings):
        pipeline = IngestionPipeline(storage, fake_embeddings, ChunkingConfig(chunk_size_tokens=100, chunk_overlap_tokens=10))
        return DocumentIngestor(pipeline, min_chars=200)

    @pytest.mark.asyncio
    async def test_document_is_chunked_and_stored(self, ingestor, storage, client):
        result = await ingestor.ingest_document(LONG_TEXT.encode(), "warranty guide.txt", client)

        assert result.status == "ok"
        assert result.domain == "example.com"
        assert result.chunks_created > 0
        assert result.chunks_stored == result.chunks_created

        rows = storage.conn.execute("SELECT DISTINCT url, domain FROM page_chunks_small").fetchall()
        assert [(r["url"], r["domain"]) for r in rows] == [("file://example.com/warranty%20guide.txt", "example.com")]

        body = result.to_dict()
        assert body["fileName"] == "warranty guide.txt"
        assert body["chunksStored"] == result.chunks_stored

    @pytest.mark.asyncio
    async def test_explicit_domain(self, ingestor, storage, client):
        result = await ingestor.ingest_document(LONG_TEXT.encode(), "guide.md", client, domain="handbook")

        assert result.domain == "handbook"
        results = await storage.search_client_chunks(client.id, EmbeddingModel.SMALL, [0.0] * 1536, 10, domain="handbook")
        assert results and all(r.url == "file://handbook/guide.md" for r in results)

    @pytest.mark.asyncio
    async def test_short_document_skipped(self, ingestor, client, fake_embeddings):
        result = await ingestor.ingest_document(b"Too short to index.", "memo.txt", client)

        assert result.status == "skipped"
        assert "too short" in result.reason
        assert result.to_dict() == {"status": "skipped", "reason": result.reason}
        assert fake_embeddings.calls == []

    @pytest.mark.asyncio
    async def test_extraction_error_stores_nothing(self, ingestor, storage, client):
        with pytest.raises(ExtractionError):
            await ingestor.ingest_document(b"not a pdf", "broken.pdf", client)

        assert await storage.count_chunks_for_client(client.id, EmbeddingModel.SMALL) == 0
