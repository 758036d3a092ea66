"""Uploaded document ingestion.

Extracts text from PDF, DOCX and plain-text uploads and feeds it through the
same ingestion pipeline as crawled pages.
"""

import io
import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Dict, Optional
from urllib.parse import quote

from indexer.errors import ExtractionError
from indexer.models import Client
from .ingestion import IngestionPipeline
from .parser import clean_text

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_DOMAIN = "uploaded-docs"


def _extract_pdf(data: bytes) -> str:
    """Extract text from PDF using PyMuPDF."""
    import fitz  # PyMuPDF

    pages = []
    with fitz.open(stream=data, filetype="pdf") as doc:
        for page_num, page in enumerate(doc):
            text = page.get_text("text")
            if text.strip():
                pages.append(text)
            else:
                logger.debug(f"Page {page_num + 1} has no text layer")
    return "\n\n".join(pages)


def _extract_docx(data: bytes) -> str:
    """Extract text from DOCX using python-docx."""
    from docx import Document

    doc = Document(io.BytesIO(data))
    parts = [para.text for para in doc.paragraphs if para.text.strip()]

    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" | ".join(cells))

    return "\n\n".join(parts)


def _extract_plain(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


_HANDLERS = {
    ".pdf": _extract_pdf,
    ".docx": _extract_docx,
    ".txt": _extract_plain,
    ".md": _extract_plain,
}


def supported_extensions():
    return sorted(_HANDLERS)


def extract_text(data: bytes, filename: str) -> str:
    """Extract raw text from an uploaded file.

    Raises:
        ExtractionError: unsupported extension or unreadable file
    """
    ext = PurePosixPath(filename or "").suffix.lower()
    handler = _HANDLERS.get(ext)
    if handler is None:
        raise ExtractionError(
            f"Unsupported file extension: {ext or '(none)'} "
            f"(supported: {', '.join(supported_extensions())})"
        )

    try:
        text = handler(data)
    except Exception as e:
        logger.error(f"Failed to extract text from {filename}: {e}")
        raise ExtractionError(f"Could not extract text from {filename}: {e}") from e

    logger.info(f"Extracted {len(text)} characters from {filename}")
    return text or ""


@dataclass
class DocumentIngestResult:
    status: str
    file_name: str
    domain: str
    reason: Optional[str] = None
    chunks_created: int = 0
    chunks_stored: int = 0

    def to_dict(self) -> Dict[str, Any]:
        if self.status == "skipped":
            return {"status": self.status, "reason": self.reason}
        return {
            "status": self.status,
            "message": "Document processed",
            "fileName": self.file_name,
            "domain": self.domain,
            "chunksCreated": self.chunks_created,
            "chunksStored": self.chunks_stored,
        }


class DocumentIngestor:
    """Turns an uploaded file into stored chunks for a client."""

    def __init__(self, pipeline: IngestionPipeline, min_chars: int = 500):
        self.pipeline = pipeline
        self.min_chars = min_chars

    async def ingest_document(self, data: bytes, filename: str, client: Client,
                              domain: Optional[str] = None) -> DocumentIngestResult:
        """Extract, clean and ingest one document.

        Args:
            data: Raw file bytes
            filename: Original file name; its extension selects the extractor
            client: Owning client
            domain: Logical domain for the chunks; defaults to the client's main domain

        Returns:
            DocumentIngestResult with status "ok" or "skipped"
        """
        source_domain = domain or client.main_domain or DEFAULT_UPLOAD_DOMAIN
        source_url = f"file://{source_domain}/{quote(filename, safe='')}"

        cleaned = clean_text(extract_text(data, filename))

        if len(cleaned) < self.min_chars:
            reason = f"Document text too short ({len(cleaned)} chars, min={self.min_chars})"
            logger.info(f"Skipping upload {filename} for client {client.id}: {reason}")
            return DocumentIngestResult(status="skipped", file_name=filename,
                                        domain=source_domain, reason=reason)

        result = await self.pipeline.ingest(cleaned, source_url, source_domain, client)
        if result.chunks_created == 0:
            return DocumentIngestResult(status="skipped", file_name=filename, domain=source_domain,
                                        reason="No chunks produced from document")

        return DocumentIngestResult(
            status="ok",
            file_name=filename,
            domain=source_domain,
            chunks_created=result.chunks_created,
            chunks_stored=result.chunks_stored,
        )
