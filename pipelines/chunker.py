"""Paragraph-packing text chunker.

Paragraphs (blocks separated by blank lines) are packed into chunks up to a
token budget; consecutive chunks share an overlap so context is not lost at
the boundary. A paragraph larger than the budget is cut with a sliding
window.
"""

import logging
import re
from typing import List, Optional

from config.settings import ChunkingConfig
from indexer.errors import ConfigurationError
from indexer.models import TextChunk

logger = logging.getLogger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"


class TextChunker:
    """Chunks cleaned page text into overlapping TextChunks."""

    def __init__(self, chunk_size_tokens: int = 900, chunk_overlap_tokens: int = 150):
        """Initialize chunker.

        Args:
            chunk_size_tokens: Target size for each chunk in tokens
            chunk_overlap_tokens: Tokens shared between consecutive chunks
        """
        if chunk_size_tokens <= 0:
            raise ConfigurationError("chunk_size_tokens must be positive")
        if chunk_overlap_tokens < 0:
            raise ConfigurationError("chunk_overlap_tokens must not be negative")
        if chunk_overlap_tokens >= chunk_size_tokens:
            raise ConfigurationError(
                f"chunk_overlap_tokens ({chunk_overlap_tokens}) must be smaller than "
                f"chunk_size_tokens ({chunk_size_tokens})"
            )
        self.chunk_size_tokens = chunk_size_tokens
        self.chunk_overlap_tokens = chunk_overlap_tokens
        # Simple token estimation: ~4 chars per token for English
        self.chars_per_token = 4

    @classmethod
    def from_config(cls, config: ChunkingConfig) -> 'TextChunker':
        return cls(config.chunk_size_tokens, config.chunk_overlap_tokens)

    @property
    def chunk_size(self) -> int:
        """Chunk budget in characters."""
        return self.chunk_size_tokens * self.chars_per_token

    @property
    def chunk_overlap(self) -> int:
        """Overlap in characters."""
        return self.chunk_overlap_tokens * self.chars_per_token

    def _estimate_tokens(self, text: str) -> int:
        return len(text) // self.chars_per_token

    def _split_paragraphs(self, text: str) -> List[str]:
        paragraphs = re.split(r'\n\s*\n', text)
        return [p.strip() for p in paragraphs if p.strip()]

    def _tail(self, text: str, room: Optional[int] = None) -> str:
        size = self.chunk_overlap if room is None else min(self.chunk_overlap, room)
        if size <= 0:
            return ""
        return text[-size:]

    def chunk(self, text: str, url: str, domain: str) -> List[TextChunk]:
        """Split text into chunks with consecutive indexes starting at 0."""
        if not text or not text.strip():
            return []

        paragraphs = self._split_paragraphs(text)
        chunks: List[TextChunk] = []

        current = ""
        # True while ``current`` holds nothing but overlap carried from the last chunk
        only_overlap = False

        def flush() -> Optional[str]:
            nonlocal current, only_overlap
            body = current.strip()
            current = ""
            only_overlap = False
            if not body:
                return None
            chunks.append(TextChunk(url=url, domain=domain, chunk_index=len(chunks), text=body))
            return body

        for para in paragraphs:
            if len(para) > self.chunk_size:
                if not only_overlap:
                    flush()
                current = ""

                step = self.chunk_size - self.chunk_overlap
                start = 0
                while start < len(para):
                    end = min(start + self.chunk_size, len(para))
                    current = para[start:end]
                    flushed = flush()
                    if end == len(para):
                        current = self._tail(flushed or "")
                        only_overlap = bool(current)
                        break
                    start += step
                continue

            separator = PARAGRAPH_SEPARATOR if current else ""
            if len(current) + len(separator) + len(para) > self.chunk_size:
                flushed = flush() if not only_overlap else None
                # Carried overlap plus the next paragraph must still fit the budget
                room = self.chunk_size - len(para) - len(PARAGRAPH_SEPARATOR)
                current = self._tail(flushed, room) if flushed else ""
                separator = PARAGRAPH_SEPARATOR if current else ""

            current = f"{current}{separator}{para}"
            only_overlap = False

        if not only_overlap:
            flush()

        logger.debug(
            f"Chunked {url}: {len(text)} chars into {len(chunks)} chunks "
            f"(~{sum(self._estimate_tokens(c.text) for c in chunks)} tokens)"
        )
        return chunks


def chunk_text(text: str, url: str, domain: str, config: Optional[ChunkingConfig] = None) -> List[TextChunk]:
    """Convenience function to chunk text with a chunking config."""
    chunker = TextChunker.from_config(config or ChunkingConfig())
    return chunker.chunk(text, url, domain)
