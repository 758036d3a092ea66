"""Domain types shared by the ingestion and search paths."""

import hashlib
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class EmbeddingModel(str, Enum):
    """Supported embedding models.

    Each model fixes the vector width and the chunk table it is stored in.
    """
    SMALL = "text-embedding-3-small"
    LARGE = "text-embedding-3-large"

    @property
    def dimensions(self) -> int:
        if self is EmbeddingModel.SMALL:
            return 1536
        if self is EmbeddingModel.LARGE:
            return 3072
        raise ValueError(f"Unsupported embedding model: {self.value}")

    @property
    def table_name(self) -> str:
        if self is EmbeddingModel.SMALL:
            return "page_chunks_small"
        if self is EmbeddingModel.LARGE:
            return "page_chunks_large"
        raise ValueError(f"Unsupported embedding model: {self.value}")

    @classmethod
    def parse(cls, value: Optional[str]) -> "EmbeddingModel":
        """Map a raw model name to a member; anything unknown falls back to SMALL."""
        if isinstance(value, EmbeddingModel):
            return value
        if value == cls.LARGE.value:
            return cls.LARGE
        return cls.SMALL

    @classmethod
    def from_stored(cls, value: str) -> "EmbeddingModel":
        """Strict lookup for values read back from storage."""
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValueError(f"Unsupported embedding_model '{value}'. Allowed values: {allowed}")


@dataclass
class Client:
    """A tenant owning crawled and uploaded knowledge."""
    id: str
    name: str
    embedding_model: EmbeddingModel
    main_domain: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "embeddingModel": self.embedding_model.value,
            "mainDomain": self.main_domain,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class ParsedPage:
    """Result of fetching and parsing one URL. Never persisted."""
    url: str
    domain: str
    title: Optional[str]
    raw_html: str
    raw_text: str
    cleaned_text: str


@dataclass
class TextChunk:
    url: str
    domain: str
    chunk_index: int
    text: str
    chunk_hash: str = ""

    def __post_init__(self):
        if not self.chunk_hash:
            self.chunk_hash = hashlib.sha256(self.text.encode("utf-8")).hexdigest()


@dataclass
class ChunkWithEmbedding(TextChunk):
    embedding: List[float] = field(default_factory=list)

    @classmethod
    def from_chunk(cls, chunk: TextChunk, embedding: List[float]) -> "ChunkWithEmbedding":
        return cls(
            url=chunk.url,
            domain=chunk.domain,
            chunk_index=chunk.chunk_index,
            text=chunk.text,
            chunk_hash=chunk.chunk_hash,
            embedding=list(embedding),
        )


@dataclass
class SearchResult:
    """One ranked chunk returned by a similarity query. Higher score = closer."""
    id: str
    client_id: str
    domain: str
    url: str
    chunk_index: int
    text: str
    score: float
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "domain": self.domain,
            "url": self.url,
            "chunkIndex": self.chunk_index,
            "text": self.text,
            "score": self.score,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class IngestResult:
    """Counts reported by one ingestion call.

    ``chunks_stored`` counts insert attempts that did not raise.
    """
    chunks_created: int = 0
    chunks_stored: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)
