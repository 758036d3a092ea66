"""Error taxonomy for the knowledge crawler.

Configuration-class errors stop the unit of work that raised them before any
work is done. Chunk- and page-local errors are contained by the caller and
reported through counters.
"""

from typing import Optional


class KnowledgeError(Exception):
    """Base class for all knowledge crawler errors."""
    pass


class ConfigurationError(KnowledgeError):
    """Missing or invalid configuration (client fields, env vars, chunk sizes)."""
    pass


class DuplicateDomainError(KnowledgeError):
    """Raised when a client's main domain already belongs to another client."""

    def __init__(self, domain: str):
        super().__init__(f"mainDomain already exists for another client: {domain}")
        self.domain = domain


class ExtractionError(KnowledgeError):
    """Uploaded document is unsupported or cannot be read."""
    pass


class EmbeddingDimensionError(KnowledgeError):
    """Vector length does not match the model's declared dimensionality.

    Never retried: storing such a vector would corrupt the index.
    """

    def __init__(self, model: str, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch for model '{model}': got {actual}, expected {expected}"
        )
        self.model = model
        self.expected = expected
        self.actual = actual


class EmbeddingProviderError(KnowledgeError):
    """The embedding provider returned a response that cannot be used."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageWriteError(KnowledgeError):
    """A single chunk insert failed."""
    pass


class PageFetchError(KnowledgeError):
    """A page could not be fetched or rendered."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
