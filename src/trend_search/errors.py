"""Exceptions raised by the trend search service."""


class TrendSearchError(Exception):
    """Base class for all service errors."""


class BlobStoreError(TrendSearchError):
    """A blob store request failed."""


class DocumentConflictError(TrendSearchError):
    """The stored document advanced since it was loaded. Safe to retry."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Trends document changed concurrently (loaded revision {expected}, stored revision {actual})"
        )


class EmbeddingProviderError(TrendSearchError):
    """The embedding provider failed or returned an unusable response."""


class NoTopicsScrapedError(TrendSearchError):
    """No source produced any topics."""
