"""
yogarag/errors.py - Error family for the assistant
===================================================

Every failure the core raises derives from YogaRagError so the HTTP layer
(and any other caller) can tell them apart and map them to responses.
"""


class YogaRagError(Exception):
    """Base class for all assistant errors."""


class ConfigurationError(YogaRagError):
    """Missing credentials or required inputs."""


class InvalidQueryError(YogaRagError):
    """Query text is missing or empty."""


class DocumentError(YogaRagError):
    """A corpus document or phrase list is missing fields or malformed."""


class SnapshotError(YogaRagError):
    """A snapshot file exists but cannot be parsed."""


class DimensionMismatchError(YogaRagError):
    """Two embeddings that must share a dimension do not."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )


class EmbeddingError(YogaRagError):
    """The embedding service failed."""


class EmbeddingTimeoutError(EmbeddingError):
    """The embedding service did not answer in time."""


class CompletionError(YogaRagError):
    """The completion service failed."""


class CompletionTimeoutError(CompletionError):
    """The completion service did not answer in time."""
