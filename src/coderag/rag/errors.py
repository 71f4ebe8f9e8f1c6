"""Exception types raised by the indexing engine."""

from __future__ import annotations

from collections.abc import Iterable


class RagError(Exception):
    """Base class for indexing and retrieval errors."""


class EmbeddingProviderError(RagError):
    """The embedding provider failed (network, auth, rate limit, bad output).

    ``paths`` lists the files whose chunks were in the failed request.
    """

    def __init__(self, message: str, paths: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.paths = sorted(set(paths))


class SchemaDriftError(RagError):
    """The embedding table no longer matches the expected version or dimension."""


class StorageError(RagError):
    """Reading or writing the manifest store or vector store failed."""


class DimensionMismatchError(RagError, ValueError):
    """A vector does not have the index's embedding dimension."""

    def __init__(self, actual: int, expected: int) -> None:
        super().__init__(
            f"Embedding has {actual} dimensions, but {expected} dimensions are required."
        )
        self.actual = actual
        self.expected = expected
