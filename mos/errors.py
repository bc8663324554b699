"""Error taxonomy shared by the store, graph, search and sync layers.

Point lookups return None for missing rows; NotFoundError is reserved for
operations that cannot proceed without the row.
"""


class MosError(Exception):
    """Base class for all errors raised by this package."""


class StoreError(MosError):
    """The underlying store rejected or failed an operation."""


class UniqueViolationError(StoreError):
    """A plain insert collided with a unique constraint."""


class ValidationError(StoreError):
    """A record violates an enumeration or cross-field invariant."""


class NotFoundError(MosError):
    """A row required by the operation does not exist."""


class ProviderError(MosError):
    """An external embedding or chat provider failed."""


class EmbeddingError(ProviderError):
    """The embedding provider is unconfigured or returned no vector."""


class CompletionError(ProviderError):
    """The chat provider call failed."""


class EmptyCompletionError(CompletionError):
    """The chat provider answered but returned no usable text."""
