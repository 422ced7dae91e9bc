"""Exception hierarchy shared by coderag services."""

from __future__ import annotations


class CodeRagError(Exception):
    """Base class for errors raised by coderag."""


class ValidationError(CodeRagError):
    """Input rejected before any work was done. Never retried."""


class EmptyContentError(ValidationError):
    pass


class TooShortError(ValidationError):
    pass


class InvalidSearchRequestError(ValidationError):
    pass


class NotFoundError(CodeRagError):
    pass


class SessionNotFoundError(NotFoundError):
    pass


class ChunkNotFoundError(NotFoundError):
    pass


class JobNotFoundError(NotFoundError):
    pass


class AlreadyQueuedError(CodeRagError):
    """A pending or processing job already exists for the repository."""

    def __init__(self, repository_id: str):
        super().__init__(f"repository {repository_id} is already queued for embedding")
        self.repository_id = repository_id


class EmbeddingError(CodeRagError):
    pass


class ProviderError(EmbeddingError):
    """Embedding provider call failed after retries."""


class EmbeddingCountMismatchError(EmbeddingError):
    def __init__(self, expected: int, got: int):
        super().__init__(f"embedding count mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class LexicalIndexMissingError(CodeRagError):
    pass


class CollectionMissingError(CodeRagError):
    pass


class LLMError(CodeRagError):
    pass


class RequestTimeoutError(CodeRagError):
    pass


class StorageError(CodeRagError):
    pass


class OperationCancelledError(CodeRagError):
    pass
