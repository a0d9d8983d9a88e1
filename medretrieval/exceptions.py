"""
Error taxonomy for retrieval, indexing and search.

Each class also derives from the builtin that callers already handle
(ValueError, PermissionError, RuntimeError), so the HTTP layer can map
them to status codes without knowing every subclass.
"""


class RetrievalError(Exception):
    """Base class for all errors raised by this package"""

    error_type = "internal_error"


class QueryValidationError(RetrievalError, ValueError):
    """Empty query/topic or a malformed filter parameter"""

    error_type = "validation_error"


class AuthorizationError(RetrievalError, PermissionError):
    """Missing, invalid or expired bearer credential"""

    error_type = "authorization_error"


class EmbeddingError(RetrievalError, RuntimeError):
    """The embedding backend failed; fatal for the current call"""

    error_type = "embedding_error"


class VectorStoreError(RetrievalError, RuntimeError):
    """The vector index rejected an operation"""

    error_type = "vector_store_error"


class RecordStoreError(RetrievalError, RuntimeError):
    """Tenant records could not be read"""

    error_type = "record_store_error"


class SourceTimeoutError(RetrievalError, TimeoutError):
    """An external source did not answer within its time budget"""

    error_type = "source_timeout"
