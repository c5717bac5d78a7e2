# src/mindcore/exceptions.py
"""
Custom exceptions for the MindCore library.

This module defines the error taxonomy used across the ingestion pipeline.
Every failure that originates from the memory backend (or from the network
path to it) is raised as a subclass of :class:`BackendError`, which carries
an :class:`ErrorKind`, a ``retryable`` flag, the HTTP status (when there is
one) and an optional ``retry_after_ms`` hint. The retry policy and the
degradation controller only ever look at those attributes.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of backend failures."""

    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


class MindCoreError(Exception):
    """Base class for all MindCore specific errors."""
    def __init__(self, message: str = "An unspecified error occurred in MindCore."):
        super().__init__(message)


class ConfigError(MindCoreError):
    """Raised for errors related to configuration loading or validation."""
    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)


class SessionStateError(MindCoreError):
    """Raised when a session lifecycle call is made in the wrong state."""
    def __init__(self, message: str = "Invalid session state."):
        super().__init__(message)


class RequiresConnectionError(MindCoreError):
    """Raised when an operation with no offline equivalent is called while degraded."""
    def __init__(self, operation: str = "operation", message: Optional[str] = None):
        self.operation = operation
        super().__init__(
            message or f"'{operation}' requires a connection to the memory backend (currently degraded)."
        )


class StorageError(MindCoreError):
    """Base class for errors related to local storage operations."""
    def __init__(self, message: str = "Storage error."):
        super().__init__(message)


class OfflineStorageError(StorageError):
    """Raised for errors specific to the offline queue database."""
    def __init__(self, message: str = "Offline storage error."):
        super().__init__(message)


# =============================================================================
# Backend errors
# =============================================================================


class BackendError(MindCoreError):
    """
    Base class for failures talking to the memory backend.

    Attributes:
        kind: The :class:`ErrorKind` classification.
        retryable: Whether the backoff policy may retry the call.
        status_code: HTTP status code, if the failure carried one.
        retry_after_ms: Server-provided wait hint (rate limiting only).
    """

    default_kind = ErrorKind.UNKNOWN
    default_retryable = False

    def __init__(
        self,
        message: str = "Memory backend error.",
        *,
        kind: Optional[ErrorKind] = None,
        retryable: Optional[bool] = None,
        status_code: Optional[int] = None,
        retry_after_ms: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.kind = kind or self.default_kind
        self.retryable = self.default_retryable if retryable is None else retryable
        self.status_code = status_code
        self.retry_after_ms = retry_after_ms
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "kind": self.kind.value,
            "message": str(self),
            "retryable": self.retryable,
            "status_code": self.status_code,
            "retry_after_ms": self.retry_after_ms,
        }


class UnavailableError(BackendError):
    """Backend unreachable (connection refused, DNS failure, network error)."""
    default_kind = ErrorKind.UNAVAILABLE
    default_retryable = True

    def __init__(self, message: str = "Memory backend is unavailable.", **kwargs):
        super().__init__(message, **kwargs)


class BackendTimeoutError(BackendError):
    """A request exceeded its per-operation timeout."""
    default_kind = ErrorKind.TIMEOUT
    default_retryable = True

    def __init__(self, message: str = "Request to memory backend timed out.", **kwargs):
        super().__init__(message, **kwargs)


class NotFoundError(BackendError):
    """The requested resource does not exist."""
    default_kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "Resource not found.", **kwargs):
        super().__init__(message, **kwargs)


class BankNotFoundError(NotFoundError):
    """The memory bank for this project has not been created yet."""
    def __init__(self, bank_id: str = "", message: Optional[str] = None, **kwargs):
        self.bank_id = bank_id
        super().__init__(message or f"Memory bank not found: '{bank_id}'", **kwargs)


class ValidationError(BackendError):
    """The backend rejected the request as malformed or unauthorized."""
    default_kind = ErrorKind.VALIDATION

    def __init__(self, message: str = "Request rejected by memory backend.", **kwargs):
        super().__init__(message, **kwargs)


class InvalidDispositionError(ValidationError):
    """A disposition trait was outside the 1-5 integer range."""
    def __init__(self, message: str = "Invalid disposition.", **kwargs):
        super().__init__(message, **kwargs)


class RateLimitedError(BackendError):
    """HTTP 429; ``retry_after_ms`` carries the server hint when present."""
    default_kind = ErrorKind.RATE_LIMITED
    default_retryable = True

    def __init__(self, message: str = "Rate limited by memory backend.", **kwargs):
        super().__init__(message, **kwargs)


class ServerError(BackendError):
    """HTTP 5xx from the backend."""
    default_kind = ErrorKind.SERVER_ERROR
    default_retryable = True

    def __init__(self, message: str = "Memory backend server error.", **kwargs):
        super().__init__(message, **kwargs)


class UnknownBackendError(BackendError):
    """Any failure that fits no other kind. Never retried."""

    def __init__(self, message: str = "Unknown memory backend error.", **kwargs):
        super().__init__(message, **kwargs)
