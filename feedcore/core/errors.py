"""Client-level exception types and the request failure taxonomy.

Exceptions are reserved for misconfiguration and storage backend failures.
Ordinary request failures are reported as results carrying an ``ErrorKind``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, NotRequired, TypedDict


class ErrorKind(str, Enum):
    """Classification of a failed request or auth operation."""

    VALIDATION = "validation_error"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK = "network_error"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NO_SESSION = "no_session"
    NOT_FOUND = "not_found"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS

    @property
    def rejects_credential(self) -> bool:
        return self in (ErrorKind.UNAUTHORIZED, ErrorKind.FORBIDDEN)


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.TIMEOUT, ErrorKind.NETWORK, ErrorKind.SERVER_ERROR, ErrorKind.RATE_LIMITED}
)


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and callers."""

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: float
    field: str
    backend: str
    storage_key: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for client failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when an auth operation is called without its preconditions."""


class StorageAppError(AppError):
    """Raised when the secure storage backend cannot read or write."""
