"""
Shared error types for GraphGate services.
"""

from typing import Optional, Sequence


class GraphGateError(Exception):
    """Base class for errors reported as typed tool failures."""

    kind = "error"


class ValidationIssue(GraphGateError, ValueError):
    kind = "validation_error"

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


ValidationError = ValidationIssue


class ConflictError(GraphGateError):
    """Raised when an entity name already exists for the owner."""

    kind = "conflict"

    def __init__(self, message: str, names: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.names = list(names or [])


class NotFoundError(GraphGateError):
    kind = "not_found"

    def __init__(self, message: str, names: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.names = list(names or [])


class StorageError(GraphGateError):
    """Raised when the underlying store is unavailable or rejects a write."""

    kind = "storage_error"


class AuthError(GraphGateError):
    """Credential missing, invalid, expired, or bound to an inactive account."""

    kind = "auth_error"

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


class PermissionDenied(GraphGateError):
    kind = "permission_denied"

    def __init__(self, message: str, tool: Optional[str] = None):
        super().__init__(message)
        self.tool = tool


class RateLimitExceeded(PermissionDenied):
    kind = "rate_limit_exceeded"

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        window: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
    ):
        super().__init__(message, tool=tool)
        self.window = window
        self.retry_after_seconds = retry_after_seconds
