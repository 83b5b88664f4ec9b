"""Application error taxonomy.

Every failure that crosses a service boundary is a ``CanonError`` carrying a
machine-readable ``code`` and a short message that is safe to show to users.
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

ErrorCode = Literal[
    "unauthenticated",
    "unauthorized",
    "not_found",
    "validation",
    "conflict",
    "limit",
    "configuration",
    "api",
    "not_allowed",
    "rate_limited",
]


class CanonError(Exception):
    """Base class for all application errors."""

    code: ErrorCode = "api"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in (details or {}).items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        """Return ``{code, message, details?}`` with empty details dropped."""
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = dict(self.details)
        return data

    def user_message(self) -> str:
        """Short normalized text for display; never includes internals."""
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class AuthenticationError(CanonError):
    code: ErrorCode = "unauthenticated"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AuthorizationError(CanonError):
    code: ErrorCode = "unauthorized"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class NotFoundError(CanonError):
    code: ErrorCode = "not_found"

    def __init__(self, resource: str, resource_id: str | None = None, message: str | None = None):
        super().__init__(
            message or f"{resource.capitalize()} not found",
            {"resource": resource, "id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class ValidationError(CanonError):
    code: ErrorCode = "validation"

    def __init__(self, field: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"field": field, **(details or {})})
        self.field = field


class ConflictError(CanonError):
    code: ErrorCode = "conflict"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, {"field": field})


class LimitError(CanonError):
    code: ErrorCode = "limit"

    def __init__(self, resource: str, limit: int, message: str) -> None:
        super().__init__(message, {"resource": resource, "limit": limit})


class RateLimitError(CanonError):
    code: ErrorCode = "rate_limited"


class ConfigurationError(CanonError):
    code: ErrorCode = "configuration"

    def __init__(self, key: str, message: str) -> None:
        super().__init__(message, {"key": key})
        self.key = key


class ApiError(CanonError):
    code: ErrorCode = "api"

    def __init__(
        self, status_code: int, message: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(message, {"status_code": status_code, **(details or {})})
        self.status_code = status_code

    def user_message(self) -> str:
        return "The language model request failed. Please try again."


class NotAllowedError(CanonError):
    code: ErrorCode = "not_allowed"

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message, {"reason": reason})


class ExtractionParseError(ValidationError):
    """Model output that does not match the extraction schema."""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("extraction", f"Could not parse extraction response: {reason}", details)
        self.reason = reason
