# Domain error taxonomy shared by the core modules and the API layer.
# Core code raises these; main.py renders them as JSON with the matching status code.
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import status


class DomainError(Exception):
    """Base class for errors the transport layer maps to an HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "code": self.code}
        body.update(self.details)
        return body

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, details={self.details!r})"


class NotFound(DomainError):
    """Referenced entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Forbidden(DomainError):
    """Principal is outside the scope that may see or mutate the record."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class Conflict(DomainError):
    """Room unavailable, duplicate identity, or a disallowed status transition."""

    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class ValidationError(DomainError):
    """Missing required field or input that lenient parsing cannot recover."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class InternalError(DomainError):
    """Storage or transport failure."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal_error"


class TooManyRequests(DomainError):
    """Caller exceeded the request budget for an endpoint group."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "rate_limited"
