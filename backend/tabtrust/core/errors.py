"""
Service error type shared by every component.

Errors are a single exception carrying an ErrorKind tag; callers and the
HTTP layer dispatch on ``error.kind`` instead of on subclasses.
"""
import enum
from typing import Any, Dict, Optional


class ErrorKind(str, enum.Enum):
    """Error kind enumeration."""
    VALIDATION = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    INTERNAL = "INTERNAL_SERVER_ERROR"


STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INTERNAL: 500,
}


class ServiceError(Exception):
    """Error raised by services, tagged with its kind."""

    def __init__(self, kind: ErrorKind, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def __repr__(self) -> str:
        return f"ServiceError({self.kind.value}, {self.message!r})"


def validation_error(message: str, **details: Any) -> ServiceError:
    """Caller-correctable error (bad shares, already settled, OTP mismatch...)."""
    return ServiceError(ErrorKind.VALIDATION, message, details)


def not_found(resource: str, **details: Any) -> ServiceError:
    """Tab, participant, user or transaction absent."""
    return ServiceError(ErrorKind.NOT_FOUND, f"{resource} not found", details)


def forbidden(message: str = "Forbidden", **details: Any) -> ServiceError:
    """Caller is not allowed to perform the action."""
    return ServiceError(ErrorKind.FORBIDDEN, message, details)


def internal_error(message: str = "Internal server error", **details: Any) -> ServiceError:
    """Store or adapter failure not attributable to caller input."""
    return ServiceError(ErrorKind.INTERNAL, message, details)
