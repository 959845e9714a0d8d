"""
shared/errors.py
Failure kinds raised by the core services.

Services raise ServiceError; only the exception handler in main.py
turns a kind into an HTTP status, so the mapping lives in one table.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import status


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    VENDOR_PROFILE_MISSING = "VENDOR_PROFILE_MISSING"
    VENDOR_INACTIVE = "VENDOR_INACTIVE"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INTERNAL = "INTERNAL"


HTTP_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.ACCOUNT_LOCKED: status.HTTP_423_LOCKED,
    ErrorKind.VENDOR_PROFILE_MISSING: status.HTTP_403_FORBIDDEN,
    ErrorKind.VENDOR_INACTIVE: status.HTTP_403_FORBIDDEN,
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_TRANSITION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ServiceError(Exception):
    """A failure the caller can act on. `details` is merged into the response body."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.kind.value, **self.details}

    def __repr__(self) -> str:
        return f"<ServiceError {self.kind.value}: {self.message}>"
