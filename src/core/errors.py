"""
Error taxonomy shared by the storage gateway and account provisioning.

Every error carries a machine-readable code and the HTTP status the API
layer renders it with. The core never imports FastAPI; the mapping to a
response happens in one exception handler in main.py.

Terminal, side-effect-free errors:
- ValidationError, ConflictError, RangeError, AuthError, NotFoundError

Errors that may follow compensating rollback:
- StorageError, ConsistencyError, InternalError
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class FieldError:
    """A single field-scoped violation, e.g. ("username", "USERNAME_EXISTS")."""
    field: str
    code: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "code": self.code, "message": self.message}


class BuskerError(Exception):
    """Base class for all application errors."""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        # Outcomes of any compensating actions run before this was raised
        self.compensations: list = []

    def to_payload(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(BuskerError):
    """One or more request fields are invalid. Carries every violation."""

    status_code = 422
    default_code = "VALIDATION_FAILED"

    def __init__(self, errors: list[FieldError], message: str = "Validation failed") -> None:
        super().__init__(message)
        self.errors = list(errors)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["errors"] = [error.as_dict() for error in self.errors]
        return payload


class ConflictError(ValidationError):
    """
    A uniqueness rule was violated (username, email, idempotency key).

    Rendered like a validation failure so clients can show it next to the
    offending field.
    """

    def __init__(self, error: FieldError) -> None:
        super().__init__([error], message=error.message)
        self.code = error.code


class NotFoundError(BuskerError):
    """Unknown object, or a path outside the object namespace."""

    status_code = 404
    default_code = "NOT_FOUND"


class RangeError(BuskerError):
    """Malformed or unsatisfiable byte range."""

    status_code = 416
    default_code = "RANGE_NOT_SATISFIABLE"

    def __init__(self, message: str, size: int) -> None:
        super().__init__(message)
        self.size = size


class AuthError(BuskerError):
    """Missing or invalid credential, or not allowed to touch the resource."""

    status_code = 401
    default_code = "UNAUTHORIZED"


class StorageError(BuskerError):
    """Backend I/O failure while reading, writing or signing."""

    default_code = "STORAGE_ERROR"


class ConsistencyError(BuskerError):
    """Post-commit verification found the account pair missing or mismatched."""

    default_code = "VERIFICATION_FAILED"


class InternalError(BuskerError):
    """Unexpected or unclassified failure."""
