from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar


class ShufflerError(RuntimeError):
    """Base for every error the exchange core reports to its callers."""

    kind = "error"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class ValidationError(ShufflerError):
    """A precondition the user can fix (too few participants, open questionnaires)."""

    kind = "validation_error"
    http_status = 422


class StateConflictError(ShufflerError):
    """The operation is not legal for the exchange's current status."""

    kind = "state_conflict"
    http_status = 409


class InvariantViolation(ShufflerError):
    """
    The generator produced an assignment the validator rejected.

    This is a defect, never bad input. The message shown to callers stays
    generic; the detailed reason goes to the operator log.
    """

    kind = "invariant_violation"
    http_status = 500

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.detail = detail


class ExternalServiceError(ShufflerError):
    kind = "external_service_error"
    http_status = 502


class NotFoundError(ShufflerError):
    kind = "not_found"
    http_status = 404


T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: ShufflerError

    @property
    def ok(self) -> bool:
        return False
