"""Error taxonomy shared by the finance services.

Every error raised by the service layer derives from :class:`FinanceError`
and carries the HTTP status the blueprints answer with.
"""

from __future__ import annotations

from typing import Dict, Optional


class FinanceError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, object]:
        return {"msg": self.message}


class FinanceValidationError(FinanceError):
    """Raised when the payload provided by the caller is invalid."""

    status_code = 400

    def __init__(self, errors: Dict[str, str], message: str = "Validation error"):
        super().__init__(message)
        self.errors = errors

    def to_dict(self) -> dict[str, object]:
        return {"msg": self.message, "errors": dict(self.errors)}


class FinancePermissionError(FinanceError):
    """The acting role may not perform the requested operation."""

    status_code = 403


class InvalidStateError(FinanceError):
    """The transition is not legal from the entity's current status."""

    status_code = 409


class InvariantViolation(FinanceError):
    """A computed invariant such as ``paid <= total`` would be broken."""

    status_code = 422


class NotFoundError(FinanceError):
    status_code = 404


def amount_exceeds(field: str, limit_label: str) -> FinanceValidationError:
    return FinanceValidationError(
        {field: f"Amount exceeds {limit_label}."},
        message=f"amount exceeds {limit_label}",
    )
