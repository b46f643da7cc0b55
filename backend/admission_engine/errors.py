"""
Error taxonomy for the admission and reversal engine.

Business rejections derive from EngineError and carry a message suitable for
direct display plus a details dict. Each class maps to one HTTP status in the
API layer.

- ValidationError: input problem, rejected before any write (400)
- NotFoundError: referenced row missing or outside the caller's tenant (404)
- ApprovalPermissionError: actor is not an authorized approver (403)
- StateConflictError: operation not valid for the current state (409)
- PersistenceError: the data store failed; nothing was applied (500)
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for engine rejections."""

    code = "ENGINE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(EngineError):
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(EngineError):
    code = "NOT_FOUND"
    http_status = 404


class ApprovalPermissionError(EngineError):
    code = "APPROVER_REQUIRED"
    http_status = 403


class StateConflictError(EngineError):
    code = "STATE_CONFLICT"
    http_status = 409


class SaleStateError(StateConflictError):
    """Sale is invoiced/cancelled or still blocked by pendencies."""

    code = "SALE_STATE_CONFLICT"


class CreditStateError(StateConflictError):
    """Credit decision attempted on a sale that is not under review."""

    code = "CREDIT_STATE_CONFLICT"


class MovementAlreadyReversedError(StateConflictError):
    code = "MOVEMENT_ALREADY_REVERSED"

    def __init__(self, movement_id: int):
        self.movement_id = movement_id
        super().__init__(
            f"Movement {movement_id} has already been reversed",
            details={"movement_id": movement_id},
        )


class ImmutabilityViolationError(StateConflictError):
    """Raised by ORM guards when an append-only or terminal row is modified."""

    code = "IMMUTABLE_ROW"


class PersistenceError(EngineError):
    """The data store failed after retries; the unit of work was rolled back."""

    code = "PERSISTENCE_ERROR"
    http_status = 500
