# Overview: Append-only credit/reversal audit log with versioned detail payloads.

from __future__ import annotations

from typing import Any

from ..errors import ValidationError
from ..extensions import db
from ..models import CreditLog
"""
Credit Log Invariants

- Append-only: rows are inserted here and nowhere else; ORM guards reject
  updates and deletes.
- Written inside the same transaction as the state transition it records.
  The caller commits; if the commit fails, neither the transition nor the
  log row exists.
- details carries {"schema_version": N, "action": ..., ...} with a fixed key
  set per action so the log stays machine-readable.
"""

DETAILS_SCHEMA_VERSION = 1

ACTION_CREDIT_APPROVED = "credit_approved"
ACTION_CREDIT_DENIED = "credit_denied"
ACTION_CREDIT_ADJUSTMENT_REQUESTED = "credit_adjustment_requested"
ACTION_MOVEMENT_REVERSED = "movement_reversed"

_CREDIT_SNAPSHOT_FIELDS = {
    "credit_limit_cents": int,
    "current_debt_cents": int,
    "available_credit_cents": int,
    "sale_total_cents": int,
}

# Computed by the engine at decision time; callers never supply them
CREDIT_SNAPSHOT_FIELDS = frozenset(_CREDIT_SNAPSHOT_FIELDS)

_CALLER_FIELDS = {
    "notes": str,
    "override": bool,
    "reference": str,
}

ADJUSTMENT_TYPES = (
    "down_payment",
    "payment_method",
    "installments",
    "regularize_debts",
    "other",
)

_ADJUSTMENT_DETAIL_FIELDS = {
    "down_payment_cents": int,
    "new_payment_method": str,
    "installments": int,
    "notes": str,
}

# action -> (required fields, optional fields)
DETAIL_SCHEMAS: dict[str, tuple[dict[str, type], dict[str, type]]] = {
    ACTION_CREDIT_APPROVED: ({}, {**_CREDIT_SNAPSHOT_FIELDS, **_CALLER_FIELDS}),
    ACTION_CREDIT_DENIED: ({}, {**_CREDIT_SNAPSHOT_FIELDS, **_CALLER_FIELDS}),
    ACTION_CREDIT_ADJUSTMENT_REQUESTED: (
        {"adjustment_type": str},
        {**_CREDIT_SNAPSHOT_FIELDS, **_CALLER_FIELDS, "adjustment_details": dict},
    ),
    ACTION_MOVEMENT_REVERSED: (
        {"original_movement_id": int, "reversal_movement_id": int},
        {"value_cents": int, "original_direction": str, "account_id": int},
    ),
}


def _check_type(key: str, value: Any, expected: type) -> None:
    if value is None:
        return
    if expected is int and (isinstance(value, bool) or not isinstance(value, int)):
        raise ValidationError(f"details.{key} must be an integer")
    if not isinstance(value, expected):
        raise ValidationError(f"details.{key} must be of type {expected.__name__}")


def build_details(action: str, payload: dict | None = None) -> dict:
    """
    Validate and normalize an audit payload for the given action.

    Unknown keys and wrong types are rejected with ValidationError, before
    any write happens.
    """
    if action not in DETAIL_SCHEMAS:
        raise ValidationError(f"Unknown audit action: {action}")

    required, optional = DETAIL_SCHEMAS[action]
    payload = dict(payload or {})

    unknown = sorted(set(payload) - set(required) - set(optional))
    if unknown:
        raise ValidationError(
            f"Unsupported detail fields for {action}: {', '.join(unknown)}",
            details={"fields": unknown},
        )

    missing = sorted(k for k in required if payload.get(k) is None)
    if missing:
        raise ValidationError(
            f"Missing detail fields for {action}: {', '.join(missing)}",
            details={"fields": missing},
        )

    for key, value in payload.items():
        _check_type(key, value, {**required, **optional}[key])

    if action == ACTION_CREDIT_ADJUSTMENT_REQUESTED:
        adjustment_details = payload.get("adjustment_details")
        if adjustment_details:
            bad = sorted(set(adjustment_details) - set(_ADJUSTMENT_DETAIL_FIELDS))
            if bad:
                raise ValidationError(
                    f"Unsupported adjustment detail fields: {', '.join(bad)}",
                    details={"fields": bad},
                )
            for key, value in adjustment_details.items():
                _check_type(f"adjustment_details.{key}", value, _ADJUSTMENT_DETAIL_FIELDS[key])

    cleaned = {k: v for k, v in payload.items() if v is not None}
    return {"schema_version": DETAILS_SCHEMA_VERSION, "action": action, **cleaned}


def append_credit_log(
    *,
    org_id: int,
    action: str,
    actor_user_id: int,
    details: dict | None = None,
    sale_id: int | None = None,
    movement_id: int | None = None,
    related_movement_id: int | None = None,
    reason: str | None = None,
    previous_status: str | None = None,
    new_status: str | None = None,
    review_cycle: int | None = None,
    previous_log_id: int | None = None,
) -> CreditLog:
    """
    Append one audit row. No commit: the caller's unit of work owns it.
    """
    entry = CreditLog(
        org_id=org_id,
        action=action,
        actor_user_id=actor_user_id,
        sale_id=sale_id,
        movement_id=movement_id,
        related_movement_id=related_movement_id,
        reason=reason,
        previous_status=previous_status,
        new_status=new_status,
        review_cycle=review_cycle,
        previous_log_id=previous_log_id,
        details=build_details(action, details),
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def get_credit_logs(sale_id: int, org_id: int | None = None) -> list[CreditLog]:
    """Credit history of a sale, newest first."""
    query = db.session.query(CreditLog).filter(CreditLog.sale_id == sale_id)
    if org_id is not None:
        query = query.filter(CreditLog.org_id == org_id)
    return query.order_by(CreditLog.created_at.desc(), CreditLog.id.desc()).all()


def get_movement_logs(movement_id: int) -> list[CreditLog]:
    return (
        db.session.query(CreditLog)
        .filter(
            (CreditLog.movement_id == movement_id)
            | (CreditLog.related_movement_id == movement_id)
        )
        .order_by(CreditLog.id.asc())
        .all()
    )


def latest_decision_log(sale_id: int) -> CreditLog | None:
    """Most recent approve/deny entry for a sale."""
    return (
        db.session.query(CreditLog)
        .filter(
            CreditLog.sale_id == sale_id,
            CreditLog.action.in_([ACTION_CREDIT_APPROVED, ACTION_CREDIT_DENIED]),
        )
        .order_by(CreditLog.id.desc())
        .first()
    )
