# Overview: Service-layer operations for reversing posted financial movements.

"""
Movement Reversal Engine

WHY: Posted movements are never edited or deleted. A wrong movement is
corrected by a compensating movement with the opposite direction and the
same value, so the account balance returns to what it was before.

ATOMIC UNIT (one transaction, all or nothing):
1. Insert the compensating movement (direction flipped, reversal_of_id set)
2. Flag the original as reversed (who, when, why)
3. Append a movement_reversed credit log row

IDEMPOTENCE: a second reversal fails with MovementAlreadyReversedError and
writes nothing. The original is locked and version-checked, and the unique
constraint on reversal_of_id rejects a second compensating row even if two
reversals race past the lock.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import MovementAlreadyReversedError, NotFoundError, ValidationError
from ..extensions import db
from ..models import FinancialMovement
from ..time_utils import today, utcnow
from . import audit_service
from .concurrency import lock_for_update, run_unit_of_work
from .movement_service import opposite_direction


REVERSAL_DESCRIPTION_PREFIX = "ESTORNO: "


@dataclass(frozen=True)
class ReversalResult:
    original_movement_id: int
    reversal_movement_id: int
    credit_log_id: int

    def to_dict(self) -> dict:
        return asdict(self)


def _reversal_description(original: FinancialMovement) -> str:
    return f"{REVERSAL_DESCRIPTION_PREFIX}{original.description or ''}"[:255]


def _reverse_movement_locked(original: FinancialMovement, reason: str, actor_user_id: int) -> ReversalResult:
    if original.is_reversed or original.compensated_by is not None:
        raise MovementAlreadyReversedError(original.id)

    compensation = FinancialMovement(
        org_id=original.org_id,
        account_id=original.account_id,
        movement_date=today(),
        direction=opposite_direction(original.direction),
        description=_reversal_description(original),
        value_cents=original.value_cents,
        nature_id=original.nature_id,
        cost_center_id=original.cost_center_id,
        reversal_of_id=original.id,
        created_by_user_id=actor_user_id,
    )
    db.session.add(compensation)

    original.is_reversed = True
    original.reversed_at = utcnow()
    original.reversed_by_user_id = actor_user_id
    original.reverse_reason = reason[:255]
    db.session.flush()

    log = audit_service.append_credit_log(
        org_id=original.org_id,
        movement_id=original.id,
        related_movement_id=compensation.id,
        action=audit_service.ACTION_MOVEMENT_REVERSED,
        actor_user_id=actor_user_id,
        reason=reason,
        details={
            "original_movement_id": original.id,
            "reversal_movement_id": compensation.id,
            "value_cents": original.value_cents,
            "original_direction": original.direction,
            "account_id": original.account_id,
        },
    )
    return ReversalResult(
        original_movement_id=original.id,
        reversal_movement_id=compensation.id,
        credit_log_id=log.id,
    )


def reverse_movement(
    movement_id: int,
    reason: str,
    actor_user_id: int,
    org_id: int | None = None,
) -> ReversalResult:
    """
    Reverse a posted movement with a compensating entry.

    Raises:
        ValidationError: reason missing
        NotFoundError: unknown movement, or outside org_id when given
        MovementAlreadyReversedError: original already reversed
        PersistenceError: the store failed; nothing was written
    """
    if not reason or not reason.strip():
        raise ValidationError("Reversal reason is required")
    reason = reason.strip()

    def _op():
        query = db.session.query(FinancialMovement).filter_by(id=movement_id)
        if org_id is not None:
            query = query.filter_by(org_id=org_id)
        original = lock_for_update(query).first()
        if not original:
            raise NotFoundError(f"Movement {movement_id} not found", details={"movement_id": movement_id})

        try:
            result = _reverse_movement_locked(original, reason, actor_user_id)
        except IntegrityError as exc:
            # Another reversal committed its compensating row first
            db.session.rollback()
            raise MovementAlreadyReversedError(movement_id) from exc

        current_app.logger.info(
            "Movement %s reversed by user %s (compensation %s)",
            movement_id, actor_user_id, result.reversal_movement_id,
        )
        return result

    return run_unit_of_work(_op, description=f"reverse movement {movement_id}")
