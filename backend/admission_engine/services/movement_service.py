# Overview: Service-layer operations for posting and reading financial movements.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import case, func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import FinancialMovement
from ..time_utils import today
from .concurrency import run_unit_of_work


DIRECTION_IN = "in"
DIRECTION_OUT = "out"
VALID_DIRECTIONS = (DIRECTION_IN, DIRECTION_OUT)


def opposite_direction(direction: str) -> str:
    if direction not in VALID_DIRECTIONS:
        raise ValidationError(f"Invalid direction: {direction!r}", details={"direction": direction})
    return DIRECTION_OUT if direction == DIRECTION_IN else DIRECTION_IN


def post_movement(
    *,
    org_id: int,
    account_id: int,
    direction: str,
    value_cents: int,
    description: str = "",
    movement_date: date | None = None,
    nature_id: int | None = None,
    cost_center_id: int | None = None,
    created_by_user_id: int | None = None,
) -> FinancialMovement:
    """
    Post a movement. Posted movements are immutable; mistakes are corrected
    with reversal_service.reverse_movement, never by editing.
    """
    if direction not in VALID_DIRECTIONS:
        raise ValidationError(
            f"Invalid direction: {direction!r}. Must be one of {list(VALID_DIRECTIONS)}",
            details={"direction": direction},
        )
    if isinstance(value_cents, bool) or not isinstance(value_cents, int) or value_cents <= 0:
        raise ValidationError("value_cents must be a positive integer", details={"value_cents": value_cents})
    if account_id is None:
        raise ValidationError("account_id is required")

    def _op():
        movement = FinancialMovement(
            org_id=org_id,
            account_id=account_id,
            movement_date=movement_date or today(),
            direction=direction,
            description=(description or "")[:255],
            value_cents=value_cents,
            nature_id=nature_id,
            cost_center_id=cost_center_id,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(movement)
        db.session.flush()
        current_app.logger.info(
            "Movement %s posted: account=%s %s %s", movement.id, account_id, direction, value_cents
        )
        return movement

    return run_unit_of_work(_op, description=f"post movement on account {account_id}")


def get_movement(movement_id: int, org_id: int | None = None) -> FinancialMovement:
    query = db.session.query(FinancialMovement).filter_by(id=movement_id)
    if org_id is not None:
        query = query.filter_by(org_id=org_id)
    movement = query.first()
    if not movement:
        raise NotFoundError(f"Movement {movement_id} not found", details={"movement_id": movement_id})
    return movement


def list_movements(org_id: int, account_id: int | None = None) -> list[FinancialMovement]:
    query = db.session.query(FinancialMovement).filter_by(org_id=org_id)
    if account_id is not None:
        query = query.filter_by(account_id=account_id)
    return query.order_by(FinancialMovement.movement_date.asc(), FinancialMovement.id.asc()).all()


def get_account_balance(account_id: int, org_id: int) -> int:
    """Sum of in minus out, in cents. Reversed pairs cancel out."""
    signed = case(
        (FinancialMovement.direction == DIRECTION_IN, FinancialMovement.value_cents),
        else_=-FinancialMovement.value_cents,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(FinancialMovement.org_id == org_id, FinancialMovement.account_id == account_id)
        .scalar()
    )
    return int(total or 0)
