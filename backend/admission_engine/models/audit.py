from __future__ import annotations

from sqlalchemy import event

from ..errors import ImmutabilityViolationError
from ..extensions import db
from ..time_utils import to_utc_z


class CreditLog(db.Model):
    """
    Append-only audit trail of credit decisions and movement reversals.

    ACTIONS:
    - credit_approved / credit_denied / credit_adjustment_requested (sale_id set)
    - movement_reversed (movement_id = original, related_movement_id = reversal)

    details is a versioned payload built by audit_service; its shape is
    fixed per action.

    IMMUTABLE: rows are never updated or deleted.
    """
    __tablename__ = "credit_logs"
    __table_args__ = (
        db.Index("ix_credit_logs_sale_created", "sale_id", "created_at"),
        db.Index("ix_credit_logs_org_created", "org_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    movement_id = db.Column(db.Integer, db.ForeignKey("financial_movements.id"), nullable=True, index=True)
    related_movement_id = db.Column(db.Integer, db.ForeignKey("financial_movements.id"), nullable=True)

    action = db.Column(db.String(48), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    previous_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=True)
    review_cycle = db.Column(db.Integer, nullable=True)
    previous_log_id = db.Column(db.Integer, db.ForeignKey("credit_logs.id"), nullable=True)

    details = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sale_id": self.sale_id,
            "movement_id": self.movement_id,
            "related_movement_id": self.related_movement_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "reason": self.reason,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "review_cycle": self.review_cycle,
            "previous_log_id": self.previous_log_id,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(CreditLog, "before_update")
def prevent_credit_log_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        f"Credit log {target.id} is append-only and cannot be modified",
        details={"credit_log_id": target.id},
    )


@event.listens_for(CreditLog, "before_delete")
def prevent_credit_log_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        f"Credit log {target.id} is append-only and cannot be deleted",
        details={"credit_log_id": target.id},
    )
