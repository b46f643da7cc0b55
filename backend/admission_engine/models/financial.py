from __future__ import annotations

from sqlalchemy import event, select
from sqlalchemy.orm.attributes import get_history

from ..errors import ImmutabilityViolationError
from ..extensions import db
from ..time_utils import to_utc_z


class FinancialMovement(db.Model):
    """
    Posted cash/bank ledger movement.

    IMMUTABLE once posted: direction, value, account and classification never
    change. The only permitted update is flagging the row as reversed, and a
    reversed row is terminal.

    REVERSAL: a compensating movement points at the original through
    reversal_of_id. The unique constraint allows at most one compensating
    movement per original.
    """
    __tablename__ = "financial_movements"
    __table_args__ = (
        db.UniqueConstraint("reversal_of_id", name="uq_financial_movements_reversal_of"),
        db.CheckConstraint("value_cents > 0", name="ck_financial_movements_value_positive"),
        db.CheckConstraint("direction IN ('in', 'out')", name="ck_financial_movements_direction"),
        db.Index("ix_financial_movements_org_account", "org_id", "account_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # Posted columns load their old value on assignment so the update guard
    # sees the change even on an expired instance.
    org_id = db.column_property(
        db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True),
        active_history=True,
    )
    account_id = db.column_property(db.Column(db.Integer, nullable=False), active_history=True)

    movement_date = db.column_property(db.Column(db.Date, nullable=False), active_history=True)
    direction = db.column_property(db.Column(db.String(3), nullable=False), active_history=True)  # in, out
    description = db.Column(db.String(255), nullable=False, default="")
    value_cents = db.column_property(db.Column(db.Integer, nullable=False), active_history=True)

    # Classification
    nature_id = db.column_property(db.Column(db.Integer, nullable=True), active_history=True)
    cost_center_id = db.column_property(db.Column(db.Integer, nullable=True), active_history=True)

    reversal_of_id = db.column_property(
        db.Column(db.Integer, db.ForeignKey("financial_movements.id"), nullable=True),
        active_history=True,
    )

    is_reversed = db.column_property(
        db.Column(db.Boolean, nullable=False, default=False, index=True),
        active_history=True,
    )
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversed_by_user_id = db.Column(db.Integer, nullable=True)
    reverse_reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    reversal_of = db.relationship(
        "FinancialMovement",
        remote_side=[id],
        backref=db.backref("compensated_by", uselist=False, lazy=True),
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def signed_value_cents(self) -> int:
        return self.value_cents if self.direction == "in" else -self.value_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "account_id": self.account_id,
            "movement_date": self.movement_date.isoformat() if self.movement_date else None,
            "direction": self.direction,
            "description": self.description,
            "value_cents": self.value_cents,
            "nature_id": self.nature_id,
            "cost_center_id": self.cost_center_id,
            "reversal_of_id": self.reversal_of_id,
            "is_reversed": self.is_reversed,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "reversed_by_user_id": self.reversed_by_user_id,
            "reverse_reason": self.reverse_reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


_POSTED_FIELDS = (
    "org_id",
    "account_id",
    "movement_date",
    "direction",
    "value_cents",
    "nature_id",
    "cost_center_id",
    "reversal_of_id",
)


def _stored_is_reversed(connection, target) -> bool:
    history = get_history(target, "is_reversed")
    if history.deleted:
        return bool(history.deleted[0])
    if history.unchanged:
        return bool(history.unchanged[0])
    # Expired and untouched: read the committed flag.
    table = FinancialMovement.__table__
    return bool(connection.execute(
        select(table.c.is_reversed).where(table.c.id == target.id)
    ).scalar())


@event.listens_for(FinancialMovement, "before_update")
def prevent_posted_movement_edit(mapper, connection, target):
    for field in _POSTED_FIELDS:
        if get_history(target, field).has_changes():
            raise ImmutabilityViolationError(
                f"Movement {target.id} is posted; {field} cannot be changed",
                details={"movement_id": target.id, "field": field},
            )

    if _stored_is_reversed(connection, target):
        raise ImmutabilityViolationError(
            f"Movement {target.id} is reversed and cannot be modified",
            details={"movement_id": target.id},
        )


@event.listens_for(FinancialMovement, "before_delete")
def prevent_movement_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        f"Movement {target.id} is posted and cannot be deleted",
        details={"movement_id": target.id},
    )
