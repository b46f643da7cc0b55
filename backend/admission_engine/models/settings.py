from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PriceControlSettings(db.Model):
    """
    Per-organization price control policy.

    Read-only to the price validator. Only the administrative path
    (pricing_service.save_price_control_settings) writes it.
    """
    __tablename__ = "price_control_settings"
    __table_args__ = (
        db.UniqueConstraint("org_id", name="uq_price_control_settings_org"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=False)
    max_seller_discount_percent = db.Column(db.Float, nullable=False, default=0.0)
    # Final prices below this floor need approval even without a discount violation (0 = off)
    min_value_without_approval_cents = db.Column(db.Integer, nullable=False, default=0)
    approver_user_ids = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("price_control_settings", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "is_active": self.is_active,
            "max_seller_discount_percent": self.max_seller_discount_percent,
            "min_value_without_approval_cents": self.min_value_without_approval_cents,
            "approver_user_ids": list(self.approver_user_ids or []),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
