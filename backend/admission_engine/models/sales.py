from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PaymentMethod(db.Model):
    """
    Configured payment method for an organization.

    requires_credit_review is decided when the method is configured, so
    admission never has to guess from a free-text label. Sales created with
    only a label (legacy rows, imports) fall back to label classification.
    """
    __tablename__ = "payment_methods"
    __table_args__ = (
        db.UniqueConstraint("org_id", "code", name="uq_payment_methods_org_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    code = db.Column(db.String(32), nullable=False)  # e.g. "boleto", "pix", "credito_loja"
    label = db.Column(db.String(128), nullable=False)
    requires_credit_review = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "code": self.code,
            "label": self.label,
            "requires_credit_review": self.requires_credit_review,
            "is_active": self.is_active,
        }


class Sale(db.Model):
    """
    Sale admitted through checkout and gated before invoicing.

    PENDENCIES: pendency_codes holds a subset of "ECD" in canonical order
    (E=stock separation, C=credit review, D=discount approval). A sale is
    invoiceable only when the string is empty.

    CREDIT REVIEW: credit_status is NULL (never reviewed), pending, approved
    or denied. credit_review_cycle increments each time an adjustment
    reopens a decided review.

    IMMUTABLE once status=invoiced. All amounts in cents.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("org_id", "document_number", name="uq_sales_org_docnum"),
        db.CheckConstraint("total_cents = subtotal_cents - discount_cents", name="ck_sales_total"),
        db.CheckConstraint("total_cents >= 0", name="ck_sales_total_non_negative"),
        db.Index("ix_sales_org_credit_status", "org_id", "credit_status"),
        db.Index("ix_sales_customer_payment_status", "customer_id", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # Human-readable document number (e.g., "V-000123")
    document_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Lifecycle: open, invoiced, cancelled
    status = db.Column(db.String(16), nullable=False, default="open", index=True)

    # Payment method: free-text label plus optional configured method
    payment_method = db.Column(db.String(128), nullable=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=True)

    # Receivable state used for debt: pending, overdue, paid, cancelled
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    pendency_codes = db.Column(db.String(3), nullable=False, default="")

    credit_status = db.Column(db.String(16), nullable=True)  # NULL, pending, approved, denied
    credit_review_cycle = db.Column(db.Integer, nullable=False, default=0)

    # Price approval: normal, pending_approval, released
    approval_status = db.Column(db.String(24), nullable=False, default="normal")
    block_reason = db.Column(db.String(255), nullable=True)
    approved_by_user_id = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Sale-level discount the approver signed off on; a different discount needs approval again
    approved_discount_cents = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    invoiced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    configured_payment_method = db.relationship("PaymentMethod")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "document_number": self.document_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_method_id": self.payment_method_id,
            "payment_status": self.payment_status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "pendency_codes": list(self.pendency_codes or ""),
            "credit_status": self.credit_status,
            "credit_review_cycle": self.credit_review_cycle,
            "approval_status": self.approval_status,
            "block_reason": self.block_reason,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "approved_discount_cents": self.approved_discount_cents,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "invoiced_at": to_utc_z(self.invoiced_at) if self.invoiced_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """
    Line item owned by a sale.

    price_status is OK, DISCOUNT_EXCEEDED or BELOW_MINIMUM. A flagged item
    returns to OK through approval, or when a re-run of the price policy
    finds it within policy.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    original_price_cents = db.Column(db.Integer, nullable=False)  # list price per unit
    unit_price_cents = db.Column(db.Integer, nullable=False)  # final price per unit
    minimum_price_cents = db.Column(db.Integer, nullable=True)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Physical product that must be separated in the warehouse
    requires_stock = db.Column(db.Boolean, nullable=False, default=True)

    price_status = db.Column(db.String(24), nullable=False, default="OK", index=True)
    discount_percent = db.Column(db.Float, nullable=False, default=0.0)
    approved_by_user_id = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Unit price at approval time; a re-priced item loses its approval
    approved_price_cents = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "description": self.description,
            "quantity": self.quantity,
            "original_price_cents": self.original_price_cents,
            "unit_price_cents": self.unit_price_cents,
            "minimum_price_cents": self.minimum_price_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "requires_stock": self.requires_stock,
            "price_status": self.price_status,
            "discount_percent": self.discount_percent,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "approved_price_cents": self.approved_price_cents,
            "version_id": self.version_id,
        }
