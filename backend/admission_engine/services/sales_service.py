# Overview: Service-layer operations for checkout and the sale lifecycle.

"""
Checkout Service

WHY: A sale is admitted in one step. Checkout evaluates the sale and
attaches every pendency that applies before anyone can invoice it:

- D: an item's price or the sale-level discount needs approval (price policy)
- E: an item needs stock separation
- C: the payment method is credit-bearing (credit review + admission check)

LIFECYCLE (Sale.status):
1. open      -> invoiced  (mark_invoiced, only with no pendency left)
2. open      -> cancelled (cancel_sale)
invoiced and cancelled are terminal.

A denied sale leaves the blocked state through cancel_sale or
change_payment_method.
"""

from __future__ import annotations

from flask import current_app

from ..errors import NotFoundError, SaleStateError, ValidationError
from ..extensions import db
from ..models import Customer, PaymentMethod, Sale, SaleItem
from ..time_utils import utcnow
from . import credit_service, pendency_service, pricing_service
from .concurrency import begin_immediate, lock_for_update, run_unit_of_work
from .document_service import next_document_number


VALID_PAYMENT_STATUSES = (
    credit_service.PAYMENT_STATUS_PENDING,
    credit_service.PAYMENT_STATUS_OVERDUE,
    credit_service.PAYMENT_STATUS_PAID,
    credit_service.PAYMENT_STATUS_CANCELLED,
)


def _as_int(value, field: str, *, minimum: int | None = None, required: bool = True) -> int | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if number != value and not isinstance(value, str):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={"field": field})
    return number


def _build_items(items: list[dict]) -> list[SaleItem]:
    if not items:
        raise ValidationError("A sale needs at least one item")

    built = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        quantity = _as_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1)
        original = _as_int(raw.get("original_price_cents"), f"items[{index}].original_price_cents", minimum=0)
        unit = raw.get("unit_price_cents", original)
        unit = _as_int(unit, f"items[{index}].unit_price_cents", minimum=0)
        minimum_price = _as_int(
            raw.get("minimum_price_cents"), f"items[{index}].minimum_price_cents", minimum=0, required=False
        )

        built.append(SaleItem(
            product_id=raw.get("product_id"),
            description=(raw.get("description") or "")[:255] or None,
            quantity=quantity,
            original_price_cents=original,
            unit_price_cents=unit,
            minimum_price_cents=minimum_price,
            discount_cents=max(original - unit, 0) * quantity,
            total_cents=unit * quantity,
            requires_stock=bool(raw.get("requires_stock", True)),
        ))
    return built


def _resolve_payment_method(org_id: int, payment_method: str | None, payment_method_id: int | None):
    """Return (label, configured method or None)."""
    configured = None
    if payment_method_id is not None:
        configured = (
            db.session.query(PaymentMethod)
            .filter_by(id=payment_method_id, org_id=org_id, is_active=True)
            .first()
        )
        if not configured:
            raise NotFoundError(
                f"Payment method {payment_method_id} not found",
                details={"payment_method_id": payment_method_id},
            )
    label = (payment_method or "").strip() or (configured.label if configured else None)
    if not label:
        raise ValidationError("payment_method or payment_method_id is required")
    return label[:128], configured


def create_sale(
    org_id: int,
    items: list[dict],
    payment_method: str | None = None,
    customer_id: int | None = None,
    discount_cents: int = 0,
    actor_user_id: int | None = None,
    payment_method_id: int | None = None,
    notes: str | None = None,
):
    """
    Checkout: create an open sale and attach its pendencies in one
    transaction.

    Returns (sale, admission) where admission is the AdmissionDecision for
    credit-bearing sales and None otherwise. A failing admission does not
    reject the sale; it stays under credit review with C set and the
    decision explains why.
    """
    built_items = _build_items(items)
    discount_cents = _as_int(discount_cents or 0, "discount_cents", minimum=0)
    subtotal = sum(item.total_cents for item in built_items)
    if discount_cents > subtotal:
        raise ValidationError(
            "discount_cents cannot exceed the sale subtotal",
            details={"subtotal_cents": subtotal, "discount_cents": discount_cents},
        )

    def _op():
        label, configured = _resolve_payment_method(org_id, payment_method, payment_method_id)
        credit_bearing = credit_service.requires_credit_analysis(configured or label)
        if credit_bearing and current_app.config.get("SERIALIZE_CREDIT_ADMISSION"):
            begin_immediate()

        if customer_id is not None:
            customer = db.session.query(Customer).filter_by(id=customer_id, org_id=org_id).first()
            if not customer:
                raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})

        sale = Sale(
            org_id=org_id,
            document_number=next_document_number(org_id=org_id, document_type="SALE", prefix="V"),
            customer_id=customer_id,
            status=pendency_service.SALE_STATUS_OPEN,
            payment_method=label,
            payment_method_id=configured.id if configured else None,
            payment_status=credit_service.PAYMENT_STATUS_PENDING,
            subtotal_cents=subtotal,
            discount_cents=discount_cents,
            total_cents=subtotal - discount_cents,
            pendency_codes="",
            approval_status=pricing_service.APPROVAL_STATUS_NORMAL,
            notes=notes,
            created_by_user_id=actor_user_id,
        )
        sale.configured_payment_method = configured
        sale.items = built_items
        db.session.add(sale)
        db.session.flush()

        settings = pricing_service.get_price_control_settings(org_id)
        pricing_service._apply_price_policy_locked(sale, settings)

        if any(item.requires_stock for item in built_items):
            pendency_service._add_code_locked(sale, pendency_service.CODE_STOCK)

        admission = None
        if credit_bearing:
            admission = credit_service._submit_for_credit_review_locked(sale)

        db.session.flush()
        current_app.logger.info(
            "Sale %s created for org %s: total=%s pendencies=%r",
            sale.document_number, org_id, sale.total_cents, sale.pendency_codes,
        )
        return sale, admission

    return run_unit_of_work(_op, description=f"create sale for org {org_id}")


def get_sale(sale_id: int, org_id: int | None = None) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if org_id is not None:
        query = query.filter_by(org_id=org_id)
    sale = query.first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def _load_open_sale_locked(sale_id: int, org_id: int | None) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if org_id is not None:
        query = query.filter_by(org_id=org_id)
    sale = lock_for_update(query).first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    if sale.status != pendency_service.SALE_STATUS_OPEN:
        raise SaleStateError(
            f"Sale {sale_id} is {sale.status}",
            details={"sale_id": sale_id, "status": sale.status},
        )
    return sale


def mark_invoiced(sale_id: int, actor_user_id: int | None = None, org_id: int | None = None) -> Sale:
    """Invoice a sale. Rejected while any pendency remains."""
    def _op():
        sale = _load_open_sale_locked(sale_id, org_id)
        codes = pendency_service.codes_of(sale)
        if codes:
            ordered = [c for c in pendency_service.VALID_CODES if c in codes]
            raise SaleStateError(
                f"Sale {sale_id} has pending issues: {', '.join(ordered)}",
                details={
                    "sale_id": sale_id,
                    "pendencies": [
                        {"code": c, "description": pendency_service.describe_code(c)} for c in ordered
                    ],
                },
            )
        sale.status = pendency_service.SALE_STATUS_INVOICED
        sale.invoiced_at = utcnow()
        db.session.flush()
        current_app.logger.info("Sale %s invoiced by user %s", sale_id, actor_user_id)
        return sale

    return run_unit_of_work(_op, description=f"invoice sale {sale_id}")


def cancel_sale(sale_id: int, actor_user_id: int, reason: str, org_id: int | None = None) -> Sale:
    """Cancel an open sale. Its amount stops counting as customer debt."""
    if not reason or not reason.strip():
        raise ValidationError("Cancellation reason is required")

    def _op():
        sale = _load_open_sale_locked(sale_id, org_id)
        sale.status = pendency_service.SALE_STATUS_CANCELLED
        sale.payment_status = credit_service.PAYMENT_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancel_reason = reason.strip()[:255]
        db.session.flush()
        current_app.logger.info("Sale %s cancelled by user %s", sale_id, actor_user_id)
        return sale

    return run_unit_of_work(_op, description=f"cancel sale {sale_id}")


def change_payment_method(
    sale_id: int,
    payment_method: str | None = None,
    payment_method_id: int | None = None,
    org_id: int | None = None,
):
    """
    Switch the payment method of an open sale and re-evaluate credit.

    Moving to a credit-bearing method opens a new review (C set, pending).
    Moving away from credit clears C and the review state.
    Returns (sale, admission or None).
    """
    def _op():
        sale = _load_open_sale_locked(sale_id, org_id)
        label, configured = _resolve_payment_method(sale.org_id, payment_method, payment_method_id)
        sale.payment_method = label
        sale.payment_method_id = configured.id if configured else None
        sale.configured_payment_method = configured

        admission = None
        if credit_service.requires_credit_analysis(configured or label):
            admission = credit_service._submit_for_credit_review_locked(sale)
        else:
            pendency_service._remove_code_locked(sale, pendency_service.CODE_CREDIT)
            sale.credit_status = None
        db.session.flush()
        current_app.logger.info("Sale %s payment method changed to %r", sale_id, label)
        return sale, admission

    return run_unit_of_work(_op, description=f"change payment method of sale {sale_id}")


def set_payment_status(sale_id: int, payment_status: str, org_id: int | None = None) -> Sale:
    """Record receivable state (pending, overdue, paid) used by debt calculation."""
    if payment_status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment status: {payment_status!r}. Must be one of {list(VALID_PAYMENT_STATUSES)}",
            details={"payment_status": payment_status},
        )

    def _op():
        query = db.session.query(Sale).filter_by(id=sale_id)
        if org_id is not None:
            query = query.filter_by(org_id=org_id)
        sale = lock_for_update(query).first()
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
        if sale.status == pendency_service.SALE_STATUS_CANCELLED:
            raise SaleStateError(f"Sale {sale_id} is cancelled", details={"sale_id": sale_id})
        sale.payment_status = payment_status
        db.session.flush()
        return sale

    return run_unit_of_work(_op, description=f"set payment status of sale {sale_id}")
