# Overview: Price control settings and discount approval resolution.

"""
Discount Approval Service

WHY: Sellers may discount up to a per-organization cap. Items over the cap
or under their minimum price, and a sale-level discount over the cap, put
the sale in pending_approval with a D pendency until an authorized approver
resolves it.

LIFECYCLE (Sale.approval_status):
1. normal -> pending_approval  (apply_price_policy finds something to approve)
2. pending_approval -> released (approve_sale, or last flagged item approved)
3. pending_approval -> normal   (reject_sale; D stays, sale must be resubmitted)
4. pending_approval -> normal   (apply_price_policy finds nothing to approve; D cleared)
"""

from __future__ import annotations

from flask import current_app

from ..errors import ApprovalPermissionError, NotFoundError, SaleStateError, ValidationError
from ..extensions import db
from ..models import PriceControlSettings, Sale, SaleItem
from ..time_utils import utcnow
from . import pendency_service
from .concurrency import lock_for_update, run_unit_of_work
from .price_policy import (
    FLAGGED_PRICE_STATUSES,
    PRICE_STATUS_OK,
    is_approver,
    requires_discount_approval,
    validate_item_price,
)


APPROVAL_STATUS_NORMAL = "normal"
APPROVAL_STATUS_PENDING = "pending_approval"
APPROVAL_STATUS_RELEASED = "released"

_SETTINGS_FIELDS = {
    "is_active",
    "max_seller_discount_percent",
    "min_value_without_approval_cents",
    "approver_user_ids",
}


def get_price_control_settings(org_id: int) -> PriceControlSettings | None:
    """None when the organization never configured price control (policy off)."""
    return db.session.query(PriceControlSettings).filter_by(org_id=org_id).first()


def save_price_control_settings(org_id: int, **fields) -> PriceControlSettings:
    """
    Create or update an organization's price control settings.

    Administrative path; the validator itself never writes settings.
    """
    unknown = set(fields) - _SETTINGS_FIELDS
    if unknown:
        raise ValidationError(
            f"Unknown price control fields: {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown)},
        )

    pct = fields.get("max_seller_discount_percent")
    if pct is not None and not (0 <= float(pct) <= 100):
        raise ValidationError("max_seller_discount_percent must be between 0 and 100")

    floor = fields.get("min_value_without_approval_cents")
    if floor is not None and int(floor) < 0:
        raise ValidationError("min_value_without_approval_cents cannot be negative")

    approvers = fields.get("approver_user_ids")
    if approvers is not None:
        if not isinstance(approvers, (list, tuple, set)):
            raise ValidationError("approver_user_ids must be a list of user ids")
        fields["approver_user_ids"] = sorted({int(u) for u in approvers})

    def _op():
        settings = lock_for_update(
            db.session.query(PriceControlSettings).filter_by(org_id=org_id)
        ).first()
        if settings is None:
            settings = PriceControlSettings(org_id=org_id, approver_user_ids=[])
            db.session.add(settings)
        for key, value in fields.items():
            setattr(settings, key, value)
        db.session.flush()
        return settings

    return run_unit_of_work(_op, description=f"save price control settings for org {org_id}")


def _require_approver(org_id: int, approver_id: int) -> PriceControlSettings:
    settings = get_price_control_settings(org_id)
    if not is_approver(approver_id, settings):
        raise ApprovalPermissionError(
            "User is not authorized to approve prices for this organization",
            details={"user_id": approver_id, "org_id": org_id},
        )
    return settings


def _open_sale_locked(sale_id: int, org_id: int | None = None) -> Sale:
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


def _evaluate_item(item: SaleItem, settings: PriceControlSettings | None):
    return validate_item_price(
        original_price=item.original_price_cents,
        final_price=item.unit_price_cents,
        minimum_price=item.minimum_price_cents,
        max_discount_percent=None,
        settings=settings,
    )


def _item_approved_at_current_price(item: SaleItem) -> bool:
    return item.approved_by_user_id is not None and item.approved_price_cents == item.unit_price_cents


def _mark_item_approved(item: SaleItem, approver_id: int, now) -> None:
    item.price_status = PRICE_STATUS_OK
    item.approved_by_user_id = approver_id
    item.approved_at = now
    item.approved_price_cents = item.unit_price_cents


def _sale_discount_pending(sale: Sale, settings: PriceControlSettings | None) -> bool:
    if not requires_discount_approval(sale.discount_cents, sale.subtotal_cents, settings):
        return False
    return sale.approved_discount_cents != sale.discount_cents


def _release_if_clear(sale: Sale, approver_id: int, settings: PriceControlSettings | None) -> None:
    still_flagged = [i for i in sale.items if i.price_status in FLAGGED_PRICE_STATUSES]
    if still_flagged or _sale_discount_pending(sale, settings):
        return
    pendency_service._remove_code_locked(sale, pendency_service.CODE_DISCOUNT)
    sale.approval_status = APPROVAL_STATUS_RELEASED
    sale.block_reason = None
    sale.approved_by_user_id = approver_id
    sale.approved_at = utcnow()


def _apply_price_policy_locked(sale: Sale, settings: PriceControlSettings | None) -> list[dict]:
    """
    Evaluate every item and the sale-level discount, then bring D and
    approval_status in line with the outcome.

    Approvals survive a re-run while the approved price (or discount) is
    unchanged. When nothing needs approval D is cleared, so switching price
    control off never strands a sale in pending_approval.
    """
    results = []
    needs_approval = False
    for item in sale.items:
        result = _evaluate_item(item, settings)
        item.discount_percent = result.discount_percent
        approved = result.needs_approval and _item_approved_at_current_price(item)
        if approved:
            item.price_status = PRICE_STATUS_OK
        else:
            item.price_status = result.status
            needs_approval = needs_approval or result.needs_approval
        results.append({"item_id": item.id, **result.to_dict(), "approved": approved})

    if _sale_discount_pending(sale, settings):
        needs_approval = True

    if needs_approval:
        pendency_service._add_code_locked(sale, pendency_service.CODE_DISCOUNT)
        sale.approval_status = APPROVAL_STATUS_PENDING
    else:
        pendency_service._remove_code_locked(sale, pendency_service.CODE_DISCOUNT)
        sale.block_reason = None
        if sale.approval_status == APPROVAL_STATUS_PENDING:
            sale.approval_status = APPROVAL_STATUS_NORMAL
    return results


def apply_price_policy(sale_id: int, org_id: int | None = None) -> list[dict]:
    """Re-run price policy for a sale (e.g. after item edits)."""
    def _op():
        sale = _open_sale_locked(sale_id, org_id)
        settings = get_price_control_settings(sale.org_id)
        results = _apply_price_policy_locked(sale, settings)
        db.session.flush()
        return results

    return run_unit_of_work(_op, description=f"apply price policy to sale {sale_id}")


def approve_sale_item(item_id: int, approver_id: int, org_id: int | None = None) -> SaleItem:
    """
    Approve one flagged item. When it was the last flagged item the D
    pendency is cleared and the sale released.
    """
    def _op():
        item = db.session.query(SaleItem).filter_by(id=item_id).first()
        if not item:
            raise NotFoundError(f"Sale item {item_id} not found", details={"item_id": item_id})

        sale = _open_sale_locked(item.sale_id, org_id)
        settings = _require_approver(sale.org_id, approver_id)

        _mark_item_approved(item, approver_id, utcnow())
        _release_if_clear(sale, approver_id, settings)
        db.session.flush()
        current_app.logger.info("Sale item %s price approved by user %s", item_id, approver_id)
        return item

    return run_unit_of_work(_op, description=f"approve sale item {item_id}")


def approve_sale(sale_id: int, approver_id: int, org_id: int | None = None) -> Sale:
    """
    Approve every item needing approval and the sale-level discount, clear D
    and release the sale.
    """
    def _op():
        sale = _open_sale_locked(sale_id, org_id)
        settings = _require_approver(sale.org_id, approver_id)

        now = utcnow()
        for item in sale.items:
            if item.price_status in FLAGGED_PRICE_STATUSES or _evaluate_item(item, settings).needs_approval:
                _mark_item_approved(item, approver_id, now)
        sale.approved_discount_cents = sale.discount_cents

        pendency_service._remove_code_locked(sale, pendency_service.CODE_DISCOUNT)
        sale.approval_status = APPROVAL_STATUS_RELEASED
        sale.block_reason = None
        sale.approved_by_user_id = approver_id
        sale.approved_at = now
        db.session.flush()
        current_app.logger.info("Sale %s prices approved by user %s", sale_id, approver_id)
        return sale

    return run_unit_of_work(_op, description=f"approve prices of sale {sale_id}")


def reject_sale(sale_id: int, approver_id: int, reason: str, org_id: int | None = None) -> Sale:
    """
    Reject a sale's pricing. The sale returns to normal with a block reason
    and keeps its D pendency until resubmitted with acceptable prices.
    """
    if not reason or not reason.strip():
        raise ValidationError("Rejection reason is required")

    def _op():
        sale = _open_sale_locked(sale_id, org_id)
        _require_approver(sale.org_id, approver_id)

        sale.approval_status = APPROVAL_STATUS_NORMAL
        sale.block_reason = reason.strip()[:255]
        db.session.flush()
        current_app.logger.info("Sale %s prices rejected by user %s", sale_id, approver_id)
        return sale

    return run_unit_of_work(_op, description=f"reject prices of sale {sale_id}")
