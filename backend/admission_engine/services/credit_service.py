# Overview: Service-layer operations for credit admission and credit review decisions.

"""
Credit Admission Controller

WHY: Sales paid on credit (boleto, store credit, post-dated cheque...) expose
the organization to customer debt. Such sales carry a C pendency and a
credit review until an analyst approves or denies them.

REVIEW LIFECYCLE (Sale.credit_status):
- NULL -> pending            (submit_for_credit_review)
- pending -> approved        (approve_credit: clears C)
- pending -> denied          (deny_credit: C stays, sale stays blocked)
- approved|denied -> pending (request_credit_adjustment opens a new cycle)

CONCURRENCY:
- Decisions compare-and-swap on the observed review state: the sale row is
  locked and its version_id checked on flush. The loser of a race is retried,
  re-reads the new state and fails with CreditStateError. The log row is in
  the same transaction, so a failed decision never leaves a log behind.
- Admission reads a changing set of sales. By default two simultaneous sales
  for one customer may both pass before either commits. With
  SERIALIZE_CREDIT_ADMISSION the customer row is locked for the check.
"""

from __future__ import annotations

import unicodedata
from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy import func, or_

from ..errors import CreditStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, Organization, PaymentMethod, Sale
from ..money import format_money
from . import audit_service, pendency_service
from .concurrency import begin_immediate, lock_for_update, run_unit_of_work


CREDIT_STATUS_PENDING = "pending"
CREDIT_STATUS_APPROVED = "approved"
CREDIT_STATUS_DENIED = "denied"

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_OVERDUE = "overdue"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_CANCELLED = "cancelled"

DEBT_PAYMENT_STATUSES = (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_OVERDUE)

# Normalized (lowercase, no accents, "_"/"-" as spaces) substrings that mark
# a free-text payment method label as credit-bearing.
CREDIT_METHOD_TERMS = (
    "boleto",
    "a prazo",
    "credito interno",
    "duplicata",
    "cheque",
    "parcelado",
    "credito loja",
)


@dataclass(frozen=True)
class CreditInfo:
    limit_total: int
    limit_used: int
    limit_available: int
    total_open: int
    total_overdue: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    reason: str | None = None
    current_debt: int | None = None
    available_credit: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# CLASSIFICATION
# =============================================================================

def normalize_payment_label(label: str) -> str:
    decomposed = unicodedata.normalize("NFKD", label)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    folded = stripped.lower().replace("_", " ").replace("-", " ")
    return " ".join(folded.split())


def requires_credit_analysis(payment_method: PaymentMethod | str | None) -> bool:
    """
    Whether a payment method puts the sale under credit review.

    A configured PaymentMethod answers with its requires_credit_review flag.
    A free-text label is normalized and matched by substring against
    CREDIT_METHOD_TERMS, so "Boleto 30/60", "CARTÃO A PRAZO" and
    "credito_loja" all qualify.
    """
    if payment_method is None:
        return False
    if isinstance(payment_method, PaymentMethod):
        return bool(payment_method.requires_credit_review)

    normalized = normalize_payment_label(str(payment_method))
    if not normalized:
        return False
    return any(term in normalized for term in CREDIT_METHOD_TERMS)


def sale_requires_credit_analysis(sale: Sale) -> bool:
    if sale.configured_payment_method is not None:
        return requires_credit_analysis(sale.configured_payment_method)
    return requires_credit_analysis(sale.payment_method)


# =============================================================================
# DEBT AND ADMISSION
# =============================================================================

def _currency_for_org(org_id: int | None) -> str:
    if org_id is not None:
        org = db.session.query(Organization).filter_by(id=org_id).first()
        if org and org.currency_code:
            return org.currency_code
    return current_app.config.get("DEFAULT_CURRENCY", "BRL")


def calculate_customer_debt(customer_id: int | None, exclude_sale_id: int | None = None) -> int:
    """
    Sum of totals of the customer's sales whose payment is pending or overdue.

    exclude_sale_id leaves out the sale being (re)evaluated so it is not
    counted against itself.
    """
    if not customer_id:
        return 0

    query = db.session.query(func.coalesce(func.sum(Sale.total_cents), 0)).filter(
        Sale.customer_id == customer_id,
        Sale.payment_status.in_(DEBT_PAYMENT_STATUSES),
        Sale.status != pendency_service.SALE_STATUS_CANCELLED,
    )
    if exclude_sale_id is not None:
        query = query.filter(Sale.id != exclude_sale_id)
    return int(query.scalar() or 0)


def can_customer_make_credit_sale(
    customer_id: int | None,
    credit_limit: int | None,
    sale_total: int,
    exclude_sale_id: int | None = None,
    currency_code: str | None = None,
) -> AdmissionDecision:
    """
    Decide whether a credit sale fits within the customer's limit (cents).

    - No customer: denied.
    - No configured limit (None or <= 0): allowed, reported as 0 debt and
      0 available. Missing limit means unlimited.
    - Otherwise denied when current debt + sale total exceeds the limit;
      allowed sales report the headroom left after this sale.
    """
    if not customer_id:
        return AdmissionDecision(allowed=False, reason="Customer not specified")

    limit = credit_limit or 0
    if limit <= 0:
        return AdmissionDecision(allowed=True, current_debt=0, available_credit=0)

    currency = currency_code or current_app.config.get("DEFAULT_CURRENCY", "BRL")
    current_debt = calculate_customer_debt(customer_id, exclude_sale_id)
    available = limit - current_debt
    new_debt = current_debt + sale_total

    if new_debt > limit:
        return AdmissionDecision(
            allowed=False,
            reason=(
                f"Credit limit exceeded. Limit: {format_money(limit, currency)}, "
                f"Current balance: {format_money(current_debt, currency)}, "
                f"Available: {format_money(available, currency)}"
            ),
            current_debt=current_debt,
            available_credit=available,
        )

    return AdmissionDecision(
        allowed=True,
        current_debt=current_debt,
        available_credit=available - sale_total,
    )


def get_customer_credit_info(customer_id: int, org_id: int) -> CreditInfo:
    """Limit, usage and open/overdue balances of a customer, computed on demand."""
    customer = db.session.query(Customer).filter_by(id=customer_id, org_id=org_id).first()
    if not customer:
        raise NotFoundError(
            f"Customer {customer_id} not found",
            details={"customer_id": customer_id, "org_id": org_id},
        )

    rows = (
        db.session.query(Sale.payment_status, func.coalesce(func.sum(Sale.total_cents), 0))
        .filter(
            Sale.customer_id == customer_id,
            Sale.org_id == org_id,
            Sale.payment_status.in_(DEBT_PAYMENT_STATUSES),
            Sale.status != pendency_service.SALE_STATUS_CANCELLED,
        )
        .group_by(Sale.payment_status)
        .all()
    )
    totals = {status: int(total or 0) for status, total in rows}
    total_open = totals.get(PAYMENT_STATUS_PENDING, 0)
    total_overdue = totals.get(PAYMENT_STATUS_OVERDUE, 0)

    limit_total = max(customer.credit_limit_cents or 0, 0)
    limit_used = total_open + total_overdue
    return CreditInfo(
        limit_total=limit_total,
        limit_used=limit_used,
        limit_available=max(limit_total - limit_used, 0),
        total_open=total_open,
        total_overdue=total_overdue,
    )


def get_pending_credit_sales(org_id: int) -> list[dict]:
    """
    Open sales awaiting credit review, each with its customer's CreditInfo.

    Includes sales with review state pending, and sales never reviewed
    (credit_status NULL) whose payment method is credit-bearing.
    """
    candidates = (
        db.session.query(Sale)
        .filter(
            Sale.org_id == org_id,
            Sale.status == pendency_service.SALE_STATUS_OPEN,
            or_(Sale.credit_status == CREDIT_STATUS_PENDING, Sale.credit_status.is_(None)),
        )
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )

    credit_info_cache: dict[int, CreditInfo] = {}
    pending = []
    for sale in candidates:
        if sale.credit_status is None and not sale_requires_credit_analysis(sale):
            continue

        credit_info = None
        if sale.customer_id:
            if sale.customer_id not in credit_info_cache:
                credit_info_cache[sale.customer_id] = get_customer_credit_info(sale.customer_id, org_id)
            credit_info = credit_info_cache[sale.customer_id]

        row = sale.to_dict()
        row["credit_status"] = sale.credit_status or CREDIT_STATUS_PENDING
        row["customer_name"] = sale.customer.name if sale.customer else None
        row["credit_info"] = credit_info.to_dict() if credit_info else None
        pending.append(row)

    current_app.logger.debug("Org %s has %s sales awaiting credit review", org_id, len(pending))
    return pending


# =============================================================================
# REVIEW SUBMISSION
# =============================================================================

def _admission_for_sale(sale: Sale) -> AdmissionDecision:
    customer = sale.customer
    return can_customer_make_credit_sale(
        customer_id=sale.customer_id,
        credit_limit=customer.credit_limit_cents if customer else None,
        sale_total=sale.total_cents,
        exclude_sale_id=sale.id,
        currency_code=_currency_for_org(sale.org_id),
    )


def _submit_for_credit_review_locked(sale: Sale) -> AdmissionDecision:
    """Add C, open a pending review and return the admission decision."""
    if current_app.config.get("SERIALIZE_CREDIT_ADMISSION") and sale.customer_id:
        lock_for_update(db.session.query(Customer).filter_by(id=sale.customer_id)).first()

    decision = _admission_for_sale(sale)
    pendency_service._add_code_locked(sale, pendency_service.CODE_CREDIT)
    if sale.credit_status != CREDIT_STATUS_PENDING:
        sale.credit_status = CREDIT_STATUS_PENDING
        sale.credit_review_cycle = (sale.credit_review_cycle or 0) + 1

    current_app.logger.info(
        "Sale %s submitted for credit review (allowed=%s, debt=%s, available=%s)",
        sale.id, decision.allowed, decision.current_debt, decision.available_credit,
    )
    return decision


def submit_for_credit_review(sale_id: int) -> AdmissionDecision:
    """Put an open sale under credit review and evaluate admission."""
    def _op():
        if current_app.config.get("SERIALIZE_CREDIT_ADMISSION"):
            begin_immediate()
        sale = _load_sale_locked(sale_id)
        decision = _submit_for_credit_review_locked(sale)
        db.session.flush()
        return decision

    return run_unit_of_work(_op, description=f"submit sale {sale_id} for credit review")


# =============================================================================
# DECISIONS
# =============================================================================

def _load_sale_locked(sale_id: int, org_id: int | None = None) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if org_id is not None:
        query = query.filter_by(org_id=org_id)
    sale = lock_for_update(query).first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def _require_under_review(sale: Sale) -> str | None:
    """
    Return the observed review state when a decision is allowed.

    A never-reviewed sale with a credit-bearing method counts as pending
    (sales created before review tracking existed).
    """
    observed = sale.credit_status
    if sale.status != pendency_service.SALE_STATUS_OPEN:
        raise CreditStateError(
            f"Sale {sale.id} is {sale.status}; credit can no longer be decided",
            details={"sale_id": sale.id, "status": sale.status},
        )
    if observed == CREDIT_STATUS_PENDING:
        return observed
    if observed is None and sale_requires_credit_analysis(sale):
        return observed
    raise CreditStateError(
        f"Sale {sale.id} is not awaiting credit review (status: {observed or 'none'})",
        details={"sale_id": sale.id, "credit_status": observed},
    )


def _require_reason(reason: str | None, message: str) -> str:
    if not reason or not reason.strip():
        raise ValidationError(message)
    return reason.strip()


def _caller_details(details: dict | None) -> dict:
    details = dict(details or {})
    reserved = sorted(set(details) & audit_service.CREDIT_SNAPSHOT_FIELDS)
    if reserved:
        raise ValidationError(
            f"Credit snapshot fields are computed and cannot be supplied: {', '.join(reserved)}",
            details={"fields": reserved},
        )
    return details


def _snapshot(sale: Sale) -> dict:
    decision = _admission_for_sale(sale)
    customer = sale.customer
    return {
        "credit_limit_cents": (customer.credit_limit_cents or 0) if customer else None,
        "current_debt_cents": decision.current_debt,
        "available_credit_cents": decision.available_credit,
        "sale_total_cents": sale.total_cents,
    }


def approve_credit(
    sale_id: int,
    approver_id: int,
    reason: str | None = None,
    details: dict | None = None,
    org_id: int | None = None,
):
    """
    Approve credit for a sale under review: clears C, sets approved and logs
    the decision in one transaction. Rejected if the sale is no longer
    pending.
    """
    details = _caller_details(details)
    audit_service.build_details(audit_service.ACTION_CREDIT_APPROVED, details)

    def _op():
        sale = _load_sale_locked(sale_id, org_id)
        observed = _require_under_review(sale)

        pendency_service._remove_code_locked(sale, pendency_service.CODE_CREDIT)
        sale.credit_status = CREDIT_STATUS_APPROVED
        if not sale.credit_review_cycle:
            sale.credit_review_cycle = 1
        db.session.flush()  # version check: a concurrent decision fails here

        log = audit_service.append_credit_log(
            org_id=sale.org_id,
            sale_id=sale.id,
            action=audit_service.ACTION_CREDIT_APPROVED,
            actor_user_id=approver_id,
            reason=reason.strip() if reason and reason.strip() else None,
            previous_status=observed,
            new_status=CREDIT_STATUS_APPROVED,
            review_cycle=sale.credit_review_cycle,
            details={**details, **_snapshot(sale)},
        )
        current_app.logger.info("Sale %s credit approved by user %s", sale.id, approver_id)
        return sale, log

    return run_unit_of_work(_op, description=f"approve credit for sale {sale_id}")


def deny_credit(
    sale_id: int,
    approver_id: int,
    reason: str,
    details: dict | None = None,
    org_id: int | None = None,
):
    """
    Deny credit. The C pendency stays: the sale remains blocked until it is
    cancelled or its payment method changes and is re-evaluated.
    """
    reason = _require_reason(reason, "Denial reason is required")
    details = _caller_details(details)
    audit_service.build_details(audit_service.ACTION_CREDIT_DENIED, details)

    def _op():
        sale = _load_sale_locked(sale_id, org_id)
        observed = _require_under_review(sale)

        pendency_service._add_code_locked(sale, pendency_service.CODE_CREDIT)
        sale.credit_status = CREDIT_STATUS_DENIED
        if not sale.credit_review_cycle:
            sale.credit_review_cycle = 1
        db.session.flush()

        log = audit_service.append_credit_log(
            org_id=sale.org_id,
            sale_id=sale.id,
            action=audit_service.ACTION_CREDIT_DENIED,
            actor_user_id=approver_id,
            reason=reason,
            previous_status=observed,
            new_status=CREDIT_STATUS_DENIED,
            review_cycle=sale.credit_review_cycle,
            details={**details, **_snapshot(sale)},
        )
        current_app.logger.info("Sale %s credit denied by user %s", sale.id, approver_id)
        return sale, log

    return run_unit_of_work(_op, description=f"deny credit for sale {sale_id}")


def request_credit_adjustment(
    sale_id: int,
    approver_id: int,
    reason: str,
    adjustment_type: str,
    adjustment_details: dict | None = None,
    details: dict | None = None,
    org_id: int | None = None,
):
    """
    Record a request for the seller to adjust the sale (bigger down payment,
    other payment method, fewer installments...).

    Pendency codes are untouched. A sale already approved or denied gets a
    fresh pending review cycle linked to the decision it reopens.
    """
    reason = _require_reason(reason, "Adjustment reason is required")
    if adjustment_type not in audit_service.ADJUSTMENT_TYPES:
        raise ValidationError(
            f"Invalid adjustment type: {adjustment_type!r}. "
            f"Must be one of {list(audit_service.ADJUSTMENT_TYPES)}",
            details={"adjustment_type": adjustment_type},
        )
    payload = {
        **_caller_details(details),
        "adjustment_type": adjustment_type,
        "adjustment_details": adjustment_details or None,
    }
    audit_service.build_details(audit_service.ACTION_CREDIT_ADJUSTMENT_REQUESTED, payload)

    def _op():
        sale = _load_sale_locked(sale_id, org_id)
        if sale.status != pendency_service.SALE_STATUS_OPEN:
            raise CreditStateError(
                f"Sale {sale.id} is {sale.status}; adjustments are no longer possible",
                details={"sale_id": sale.id, "status": sale.status},
            )

        observed = sale.credit_status
        previous_log_id = None
        if observed in (CREDIT_STATUS_APPROVED, CREDIT_STATUS_DENIED):
            prior = audit_service.latest_decision_log(sale.id)
            previous_log_id = prior.id if prior else None
            sale.credit_status = CREDIT_STATUS_PENDING
            sale.credit_review_cycle = (sale.credit_review_cycle or 0) + 1
        elif observed is None:
            if not sale_requires_credit_analysis(sale):
                raise CreditStateError(
                    f"Sale {sale.id} is not subject to credit review",
                    details={"sale_id": sale.id},
                )
            sale.credit_status = CREDIT_STATUS_PENDING
            sale.credit_review_cycle = (sale.credit_review_cycle or 0) + 1
        db.session.flush()

        log = audit_service.append_credit_log(
            org_id=sale.org_id,
            sale_id=sale.id,
            action=audit_service.ACTION_CREDIT_ADJUSTMENT_REQUESTED,
            actor_user_id=approver_id,
            reason=reason,
            previous_status=observed,
            new_status=sale.credit_status,
            review_cycle=sale.credit_review_cycle,
            previous_log_id=previous_log_id,
            details={**payload, **_snapshot(sale)},
        )
        current_app.logger.info(
            "Sale %s credit adjustment (%s) requested by user %s", sale.id, adjustment_type, approver_id
        )
        return sale, log

    return run_unit_of_work(_op, description=f"request credit adjustment for sale {sale_id}")


def get_credit_logs(sale_id: int, org_id: int | None = None):
    return audit_service.get_credit_logs(sale_id, org_id)
