# Overview: Service-layer operations for sale pendency codes (invoicing gate).

"""
Pendency Tracker

A sale carries up to three pendency codes. While any code is present the
sale cannot be invoiced.

- E: stock separation required
- C: credit review required
- D: discount approval required

DESIGN:
- Codes are stored on the sale row itself (Sale.pendency_codes), so every
  change commits together with the sale and a torn code set is impossible.
- Mutations take the row lock and bump the sale's version_id; a concurrent
  writer gets StaleDataError and is retried from a fresh read.
- The *_locked helpers mutate an already-locked sale without committing so
  credit and pricing decisions can include the code change in their own
  unit of work.
"""

from __future__ import annotations

from flask import current_app

from ..errors import NotFoundError, SaleStateError, ValidationError
from ..extensions import db
from ..models import Sale
from .concurrency import lock_for_update, run_unit_of_work


CODE_STOCK = "E"
CODE_CREDIT = "C"
CODE_DISCOUNT = "D"

# Canonical storage order
VALID_CODES = (CODE_STOCK, CODE_CREDIT, CODE_DISCOUNT)

CODE_DESCRIPTIONS = {
    CODE_STOCK: "Stock separation pending",
    CODE_CREDIT: "Credit review pending",
    CODE_DISCOUNT: "Discount approval pending",
}

SALE_STATUS_OPEN = "open"
SALE_STATUS_INVOICED = "invoiced"
SALE_STATUS_CANCELLED = "cancelled"


def _validate_code(code: str) -> str:
    if code not in VALID_CODES:
        raise ValidationError(
            f"Invalid pendency code: {code!r}. Must be one of {list(VALID_CODES)}",
            details={"code": code},
        )
    return code


def describe_code(code: str) -> str:
    return CODE_DESCRIPTIONS[_validate_code(code)]


def codes_of(sale: Sale) -> set[str]:
    return set(sale.pendency_codes or "")


def _serialize(codes: set[str]) -> str:
    return "".join(c for c in VALID_CODES if c in codes)


def _require_mutable(sale: Sale) -> None:
    if sale.status != SALE_STATUS_OPEN:
        raise SaleStateError(
            f"Sale {sale.id} is {sale.status}; pendencies can no longer change",
            details={"sale_id": sale.id, "status": sale.status},
        )


def _load_sale(sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def _add_code_locked(sale: Sale, code: str) -> bool:
    """Add code to a locked sale. Returns True if the set changed."""
    _validate_code(code)
    current = codes_of(sale)
    if code in current:
        return False
    _require_mutable(sale)
    current.add(code)
    sale.pendency_codes = _serialize(current)
    current_app.logger.debug("Sale %s pendency %s added -> %r", sale.id, code, sale.pendency_codes)
    return True


def _remove_code_locked(sale: Sale, code: str) -> bool:
    """Remove code from a locked sale. Returns True if the set changed."""
    _validate_code(code)
    current = codes_of(sale)
    if code not in current:
        return False
    _require_mutable(sale)
    current.discard(code)
    sale.pendency_codes = _serialize(current)
    current_app.logger.debug("Sale %s pendency %s removed -> %r", sale.id, code, sale.pendency_codes)
    return True


def add_code(sale_id: int, code: str) -> Sale:
    """Idempotent insert of a pendency code."""
    _validate_code(code)

    def _op():
        sale = _load_sale(sale_id, lock=True)
        _add_code_locked(sale, code)
        return sale

    return run_unit_of_work(_op, description=f"add pendency {code} to sale {sale_id}")


def remove_code(sale_id: int, code: str) -> Sale:
    """Idempotent removal of a pendency code."""
    _validate_code(code)

    def _op():
        sale = _load_sale(sale_id, lock=True)
        _remove_code_locked(sale, code)
        return sale

    return run_unit_of_work(_op, description=f"remove pendency {code} from sale {sale_id}")


def get_codes(sale_id: int) -> set[str]:
    return codes_of(_load_sale(sale_id))


def has_code(sale_id: int, code: str) -> bool:
    _validate_code(code)
    return code in get_codes(sale_id)


def can_invoice(sale_id: int) -> bool:
    """True iff the sale carries no pendency code."""
    return not get_codes(sale_id)
