# Overview: Pure price policy evaluation for a single sale item.

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


PRICE_STATUS_OK = "OK"
PRICE_STATUS_DISCOUNT_EXCEEDED = "DISCOUNT_EXCEEDED"
PRICE_STATUS_BELOW_MINIMUM = "BELOW_MINIMUM"

FLAGGED_PRICE_STATUSES = (PRICE_STATUS_DISCOUNT_EXCEEDED, PRICE_STATUS_BELOW_MINIMUM)


class PriceSettings(Protocol):
    is_active: bool
    max_seller_discount_percent: float
    min_value_without_approval_cents: int


@dataclass(frozen=True)
class PriceValidationResult:
    status: str
    needs_approval: bool
    message: str
    original_price: int
    final_price: int
    discount_percent: float

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "needs_approval": self.needs_approval,
            "message": self.message,
            "original_price": self.original_price,
            "final_price": self.final_price,
            "discount_percent": round(self.discount_percent, 4),
        }


def _cents(value: int) -> str:
    return f"{value / 100:.2f}"


def validate_item_price(
    original_price: int,
    final_price: int,
    minimum_price: int | None,
    max_discount_percent: float | None,
    settings: PriceSettings | None,
) -> PriceValidationResult:
    """
    Evaluate one item's final price against the organization's policy.

    Prices are in cents. Checks run in a fixed order and the first match wins:
    disabled policy, minimum price, discount cap, approval-free floor. A price
    under its minimum is BELOW_MINIMUM even when the discount is within the
    cap. Never raises; zero or negative prices just produce a 0% discount.

    max_discount_percent=None uses the settings' max seller discount.
    """
    if settings is None or not settings.is_active:
        return PriceValidationResult(
            status=PRICE_STATUS_OK,
            needs_approval=False,
            message="",
            original_price=original_price,
            final_price=final_price,
            discount_percent=0.0,
        )

    if original_price > 0:
        discount_percent = (original_price - final_price) / original_price * 100
    else:
        discount_percent = 0.0

    if max_discount_percent is None:
        max_discount_percent = settings.max_seller_discount_percent or 0.0

    if minimum_price is not None and final_price < minimum_price:
        return PriceValidationResult(
            status=PRICE_STATUS_BELOW_MINIMUM,
            needs_approval=True,
            message=(
                f"Final price ({_cents(final_price)}) is below the minimum "
                f"allowed price ({_cents(minimum_price)})"
            ),
            original_price=original_price,
            final_price=final_price,
            discount_percent=discount_percent,
        )

    if discount_percent > max_discount_percent:
        return PriceValidationResult(
            status=PRICE_STATUS_DISCOUNT_EXCEEDED,
            needs_approval=True,
            message=(
                f"Discount of {discount_percent:.2f}% exceeds the maximum "
                f"allowed {max_discount_percent:g}%"
            ),
            original_price=original_price,
            final_price=final_price,
            discount_percent=discount_percent,
        )

    floor = settings.min_value_without_approval_cents or 0
    if floor > 0 and final_price < floor:
        return PriceValidationResult(
            status=PRICE_STATUS_OK,
            needs_approval=True,
            message=f"Value below the approval-free minimum ({_cents(floor)})",
            original_price=original_price,
            final_price=final_price,
            discount_percent=discount_percent,
        )

    return PriceValidationResult(
        status=PRICE_STATUS_OK,
        needs_approval=False,
        message="",
        original_price=original_price,
        final_price=final_price,
        discount_percent=discount_percent,
    )


def requires_discount_approval(discount_cents: int, subtotal_cents: int, settings: PriceSettings | None) -> bool:
    """True when a sale-level discount exceeds the seller cap of an active policy."""
    if settings is None or not settings.is_active:
        return False
    if discount_cents <= 0 or subtotal_cents <= 0:
        return False
    discount_percent = discount_cents / subtotal_cents * 100
    return discount_percent > (settings.max_seller_discount_percent or 0.0)


def is_approver(user_id: int | None, settings: PriceSettings | None) -> bool:
    """Only listed users approve, and only while price control is active."""
    if user_id is None or settings is None or not settings.is_active:
        return False
    return user_id in (getattr(settings, "approver_user_ids", None) or [])
