"""
Server-side pricing. Nothing here trusts an amount sent by the client:
totals are rebuilt from cart lines and the stored coupon row.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from aecoin_store.errors import EmptyCart, InvalidOrderTotal
from aecoin_store.models import Coupon, DiscountType
from aecoin_store.schemas import SnapshotLine

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class Quote:
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    applied_coupon: Optional[str] = None

    @property
    def total_minor_units(self) -> int:
        return to_minor_units(self.total)


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    return int(to_money(amount) * 100)


def from_minor_units(minor_units: int) -> Decimal:
    return (Decimal(int(minor_units)) / 100).quantize(CENT)


def _aware(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def coupon_rejection_reason(coupon: Coupon, subtotal: Decimal, now: Optional[datetime] = None) -> Optional[str]:
    """Returns why the coupon cannot be applied, or None when it can."""
    now = now or datetime.now(timezone.utc)
    if not coupon.is_active:
        return "Coupon is no longer active"
    if coupon.expires_at is not None and _aware(coupon.expires_at) <= _aware(now):
        return "Coupon has expired"
    if coupon.max_uses is not None and (coupon.current_uses or 0) >= coupon.max_uses:
        return "Coupon usage limit reached"
    if coupon.min_purchase is not None and subtotal < to_money(coupon.min_purchase):
        return f"Minimum purchase of {to_money(coupon.min_purchase)} required"
    return None


def coupon_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    value = to_money(coupon.discount_value)
    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        return to_money(subtotal * value / 100)
    return min(value, subtotal)


def subtotal_of(lines: Iterable[SnapshotLine]) -> Decimal:
    return to_money(sum((to_money(l.unit_price_at_checkout) * l.quantity for l in lines), ZERO))


def evaluate(lines, coupon: Optional[Coupon] = None, now: Optional[datetime] = None) -> Quote:
    """
    Computes subtotal, discount and total for the given lines.

    A coupon that does not pass validation is ignored rather than rejected,
    the caller only learns about it through ``Quote.applied_coupon``.
    Raises InvalidOrderTotal when the resulting total is not positive.
    """
    lines = list(lines)
    if not lines:
        raise EmptyCart("Cart is empty")

    subtotal = subtotal_of(lines)
    discount = ZERO
    applied = None
    if coupon is not None and coupon_rejection_reason(coupon, subtotal, now) is None:
        discount = coupon_discount(coupon, subtotal)
        applied = coupon.code

    total = max(ZERO, to_money(subtotal - discount))
    if total <= ZERO:
        raise InvalidOrderTotal("Invalid order total")
    return Quote(subtotal=subtotal, discount=discount, total=total, applied_coupon=applied)
