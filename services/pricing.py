from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple

from core.config import settings

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal


def cart_subtotal(lines: Iterable[Tuple[Decimal, int]]) -> Decimal:
    """Sum of ``price * quantity`` over (price, quantity) pairs."""
    return to_money(sum((to_money(price) * qty for price, qty in lines), Decimal("0")))


def compute_totals(subtotal: Decimal, discount: Decimal = Decimal("0")) -> OrderTotals:
    """Apply the pricing pipeline: subtotal -> discount -> shipping -> tax.

    Discount is clamped to the subtotal. Tax is charged on the discounted
    subtotal plus shipping.
    """
    subtotal = to_money(subtotal)
    discount = min(to_money(discount), subtotal)
    shipping = to_money(settings.SHIPPING_FLAT_FEE)
    taxable = subtotal - discount + shipping
    tax = to_money(taxable * settings.TAX_RATE / Decimal("100"))
    return OrderTotals(
        subtotal=subtotal,
        discount=discount,
        shipping=shipping,
        tax=tax,
        total=to_money(taxable + tax),
    )
