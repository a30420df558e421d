"""
Cart Module - Totals
=====================
Pure pricing functions. Given line snapshots and the applied coupon,
derive subtotal, discount, tax, shipping and total.

    1. subtotal = Σ effective_price × quantity
    2. discount = applied coupon discount, never above subtotal
    3. tax      = round2((subtotal − discount) × tax_rate)
    4. shipping = 0 if subtotal ≥ threshold, free-shipping coupon or empty cart, else flat fee
    5. total    = max(0, round2(subtotal − discount + tax + shipping))
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from common.helpers import round2, to_decimal
from modules.admin.service import PricingConfig

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class LineSnapshot:
    """One cart/order line as seen by the pricing rules."""
    product_id: int
    quantity: int
    price: Decimal
    discount_price: Optional[Decimal] = None
    category: Optional[str] = None
    name: str = ""

    @property
    def effective_price(self) -> Decimal:
        if self.discount_price is not None:
            return to_decimal(self.discount_price)
        return to_decimal(self.price)

    @property
    def line_total(self) -> Decimal:
        return self.effective_price * self.quantity


@dataclass(frozen=True)
class CartTotals:
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    shipping_amount: Decimal = ZERO
    total: Decimal = ZERO

    def as_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "tax_amount": self.tax_amount,
            "shipping_amount": self.shipping_amount,
            "total": self.total,
        }


def compute_subtotal(lines: Iterable[LineSnapshot]) -> Decimal:
    return round2(sum((line.line_total for line in lines), Decimal("0")))


def compute_shipping(
    subtotal: Decimal,
    config: PricingConfig,
    free_shipping: bool = False,
    has_items: bool = True,
) -> Decimal:
    if not has_items or free_shipping or subtotal >= config.free_shipping_threshold:
        return ZERO
    return round2(config.flat_shipping_fee)


def compute_totals(
    lines: Iterable[LineSnapshot],
    coupon_discount=ZERO,
    free_shipping: bool = False,
    config: Optional[PricingConfig] = None,
) -> CartTotals:
    config = config or PricingConfig()
    lines = list(lines)

    subtotal = compute_subtotal(lines)
    discount = min(round2(coupon_discount), subtotal)
    tax = round2((subtotal - discount) * config.tax_rate)
    shipping = compute_shipping(subtotal, config, free_shipping, has_items=bool(lines))
    total = max(ZERO, round2(subtotal - discount + tax + shipping))

    return CartTotals(
        subtotal=subtotal,
        discount_amount=discount,
        tax_amount=tax,
        shipping_amount=shipping,
        total=total,
    )
