"""
Order Module - Lifecycle
=========================
Pure state machine for order status. No database access.

Main chain (forward moves may skip steps, never go back):
    pending → confirmed → processing → packed → shipped → out-for-delivery → delivered

Side exits:
    pending / confirmed / processing → cancelled
    delivered → returned | refunded
    returned  → refunded
    cancelled → refunded   (only when payment was captured)
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Set

from config.settings import RETURN_WINDOW_DAYS, STANDARD_DELIVERY_DAYS
from common.exceptions import InvalidTransitionError
from common.helpers import as_utc, now_utc, round2, to_decimal
from modules.order.models import OrderStatus, PaymentStatus

MAIN_CHAIN = [
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.PACKED.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.OUT_FOR_DELIVERY.value,
    OrderStatus.DELIVERED.value,
]

CANCELLABLE = {
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
}

_SIDE_EXITS = {
    OrderStatus.DELIVERED.value: {OrderStatus.RETURNED.value, OrderStatus.REFUNDED.value},
    OrderStatus.RETURNED.value: {OrderStatus.REFUNDED.value},
}

# Column stamped when the order enters a status
STATUS_TIMESTAMPS = {
    OrderStatus.CONFIRMED.value: "confirmed_at",
    OrderStatus.SHIPPED.value: "shipped_at",
    OrderStatus.DELIVERED.value: "delivered_at",
    OrderStatus.CANCELLED.value: "cancelled_at",
}


def _value(status) -> str:
    return status.value if isinstance(status, OrderStatus) else str(status)


def allowed_transitions(status, payment_status: Optional[str] = None) -> Set[str]:
    status = _value(status)
    allowed = set()
    if status in MAIN_CHAIN:
        allowed.update(MAIN_CHAIN[MAIN_CHAIN.index(status) + 1:])
    if status in CANCELLABLE:
        allowed.add(OrderStatus.CANCELLED.value)
    allowed.update(_SIDE_EXITS.get(status, set()))
    if status == OrderStatus.CANCELLED.value and payment_status == PaymentStatus.COMPLETED:
        allowed.add(OrderStatus.REFUNDED.value)
    return allowed


def can_transition(order, target) -> bool:
    return _value(target) in allowed_transitions(order.status, order.payment_status)


def check_transition(order, target) -> None:
    if not can_transition(order, target):
        raise InvalidTransitionError(
            f"Order {order.order_number} cannot move from {order.status} to {_value(target)}"
        )


def can_be_cancelled(order) -> bool:
    return _value(order.status) in CANCELLABLE


def can_be_returned(order, now: datetime = None) -> bool:
    """Delivered, inside the return window (inclusive) and not already requested."""
    if _value(order.status) != OrderStatus.DELIVERED.value or order.delivered_at is None:
        return False
    if order.return_request is not None:
        return False
    now = as_utc(now or now_utc())
    return now - as_utc(order.delivered_at) <= timedelta(days=RETURN_WINDOW_DAYS)


def calculate_total(order) -> Decimal:
    """Recompute the total from the snapshot. Never writes to the order."""
    subtotal = round2(sum(
        (to_decimal(item.line_total) for item in order.items), Decimal("0"),
    ))
    discount = min(round2(order.discount_amount), subtotal)
    total = subtotal - discount + round2(order.tax_amount) + round2(order.shipping_amount)
    return max(Decimal("0.00"), round2(total))


def is_consistent(order) -> bool:
    return calculate_total(order) == round2(order.total)


def estimated_delivery(start: datetime = None, days: int = None) -> datetime:
    days = STANDARD_DELIVERY_DAYS if days is None else days
    return as_utc(start or now_utc()) + timedelta(days=days)


def order_summary(order) -> dict:
    return {
        "order_number": order.order_number,
        "status": _value(order.status),
        "payment_status": order.payment_status,
        "item_count": order.item_count,
        "total": round2(order.total),
        "created_at": order.created_at,
        "estimated_delivery": order.estimated_delivery,
        "can_cancel": can_be_cancelled(order),
        "can_return": can_be_returned(order),
    }
