from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from common.exceptions import InvalidTransitionError
from modules.order import lifecycle
from modules.order.models import Order, OrderItem, ReturnRequest

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def order(status="pending", payment_status="pending", **kwargs):
    return Order(order_number="AGR0001", status=status, payment_status=payment_status, **kwargs)


@pytest.mark.parametrize("current,target", [
    ("pending", "confirmed"),
    ("pending", "shipped"),
    ("confirmed", "processing"),
    ("packed", "shipped"),
    ("shipped", "out-for-delivery"),
    ("out-for-delivery", "delivered"),
    ("processing", "cancelled"),
    ("delivered", "returned"),
    ("delivered", "refunded"),
    ("returned", "refunded"),
])
def test_allowed_transitions(current, target):
    assert lifecycle.can_transition(order(current), target)


@pytest.mark.parametrize("current,target", [
    ("confirmed", "pending"),
    ("shipped", "packed"),
    ("packed", "cancelled"),
    ("shipped", "cancelled"),
    ("delivered", "shipped"),
    ("pending", "returned"),
    ("refunded", "pending"),
    ("cancelled", "confirmed"),
])
def test_rejected_transitions(current, target):
    assert not lifecycle.can_transition(order(current), target)
    with pytest.raises(InvalidTransitionError):
        lifecycle.check_transition(order(current), target)


def test_cancelled_order_refundable_only_when_paid():
    assert not lifecycle.can_transition(order("cancelled"), "refunded")
    assert lifecycle.can_transition(order("cancelled", payment_status="completed"), "refunded")


def test_cancellable_statuses():
    assert lifecycle.can_be_cancelled(order("pending"))
    assert lifecycle.can_be_cancelled(order("processing"))
    assert not lifecycle.can_be_cancelled(order("packed"))


def test_return_window_is_seven_days_inclusive():
    delivered = order("delivered", delivered_at=NOW)
    assert lifecycle.can_be_returned(delivered, NOW + timedelta(days=7))
    assert not lifecycle.can_be_returned(delivered, NOW + timedelta(days=7, seconds=1))


def test_return_needs_delivery_and_no_prior_request():
    assert not lifecycle.can_be_returned(order("shipped"), NOW)
    delivered = order("delivered", delivered_at=NOW)
    delivered.return_request = ReturnRequest(user_id=1, reason="Damaged bag")
    assert not lifecycle.can_be_returned(delivered, NOW + timedelta(days=1))


def test_calculate_total_from_snapshot():
    o = order(
        subtotal=Decimal("1500"), discount_amount=Decimal("150"),
        tax_amount=Decimal("243"), shipping_amount=Decimal("0"), total=Decimal("1593"),
    )
    o.items = [OrderItem(product_id=1, product_name="Seed", quantity=2,
                         price=Decimal("850"), discount_price=Decimal("750"), line_total=Decimal("1500"))]
    assert lifecycle.calculate_total(o) == Decimal("1593.00")
    assert lifecycle.is_consistent(o)
    o.total = Decimal("1600")
    assert not lifecycle.is_consistent(o)


def test_estimated_delivery_default_days():
    assert lifecycle.estimated_delivery(NOW) == NOW + timedelta(days=3)
