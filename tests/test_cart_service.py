from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import text

from common.exceptions import (
    ValidationError, ItemNotFoundError, InsufficientStockError, NotFoundError,
    CouponNotEligibleError, ConcurrencyConflictError,
)
from common.helpers import now_utc
from modules.admin.service import set_setting
from modules.cart.models import CartStatus
from modules.cart.service import cart_service


@pytest.fixture
def farmer(make_user):
    return make_user()


@pytest.fixture
def seed(make_product):
    return make_product(name="Hybrid Paddy Seed", price=Decimal("850"), discount_price=Decimal("750"), stock=10)


@pytest.fixture
def sprayer(make_product):
    return make_product(name="Knapsack Sprayer", category="Tools", price=Decimal("120"), stock=3)


def test_add_item_captures_prices_and_totals(db, farmer, seed):
    cart = cart_service.add_item(db, farmer.id, seed.id, 2)
    item = cart.find_item(seed.id)
    assert item.price == Decimal("850")
    assert item.discount_price == Decimal("750")
    assert cart.subtotal == Decimal("1500.00")
    assert cart.tax_amount == Decimal("270.00")
    assert cart.shipping_amount == Decimal("0.00")
    assert cart.total == Decimal("1770.00")


def test_adding_same_product_merges_lines(db, farmer, sprayer):
    cart_service.add_item(db, farmer.id, sprayer.id, 1)
    cart = cart_service.add_item(db, farmer.id, sprayer.id, 1)
    assert len(cart.items) == 1
    assert cart.find_item(sprayer.id).quantity == 2
    assert cart.shipping_amount == Decimal("50.00")


def test_add_item_checks_quantity_and_stock(db, farmer, sprayer):
    with pytest.raises(ValidationError):
        cart_service.add_item(db, farmer.id, sprayer.id, 0)
    with pytest.raises(InsufficientStockError):
        cart_service.add_item(db, farmer.id, sprayer.id, 4)
    with pytest.raises(NotFoundError):
        cart_service.add_item(db, farmer.id, 999, 1)


def test_add_item_rejects_inactive_product(db, farmer, make_product):
    retired = make_product(is_active=False)
    with pytest.raises(NotFoundError):
        cart_service.add_item(db, farmer.id, retired.id, 1)


def test_update_quantity(db, farmer, seed):
    cart_service.add_item(db, farmer.id, seed.id, 1)
    cart = cart_service.update_quantity(db, farmer.id, seed.id, 3)
    assert cart.item_count == 3
    with pytest.raises(InsufficientStockError):
        cart_service.update_quantity(db, farmer.id, seed.id, 11)
    cart = cart_service.update_quantity(db, farmer.id, seed.id, 0)
    assert cart.items == []
    assert cart.total == Decimal("0.00")
    with pytest.raises(ItemNotFoundError):
        cart_service.update_quantity(db, farmer.id, seed.id, 1)


def test_remove_item_is_idempotent(db, farmer, seed):
    cart_service.add_item(db, farmer.id, seed.id, 1)
    cart_service.remove_item(db, farmer.id, seed.id)
    cart = cart_service.remove_item(db, farmer.id, seed.id)
    assert cart.items == []


def test_save_for_later_and_move_back(db, farmer, seed, sprayer):
    cart_service.add_item(db, farmer.id, seed.id, 2)
    cart_service.add_item(db, farmer.id, sprayer.id, 1)

    cart = cart_service.save_for_later(db, farmer.id, seed.id)
    assert cart.find_item(seed.id) is None
    assert cart.find_saved(seed.id).original_price == Decimal("850")
    assert cart.subtotal == Decimal("120.00")

    cart = cart_service.move_to_cart(db, farmer.id, seed.id)
    assert cart.find_saved(seed.id) is None
    assert cart.find_item(seed.id).quantity == 1

    with pytest.raises(ItemNotFoundError):
        cart_service.move_to_cart(db, farmer.id, seed.id)


def test_apply_and_remove_coupon(db, farmer, seed, make_coupon):
    make_coupon()
    cart_service.add_item(db, farmer.id, seed.id, 2)
    cart = cart_service.apply_coupon(db, farmer.id, "welcome10")
    assert cart.applied_coupon_code == "WELCOME10"
    assert cart.discount_amount == Decimal("150.00")
    assert cart.tax_amount == Decimal("243.00")
    assert cart.total == Decimal("1593.00")

    cart = cart_service.remove_coupon(db, farmer.id)
    assert not cart.has_coupon
    assert cart.total == Decimal("1770.00")


def test_failed_apply_leaves_cart_unchanged(db, farmer, seed, make_coupon):
    make_coupon(code="BIG", min_order_value=Decimal("5000"))
    cart_service.add_item(db, farmer.id, seed.id, 1)
    with pytest.raises(CouponNotEligibleError):
        cart_service.apply_coupon(db, farmer.id, "BIG")
    cart = cart_service.get_or_create_cart(db, farmer.id)
    assert not cart.has_coupon


def test_free_shipping_coupon_sets_flag_only(db, farmer, sprayer, make_coupon):
    make_coupon(code="SHIPFREE", discount_type="free-shipping", value=None)
    cart_service.add_item(db, farmer.id, sprayer.id, 1)
    cart = cart_service.apply_coupon(db, farmer.id, "SHIPFREE")
    assert cart.applied_free_shipping is True
    assert cart.discount_amount == Decimal("0.00")
    assert cart.shipping_amount == Decimal("0.00")
    assert cart.total == Decimal("141.60")


def test_clear_drops_items_and_coupon(db, farmer, seed, make_coupon):
    make_coupon()
    cart_service.add_item(db, farmer.id, seed.id, 2)
    cart_service.apply_coupon(db, farmer.id, "WELCOME10")
    cart = cart_service.clear(db, farmer.id)
    assert cart.items == []
    assert not cart.has_coupon
    assert cart.total == Decimal("0.00")


def test_runtime_pricing_settings(db, farmer, sprayer):
    set_setting(db, "flat_shipping_fee", "75")
    cart = cart_service.add_item(db, farmer.id, sprayer.id, 1)
    assert cart.shipping_amount == Decimal("75.00")


def test_summary_shape(db, farmer, seed):
    cart_service.add_item(db, farmer.id, seed.id, 2)
    summary = cart_service.get_cart_summary(db, farmer.id)
    assert summary["item_count"] == 2
    assert summary["items"][0]["line_total"] == Decimal("1500.00")
    assert summary["coupon"] is None
    assert summary["total"] == Decimal("1770.00")


def test_cleanup_abandoned_carts(db, farmer, make_user, seed):
    cart_service.add_item(db, farmer.id, seed.id, 1)
    fresh_user = make_user()
    cart_service.add_item(db, fresh_user.id, seed.id, 1)
    db.commit()

    count = cart_service.cleanup_abandoned_carts(db, days=30, now=now_utc() + timedelta(days=31))
    db.commit()
    assert count == 2

    cart = cart_service.get_or_create_cart(db, farmer.id, lock=False)
    assert cart.items == []


def test_cleanup_keeps_recent_carts(db, farmer, seed):
    cart = cart_service.add_item(db, farmer.id, seed.id, 1)
    db.commit()
    assert cart_service.cleanup_abandoned_carts(db, days=30) == 0
    assert cart.status == CartStatus.ACTIVE


# ==========================================
# Applied coupon follows the cart
# ==========================================

def test_coupon_dropped_when_cart_falls_below_minimum(db, farmer, seed, make_coupon):
    make_coupon(min_order_value=Decimal("1000"))
    cart_service.add_item(db, farmer.id, seed.id, 2)
    cart_service.apply_coupon(db, farmer.id, "WELCOME10")

    cart = cart_service.update_quantity(db, farmer.id, seed.id, 1)
    assert not cart.has_coupon
    assert cart.coupon_notice == "min_order_value"
    assert cart.discount_amount == Decimal("0.00")
    assert cart.total == Decimal("885.00")
    assert cart_service.get_cart_summary(db, farmer.id)["coupon_notice"] == "min_order_value"

    cart_service.update_quantity(db, farmer.id, seed.id, 2)
    cart = cart_service.apply_coupon(db, farmer.id, "WELCOME10")
    assert cart.coupon_notice is None
    assert cart.total == Decimal("1593.00")


def test_coupon_discount_tracks_quantity_changes(db, farmer, seed, make_coupon):
    make_coupon(max_discount_amount=Decimal("500"))
    cart_service.add_item(db, farmer.id, seed.id, 2)
    cart_service.apply_coupon(db, farmer.id, "WELCOME10")

    cart = cart_service.add_item(db, farmer.id, seed.id, 2)
    assert cart.applied_discount_amount == Decimal("300.00")
    assert cart.discount_amount == Decimal("300.00")
    assert cart.total == Decimal("3186.00")


# ==========================================
# Concurrency
# ==========================================

def test_stale_cart_version_raises_conflict(db, farmer, seed):
    cart = cart_service.add_item(db, farmer.id, seed.id, 1)
    db.commit()
    loaded_version = cart.version_id

    # Another writer bumps the row after we loaded it
    db.execute(
        text("UPDATE carts SET version_id = version_id + 1 WHERE id = :id"),
        {"id": cart.id},
    )
    assert cart.version_id == loaded_version
    with pytest.raises(ConcurrencyConflictError):
        cart_service.add_item(db, farmer.id, seed.id, 1)


def test_concurrently_created_cart_is_reused(db, farmer, monkeypatch):
    existing_id = cart_service.get_or_create_cart(db, farmer.id).id
    db.commit()

    real_find = cart_service._find_cart
    calls = []

    def miss_first(session, user_id, lock):
        calls.append(user_id)
        return None if len(calls) == 1 else real_find(session, user_id, lock)

    monkeypatch.setattr(cart_service, "_find_cart", miss_first)
    cart = cart_service.get_or_create_cart(db, farmer.id)
    assert cart.id == existing_id
    assert len(calls) == 2


def test_cart_insert_conflict_without_row_is_retryable(db, farmer, monkeypatch):
    cart_service.get_or_create_cart(db, farmer.id)
    db.commit()

    monkeypatch.setattr(cart_service, "_find_cart", lambda session, user_id, lock: None)
    with pytest.raises(ConcurrencyConflictError):
        cart_service.get_or_create_cart(db, farmer.id)
