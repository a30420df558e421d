from datetime import timedelta
from decimal import Decimal

import pytest

from common.exceptions import (
    ValidationError, CouponNotFoundError, CouponInvalidError,
    CouponNotEligibleError, CouponNotApplicableError,
)
from common.helpers import now_utc
from modules.cart.totals import LineSnapshot
from modules.coupon.service import coupon_service


def cart(product, quantity=2):
    return [LineSnapshot(
        product_id=product.id,
        quantity=quantity,
        price=product.price,
        discount_price=product.discount_price,
        category=product.category,
        name=product.name,
    )]


@pytest.fixture
def farmer(make_user):
    return make_user()


@pytest.fixture
def seed(make_product):
    return make_product(name="Hybrid Paddy Seed", price=Decimal("850"), discount_price=Decimal("750"))


# ==========================================
# Validate
# ==========================================

def test_validate_normalizes_code(db, farmer, seed, make_coupon):
    make_coupon()
    result = coupon_service.validate(db, "  welcome10 ", farmer.id, cart(seed))
    assert result.coupon.code == "WELCOME10"
    assert result.discount == Decimal("150.00")
    assert result.free_shipping is False


def test_validate_errors(db, farmer, seed, make_coupon):
    with pytest.raises(ValidationError):
        coupon_service.validate(db, "   ", farmer.id, cart(seed))
    with pytest.raises(CouponNotFoundError):
        coupon_service.validate(db, "NOPE", farmer.id, cart(seed))

    now = now_utc()
    make_coupon(code="OLD", start_date=now - timedelta(days=10), end_date=now - timedelta(days=1))
    with pytest.raises(CouponInvalidError) as exc:
        coupon_service.validate(db, "OLD", farmer.id, cart(seed))
    assert exc.value.reason == "expired"

    make_coupon(code="BIGSPEND", min_order_value=Decimal("5000"))
    with pytest.raises(CouponNotEligibleError) as exc:
        coupon_service.validate(db, "BIGSPEND", farmer.id, cart(seed))
    assert exc.value.reason == "min_order_value"


def test_free_shipping_above_threshold_is_not_applicable(db, farmer, seed, make_coupon):
    make_coupon(code="SHIPFREE", discount_type="free-shipping", value=None)
    with pytest.raises(CouponNotApplicableError) as exc:
        coupon_service.validate(db, "SHIPFREE", farmer.id, cart(seed))
    assert exc.value.reason == "zero_discount"


def test_free_shipping_below_threshold(db, farmer, make_product, make_coupon):
    cheap = make_product(price=Decimal("120"))
    make_coupon(code="SHIPFREE", discount_type="free-shipping", value=None)
    result = coupon_service.validate(db, "SHIPFREE", farmer.id, cart(cheap, quantity=1))
    assert result.free_shipping is True
    assert result.discount == Decimal("50.00")


def test_quick_check_reports_instead_of_raising(db, farmer, seed, make_coupon):
    make_coupon()
    ok = coupon_service.quick_check(db, "WELCOME10", farmer.id, cart(seed))
    assert ok["valid"] is True
    assert ok["discount_amount"] == Decimal("150.00")

    bad = coupon_service.quick_check(db, "MISSING", farmer.id, cart(seed))
    assert bad == {
        "valid": False,
        "error": "coupon_not_found",
        "reason": None,
        "detail": "Coupon MISSING does not exist",
    }


# ==========================================
# Usage recording
# ==========================================

def test_record_usage_respects_total_limit(db, farmer, make_user, make_coupon):
    coupon = make_coupon(usage_limit_total=1)
    other = make_user()

    coupon_service.record_usage(db, coupon, farmer.id, None, Decimal("150"))
    assert coupon.usage_count == 1

    with pytest.raises(CouponInvalidError) as exc:
        coupon_service.record_usage(db, coupon, other.id, None, Decimal("150"))
    assert exc.value.reason == "usage_exhausted"
    assert coupon.usage_count == 1


def test_per_user_cap_counts_recorded_uses(db, farmer, seed, make_coupon):
    coupon = make_coupon(usage_limit_per_user=1)
    coupon_service.record_usage(db, coupon, farmer.id, None, Decimal("150"))
    db.commit()
    with pytest.raises(CouponNotEligibleError) as exc:
        coupon_service.validate(db, "WELCOME10", farmer.id, cart(seed))
    assert exc.value.reason == "per_user_limit"


# ==========================================
# Admin
# ==========================================

@pytest.mark.parametrize("overrides", [
    {"code": "BAD-CODE"},
    {"code": "X" * 21},
    {"value": Decimal("150")},
    {"discount_type": "fixed", "value": Decimal("0")},
    {"discount_type": "buy-x-get-y", "buy_quantity": 0, "get_quantity": 1},
    {"discount_type": "bogus"},
    {"seasons": ["monsoon"]},
    {"months": [13]},
    {"usage_limit_per_user": -1},
    {"usage_limit_per_user": 0},
    {"min_quantity": "many"},
    {"usage_limit_total": "ten"},
    {"priority": "high"},
    {"months": ["June"]},
    {"specific_user_ids": ["farmer"]},
])
def test_create_rejects_invalid_coupons(make_coupon, overrides):
    with pytest.raises(ValidationError):
        make_coupon(**overrides)


def test_update_rejects_non_numeric_quantities(db, make_coupon):
    coupon = make_coupon(discount_type="buy-x-get-y", buy_quantity=2, get_quantity=1, value=None)
    with pytest.raises(ValidationError):
        coupon_service.update_coupon(db, coupon.id, {"buy_quantity": "two"})


def test_create_rejects_inverted_window(make_coupon):
    now = now_utc()
    with pytest.raises(ValidationError):
        make_coupon(start_date=now, end_date=now)


def test_create_rejects_duplicate_code(make_coupon):
    make_coupon()
    with pytest.raises(ValidationError):
        make_coupon(code="welcome10")


def test_update_replaces_targets(db, make_coupon, seed):
    coupon = make_coupon(applicable_product_ids=[seed.id], regions=[{"state": "Punjab"}])
    assert coupon.applicable_product_ids == {seed.id}

    coupon_service.update_coupon(db, coupon.id, {
        "applicable_product_ids": [],
        "excluded_categories": ["Tools"],
        "regions": [{"state": "Gujarat", "districts": ["Anand"]}],
    })
    db.commit()
    db.refresh(coupon)
    assert coupon.applicable_product_ids == set()
    assert coupon.excluded_categories == {"tools"}
    assert [(r.state, r.districts) for r in coupon.regions] == [("Gujarat", ["Anand"])]


def test_analytics(db, farmer, make_user, make_coupon):
    coupon = make_coupon(usage_limit_total=10, usage_limit_per_user=5)
    other = make_user()
    coupon_service.record_usage(db, coupon, farmer.id, None, Decimal("100"))
    coupon_service.record_usage(db, coupon, farmer.id, None, Decimal("50"))
    coupon_service.record_usage(db, coupon, other.id, None, Decimal("150"))
    db.commit()

    stats = coupon_service.get_analytics(db, coupon.id)
    assert stats["total_uses"] == 3
    assert stats["unique_users"] == 2
    assert stats["total_savings"] == Decimal("300.00")
    assert stats["average_discount"] == Decimal("100.00")
    assert stats["usage_rate"] == Decimal("30.00")


# ==========================================
# Listings
# ==========================================

def test_active_coupons_only_homepage_and_live(db, make_coupon):
    now = now_utc()
    make_coupon(code="HOME", display_on_homepage=True, priority=5)
    make_coupon(code="HIDDEN")
    make_coupon(code="SOON", display_on_homepage=True, start_date=now + timedelta(days=1),
                end_date=now + timedelta(days=5))
    assert [c.code for c in coupon_service.get_active_coupons(db)] == ["HOME"]


def test_applicable_coupons_best_first(db, farmer, seed, make_coupon):
    make_coupon(code="TEN")
    make_coupon(code="FLAT300", discount_type="fixed", value=Decimal("300"))
    make_coupon(code="NOTYOU", min_order_value=Decimal("9999"))
    found = coupon_service.get_applicable_coupons(db, farmer.id, cart(seed))
    assert [f["coupon"].code for f in found] == ["FLAT300", "TEN"]
