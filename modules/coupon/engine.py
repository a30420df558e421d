"""
Coupon Engine
==============
Pure eligibility and discount rules. No database access: the caller
supplies the coupon, the user profile, the cart lines and the clock.

Eligibility chain (short-circuits on the first failure):
  1. Active, inside [start_date, end_date), total usage not exhausted
  2. User type (all / new / existing / specific)
  3. Per-user usage limit
  4. Minimum order value / minimum quantity
  5. Product & category allow/deny lists
  6. Region (state, optional districts)
  7. Season / month window, first-order-only
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from common.helpers import as_utc, now_utc, round2, to_decimal, format_inr
from modules.cart.totals import LineSnapshot
from modules.coupon.models import DiscountType, ApplicableFor, Season
from modules.user.service import UserProfile

ZERO = Decimal("0.00")

SEASON_MONTHS = {
    Season.KHARIF.value: {6, 7, 8, 9, 10},
    Season.RABI.value: {11, 12, 1, 2, 3},
    Season.ZAID.value: {4, 5},
    Season.YEAR_ROUND.value: set(range(1, 13)),
}


class Rejection(str, enum.Enum):
    INACTIVE = "inactive"
    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    USAGE_EXHAUSTED = "usage_exhausted"
    USER_TYPE = "user_type"
    PER_USER_LIMIT = "per_user_limit"
    MIN_ORDER_VALUE = "min_order_value"
    MIN_QUANTITY = "min_quantity"
    PRODUCT_RESTRICTION = "product_restriction"
    EXCLUDED_ITEM = "excluded_item"
    REGION = "region"
    SEASON = "season"
    FIRST_ORDER = "first_order"


# Failures of the coupon itself rather than of this user/cart
VALIDITY_REJECTIONS = {
    Rejection.INACTIVE,
    Rejection.NOT_STARTED,
    Rejection.EXPIRED,
    Rejection.USAGE_EXHAUSTED,
}


@dataclass
class EligibilityResult:
    ok: bool
    reason: Optional[Rejection] = None
    message: str = ""

    @property
    def is_validity_failure(self) -> bool:
        return self.reason in VALIDITY_REJECTIONS


_PASS = EligibilityResult(ok=True)


def _fail(reason: Rejection, message: str) -> EligibilityResult:
    return EligibilityResult(ok=False, reason=reason, message=message)


@dataclass
class CouponContext:
    """Everything the rules need to know about one apply/checkout attempt."""
    profile: UserProfile
    lines: Sequence[LineSnapshot] = field(default_factory=list)
    subtotal: Decimal = ZERO
    shipping: Decimal = ZERO  # shipping that would be charged without a coupon
    now: Optional[datetime] = None
    user_uses: int = 0

    def __post_init__(self):
        if self.now is None:
            self.now = now_utc()

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


def season_of_month(month: int) -> Optional[Season]:
    for season in (Season.KHARIF, Season.RABI, Season.ZAID):
        if month in SEASON_MONTHS[season.value]:
            return season
    return None


# ==========================================
# Individual checks
# ==========================================

def check_validity(coupon, now: datetime) -> EligibilityResult:
    now = as_utc(now)
    if not coupon.is_active:
        return _fail(Rejection.INACTIVE, "This coupon is not active")
    if now < as_utc(coupon.start_date):
        return _fail(Rejection.NOT_STARTED, "This coupon is not active yet")
    if now >= as_utc(coupon.end_date):
        return _fail(Rejection.EXPIRED, "This coupon has expired")
    if coupon.usage_limit_total is not None and coupon.usage_count >= coupon.usage_limit_total:
        return _fail(Rejection.USAGE_EXHAUSTED, "This coupon has reached its usage limit")
    return _PASS


def check_user_type(coupon, profile: UserProfile) -> EligibilityResult:
    audience = coupon.applicable_for or ApplicableFor.ALL
    if audience == ApplicableFor.ALL:
        return _PASS
    if audience == ApplicableFor.SPECIFIC:
        if profile.user_id in coupon.specific_user_ids:
            return _PASS
        return _fail(Rejection.USER_TYPE, "This coupon is not available for your account")
    if audience == ApplicableFor.NEW and not profile.is_new:
        return _fail(Rejection.USER_TYPE, "This coupon is only for new customers")
    if audience == ApplicableFor.EXISTING and profile.is_new:
        return _fail(Rejection.USER_TYPE, "This coupon is only for returning customers")
    return _PASS


def check_per_user_limit(coupon, user_uses: int) -> EligibilityResult:
    if user_uses >= coupon.usage_limit_per_user:
        return _fail(Rejection.PER_USER_LIMIT, "You have reached the usage limit for this coupon")
    return _PASS


def check_minimums(coupon, ctx: CouponContext) -> EligibilityResult:
    min_value = to_decimal(coupon.min_order_value)
    if ctx.subtotal < min_value:
        return _fail(Rejection.MIN_ORDER_VALUE, f"Minimum order value is {format_inr(min_value)}")
    if coupon.min_quantity and ctx.item_count < coupon.min_quantity:
        return _fail(Rejection.MIN_QUANTITY, f"Add at least {coupon.min_quantity} items to use this coupon")
    return _PASS


def _line_category(line: LineSnapshot) -> str:
    return (line.category or "").lower()


def qualifying_lines(coupon, lines: Sequence[LineSnapshot]) -> List[LineSnapshot]:
    """Lines matched by the allow lists. No allow list means every line."""
    product_ids = coupon.applicable_product_ids
    categories = coupon.applicable_categories
    if not product_ids and not categories:
        return list(lines)
    return [
        line for line in lines
        if line.product_id in product_ids or _line_category(line) in categories
    ]


def check_products(coupon, lines: Sequence[LineSnapshot]) -> EligibilityResult:
    excluded_ids = coupon.excluded_product_ids
    excluded_cats = coupon.excluded_categories
    for line in lines:
        if line.product_id in excluded_ids or _line_category(line) in excluded_cats:
            name = line.name or f"product #{line.product_id}"
            return _fail(Rejection.EXCLUDED_ITEM, f"This coupon cannot be used with {name}")

    if (coupon.applicable_product_ids or coupon.applicable_categories) and not qualifying_lines(coupon, lines):
        return _fail(Rejection.PRODUCT_RESTRICTION, "Your cart has no products eligible for this coupon")
    return _PASS


def check_region(coupon, profile: UserProfile) -> EligibilityResult:
    regions = coupon.regions
    if not regions:
        return _PASS
    state = (profile.state or "").strip().lower()
    district = (profile.district or "").strip().lower()
    for region in regions:
        if region.state.strip().lower() != state:
            continue
        districts = {d.strip().lower() for d in region.districts}
        if not districts or district in districts:
            return _PASS
    return _fail(Rejection.REGION, "This coupon is not available in your location")


def check_conditions(coupon, ctx: CouponContext) -> EligibilityResult:
    month = as_utc(ctx.now).month
    seasons = [s.lower() for s in coupon.seasons]
    if seasons and not any(month in SEASON_MONTHS.get(s, set()) for s in seasons):
        return _fail(Rejection.SEASON, "This coupon is not valid this season")
    if coupon.months and month not in coupon.months:
        return _fail(Rejection.SEASON, "This coupon is not valid this month")
    if coupon.first_order_only and ctx.profile.prior_orders > 0:
        return _fail(Rejection.FIRST_ORDER, "This coupon is only valid on your first order")
    return _PASS


# ==========================================
# Full chain
# ==========================================

def evaluate(coupon, ctx: CouponContext) -> EligibilityResult:
    """Run the eligibility chain. Returns the first failure, or a pass."""
    checks = (
        lambda: check_validity(coupon, ctx.now),
        lambda: check_user_type(coupon, ctx.profile),
        lambda: check_per_user_limit(coupon, ctx.user_uses),
        lambda: check_minimums(coupon, ctx),
        lambda: check_products(coupon, ctx.lines),
        lambda: check_region(coupon, ctx.profile),
        lambda: check_conditions(coupon, ctx),
    )
    for check in checks:
        result = check()
        if not result.ok:
            return result
    return _PASS


# ==========================================
# Discount
# ==========================================

def _buy_x_get_y_discount(coupon, lines: Sequence[LineSnapshot]) -> Decimal:
    buy = coupon.buy_quantity or 0
    get = coupon.get_quantity or 0
    if buy <= 0 or get <= 0:
        return ZERO
    percent = to_decimal(coupon.value)
    if percent <= 0 or percent > 100:
        percent = Decimal("100")

    discount = Decimal("0")
    for line in qualifying_lines(coupon, lines):
        free_units = (line.quantity // (buy + get)) * get
        discount += line.effective_price * free_units * percent / 100
    return discount


def calculate_discount(coupon, ctx: CouponContext) -> Decimal:
    """Discount for a coupon that already passed `evaluate`."""
    subtotal = to_decimal(ctx.subtotal)
    value = to_decimal(coupon.value)
    discount = ZERO

    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = subtotal * value / 100
        if coupon.max_discount_amount:
            discount = min(discount, to_decimal(coupon.max_discount_amount))

    elif coupon.discount_type == DiscountType.FIXED:
        discount = min(value, subtotal)

    elif coupon.discount_type == DiscountType.FREE_SHIPPING:
        discount = to_decimal(ctx.shipping)

    elif coupon.discount_type == DiscountType.BUY_X_GET_Y:
        discount = _buy_x_get_y_discount(coupon, ctx.lines)
        if coupon.max_discount_amount:
            discount = min(discount, to_decimal(coupon.max_discount_amount))

    return round2(max(discount, ZERO))
