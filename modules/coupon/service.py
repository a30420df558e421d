"""
Coupon Service
================
Look up, validate, record and administer coupons.

The rules themselves live in `modules.coupon.engine` and never touch the
database. This layer gathers the context (user profile, prior uses,
shipping that would be charged), runs the engine and translates a
rejection into the matching exception:

  validity failures (inactive / window / exhausted) -> CouponInvalidError
  any other rejection                               -> CouponNotEligibleError
  passes every check but discount is zero           -> CouponNotApplicableError
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Sequence, Tuple

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func as sa_func, desc, update, or_

from common.exceptions import (
    NotFoundError, ValidationError, CouponNotFoundError,
    CouponInvalidError, CouponNotEligibleError, CouponNotApplicableError,
)
from common.helpers import now_utc, as_utc, round2, to_decimal, enum_value
from modules.admin.service import PricingConfig, get_pricing_config
from modules.cart.totals import LineSnapshot, compute_subtotal, compute_shipping
from modules.coupon import engine
from modules.coupon.models import (
    Coupon, CouponUser, CouponProduct, CouponCategory, CouponRegion, CouponUsage,
    DiscountType, ApplicableFor, Season,
)
from modules.user.service import UserProfile, user_service

logger = logging.getLogger("agrimart.coupon")

CODE_PATTERN = re.compile(r"^[A-Z0-9]+$")
CODE_MAX_LENGTH = 20

_DISCOUNT_TYPES = {t.value for t in DiscountType}
_AUDIENCES = {a.value for a in ApplicableFor}
_SEASONS = {s.value for s in Season}

# Rejections a cart can recover from by dropping the coupon
COUPON_ERRORS = (
    CouponNotFoundError, CouponInvalidError,
    CouponNotEligibleError, CouponNotApplicableError, ValidationError,
)


@dataclass
class CouponApplication:
    """Outcome of a successful validation."""
    coupon: Coupon
    discount: Decimal
    free_shipping: bool = False


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _parse_datetime(value, field: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value)))
    except ValueError:
        raise ValidationError(f"{field} is not a valid date")


def _parse_money(value, field: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    return amount


def _parse_int(value, field: str, default: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number")


class CouponService:

    # ------------------------------------------
    # Lookup
    # ------------------------------------------

    def find_by_code(self, db: Session, code: str) -> Coupon:
        """Normalized (trimmed, uppercased) lookup. Raises CouponNotFoundError."""
        normalized = normalize_code(code)
        if not normalized:
            raise ValidationError("Please enter a coupon code")
        coupon = (
            db.query(Coupon)
            .options(
                selectinload(Coupon.specific_users),
                selectinload(Coupon.products),
                selectinload(Coupon.categories),
                selectinload(Coupon.regions),
            )
            .filter(Coupon.code == normalized)
            .first()
        )
        if not coupon:
            raise CouponNotFoundError(normalized)
        return coupon

    def get_coupon(self, db: Session, coupon_id: int) -> Coupon:
        coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            raise NotFoundError(f"Coupon #{coupon_id} not found")
        return coupon

    def count_user_uses(self, db: Session, coupon_id: int, user_id: int) -> int:
        return (
            db.query(CouponUsage)
            .filter(CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id)
            .count()
        )

    # ------------------------------------------
    # Validate (raises on failure)
    # ------------------------------------------

    def build_context(
        self,
        db: Session,
        coupon: Coupon,
        profile: UserProfile,
        lines: Sequence[LineSnapshot],
        now: datetime = None,
        config: PricingConfig = None,
    ) -> engine.CouponContext:
        config = config or get_pricing_config(db)
        lines = list(lines)
        subtotal = compute_subtotal(lines)
        return engine.CouponContext(
            profile=profile,
            lines=lines,
            subtotal=subtotal,
            shipping=compute_shipping(subtotal, config, has_items=bool(lines)),
            now=now or now_utc(),
            user_uses=self.count_user_uses(db, coupon.id, profile.user_id),
        )

    def validate(
        self,
        db: Session,
        code: str,
        user_id: int,
        lines: Sequence[LineSnapshot],
        now: datetime = None,
        config: PricingConfig = None,
    ) -> CouponApplication:
        """
        Full eligibility chain + discount for the given cart lines.
        Raises CouponNotFound / CouponInvalid / CouponNotEligible / CouponNotApplicable.
        """
        coupon = self.find_by_code(db, code)
        profile = user_service.get_profile(db, user_id)
        ctx = self.build_context(db, coupon, profile, lines, now, config)

        result = engine.evaluate(coupon, ctx)
        if not result.ok:
            logger.warning(f"Coupon {coupon.code} rejected for user #{user_id}: {result.reason.value}")
            if result.is_validity_failure:
                raise CouponInvalidError(result.message, reason=result.reason.value)
            raise CouponNotEligibleError(result.message, reason=result.reason.value)

        discount = engine.calculate_discount(coupon, ctx)
        if discount <= 0:
            raise CouponNotApplicableError(
                "This coupon gives no discount on your current cart",
                reason="zero_discount",
            )
        return CouponApplication(
            coupon=coupon,
            discount=discount,
            free_shipping=coupon.discount_type == DiscountType.FREE_SHIPPING,
        )

    def quick_check(
        self, db: Session, code: str, user_id: int, lines: Sequence[LineSnapshot],
    ) -> Dict[str, Any]:
        """Same as validate but returns a dict instead of raising."""
        try:
            result = self.validate(db, code, user_id, lines)
        except COUPON_ERRORS as e:
            return {"valid": False, "error": e.code, "reason": e.reason, "detail": e.message}
        return {
            "valid": True,
            "code": result.coupon.code,
            "discount_amount": result.discount,
            "free_shipping": result.free_shipping,
            "display": result.coupon.discount_display,
        }

    # ------------------------------------------
    # Record usage (inside the checkout transaction)
    # ------------------------------------------

    def record_usage(
        self,
        db: Session,
        coupon: Coupon,
        user_id: int,
        order_id: int,
        discount_amount: Decimal,
    ) -> CouponUsage:
        """
        Increment usage_count only while it is below the total limit, in a
        single UPDATE, then write the audit row. Zero rows -> exhausted.
        """
        result = db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                or_(
                    Coupon.usage_limit_total.is_(None),
                    Coupon.usage_count < Coupon.usage_limit_total,
                ),
            )
            .values(usage_count=Coupon.usage_count + 1)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            logger.warning(f"Coupon {coupon.code} exhausted while checking out order #{order_id}")
            raise CouponInvalidError(
                "This coupon has reached its usage limit",
                reason=engine.Rejection.USAGE_EXHAUSTED.value,
            )

        usage = CouponUsage(
            coupon_id=coupon.id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=round2(discount_amount),
            created_at=now_utc(),
        )
        db.add(usage)
        db.flush()
        logger.info(f"Coupon {coupon.code} used by user #{user_id} on order #{order_id}: {usage.discount_amount}")
        return usage

    # ------------------------------------------
    # Storefront listings
    # ------------------------------------------

    def _live_query(self, db: Session, now: datetime):
        return db.query(Coupon).filter(
            Coupon.is_active == True,
            Coupon.start_date <= now,
            Coupon.end_date > now,
            or_(
                Coupon.usage_limit_total.is_(None),
                Coupon.usage_count < Coupon.usage_limit_total,
            ),
        )

    def get_active_coupons(self, db: Session, now: datetime = None, limit: int = 10) -> List[Coupon]:
        """Homepage coupons, highest priority first."""
        now = now or now_utc()
        return (
            self._live_query(db, now)
            .filter(Coupon.display_on_homepage == True)
            .order_by(desc(Coupon.priority), desc(Coupon.id))
            .limit(limit)
            .all()
        )

    def get_seasonal_coupons(self, db: Session, season: str, now: datetime = None) -> List[Coupon]:
        season = (season or "").strip().lower()
        if season not in _SEASONS:
            raise ValidationError(f"{season} is not a valid season")
        now = now or now_utc()
        coupons = self._live_query(db, now).order_by(desc(Coupon.priority), desc(Coupon.id)).all()
        return [c for c in coupons if season in [s.lower() for s in c.seasons]]

    def get_applicable_coupons(
        self, db: Session, user_id: int, lines: Sequence[LineSnapshot], now: datetime = None,
    ) -> List[Dict[str, Any]]:
        """Every live coupon this user could apply right now, best discount first."""
        now = now or now_utc()
        profile = user_service.get_profile(db, user_id)
        config = get_pricing_config(db)
        found = []
        for coupon in self._live_query(db, now).all():
            ctx = self.build_context(db, coupon, profile, lines, now, config)
            if not engine.evaluate(coupon, ctx).ok:
                continue
            discount = engine.calculate_discount(coupon, ctx)
            if discount > 0:
                found.append({"coupon": coupon, "discount_amount": discount})
        found.sort(key=lambda f: (f["discount_amount"], f["coupon"].priority), reverse=True)
        return found

    # ------------------------------------------
    # Admin: CRUD
    # ------------------------------------------

    def get_all_coupons(
        self, db: Session, page: int = 1, per_page: int = 30,
        active_only: bool = False, search: str = None,
    ) -> Tuple[List[Coupon], int]:
        q = db.query(Coupon)
        if active_only:
            q = q.filter(Coupon.is_active == True)
        if search:
            q = q.filter(
                (Coupon.code.ilike(f"%{search}%")) | (Coupon.name.ilike(f"%{search}%"))
            )
        total = q.count()
        coupons = (
            q.order_by(desc(Coupon.created_at), desc(Coupon.id))
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return coupons, total

    def create_coupon(self, db: Session, data: dict, created_by: int = None) -> Coupon:
        coupon = Coupon(
            code=normalize_code(data.get("code")),
            name=(data.get("name") or "").strip(),
            description=data.get("description"),
            discount_type=enum_value(data.get("discount_type")),
            value=_parse_money(data.get("value"), "value") or Decimal("0"),
            max_discount_amount=_parse_money(data.get("max_discount_amount"), "max_discount_amount"),
            buy_quantity=_parse_int(data.get("buy_quantity"), "buy_quantity"),
            get_quantity=_parse_int(data.get("get_quantity"), "get_quantity"),
            min_order_value=_parse_money(data.get("min_order_value"), "min_order_value") or Decimal("0"),
            min_quantity=_parse_int(data.get("min_quantity"), "min_quantity", 0),
            usage_limit_total=_parse_int(data.get("usage_limit_total"), "usage_limit_total"),
            usage_limit_per_user=_parse_int(data.get("usage_limit_per_user"), "usage_limit_per_user", 1),
            usage_count=0,
            start_date=_parse_datetime(data.get("start_date"), "start_date"),
            end_date=_parse_datetime(data.get("end_date"), "end_date"),
            applicable_for=enum_value(data.get("applicable_for")) or ApplicableFor.ALL.value,
            first_order_only=bool(data.get("first_order_only")),
            display_on_homepage=bool(data.get("display_on_homepage")),
            priority=_parse_int(data.get("priority"), "priority", 0),
            is_active=data.get("is_active", True) is not False,
            created_by=created_by,
        )
        coupon.seasons = [s.strip().lower() for s in (data.get("seasons") or [])]
        coupon.months = [_parse_int(m, "months", 0) for m in (data.get("months") or [])]

        if db.query(Coupon.id).filter(Coupon.code == coupon.code).first():
            raise ValidationError(f"Coupon code {coupon.code} already exists")

        self._check(coupon)
        self._sync_targets(db, coupon, data)
        db.add(coupon)
        db.flush()
        logger.info(f"Coupon {coupon.code} created ({coupon.discount_type})")
        return coupon

    def update_coupon(self, db: Session, coupon_id: int, data: dict) -> Coupon:
        coupon = self.get_coupon(db, coupon_id)

        for key in ["name", "description", "discount_type", "applicable_for"]:
            if key in data and data[key] is not None:
                setattr(coupon, key, enum_value(data[key]))

        for key in ["value", "min_order_value"]:
            if key in data:
                setattr(coupon, key, _parse_money(data[key], key) or Decimal("0"))
        if "max_discount_amount" in data:
            coupon.max_discount_amount = _parse_money(data["max_discount_amount"], "max_discount_amount")

        for key in ["buy_quantity", "get_quantity", "usage_limit_total"]:
            if key in data:
                setattr(coupon, key, _parse_int(data[key], key))
        for key in ["min_quantity", "priority"]:
            if key in data:
                setattr(coupon, key, _parse_int(data[key], key, 0))
        if "usage_limit_per_user" in data:
            coupon.usage_limit_per_user = _parse_int(data["usage_limit_per_user"], "usage_limit_per_user", 1)

        for key in ["start_date", "end_date"]:
            if key in data:
                setattr(coupon, key, _parse_datetime(data[key], key))

        for key in ["first_order_only", "display_on_homepage", "is_active"]:
            if key in data:
                setattr(coupon, key, bool(data[key]))

        if "seasons" in data:
            coupon.seasons = [s.strip().lower() for s in (data["seasons"] or [])]
        if "months" in data:
            coupon.months = [_parse_int(m, "months", 0) for m in (data["months"] or [])]

        self._check(coupon)
        self._sync_targets(db, coupon, data)
        db.flush()
        return coupon

    def deactivate_coupon(self, db: Session, coupon_id: int) -> Coupon:
        """Coupons with usage history are never deleted, only switched off."""
        coupon = self.get_coupon(db, coupon_id)
        coupon.is_active = False
        db.flush()
        logger.info(f"Coupon {coupon.code} deactivated")
        return coupon

    def _replace(self, db: Session, coupon: Coupon, attr: str, items: list) -> None:
        # Old rows must be gone before re-inserting under the same unique key
        if coupon.id is not None:
            setattr(coupon, attr, [])
            db.flush()
        setattr(coupon, attr, items)

    def _sync_targets(self, db: Session, coupon: Coupon, data: dict) -> None:
        """Replace user/product/category/region lists present in `data`."""
        if "specific_user_ids" in data:
            user_ids = [_parse_int(uid, "specific_user_ids") for uid in data["specific_user_ids"] or []]
            self._replace(db, coupon, "specific_users", [
                CouponUser(user_id=uid) for uid in dict.fromkeys(user_ids)
            ])
        if "applicable_product_ids" in data or "excluded_product_ids" in data:
            allowed = data.get("applicable_product_ids")
            excluded = data.get("excluded_product_ids")
            if allowed is None:
                allowed = list(coupon.applicable_product_ids)
            if excluded is None:
                excluded = list(coupon.excluded_product_ids)
            excluded = {_parse_int(p, "excluded_product_ids") for p in excluded}
            self._replace(db, coupon, "products", (
                [CouponProduct(product_id=p, is_excluded=False)
                 for p in dict.fromkeys(_parse_int(p, "applicable_product_ids") for p in allowed)
                 if p not in excluded]
                + [CouponProduct(product_id=p, is_excluded=True) for p in sorted(excluded)]
            ))
        if "applicable_categories" in data or "excluded_categories" in data:
            allowed = data.get("applicable_categories")
            excluded = data.get("excluded_categories")
            if allowed is None:
                allowed = [c.category for c in coupon.categories if not c.is_excluded]
            if excluded is None:
                excluded = [c.category for c in coupon.categories if c.is_excluded]
            excluded = {c.strip() for c in excluded if c and c.strip()}
            self._replace(db, coupon, "categories", (
                [CouponCategory(category=c.strip(), is_excluded=False)
                 for c in dict.fromkeys(allowed) if c and c.strip() and c.strip() not in excluded]
                + [CouponCategory(category=c, is_excluded=True) for c in sorted(excluded)]
            ))
        if "regions" in data:
            regions = []
            for entry in data["regions"] or []:
                state = (entry.get("state") or "").strip()
                if not state:
                    raise ValidationError("Region state is required")
                region = CouponRegion(state=state)
                region.districts = [d.strip() for d in (entry.get("districts") or []) if d and d.strip()]
                regions.append(region)
            self._replace(db, coupon, "regions", regions)

    def _check(self, coupon: Coupon) -> None:
        """Validate invariants before saving."""
        if not coupon.code:
            raise ValidationError("Coupon code is required")
        if len(coupon.code) > CODE_MAX_LENGTH:
            raise ValidationError(f"Coupon code cannot be longer than {CODE_MAX_LENGTH} characters")
        if not CODE_PATTERN.match(coupon.code):
            raise ValidationError("Coupon code may only contain letters and digits")
        if not coupon.name:
            raise ValidationError("Coupon name is required")
        if coupon.discount_type not in _DISCOUNT_TYPES:
            raise ValidationError(f"{coupon.discount_type} is not a valid discount type")
        if coupon.applicable_for not in _AUDIENCES:
            raise ValidationError(f"{coupon.applicable_for} is not a valid audience")
        if coupon.discount_type == DiscountType.PERCENTAGE and not (0 < to_decimal(coupon.value) <= 100):
            raise ValidationError("Percentage must be between 0 and 100")
        if coupon.discount_type == DiscountType.FIXED and to_decimal(coupon.value) <= 0:
            raise ValidationError("Fixed discount must be greater than zero")
        if coupon.discount_type == DiscountType.BUY_X_GET_Y:
            if not coupon.buy_quantity or coupon.buy_quantity < 1 or not coupon.get_quantity or coupon.get_quantity < 1:
                raise ValidationError("Buy and get quantities must be at least 1")
        if coupon.start_date is None or coupon.end_date is None:
            raise ValidationError("Start and end dates are required")
        if as_utc(coupon.start_date) >= as_utc(coupon.end_date):
            raise ValidationError("End date must be after start date")
        if coupon.usage_limit_per_user < 1:
            raise ValidationError("Per-user limit must be at least 1")
        if coupon.usage_limit_total is not None:
            if coupon.usage_limit_total < 1:
                raise ValidationError("Total usage limit must be at least 1")
            if (coupon.usage_count or 0) > coupon.usage_limit_total:
                raise ValidationError("Total usage limit is below the current usage count")
        bad_seasons = [s for s in coupon.seasons if s not in _SEASONS]
        if bad_seasons:
            raise ValidationError(f"Invalid season(s): {', '.join(bad_seasons)}")
        if any(m < 1 or m > 12 for m in coupon.months):
            raise ValidationError("Months must be between 1 and 12")

    # ------------------------------------------
    # Analytics
    # ------------------------------------------

    def get_analytics(self, db: Session, coupon_id: int) -> Dict[str, Any]:
        coupon = self.get_coupon(db, coupon_id)
        uses, savings, unique_users = (
            db.query(
                sa_func.count(CouponUsage.id),
                sa_func.coalesce(sa_func.sum(CouponUsage.discount_amount), 0),
                sa_func.count(sa_func.distinct(CouponUsage.user_id)),
            )
            .filter(CouponUsage.coupon_id == coupon.id)
            .one()
        )
        savings = round2(savings)
        usage_rate = None
        if coupon.usage_limit_total:
            usage_rate = round2(Decimal(coupon.usage_count) * 100 / coupon.usage_limit_total)
        return {
            "code": coupon.code,
            "total_uses": uses,
            "unique_users": unique_users,
            "total_savings": savings,
            "average_discount": round2(savings / uses) if uses else Decimal("0.00"),
            "usage_rate": usage_rate,
        }

    def get_stats(self, db: Session, now: datetime = None) -> Dict[str, Any]:
        now = now or now_utc()
        total = db.query(Coupon).count()
        active = self._live_query(db, now).count()
        expired = db.query(Coupon).filter(Coupon.end_date <= now).count()
        total_usages = db.query(CouponUsage).count()
        total_discount = (
            db.query(sa_func.coalesce(sa_func.sum(CouponUsage.discount_amount), 0))
            .scalar()
        )
        return {
            "total_coupons": total,
            "active_coupons": active,
            "expired_coupons": expired,
            "total_usages": total_usages,
            "total_discount": round2(total_discount),
        }


# Singleton
coupon_service = CouponService()
