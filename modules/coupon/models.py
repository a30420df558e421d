"""
Coupon Module - Models
========================
Discount coupon system for the storefront.

Features:
  - Percentage, fixed amount, free shipping, buy-X-get-Y
  - Caps (max discount) and minimums (order value, item count)
  - Usage limits (total + per-user) with audit trail
  - Validity window [start_date, end_date)
  - Audience: all / new / existing / specific users
  - Product & category allow/deny lists
  - Regional (state + districts), seasonal and first-order conditions
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, Numeric,
    DateTime, ForeignKey, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base
from common.helpers import load_json_list, dump_json_list


# ==========================================
# Enums
# ==========================================

class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free-shipping"
    BUY_X_GET_Y = "buy-x-get-y"


class ApplicableFor(str, enum.Enum):
    ALL = "all"
    NEW = "new"
    EXISTING = "existing"
    SPECIFIC = "specific"


class Season(str, enum.Enum):
    KHARIF = "kharif"
    RABI = "rabi"
    ZAID = "zaid"
    YEAR_ROUND = "year-round"


# ==========================================
# Coupon
# ==========================================

class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True)
    code = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)

    # Discount
    discount_type = Column(String, nullable=False)
    value = Column(Numeric(12, 2), nullable=False, default=0)  # percent (e.g. 10) or fixed amount
    max_discount_amount = Column(Numeric(12, 2), nullable=True)
    buy_quantity = Column(Integer, nullable=True)  # buy-x-get-y
    get_quantity = Column(Integer, nullable=True)

    # Minimums
    min_order_value = Column(Numeric(12, 2), default=0, nullable=False)
    min_quantity = Column(Integer, default=0, nullable=False)

    # Usage limits
    usage_limit_total = Column(Integer, nullable=True)  # None = unlimited
    usage_limit_per_user = Column(Integer, default=1, nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)

    # Validity window
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)

    # Audience & conditions
    applicable_for = Column(String, default=ApplicableFor.ALL, nullable=False)
    first_order_only = Column(Boolean, default=False, nullable=False)
    _seasons = Column("seasons", Text, nullable=True)  # JSON list of Season
    _months = Column("months", Text, nullable=True)    # JSON list of 1-12

    # Marketing
    display_on_homepage = Column(Boolean, default=False, nullable=False)
    priority = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    specific_users = relationship("CouponUser", back_populates="coupon", cascade="all, delete-orphan")
    products = relationship("CouponProduct", back_populates="coupon", cascade="all, delete-orphan")
    categories = relationship("CouponCategory", back_populates="coupon", cascade="all, delete-orphan")
    regions = relationship("CouponRegion", back_populates="coupon", cascade="all, delete-orphan")
    usages = relationship("CouponUsage", back_populates="coupon", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="ck_coupon_window"),
        CheckConstraint(
            "usage_limit_total IS NULL OR usage_count <= usage_limit_total",
            name="ck_coupon_usage_limit",
        ),
        CheckConstraint("usage_limit_per_user >= 1", name="ck_coupon_per_user"),
        Index("ix_coupon_active_window", "is_active", "start_date", "end_date"),
    )

    @property
    def seasons(self) -> list:
        return load_json_list(self._seasons)

    @seasons.setter
    def seasons(self, value: list):
        self._seasons = dump_json_list(value)

    @property
    def months(self) -> list:
        return load_json_list(self._months)

    @months.setter
    def months(self, value: list):
        self._months = dump_json_list(value)

    @property
    def specific_user_ids(self) -> set:
        return {cu.user_id for cu in self.specific_users}

    @property
    def applicable_product_ids(self) -> set:
        return {cp.product_id for cp in self.products if not cp.is_excluded}

    @property
    def excluded_product_ids(self) -> set:
        return {cp.product_id for cp in self.products if cp.is_excluded}

    @property
    def applicable_categories(self) -> set:
        return {cc.category.lower() for cc in self.categories if not cc.is_excluded}

    @property
    def excluded_categories(self) -> set:
        return {cc.category.lower() for cc in self.categories if cc.is_excluded}

    @property
    def discount_display(self) -> str:
        """Human-readable discount value."""
        if self.discount_type == DiscountType.PERCENTAGE:
            s = f"{self.value:g}%"
            if self.max_discount_amount:
                s += f" (up to ₹{self.max_discount_amount:,.0f})"
            return s
        if self.discount_type == DiscountType.FIXED:
            return f"₹{self.value:,.0f} off"
        if self.discount_type == DiscountType.FREE_SHIPPING:
            return "Free shipping"
        return f"Buy {self.buy_quantity} get {self.get_quantity}"

    def __repr__(self):
        return f"<Coupon {self.code} ({self.discount_type})>"


# ==========================================
# CouponUser (specific-user whitelist)
# ==========================================

class CouponUser(Base):
    __tablename__ = "coupon_users"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    coupon = relationship("Coupon", back_populates="specific_users")

    __table_args__ = (
        Index("ix_coupon_user_unique", "coupon_id", "user_id", unique=True),
    )


# ==========================================
# CouponProduct (allow / deny list)
# ==========================================

class CouponProduct(Base):
    __tablename__ = "coupon_products"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    is_excluded = Column(Boolean, default=False, nullable=False)

    coupon = relationship("Coupon", back_populates="products")

    __table_args__ = (
        Index("ix_coupon_product_unique", "coupon_id", "product_id", unique=True),
    )


# ==========================================
# CouponCategory (allow / deny list)
# ==========================================

class CouponCategory(Base):
    __tablename__ = "coupon_categories"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    category = Column(String, nullable=False)
    is_excluded = Column(Boolean, default=False, nullable=False)

    coupon = relationship("Coupon", back_populates="categories")

    __table_args__ = (
        Index("ix_coupon_category_unique", "coupon_id", "category", unique=True),
    )


# ==========================================
# CouponRegion (state + optional districts)
# ==========================================

class CouponRegion(Base):
    __tablename__ = "coupon_regions"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    state = Column(String, nullable=False)
    _districts = Column("districts", Text, nullable=True)  # JSON list

    coupon = relationship("Coupon", back_populates="regions")

    @property
    def districts(self) -> list:
        return load_json_list(self._districts)

    @districts.setter
    def districts(self, value: list):
        self._districts = dump_json_list(value)


# ==========================================
# CouponUsage (audit trail)
# ==========================================

class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    coupon = relationship("Coupon", back_populates="usages")

    __table_args__ = (
        Index("ix_usage_coupon_user", "coupon_id", "user_id"),
        Index("ix_usage_coupon_order", "coupon_id", "order_id", unique=True),
    )
