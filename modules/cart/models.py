"""
Cart Module - Models
=====================
One cart per user, with line items, a saved-for-later list and the
applied coupon. Computed totals are written only by the finalize step.
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Boolean, Numeric, ForeignKey, DateTime,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class CartStatus(str, enum.Enum):
    ACTIVE = "active"
    ABANDONED = "abandoned"
    CONVERTED = "converted"


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    status = Column(String, default=CartStatus.ACTIVE, nullable=False)

    # Applied coupon
    applied_coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    applied_coupon_code = Column(String(20), nullable=True)
    applied_discount_amount = Column(Numeric(12, 2), default=0, nullable=False)
    applied_free_shipping = Column(Boolean, default=False, nullable=False)
    # Rejection reason when finalize dropped a coupon that stopped applying
    coupon_notice = Column(String(50), nullable=True)

    # Computed (finalize_cart)
    subtotal = Column(Numeric(12, 2), default=0, nullable=False)
    discount_amount = Column(Numeric(12, 2), default=0, nullable=False)
    tax_amount = Column(Numeric(12, 2), default=0, nullable=False)
    shipping_amount = Column(Numeric(12, 2), default=0, nullable=False)
    total = Column(Numeric(12, 2), default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_modified = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    version_id = Column(Integer, nullable=False)

    user = relationship("User", foreign_keys=[user_id])
    items = relationship(
        "CartItem", back_populates="cart",
        cascade="all, delete-orphan", order_by="CartItem.id",
    )
    saved_items = relationship(
        "SavedItem", back_populates="cart",
        cascade="all, delete-orphan", order_by="SavedItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def has_coupon(self) -> bool:
        return bool(self.applied_coupon_code)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find_item(self, product_id: int):
        return next((i for i in self.items if i.product_id == product_id), None)

    def find_saved(self, product_id: int):
        return next((s for s in self.saved_items if s.product_id == product_id), None)

    def __repr__(self):
        return f"<Cart user={self.user_id} items={len(self.items)}>"


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)              # at add time
    discount_price = Column(Numeric(12, 2), nullable=True)
    added_at = Column(DateTime(timezone=True), server_default=func.now())

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")

    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_product"),
        CheckConstraint("quantity >= 1", name="ck_cart_qty"),
    )

    @property
    def effective_price(self):
        return self.discount_price if self.discount_price is not None else self.price


class SavedItem(Base):
    __tablename__ = "cart_saved_items"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    original_price = Column(Numeric(12, 2), nullable=False)
    saved_at = Column(DateTime(timezone=True), server_default=func.now())

    cart = relationship("Cart", back_populates="saved_items")
    product = relationship("Product")

    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_saved_product"),
    )
