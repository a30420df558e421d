"""
Cart Routes
=============
JSON API for the shopping cart: items, saved-for-later and coupon.
Every mutation commits and returns the refreshed cart summary.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login
from modules.cart.service import cart_service

router = APIRouter(prefix="/api/cart", tags=["cart"])


# ==========================================
# Schemas
# ==========================================

class AddItemRequest(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(1, ge=1)


class UpdateQuantityRequest(BaseModel):
    quantity: int


class ApplyCouponRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=40)


# ==========================================
# 🛒 View
# ==========================================

@router.get("")
async def view_cart(db: Session = Depends(get_db), me=Depends(require_login)):
    summary = cart_service.get_cart_summary(db, me.id)
    db.commit()
    return summary


# ==========================================
# ➕➖ Items
# ==========================================

@router.post("/items")
async def add_item(body: AddItemRequest, db: Session = Depends(get_db), me=Depends(require_login)):
    cart_service.add_item(db, me.id, body.product_id, body.quantity)
    db.commit()
    return cart_service.get_cart_summary(db, me.id)


@router.patch("/items/{product_id}")
async def update_item(
    product_id: int,
    body: UpdateQuantityRequest,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    cart_service.update_quantity(db, me.id, product_id, body.quantity)
    db.commit()
    return cart_service.get_cart_summary(db, me.id)


@router.delete("/items/{product_id}")
async def remove_item(product_id: int, db: Session = Depends(get_db), me=Depends(require_login)):
    cart_service.remove_item(db, me.id, product_id)
    db.commit()
    return cart_service.get_cart_summary(db, me.id)


@router.delete("")
async def clear_cart(db: Session = Depends(get_db), me=Depends(require_login)):
    cart_service.clear(db, me.id)
    db.commit()
    return cart_service.get_cart_summary(db, me.id)


# ==========================================
# 💾 Saved for later
# ==========================================

@router.post("/saved/{product_id}")
async def save_for_later(product_id: int, db: Session = Depends(get_db), me=Depends(require_login)):
    cart_service.save_for_later(db, me.id, product_id)
    db.commit()
    return cart_service.get_cart_summary(db, me.id)


@router.post("/saved/{product_id}/move")
async def move_to_cart(product_id: int, db: Session = Depends(get_db), me=Depends(require_login)):
    cart_service.move_to_cart(db, me.id, product_id)
    db.commit()
    return cart_service.get_cart_summary(db, me.id)


# ==========================================
# 🎟️ Coupon
# ==========================================

@router.post("/coupon")
async def apply_coupon(body: ApplyCouponRequest, db: Session = Depends(get_db), me=Depends(require_login)):
    cart_service.apply_coupon(db, me.id, body.code)
    db.commit()
    return cart_service.get_cart_summary(db, me.id)


@router.delete("/coupon")
async def remove_coupon(db: Session = Depends(get_db), me=Depends(require_login)):
    cart_service.remove_coupon(db, me.id)
    db.commit()
    return cart_service.get_cart_summary(db, me.id)
