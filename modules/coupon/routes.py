"""
Coupon Routes - Customer Facing
==================================
Coupon discovery and a side-effect-free check against the current cart.
Applying a coupon lives under /api/cart/coupon.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import round2
from modules.auth.deps import require_login
from modules.coupon.service import coupon_service
from modules.cart.service import cart_service, cart_lines

router = APIRouter(prefix="/api/coupons", tags=["coupon"])


def coupon_to_dict(coupon) -> dict:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "name": coupon.name,
        "description": coupon.description,
        "discount_type": coupon.discount_type,
        "value": round2(coupon.value),
        "max_discount_amount": round2(coupon.max_discount_amount) if coupon.max_discount_amount else None,
        "min_order_value": round2(coupon.min_order_value),
        "display": coupon.discount_display,
        "start_date": coupon.start_date,
        "end_date": coupon.end_date,
        "seasons": coupon.seasons,
        "priority": coupon.priority,
    }


@router.get("/active")
async def active_coupons(db: Session = Depends(get_db)):
    """Homepage coupons, highest priority first."""
    return [coupon_to_dict(c) for c in coupon_service.get_active_coupons(db)]


@router.get("/seasonal/{season}")
async def seasonal_coupons(season: str, db: Session = Depends(get_db)):
    return [coupon_to_dict(c) for c in coupon_service.get_seasonal_coupons(db, season)]


@router.get("/applicable")
async def applicable_coupons(db: Session = Depends(get_db), me=Depends(require_login)):
    """Coupons the current cart qualifies for, best discount first."""
    cart = cart_service.get_or_create_cart(db, me.id, lock=False)
    found = coupon_service.get_applicable_coupons(db, me.id, cart_lines(cart))
    db.commit()
    return [
        {**coupon_to_dict(f["coupon"]), "discount_amount": f["discount_amount"]}
        for f in found
    ]


@router.get("/check")
async def check_coupon(
    code: str = Query(""),
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    """Validate a coupon code against the current cart without applying it."""
    cart = cart_service.get_or_create_cart(db, me.id, lock=False)
    result = coupon_service.quick_check(db, code, me.id, cart_lines(cart))
    db.commit()
    return result
