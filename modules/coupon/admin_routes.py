"""
Coupon Admin Routes
=====================
CRUD for coupons, analytics and usage stats.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_staff
from modules.coupon.models import DiscountType, ApplicableFor
from modules.coupon.routes import coupon_to_dict
from modules.coupon.service import coupon_service

router = APIRouter(prefix="/api/admin/coupons", tags=["admin-coupon"])


# ==========================================
# Schemas
# ==========================================

class RegionIn(BaseModel):
    state: str
    districts: List[str] = []


class CouponCreate(BaseModel):
    code: str = Field(..., max_length=20)
    name: str = Field(..., max_length=100)
    description: Optional[str] = None
    discount_type: DiscountType
    value: Decimal = Decimal("0")
    max_discount_amount: Optional[Decimal] = None
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    min_order_value: Decimal = Decimal("0")
    min_quantity: int = 0
    usage_limit_total: Optional[int] = None
    usage_limit_per_user: int = 1
    start_date: datetime
    end_date: datetime
    applicable_for: ApplicableFor = ApplicableFor.ALL
    specific_user_ids: List[int] = []
    applicable_product_ids: List[int] = []
    excluded_product_ids: List[int] = []
    applicable_categories: List[str] = []
    excluded_categories: List[str] = []
    regions: List[RegionIn] = []
    seasons: List[str] = []
    months: List[int] = []
    first_order_only: bool = False
    display_on_homepage: bool = False
    priority: int = 0


class CouponUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    value: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    min_order_value: Optional[Decimal] = None
    min_quantity: Optional[int] = None
    usage_limit_total: Optional[int] = None
    usage_limit_per_user: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    applicable_for: Optional[ApplicableFor] = None
    specific_user_ids: Optional[List[int]] = None
    applicable_product_ids: Optional[List[int]] = None
    excluded_product_ids: Optional[List[int]] = None
    applicable_categories: Optional[List[str]] = None
    excluded_categories: Optional[List[str]] = None
    regions: Optional[List[RegionIn]] = None
    seasons: Optional[List[str]] = None
    months: Optional[List[int]] = None
    first_order_only: Optional[bool] = None
    display_on_homepage: Optional[bool] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


def _form_data(body: BaseModel, partial: bool = False) -> dict:
    return body.model_dump(exclude_unset=partial)


# ==========================================
# 📋 List & Stats
# ==========================================

@router.get("")
async def coupon_list(
    page: int = 1,
    active_only: bool = False,
    search: str = None,
    db: Session = Depends(get_db),
    user=Depends(require_staff),
):
    per_page = 30
    coupons, total = coupon_service.get_all_coupons(
        db, page=page, per_page=per_page, active_only=active_only, search=search,
    )
    return {
        "items": [coupon_to_dict(c) for c in coupons],
        "total": total,
        "page": page,
        "total_pages": max(1, (total + per_page - 1) // per_page),
    }


@router.get("/stats")
async def coupon_stats(db: Session = Depends(get_db), user=Depends(require_staff)):
    return coupon_service.get_stats(db)


@router.get("/{coupon_id}/analytics")
async def coupon_analytics(coupon_id: int, db: Session = Depends(get_db), user=Depends(require_staff)):
    return coupon_service.get_analytics(db, coupon_id)


# ==========================================
# ➕ Create / ✏️ Update / 🚫 Deactivate
# ==========================================

@router.post("", status_code=201)
async def coupon_create(body: CouponCreate, db: Session = Depends(get_db), user=Depends(require_staff)):
    coupon = coupon_service.create_coupon(db, _form_data(body), created_by=user.id)
    db.commit()
    return coupon_to_dict(coupon)


@router.patch("/{coupon_id}")
async def coupon_update(
    coupon_id: int,
    body: CouponUpdate,
    db: Session = Depends(get_db),
    user=Depends(require_staff),
):
    coupon = coupon_service.update_coupon(db, coupon_id, _form_data(body, partial=True))
    db.commit()
    return coupon_to_dict(coupon)


@router.delete("/{coupon_id}")
async def coupon_deactivate(coupon_id: int, db: Session = Depends(get_db), user=Depends(require_staff)):
    coupon = coupon_service.deactivate_coupon(db, coupon_id)
    db.commit()
    return coupon_to_dict(coupon)
