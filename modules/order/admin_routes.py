"""
Order Module - Admin Routes
==============================
Order management for admin: list, status changes, payment, tracking,
returns/refunds and statistics.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_staff
from modules.order.models import OrderStatus
from modules.order.routes import order_to_dict
from modules.order.service import order_service

router = APIRouter(prefix="/api/admin/orders", tags=["order-admin"])


# ==========================================
# Schemas
# ==========================================

class StatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = Field(None, max_length=300)


class PaymentUpdate(BaseModel):
    transaction_id: str = Field(..., min_length=1, max_length=100)


class PaymentFailed(BaseModel):
    reason: str = Field("", max_length=300)


class TrackingUpdate(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=100)
    carrier: Optional[str] = Field(None, max_length=100)
    estimated_delivery: Optional[datetime] = None


class ReturnDecision(BaseModel):
    note: Optional[str] = Field(None, max_length=500)
    refund_amount: Optional[Decimal] = None


class RefundRequest(BaseModel):
    amount: Optional[Decimal] = None


# ==========================================
# 📋 List & Stats
# ==========================================

@router.get("")
async def admin_orders(
    status: str = Query(None),
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
    user=Depends(require_staff),
):
    per_page = 30
    orders, total = order_service.get_all_orders(db, status=status, page=page, per_page=per_page)
    return {
        "items": [order_to_dict(o) for o in orders],
        "total": total,
        "page": page,
        "total_pages": max(1, (total + per_page - 1) // per_page),
    }


@router.get("/statistics")
async def order_statistics(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(require_staff),
):
    return order_service.get_statistics(db, start=start, end=end)


@router.get("/number/{order_number}")
async def admin_order_by_number(order_number: str, db: Session = Depends(get_db), user=Depends(require_staff)):
    return order_to_dict(order_service.get_order_by_number(db, order_number), detail=True)


@router.get("/{order_id}")
async def admin_order_detail(order_id: int, db: Session = Depends(get_db), user=Depends(require_staff)):
    return order_to_dict(order_service.get_order(db, order_id), detail=True)


# ==========================================
# 🔄 Status / Payment / Tracking
# ==========================================

@router.post("/{order_id}/status")
async def update_status(
    order_id: int,
    body: StatusUpdate,
    db: Session = Depends(get_db),
    user=Depends(require_staff),
):
    order = order_service.update_status(db, order_id, body.status.value, note=body.note, actor=f"admin:{user.id}")
    db.commit()
    return order_to_dict(order, detail=True)


@router.post("/{order_id}/paid")
async def mark_paid(order_id: int, body: PaymentUpdate, db: Session = Depends(get_db), user=Depends(require_staff)):
    order = order_service.mark_paid(db, order_id, body.transaction_id)
    db.commit()
    return order_to_dict(order, detail=True)


@router.post("/{order_id}/payment-failed")
async def payment_failed(order_id: int, body: PaymentFailed, db: Session = Depends(get_db), user=Depends(require_staff)):
    order = order_service.mark_payment_failed(db, order_id, body.reason)
    db.commit()
    return order_to_dict(order, detail=True)


@router.post("/{order_id}/tracking")
async def set_tracking(order_id: int, body: TrackingUpdate, db: Session = Depends(get_db), user=Depends(require_staff)):
    order = order_service.set_tracking(
        db, order_id, body.tracking_number, body.carrier, body.estimated_delivery,
    )
    db.commit()
    return order_to_dict(order, detail=True)


# ==========================================
# ↩️ Returns & Refunds
# ==========================================

@router.post("/{order_id}/return/approve")
async def approve_return(order_id: int, body: ReturnDecision, db: Session = Depends(get_db), user=Depends(require_staff)):
    order = order_service.approve_return(
        db, order_id, refund_amount=body.refund_amount, note=body.note, actor=f"admin:{user.id}",
    )
    db.commit()
    return order_to_dict(order, detail=True)


@router.post("/{order_id}/return/reject")
async def reject_return(order_id: int, body: ReturnDecision, db: Session = Depends(get_db), user=Depends(require_staff)):
    order_service.reject_return(db, order_id, note=body.note)
    db.commit()
    return order_to_dict(order_service.get_order(db, order_id), detail=True)


@router.post("/{order_id}/refund")
async def complete_refund(order_id: int, body: RefundRequest, db: Session = Depends(get_db), user=Depends(require_staff)):
    order = order_service.complete_refund(db, order_id, amount=body.amount, actor=f"admin:{user.id}")
    db.commit()
    return order_to_dict(order, detail=True)
