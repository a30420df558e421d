"""
Order Routes - Customer Facing
================================
Checkout, order history, detail/timeline, cancellation and returns.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import round2
from modules.auth.deps import require_login
from modules.order import lifecycle
from modules.order.models import PaymentMethod
from modules.order.service import order_service

router = APIRouter(prefix="/api/orders", tags=["order"])


# ==========================================
# Schemas
# ==========================================

class AddressIn(BaseModel):
    name: str = Field(..., max_length=100)
    phone: Optional[str] = Field(None, max_length=15)
    address_line: Optional[str] = None
    village: Optional[str] = None
    district: Optional[str] = None
    state: str
    pincode: Optional[str] = Field(None, max_length=6)


class CheckoutRequest(BaseModel):
    payment_method: PaymentMethod = PaymentMethod.COD
    shipping_address: Optional[AddressIn] = None
    billing_address: Optional[AddressIn] = None
    notes: Optional[str] = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: str = Field("", max_length=300)


class ReturnRequestIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


# ==========================================
# Serialization
# ==========================================

def order_to_dict(order, detail: bool = False) -> dict:
    data = lifecycle.order_summary(order)
    data.update({
        "id": order.id,
        "subtotal": round2(order.subtotal),
        "discount_amount": round2(order.discount_amount),
        "coupon_code": order.coupon_code,
        "tax_amount": round2(order.tax_amount),
        "shipping_amount": round2(order.shipping_amount),
        "payment_method": order.payment_method,
    })
    if detail:
        data.update({
            "items": [
                {
                    "product_id": item.product_id,
                    "name": item.product_name,
                    "quantity": item.quantity,
                    "price": round2(item.price),
                    "discount_price": round2(item.discount_price) if item.discount_price is not None else None,
                    "line_total": round2(item.line_total),
                }
                for item in order.items
            ],
            "shipping_address": order.shipping_address,
            "billing_address": order.billing_address,
            "tracking_number": order.tracking_number,
            "carrier": order.carrier,
            "cancellation_reason": order.cancellation_reason,
            "refund_amount": round2(order.refund_amount) if order.refund_amount is not None else None,
            "return_status": order.return_request.status if order.return_request else None,
            "timeline": order_service.get_timeline(order),
        })
    return data


# ==========================================
# 🧾 Checkout
# ==========================================

@router.post("", status_code=201)
async def checkout(body: CheckoutRequest, db: Session = Depends(get_db), me=Depends(require_login)):
    order = order_service.checkout(
        db, me.id,
        payment_method=body.payment_method.value,
        shipping_address=body.shipping_address.model_dump() if body.shipping_address else None,
        billing_address=body.billing_address.model_dump() if body.billing_address else None,
        notes=body.notes,
    )
    db.commit()
    return order_to_dict(order, detail=True)


# ==========================================
# 📋 History & Detail
# ==========================================

@router.get("")
async def my_orders(
    status: str = Query(None),
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    per_page = 20
    orders, total = order_service.get_user_orders(db, me.id, status=status, page=page, per_page=per_page)
    return {
        "items": [order_to_dict(o) for o in orders],
        "total": total,
        "page": page,
        "total_pages": max(1, (total + per_page - 1) // per_page),
    }


@router.get("/{order_id}")
async def order_detail(order_id: int, db: Session = Depends(get_db), me=Depends(require_login)):
    order = order_service.get_order_for_user(db, order_id, me.id)
    return order_to_dict(order, detail=True)


# ==========================================
# ❌ Cancel / ↩️ Return
# ==========================================

@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    body: CancelRequest,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    order = order_service.cancel_order(db, order_id, body.reason, actor="customer", user_id=me.id)
    db.commit()
    return order_to_dict(order, detail=True)


@router.post("/{order_id}/return")
async def request_return(
    order_id: int,
    body: ReturnRequestIn,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    order_service.request_return(db, order_id, me.id, body.reason)
    db.commit()
    order = order_service.get_order_for_user(db, order_id, me.id)
    return order_to_dict(order, detail=True)
