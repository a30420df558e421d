"""
Order Module - Service Layer
===============================
Checkout (cart → order), status changes, payment, cancellation,
returns/refunds, tracking and reporting.

Checkout runs in the caller's transaction:
  1. Lock the cart row, refuse an empty cart
  2. Re-check every product is still active
  3. Re-validate the applied coupon against current state
     (per-user cap is re-counted while the cart row is locked)
  4. Conditional stock decrement per line
  5. Order + item snapshot + first timeline entry
  6. Conditional coupon usage increment + audit row
  7. Empty the cart and mark it converted
Any failure raises and the caller rolls back the whole thing.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Any

from sqlalchemy.orm import Session
from sqlalchemy import desc, func as sa_func

from config.settings import ORDER_NUMBER_PREFIX
from common.exceptions import NotFoundError, ValidationError, InvalidTransitionError
from common.helpers import now_utc, round2, generate_unique_order_number
from modules.admin.service import get_pricing_config
from modules.cart.service import cart_service, cart_lines
from modules.cart.totals import compute_totals
from modules.catalog.service import catalog_service
from modules.coupon.service import coupon_service
from modules.order import lifecycle
from modules.order.models import (
    Order, OrderItem, OrderStatusLog, ReturnRequest,
    OrderStatus, PaymentMethod, PaymentStatus, ReturnStatus,
)
from modules.user.service import user_service

logger = logging.getLogger("agrimart.order")

_PAYMENT_METHODS = {m.value for m in PaymentMethod}
_STATUSES = {s.value for s in OrderStatus}


def _default_address(user) -> dict:
    return {
        "name": user.name,
        "phone": user.phone,
        "village": user.village,
        "district": user.district,
        "state": user.state,
        "pincode": user.pincode,
    }


class OrderService:

    # ==========================================
    # Checkout
    # ==========================================

    def checkout(
        self,
        db: Session,
        user_id: int,
        payment_method: str = PaymentMethod.COD.value,
        shipping_address: dict = None,
        billing_address: dict = None,
        notes: str = None,
        now: datetime = None,
    ) -> Order:
        """
        Convert the user's cart into a pending order.

        Raises ValidationError (empty cart, bad payment method), NotFoundError
        (inactive product), InsufficientStockError and any coupon error.
        """
        now = now or now_utc()
        if payment_method not in _PAYMENT_METHODS:
            raise ValidationError(f"{payment_method} is not a supported payment method")

        user = user_service.get_user(db, user_id)
        cart = cart_service.get_or_create_cart(db, user_id)
        if not cart.items:
            raise ValidationError("Your cart is empty")

        for item in cart.items:
            catalog_service.get_product(db, item.product_id)
        lines = cart_lines(cart)
        config = get_pricing_config(db)

        coupon = None
        coupon_discount = Decimal("0")
        free_shipping = False
        if cart.has_coupon:
            applied = coupon_service.validate(
                db, cart.applied_coupon_code, user_id, lines, now=now, config=config,
            )
            coupon = applied.coupon
            free_shipping = applied.free_shipping
            coupon_discount = Decimal("0") if free_shipping else applied.discount

        totals = compute_totals(
            lines, coupon_discount=coupon_discount,
            free_shipping=free_shipping, config=config,
        )

        for line in lines:
            catalog_service.decrement_stock(db, line.product_id, line.quantity)

        shipping = shipping_address or _default_address(user)
        order = Order(
            order_number=generate_unique_order_number(db, ORDER_NUMBER_PREFIX),
            user_id=user_id,
            status=OrderStatus.PENDING.value,
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            coupon_id=coupon.id if coupon else None,
            coupon_code=coupon.code if coupon else None,
            tax_rate=config.tax_rate,
            tax_amount=totals.tax_amount,
            shipping_amount=totals.shipping_amount,
            total=totals.total,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING.value,
            estimated_delivery=lifecycle.estimated_delivery(now),
            notes=notes,
            created_at=now,
        )
        order.shipping_address = shipping
        order.billing_address = billing_address or shipping
        order.items = [
            OrderItem(
                product_id=line.product_id,
                product_name=line.name,
                category=line.category,
                quantity=line.quantity,
                price=line.price,
                discount_price=line.discount_price,
                line_total=round2(line.line_total),
            )
            for line in lines
        ]
        self._log(order, OrderStatus.PENDING.value, "Order placed", "customer", now)
        db.add(order)
        db.flush()

        if coupon:
            # Free-shipping usage records the waived fee as the saving
            saving = totals.discount_amount if not free_shipping else applied.discount
            coupon_service.record_usage(db, coupon, user_id, order.id, saving)

        cart_service.mark_converted(db, cart)
        logger.info(f"Order {order.order_number} created for user #{user_id}: total {order.total}")
        return order

    # ==========================================
    # Status
    # ==========================================

    def update_status(
        self,
        db: Session,
        order_id: int,
        new_status: str,
        note: str = None,
        actor: str = "admin",
        now: datetime = None,
    ) -> Order:
        new_status = getattr(new_status, "value", new_status)
        if new_status not in _STATUSES:
            raise ValidationError(f"{new_status} is not a valid order status")
        if new_status == OrderStatus.CANCELLED.value:
            return self.cancel_order(db, order_id, note or "Cancelled by admin", actor, now)
        if new_status == OrderStatus.REFUNDED.value:
            return self.complete_refund(db, order_id, actor=actor, now=now)

        order = self._locked(db, order_id)
        lifecycle.check_transition(order, new_status)
        now = now or now_utc()

        if (
            new_status == OrderStatus.DELIVERED.value
            and order.payment_method == PaymentMethod.COD
            and order.payment_status != PaymentStatus.COMPLETED
        ):
            order.payment_status = PaymentStatus.COMPLETED.value
            order.paid_at = now

        self._set_status(order, new_status, note, actor, now)
        db.flush()
        logger.info(f"Order {order.order_number} → {new_status} by {actor}")
        return order

    # ==========================================
    # Payment
    # ==========================================

    def mark_paid(
        self, db: Session, order_id: int, transaction_id: str, now: datetime = None,
    ) -> Order:
        """Capture payment. A pending order becomes confirmed."""
        order = self._locked(db, order_id)
        if order.payment_status == PaymentStatus.COMPLETED:
            return order
        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise InvalidTransitionError(f"Order {order.order_number} is {order.status}")

        now = now or now_utc()
        order.payment_status = PaymentStatus.COMPLETED.value
        order.transaction_id = transaction_id
        order.paid_at = now
        if order.status == OrderStatus.PENDING:
            self._set_status(order, OrderStatus.CONFIRMED.value, "Payment received", "system", now)
        db.flush()
        logger.info(f"Order {order.order_number} paid: {transaction_id}")
        return order

    def mark_payment_failed(self, db: Session, order_id: int, reason: str = "") -> Order:
        order = self._locked(db, order_id)
        if order.payment_status == PaymentStatus.COMPLETED:
            raise InvalidTransitionError(f"Order {order.order_number} is already paid")
        order.payment_status = PaymentStatus.FAILED.value
        db.flush()
        logger.warning(f"Payment failed for order {order.order_number}: {reason}")
        return order

    # ==========================================
    # Cancel
    # ==========================================

    def cancel_order(
        self,
        db: Session,
        order_id: int,
        reason: str = "",
        actor: str = "customer",
        now: datetime = None,
        user_id: int = None,
    ) -> Order:
        """Cancel a not-yet-packed order and put its stock back."""
        order = self._locked(db, order_id)
        if user_id is not None and order.user_id != user_id:
            raise NotFoundError(f"Order #{order_id} not found")
        if not lifecycle.can_be_cancelled(order):
            raise InvalidTransitionError(f"Order {order.order_number} can no longer be cancelled")

        for item in order.items:
            catalog_service.restore_stock(db, item.product_id, item.quantity)

        now = now or now_utc()
        order.cancellation_reason = reason or None
        order.cancelled_by = actor
        if order.is_paid:
            order.refund_amount = order.total
        self._set_status(order, OrderStatus.CANCELLED.value, reason or None, actor, now)
        db.flush()
        logger.info(f"Order {order.order_number} cancelled by {actor}: {reason}")
        return order

    # ==========================================
    # Returns & Refunds
    # ==========================================

    def request_return(
        self, db: Session, order_id: int, user_id: int, reason: str, now: datetime = None,
    ) -> ReturnRequest:
        order = self.get_order_for_user(db, order_id, user_id)
        if not (reason or "").strip():
            raise ValidationError("Please tell us why you are returning this order")
        now = now or now_utc()
        if not lifecycle.can_be_returned(order, now):
            raise InvalidTransitionError(f"Order {order.order_number} is not eligible for return")

        request = ReturnRequest(
            user_id=user_id,
            reason=reason.strip(),
            status=ReturnStatus.REQUESTED.value,
            requested_at=now,
        )
        order.return_request = request
        db.flush()
        logger.info(f"Return requested for order {order.order_number}")
        return request

    def approve_return(
        self,
        db: Session,
        order_id: int,
        refund_amount: Decimal = None,
        note: str = None,
        actor: str = "admin",
        now: datetime = None,
    ) -> Order:
        order = self._locked(db, order_id)
        request = self._pending_return(order)
        lifecycle.check_transition(order, OrderStatus.RETURNED.value)

        now = now or now_utc()
        request.status = ReturnStatus.APPROVED.value
        request.approved_at = now
        request.admin_note = note
        request.refund_amount = self._refund_amount(order, refund_amount)
        self._set_status(order, OrderStatus.RETURNED.value, note or "Return approved", actor, now)
        db.flush()
        logger.info(f"Return approved for order {order.order_number}")
        return order

    def reject_return(self, db: Session, order_id: int, note: str = None) -> ReturnRequest:
        order = self._locked(db, order_id)
        request = self._pending_return(order)
        request.status = ReturnStatus.REJECTED.value
        request.admin_note = note
        db.flush()
        logger.info(f"Return rejected for order {order.order_number}")
        return request

    def complete_refund(
        self,
        db: Session,
        order_id: int,
        amount: Decimal = None,
        actor: str = "admin",
        now: datetime = None,
    ) -> Order:
        order = self._locked(db, order_id)
        lifecycle.check_transition(order, OrderStatus.REFUNDED.value)

        request = order.return_request
        if amount is None:
            if request is not None and request.refund_amount is not None:
                amount = request.refund_amount
            elif order.refund_amount is not None:
                amount = order.refund_amount
        amount = self._refund_amount(order, amount)

        now = now or now_utc()
        order.refund_amount = amount
        order.payment_status = PaymentStatus.REFUNDED.value
        if request is not None and request.status == ReturnStatus.APPROVED:
            request.status = ReturnStatus.COMPLETED.value
            request.completed_at = now
        self._set_status(order, OrderStatus.REFUNDED.value, f"Refunded {amount}", actor, now)
        db.flush()
        logger.info(f"Order {order.order_number} refunded: {amount}")
        return order

    # ==========================================
    # Tracking
    # ==========================================

    def set_tracking(
        self,
        db: Session,
        order_id: int,
        tracking_number: str,
        carrier: str = None,
        estimated_delivery: datetime = None,
    ) -> Order:
        order = self.get_order(db, order_id)
        if not (tracking_number or "").strip():
            raise ValidationError("Tracking number is required")
        order.tracking_number = tracking_number.strip()
        order.carrier = carrier
        if estimated_delivery is not None:
            order.estimated_delivery = estimated_delivery
        db.flush()
        return order

    # ==========================================
    # Query
    # ==========================================

    def get_order(self, db: Session, order_id: int) -> Order:
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFoundError(f"Order #{order_id} not found")
        return order

    def get_order_by_number(self, db: Session, order_number: str) -> Order:
        order = db.query(Order).filter(Order.order_number == (order_number or "").strip().upper()).first()
        if not order:
            raise NotFoundError(f"Order {order_number} not found")
        return order

    def get_order_for_user(self, db: Session, order_id: int, user_id: int) -> Order:
        order = db.query(Order).filter(Order.id == order_id, Order.user_id == user_id).first()
        if not order:
            raise NotFoundError(f"Order #{order_id} not found")
        return order

    def get_user_orders(
        self, db: Session, user_id: int, status: str = None, page: int = 1, per_page: int = 20,
    ) -> Tuple[List[Order], int]:
        q = db.query(Order).filter(Order.user_id == user_id)
        if status:
            q = q.filter(Order.status == status)
        total = q.count()
        orders = (
            q.order_by(desc(Order.created_at), desc(Order.id))
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return orders, total

    def get_all_orders(
        self, db: Session, status: str = None, page: int = 1, per_page: int = 30,
    ) -> Tuple[List[Order], int]:
        q = db.query(Order)
        if status:
            q = q.filter(Order.status == status)
        total = q.count()
        orders = q.order_by(desc(Order.id)).offset((page - 1) * per_page).limit(per_page).all()
        return orders, total

    def get_timeline(self, order: Order) -> List[Dict[str, Any]]:
        return [
            {"status": log.status, "note": log.note, "actor": log.actor, "timestamp": log.created_at}
            for log in order.status_logs
        ]

    def get_statistics(
        self, db: Session, start: datetime = None, end: datetime = None,
    ) -> Dict[str, Any]:
        """Order counts by status plus revenue over [start, end)."""
        q = db.query(Order)
        if start is not None:
            q = q.filter(Order.created_at >= start)
        if end is not None:
            q = q.filter(Order.created_at < end)

        by_status = {
            status: count
            for status, count in (
                q.with_entities(Order.status, sa_func.count(Order.id)).group_by(Order.status).all()
            )
        }
        counted = q.filter(Order.status.notin_([
            OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value,
        ]))
        revenue, discount, orders = counted.with_entities(
            sa_func.coalesce(sa_func.sum(Order.total), 0),
            sa_func.coalesce(sa_func.sum(Order.discount_amount), 0),
            sa_func.count(Order.id),
        ).one()
        revenue = round2(revenue)
        return {
            "total_orders": sum(by_status.values()),
            "by_status": by_status,
            "revenue": revenue,
            "total_discount": round2(discount),
            "average_order_value": round2(revenue / orders) if orders else Decimal("0.00"),
        }

    # ==========================================
    # Private Helpers
    # ==========================================

    def _locked(self, db: Session, order_id: int) -> Order:
        order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(f"Order #{order_id} not found")
        return order

    def _pending_return(self, order: Order) -> ReturnRequest:
        request = order.return_request
        if request is None or request.status != ReturnStatus.REQUESTED:
            raise InvalidTransitionError(f"Order {order.order_number} has no open return request")
        return request

    def _refund_amount(self, order: Order, amount) -> Decimal:
        if amount is None:
            return round2(order.total)
        amount = round2(amount)
        if amount <= 0 or amount > round2(order.total):
            raise ValidationError("Refund amount must be between 0 and the order total")
        return amount

    def _set_status(self, order: Order, status: str, note: Optional[str], actor: str, now: datetime) -> None:
        order.status = status
        stamp = lifecycle.STATUS_TIMESTAMPS.get(status)
        if stamp:
            setattr(order, stamp, now)
        self._log(order, status, note, actor, now)

    def _log(self, order: Order, status: str, note: Optional[str], actor: str, now: datetime) -> None:
        order.status_logs.append(OrderStatusLog(status=status, note=note, actor=actor, created_at=now))


# Singleton
order_service = OrderService()
