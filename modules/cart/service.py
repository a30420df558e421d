"""
Cart Module - Service Layer
==============================
Cart management: get/create, add/update/remove items, saved-for-later,
coupon apply/remove and the finalize step that recomputes totals.

Every mutation ends in `finalize_cart`, which re-runs the coupon rules for
an applied coupon (dropping it, with the tagged reason kept in
`coupon_notice`, once it no longer applies), bumps `last_modified`,
rewrites the computed columns and flushes. The cart row carries a
version counter, so a concurrent writer gets ConcurrencyConflictError.
Commit is left to the caller.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config.settings import ABANDONED_CART_DAYS
from common.exceptions import (
    ValidationError, ItemNotFoundError, InsufficientStockError, ConcurrencyConflictError,
)
from common.helpers import now_utc, round2, to_decimal
from modules.admin.service import get_pricing_config
from modules.cart.models import Cart, CartItem, CartStatus, SavedItem
from modules.cart.totals import LineSnapshot, compute_totals
from modules.catalog.service import catalog_service
from modules.coupon.service import coupon_service, COUPON_ERRORS, CouponApplication

logger = logging.getLogger("agrimart.cart")


def cart_lines(cart: Cart) -> List[LineSnapshot]:
    """Pricing view of the cart's line items."""
    return [
        LineSnapshot(
            product_id=item.product_id,
            quantity=item.quantity,
            price=to_decimal(item.price),
            discount_price=to_decimal(item.discount_price) if item.discount_price is not None else None,
            category=item.product.category if item.product else None,
            name=item.product.name if item.product else "",
        )
        for item in cart.items
    ]


def _captured_discount_price(product, price: Decimal) -> Optional[Decimal]:
    if product.discount_price is not None and product.discount_price < price:
        return product.discount_price
    return None


class CartService:

    # ==========================================
    # Lookup
    # ==========================================

    def get_or_create_cart(self, db: Session, user_id: int, lock: bool = True) -> Cart:
        """Get the user's cart (row-locked for the transaction) or create it."""
        cart = self._find_cart(db, user_id, lock)
        if not cart:
            cart = Cart(user_id=user_id, status=CartStatus.ACTIVE, last_modified=now_utc())
            db.add(cart)
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                # Race condition: another request created this cart
                cart = self._find_cart(db, user_id, lock)
                if not cart:
                    raise ConcurrencyConflictError("Your cart was changed by another request. Please retry.")
                logger.warning(f"Cart of user #{user_id} was created concurrently, reusing #{cart.id}")
        elif cart.status != CartStatus.ACTIVE:
            cart.status = CartStatus.ACTIVE
        return cart

    def get_cart_summary(self, db: Session, user_id: int) -> dict:
        cart = self.get_or_create_cart(db, user_id, lock=False)
        items = []
        for item in cart.items:
            product = item.product
            items.append({
                "product_id": item.product_id,
                "name": product.name if product else "",
                "slug": product.slug if product else None,
                "quantity": item.quantity,
                "price": round2(item.price),
                "discount_price": round2(item.discount_price) if item.discount_price is not None else None,
                "line_total": round2(to_decimal(item.effective_price) * item.quantity),
                "stock_status": product.stock_status if product else "out-of-stock",
            })
        saved = [
            {
                "product_id": s.product_id,
                "name": s.product.name if s.product else "",
                "original_price": round2(s.original_price),
                "saved_at": s.saved_at,
            }
            for s in cart.saved_items
        ]
        coupon = None
        if cart.has_coupon:
            coupon = {
                "code": cart.applied_coupon_code,
                "discount_amount": round2(cart.applied_discount_amount),
                "free_shipping": bool(cart.applied_free_shipping),
            }
        return {
            "id": cart.id,
            "status": cart.status,
            "items": items,
            "saved_items": saved,
            "item_count": cart.item_count,
            "coupon": coupon,
            "coupon_notice": cart.coupon_notice,
            "subtotal": round2(cart.subtotal),
            "discount_amount": round2(cart.discount_amount),
            "tax_amount": round2(cart.tax_amount),
            "shipping_amount": round2(cart.shipping_amount),
            "total": round2(cart.total),
            "last_modified": cart.last_modified,
        }

    # ==========================================
    # Items
    # ==========================================

    def add_item(
        self, db: Session, user_id: int, product_id: int,
        quantity: int = 1, price: Decimal = None,
    ) -> Cart:
        if quantity is None or quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        product = catalog_service.get_product(db, product_id)
        cart = self.get_or_create_cart(db, user_id)

        item = cart.find_item(product_id)
        new_qty = quantity + (item.quantity if item else 0)
        if new_qty > product.stock:
            raise InsufficientStockError(product.name, new_qty, product.stock)

        if item:
            item.quantity = new_qty
        else:
            unit_price = to_decimal(price) if price is not None else to_decimal(product.price)
            cart.items.append(CartItem(
                product_id=product.id,
                product=product,
                quantity=quantity,
                price=unit_price,
                discount_price=_captured_discount_price(product, unit_price),
                added_at=now_utc(),
            ))
        return self.finalize_cart(db, cart)

    def update_quantity(self, db: Session, user_id: int, product_id: int, quantity: int) -> Cart:
        """Set a line's quantity. Zero or less removes the line."""
        cart = self.get_or_create_cart(db, user_id)
        item = cart.find_item(product_id)
        if not item:
            raise ItemNotFoundError(f"Product #{product_id} is not in your cart")

        if quantity <= 0:
            cart.items.remove(item)
        else:
            product = item.product
            if product is not None and quantity > product.stock:
                raise InsufficientStockError(product.name, quantity, product.stock)
            item.quantity = quantity
        return self.finalize_cart(db, cart)

    def remove_item(self, db: Session, user_id: int, product_id: int) -> Cart:
        cart = self.get_or_create_cart(db, user_id)
        item = cart.find_item(product_id)
        if item:
            cart.items.remove(item)
        return self.finalize_cart(db, cart)

    def clear(self, db: Session, user_id: int) -> Cart:
        """Remove all items and the applied coupon."""
        cart = self.get_or_create_cart(db, user_id)
        self._empty(cart)
        return self.finalize_cart(db, cart)

    # ==========================================
    # Saved for later
    # ==========================================

    def save_for_later(self, db: Session, user_id: int, product_id: int) -> Cart:
        cart = self.get_or_create_cart(db, user_id)
        item = cart.find_item(product_id)
        if not item:
            raise ItemNotFoundError(f"Product #{product_id} is not in your cart")
        if not cart.find_saved(product_id):
            cart.saved_items.append(SavedItem(
                product_id=item.product_id,
                product=item.product,
                original_price=item.price,
                saved_at=now_utc(),
            ))
        cart.items.remove(item)
        return self.finalize_cart(db, cart)

    def move_to_cart(self, db: Session, user_id: int, product_id: int) -> Cart:
        cart = self.get_or_create_cart(db, user_id)
        saved = cart.find_saved(product_id)
        if not saved:
            raise ItemNotFoundError(f"Product #{product_id} is not in your saved items")
        product = catalog_service.get_product(db, product_id)

        item = cart.find_item(product_id)
        new_qty = 1 + (item.quantity if item else 0)
        if new_qty > product.stock:
            raise InsufficientStockError(product.name, new_qty, product.stock)
        if item:
            item.quantity = new_qty
        else:
            price = to_decimal(saved.original_price)
            cart.items.append(CartItem(
                product_id=product.id,
                product=product,
                quantity=1,
                price=price,
                discount_price=_captured_discount_price(product, price),
                added_at=now_utc(),
            ))
        cart.saved_items.remove(saved)
        return self.finalize_cart(db, cart)

    # ==========================================
    # Coupon
    # ==========================================

    def apply_coupon(self, db: Session, user_id: int, code: str) -> Cart:
        cart = self.get_or_create_cart(db, user_id)
        result = coupon_service.validate(db, code, user_id, cart_lines(cart))

        self._store_coupon(cart, result)
        cart.coupon_notice = None
        logger.info(f"Coupon {result.coupon.code} applied to cart of user #{user_id}: {result.discount}")
        return self.finalize_cart(db, cart, refresh_coupon=False)

    def remove_coupon(self, db: Session, user_id: int) -> Cart:
        cart = self.get_or_create_cart(db, user_id)
        self._drop_coupon(cart)
        return self.finalize_cart(db, cart)

    # ==========================================
    # Finalize
    # ==========================================

    def finalize_cart(self, db: Session, cart: Cart, refresh_coupon: bool = True) -> Cart:
        """
        Recompute totals from items + applied coupon, then flush.

        The applied coupon is re-evaluated against the current lines so the
        stored discount always matches what checkout will charge.
        """
        try:
            config = get_pricing_config(db)
            lines = cart_lines(cart)
            if refresh_coupon and cart.has_coupon:
                self._refresh_coupon(db, cart, lines, config)

            coupon_discount = Decimal("0")
            if cart.has_coupon and not cart.applied_free_shipping:
                coupon_discount = to_decimal(cart.applied_discount_amount)

            totals = compute_totals(
                lines,
                coupon_discount=coupon_discount,
                free_shipping=bool(cart.has_coupon and cart.applied_free_shipping),
                config=config,
            )
            cart.subtotal = totals.subtotal
            cart.discount_amount = totals.discount_amount
            cart.tax_amount = totals.tax_amount
            cart.shipping_amount = totals.shipping_amount
            cart.total = totals.total
            cart.last_modified = now_utc()
            db.flush()
        except StaleDataError as e:
            logger.warning(f"Cart version conflict: {e}")
            raise ConcurrencyConflictError("Your cart was changed by another request. Please retry.")
        return cart

    # ==========================================
    # Maintenance
    # ==========================================

    def mark_converted(self, db: Session, cart: Cart) -> Cart:
        """Empty the cart after a successful checkout."""
        self._empty(cart)
        cart.status = CartStatus.CONVERTED
        return self.finalize_cart(db, cart)

    def cleanup_abandoned_carts(self, db: Session, days: int = None, now=None) -> int:
        """Active carts untouched for `days` become abandoned and are emptied."""
        days = days if days is not None else ABANDONED_CART_DAYS
        cutoff = (now or now_utc()) - timedelta(days=days)
        stale = (
            db.query(Cart)
            .filter(Cart.status == CartStatus.ACTIVE, Cart.last_modified < cutoff)
            .all()
        )
        for cart in stale:
            self._empty(cart)
            cart.status = CartStatus.ABANDONED
            self.finalize_cart(db, cart)
        if stale:
            logger.info(f"Marked {len(stale)} cart(s) abandoned (idle > {days} days)")
        return len(stale)

    # ==========================================
    # Private helpers
    # ==========================================

    def _find_cart(self, db: Session, user_id: int, lock: bool) -> Optional[Cart]:
        q = db.query(Cart).filter(Cart.user_id == user_id)
        if lock:
            q = q.with_for_update()
        return q.first()

    def _refresh_coupon(self, db: Session, cart: Cart, lines, config) -> None:
        try:
            result = coupon_service.validate(
                db, cart.applied_coupon_code, cart.user_id, lines, config=config,
            )
        except COUPON_ERRORS as e:
            logger.info(f"Coupon {cart.applied_coupon_code} dropped from cart #{cart.id}: {e.reason or e.code}")
            self._drop_coupon(cart)
            cart.coupon_notice = e.reason or e.code
            return
        self._store_coupon(cart, result)

    def _store_coupon(self, cart: Cart, result: CouponApplication) -> None:
        cart.applied_coupon_id = result.coupon.id
        cart.applied_coupon_code = result.coupon.code
        cart.applied_discount_amount = result.discount
        cart.applied_free_shipping = result.free_shipping

    def _empty(self, cart: Cart) -> None:
        cart.items.clear()
        self._drop_coupon(cart)

    def _drop_coupon(self, cart: Cart) -> None:
        cart.applied_coupon_id = None
        cart.applied_coupon_code = None
        cart.applied_discount_amount = Decimal("0")
        cart.applied_free_shipping = False
        cart.coupon_notice = None


# Singleton
cart_service = CartService()
