"""
Catalog Module - Service Layer
===============================
Product lookup, listing, admin CRUD and atomic stock movements.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from sqlalchemy import desc, asc, update, or_
from sqlalchemy.orm import Session

from common.exceptions import NotFoundError, ValidationError, InsufficientStockError
from common.helpers import slugify, enum_value
from modules.catalog.models import Product, ProductCategory, ProductUnit

logger = logging.getLogger("agrimart.catalog")

_CATEGORIES = {c.value for c in ProductCategory}
_UNITS = {u.value for u in ProductUnit}


def _money(value, field: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    return amount


class CatalogService:

    # ==========================================
    # Lookup
    # ==========================================

    def get_product(self, db: Session, product_id: int, active_only: bool = True) -> Product:
        q = db.query(Product).filter(Product.id == product_id)
        if active_only:
            q = q.filter(Product.is_active == True)
        product = q.first()
        if not product:
            raise NotFoundError(f"Product #{product_id} not found")
        return product

    def get_by_slug(self, db: Session, slug: str) -> Product:
        product = db.query(Product).filter(Product.slug == slug, Product.is_active == True).first()
        if not product:
            raise NotFoundError(f"Product '{slug}' not found")
        return product

    def list_products(
        self,
        db: Session,
        page: int = 1,
        per_page: int = 12,
        category: str = None,
        crop: str = None,
        season: str = None,
        search: str = None,
        min_price: Decimal = None,
        max_price: Decimal = None,
        in_stock: bool = False,
        sort_by: str = "newest",
        sort_order: str = "desc",
    ) -> Tuple[List[Product], int]:
        q = db.query(Product).filter(Product.is_active == True)
        if category:
            q = q.filter(Product.category == category)
        if crop:
            q = q.filter(Product._suitable_crops.ilike(f"%{crop}%"))
        if season:
            q = q.filter(Product._best_seasons.ilike(f"%{season}%"))
        if search:
            q = q.filter(or_(
                Product.name.ilike(f"%{search}%"),
                Product.description.ilike(f"%{search}%"),
                Product.brand.ilike(f"%{search}%"),
            ))
        if min_price is not None:
            q = q.filter(Product.price >= min_price)
        if max_price is not None:
            q = q.filter(Product.price <= max_price)
        if in_stock:
            q = q.filter(Product.stock > 0)

        direction = asc if sort_order == "asc" else desc
        order_col = {
            "price": Product.price,
            "name": Product.name,
            "newest": Product.id,
        }.get(sort_by, Product.id)

        total = q.count()
        products = (
            q.order_by(direction(order_col))
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return products, total

    def get_similar_products(self, db: Session, product: Product, limit: int = 5) -> List[Product]:
        return (
            db.query(Product)
            .filter(
                Product.id != product.id,
                Product.category == product.category,
                Product.is_active == True,
            )
            .order_by(desc(Product.is_featured), desc(Product.id))
            .limit(limit)
            .all()
        )

    # ==========================================
    # Admin: CRUD
    # ==========================================

    def create_product(self, db: Session, data: dict) -> Product:
        product = Product(
            name=(data.get("name") or "").strip(),
            description=data.get("description", ""),
            brand=data.get("brand"),
            category=enum_value(data.get("category")),
            price=_money(data.get("price"), "price"),
            discount_price=_money(data.get("discount_price"), "discount_price"),
            stock=int(data.get("stock", 0)),
            unit=enum_value(data.get("unit")) or ProductUnit.PIECE.value,
            is_organic=bool(data.get("is_organic")),
            is_featured=bool(data.get("is_featured")),
        )
        product.suitable_crops = data.get("suitable_crops") or []
        product.best_seasons = data.get("best_seasons") or []
        self.finalize_product(db, product)
        db.add(product)
        db.flush()
        logger.info(f"Product #{product.id} created: {product.name}")
        return product

    def update_product(self, db: Session, product_id: int, data: dict) -> Product:
        product = self.get_product(db, product_id, active_only=False)

        for key in ["name", "description", "brand", "category", "unit"]:
            if key in data and data[key] is not None:
                setattr(product, key, enum_value(data[key]))
        if "price" in data:
            product.price = _money(data["price"], "price")
        if "discount_price" in data:
            product.discount_price = _money(data["discount_price"], "discount_price")
        if "stock" in data:
            product.stock = int(data["stock"])
        for key in ["is_organic", "is_featured", "is_active"]:
            if key in data:
                setattr(product, key, bool(data[key]))
        if "suitable_crops" in data:
            product.suitable_crops = data["suitable_crops"] or []
        if "best_seasons" in data:
            product.best_seasons = data["best_seasons"] or []

        self.finalize_product(db, product)
        db.flush()
        return product

    def deactivate_product(self, db: Session, product_id: int) -> Product:
        """Soft delete. Products referenced by orders are never removed."""
        product = self.get_product(db, product_id, active_only=False)
        product.is_active = False
        db.flush()
        logger.info(f"Product #{product.id} deactivated")
        return product

    def finalize_product(self, db: Session, product: Product) -> None:
        """Validate invariants and derive the slug before saving."""
        if not product.name:
            raise ValidationError("Product name is required")
        if product.category not in _CATEGORIES:
            raise ValidationError(f"{product.category} is not a valid category")
        if product.unit not in _UNITS:
            raise ValidationError(f"{product.unit} is not a valid unit")
        if product.price is None:
            raise ValidationError("Price is required")
        if product.discount_price is not None and product.discount_price >= product.price:
            raise ValidationError("Discount price should be less than original price")
        if product.stock is None or product.stock < 0:
            raise ValidationError("Stock cannot be negative")

        base = slugify(product.name) or "product"
        slug = base
        suffix = 2
        while (
            db.query(Product.id)
            .filter(Product.slug == slug, Product.id != product.id)
            .first()
        ):
            slug = f"{base}-{suffix}"
            suffix += 1
        product.slug = slug

    # ==========================================
    # Stock (atomic)
    # ==========================================

    def decrement_stock(self, db: Session, product_id: int, quantity: int) -> None:
        """Decrement-if-sufficient in a single UPDATE. Never oversells."""
        result = db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            product = db.query(Product).filter(Product.id == product_id).first()
            if not product:
                raise NotFoundError(f"Product #{product_id} not found")
            raise InsufficientStockError(product.name, quantity, product.stock)

    def restore_stock(self, db: Session, product_id: int, quantity: int) -> None:
        db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session="fetch")
        )


# Singleton
catalog_service = CatalogService()
