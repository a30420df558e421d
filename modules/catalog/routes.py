"""
Catalog Routes - Storefront
=============================
Product listing with filters, detail by id or slug, similar products.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import round2
from modules.catalog.service import catalog_service

router = APIRouter(prefix="/api/products", tags=["catalog"])


def product_to_dict(product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "description": product.description,
        "brand": product.brand,
        "category": product.category,
        "price": round2(product.price),
        "discount_price": round2(product.discount_price) if product.discount_price is not None else None,
        "effective_price": round2(product.effective_price),
        "discount_percentage": product.discount_percentage,
        "unit": product.unit,
        "stock": product.stock,
        "stock_status": product.stock_status,
        "suitable_crops": product.suitable_crops,
        "best_seasons": product.best_seasons,
        "is_organic": product.is_organic,
        "is_featured": product.is_featured,
        "is_active": product.is_active,
    }


@router.get("")
async def list_products(
    page: int = Query(1, ge=1),
    per_page: int = Query(12, ge=1, le=100),
    category: Optional[str] = None,
    crop: Optional[str] = None,
    season: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    in_stock: bool = False,
    sort_by: str = "newest",
    sort_order: str = "desc",
    db: Session = Depends(get_db),
):
    products, total = catalog_service.list_products(
        db, page=page, per_page=per_page, category=category, crop=crop,
        season=season, search=search, min_price=min_price, max_price=max_price,
        in_stock=in_stock, sort_by=sort_by, sort_order=sort_order,
    )
    return {
        "items": [product_to_dict(p) for p in products],
        "total": total,
        "page": page,
        "total_pages": max(1, (total + per_page - 1) // per_page),
    }


@router.get("/slug/{slug}")
async def product_by_slug(slug: str, db: Session = Depends(get_db)):
    return product_to_dict(catalog_service.get_by_slug(db, slug))


@router.get("/{product_id}")
async def product_detail(product_id: int, crop: Optional[str] = None, db: Session = Depends(get_db)):
    product = catalog_service.get_product(db, product_id)
    data = product_to_dict(product)
    if crop:
        data["suitable_for_crop"] = product.is_suitable_for_crop(crop)
    data["similar"] = [product_to_dict(p) for p in catalog_service.get_similar_products(db, product)]
    return data
