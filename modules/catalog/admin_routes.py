"""
Catalog Admin Routes
=====================
Product create / update / soft delete.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_staff
from modules.catalog.routes import product_to_dict
from modules.catalog.service import catalog_service

router = APIRouter(prefix="/api/admin/products", tags=["admin-catalog"])


# ==========================================
# Schemas
# ==========================================

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    brand: Optional[str] = None
    category: str
    price: Decimal = Field(..., ge=0)
    discount_price: Optional[Decimal] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    unit: str = "piece"
    suitable_crops: List[str] = []
    best_seasons: List[str] = []
    is_organic: bool = False
    is_featured: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    discount_price: Optional[Decimal] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    unit: Optional[str] = None
    suitable_crops: Optional[List[str]] = None
    best_seasons: Optional[List[str]] = None
    is_organic: Optional[bool] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None


@router.post("", status_code=201)
async def product_create(body: ProductCreate, db: Session = Depends(get_db), user=Depends(require_staff)):
    product = catalog_service.create_product(db, body.model_dump())
    db.commit()
    return product_to_dict(product)


@router.patch("/{product_id}")
async def product_update(
    product_id: int,
    body: ProductUpdate,
    db: Session = Depends(get_db),
    user=Depends(require_staff),
):
    product = catalog_service.update_product(db, product_id, body.model_dump(exclude_unset=True))
    db.commit()
    return product_to_dict(product)


@router.delete("/{product_id}")
async def product_deactivate(product_id: int, db: Session = Depends(get_db), user=Depends(require_staff)):
    product = catalog_service.deactivate_product(db, product_id)
    db.commit()
    return product_to_dict(product)
