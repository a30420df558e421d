"""
Catalog Module - Models
========================
Agricultural products: seeds, pesticides, fertilizers, pumps, tools, machinery.
"""

import enum
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Text,
    DateTime, CheckConstraint, Index,
)
from sqlalchemy.sql import func
from config.database import Base
from config.settings import LOW_STOCK_THRESHOLD
from common.helpers import load_json_list, dump_json_list


class ProductCategory(str, enum.Enum):
    SEEDS = "Seeds"
    PESTICIDES = "Pesticides"
    FERTILIZERS = "Fertilizers"
    PUMPS = "Pumps"
    TOOLS = "Tools"
    MACHINERY = "Machinery"
    ORGANIC = "Organic"


class ProductUnit(str, enum.Enum):
    KG = "kg"
    GM = "gm"
    LTR = "ltr"
    ML = "ml"
    PACKET = "packet"
    PIECE = "piece"
    BAG = "bag"
    BOTTLE = "bottle"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    slug = Column(String, unique=True, nullable=True)
    description = Column(Text, nullable=True)
    brand = Column(String, nullable=True)
    category = Column(String, nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False)
    discount_price = Column(Numeric(12, 2), nullable=True)
    stock = Column(Integer, default=0, nullable=False)
    unit = Column(String, default=ProductUnit.PIECE, nullable=False)
    _suitable_crops = Column("suitable_crops", Text, nullable=True)   # JSON list
    _best_seasons = Column("best_seasons", Text, nullable=True)       # JSON list
    is_organic = Column(Boolean, default=False, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_stock"),
        CheckConstraint("price >= 0", name="ck_product_price"),
        CheckConstraint(
            "discount_price IS NULL OR discount_price < price",
            name="ck_product_discount_price",
        ),
        Index("ix_product_active_featured", "is_active", "is_featured"),
    )

    @property
    def suitable_crops(self) -> list:
        return load_json_list(self._suitable_crops)

    @suitable_crops.setter
    def suitable_crops(self, value: list):
        self._suitable_crops = dump_json_list(value)

    @property
    def best_seasons(self) -> list:
        return load_json_list(self._best_seasons)

    @best_seasons.setter
    def best_seasons(self, value: list):
        self._best_seasons = dump_json_list(value)

    @property
    def effective_price(self) -> Decimal:
        return self.discount_price if self.discount_price is not None else self.price

    @property
    def discount_percentage(self) -> int:
        if self.discount_price is not None and self.price and self.price > self.discount_price:
            pct = (Decimal(self.price) - Decimal(self.discount_price)) / Decimal(self.price) * 100
            return int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return 0

    @property
    def stock_status(self) -> str:
        if self.stock == 0:
            return "out-of-stock"
        if self.stock <= LOW_STOCK_THRESHOLD:
            return "low-stock"
        return "in-stock"

    def is_suitable_for_crop(self, crop_name: str) -> bool:
        needle = (crop_name or "").lower()
        return any(needle in crop.lower() for crop in self.suitable_crops)

    def __repr__(self):
        return f"<Product {self.name} ({self.category})>"
