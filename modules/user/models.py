"""
User Module - User Model
=========================
Farmers, dealers and admins share one users table. Farm details
(location, soil, crops, farm size) drive coupon regions and advisory relevance.
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, Text, Index,
)
from sqlalchemy.sql import func
from config.database import Base
from common.helpers import load_json_list, dump_json_list


class UserRole(str, enum.Enum):
    FARMER = "farmer"
    DEALER = "dealer"
    ADMIN = "admin"


class SoilType(str, enum.Enum):
    BLACK = "black"
    RED = "red"
    ALLUVIAL = "alluvial"
    LATERITE = "laterite"
    SANDY = "sandy"
    CLAY = "clay"
    LOAMY = "loamy"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # === Identity ===
    name = Column(String(50), nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    phone = Column(String(15), unique=True, nullable=True)
    role = Column(String, default=UserRole.FARMER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # === Farm details ===
    state = Column(String, nullable=True, index=True)
    district = Column(String, nullable=True)
    village = Column(String, nullable=True)
    pincode = Column(String(6), nullable=True)
    soil_type = Column(String, nullable=True)
    farm_size = Column(Numeric(10, 2), nullable=True)  # acres
    _primary_crops = Column("primary_crops", Text, nullable=True)  # JSON list

    # === Audit ===
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index("ix_users_state_district", "state", "district"),
    )

    @property
    def primary_crops(self) -> list:
        return load_json_list(self._primary_crops)

    @primary_crops.setter
    def primary_crops(self, value: list):
        self._primary_crops = dump_json_list(value)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
