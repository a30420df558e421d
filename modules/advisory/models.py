"""
Advisory Module - Models
=========================
Crop advisories targeted by season, region, crop, soil type and farm size.
Relevance to a user is computed, never stored.
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Boolean, Text, Numeric,
    DateTime, ForeignKey, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base
from common.helpers import load_json_list, dump_json_list


class AdvisoryType(str, enum.Enum):
    CROP_RECOMMENDATION = "crop-recommendation"
    PEST_CONTROL = "pest-control"
    FERTILIZER_RECOMMENDATION = "fertilizer-recommendation"
    IRRIGATION = "irrigation"
    HARVESTING = "harvesting"
    GENERAL = "general"
    WEATHER_ALERT = "weather-alert"


class AdvisorySeason(str, enum.Enum):
    KHARIF = "kharif"
    RABI = "rabi"
    ZAID = "zaid"
    ALL_SEASON = "all-season"


class AdvisoryPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AdvisoryStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class CropAdvisory(Base):
    __tablename__ = "crop_advisories"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    summary = Column(String(300), nullable=True)
    advisory_type = Column(String, default=AdvisoryType.GENERAL, nullable=False)
    category = Column(String, nullable=False)
    season = Column(String, default=AdvisorySeason.ALL_SEASON, nullable=False)
    priority = Column(String, default=AdvisoryPriority.MEDIUM, nullable=False)
    status = Column(String, default=AdvisoryStatus.DRAFT, nullable=False)

    # Targeting (empty = no restriction)
    _target_crops = Column("target_crops", Text, nullable=True)  # JSON list
    _soil_types = Column("soil_types", Text, nullable=True)      # JSON list
    _months = Column("months", Text, nullable=True)              # JSON list of 1-12
    farm_size_min = Column(Numeric(10, 2), nullable=True)        # acres
    farm_size_max = Column(Numeric(10, 2), nullable=True)
    _tags = Column("tags", Text, nullable=True)

    # Validity
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    is_evergreen = Column(Boolean, default=False, nullable=False)

    is_weather_alert = Column(Boolean, default=False, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)

    # Engagement
    views = Column(Integer, default=0, nullable=False)
    likes = Column(Integer, default=0, nullable=False)
    shares = Column(Integer, default=0, nullable=False)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    regions = relationship(
        "AdvisoryRegion", back_populates="advisory",
        cascade="all, delete-orphan", order_by="AdvisoryRegion.id",
    )

    __table_args__ = (
        Index("ix_advisory_status_season", "status", "season"),
    )

    @property
    def target_crops(self) -> list:
        return load_json_list(self._target_crops)

    @target_crops.setter
    def target_crops(self, value: list):
        self._target_crops = dump_json_list(value)

    @property
    def soil_types(self) -> list:
        return load_json_list(self._soil_types)

    @soil_types.setter
    def soil_types(self, value: list):
        self._soil_types = dump_json_list(value)

    @property
    def months(self) -> list:
        return load_json_list(self._months)

    @months.setter
    def months(self, value: list):
        self._months = dump_json_list(value)

    @property
    def tags(self) -> list:
        return load_json_list(self._tags)

    @tags.setter
    def tags(self, value: list):
        self._tags = dump_json_list(value)

    def __repr__(self):
        return f"<CropAdvisory {self.title[:30]} ({self.priority})>"


class AdvisoryRegion(Base):
    __tablename__ = "advisory_regions"

    id = Column(Integer, primary_key=True)
    advisory_id = Column(Integer, ForeignKey("crop_advisories.id", ondelete="CASCADE"), nullable=False)
    state = Column(String, nullable=False)
    _districts = Column("districts", Text, nullable=True)  # JSON list, empty = whole state

    advisory = relationship("CropAdvisory", back_populates="regions")

    @property
    def districts(self) -> list:
        return load_json_list(self._districts)

    @districts.setter
    def districts(self, value: list):
        self._districts = dump_json_list(value)
