"""
Advisory Admin Routes
======================
Create, edit and publish/archive crop advisories.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.advisory.models import AdvisoryType, AdvisorySeason, AdvisoryPriority, AdvisoryStatus
from modules.advisory.routes import advisory_to_dict
from modules.advisory.service import advisory_service
from modules.auth.deps import require_staff

router = APIRouter(prefix="/api/admin/advisories", tags=["admin-advisory"])


# ==========================================
# Schemas
# ==========================================

class RegionIn(BaseModel):
    state: str
    districts: List[str] = []


class AdvisoryCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=5000)
    summary: Optional[str] = Field(None, max_length=300)
    advisory_type: AdvisoryType = AdvisoryType.GENERAL
    category: str = "General"
    season: AdvisorySeason = AdvisorySeason.ALL_SEASON
    priority: AdvisoryPriority = AdvisoryPriority.MEDIUM
    status: AdvisoryStatus = AdvisoryStatus.DRAFT
    target_crops: List[str] = []
    regions: List[RegionIn] = []
    soil_types: List[str] = []
    months: List[int] = []
    tags: List[str] = []
    farm_size_min: Optional[Decimal] = None
    farm_size_max: Optional[Decimal] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_evergreen: bool = False
    is_weather_alert: bool = False
    is_featured: bool = False


class AdvisoryUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1, max_length=5000)
    summary: Optional[str] = Field(None, max_length=300)
    advisory_type: Optional[AdvisoryType] = None
    category: Optional[str] = None
    season: Optional[AdvisorySeason] = None
    priority: Optional[AdvisoryPriority] = None
    target_crops: Optional[List[str]] = None
    regions: Optional[List[RegionIn]] = None
    soil_types: Optional[List[str]] = None
    months: Optional[List[int]] = None
    tags: Optional[List[str]] = None
    farm_size_min: Optional[Decimal] = None
    farm_size_max: Optional[Decimal] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_evergreen: Optional[bool] = None
    is_weather_alert: Optional[bool] = None
    is_featured: Optional[bool] = None


class StatusChange(BaseModel):
    status: AdvisoryStatus


@router.post("", status_code=201)
async def advisory_create(body: AdvisoryCreate, db: Session = Depends(get_db), user=Depends(require_staff)):
    advisory = advisory_service.create_advisory(db, body.model_dump(), created_by=user.id)
    db.commit()
    return advisory_to_dict(advisory, detail=True)


@router.patch("/{advisory_id}")
async def advisory_update(
    advisory_id: int,
    body: AdvisoryUpdate,
    db: Session = Depends(get_db),
    user=Depends(require_staff),
):
    advisory = advisory_service.update_advisory(db, advisory_id, body.model_dump(exclude_unset=True))
    db.commit()
    return advisory_to_dict(advisory, detail=True)


@router.post("/{advisory_id}/status")
async def advisory_status(
    advisory_id: int,
    body: StatusChange,
    db: Session = Depends(get_db),
    user=Depends(require_staff),
):
    advisory = advisory_service.set_status(db, advisory_id, body.status)
    db.commit()
    return advisory_to_dict(advisory, detail=True)
