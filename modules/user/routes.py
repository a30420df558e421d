"""
User Routes
============
Current user's profile and farm details.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login
from modules.user.models import SoilType
from modules.user.service import user_service

router = APIRouter(prefix="/api/me", tags=["user"])


class FarmDetailsUpdate(BaseModel):
    state: Optional[str] = None
    district: Optional[str] = None
    village: Optional[str] = None
    pincode: Optional[str] = Field(None, max_length=6)
    soil_type: Optional[SoilType] = None
    farm_size: Optional[Decimal] = Field(None, ge=0)
    primary_crops: Optional[List[str]] = None


def _profile_dict(db: Session, user_id: int) -> dict:
    profile = user_service.get_profile(db, user_id)
    return {
        "user_id": profile.user_id,
        "user_type": profile.user_type,
        "state": profile.state,
        "district": profile.district,
        "crops": profile.crops,
        "soil_type": profile.soil_type,
        "farm_size": profile.farm_size,
        "prior_orders": profile.prior_orders,
    }


@router.get("")
async def my_profile(db: Session = Depends(get_db), me=Depends(require_login)):
    return _profile_dict(db, me.id)


@router.patch("/farm")
async def update_farm(body: FarmDetailsUpdate, db: Session = Depends(get_db), me=Depends(require_login)):
    data = body.model_dump(exclude_unset=True)
    if data.get("soil_type") is not None:
        data["soil_type"] = data["soil_type"].value
    user_service.update_farm_details(db, me.id, data)
    db.commit()
    return _profile_dict(db, me.id)
