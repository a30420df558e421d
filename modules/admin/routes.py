"""
Admin Module - Settings Routes
================================
Read and override runtime settings (tax rate, shipping threshold/fee).
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_staff
from modules.admin.models import SystemSetting
from modules.admin.service import set_setting, get_pricing_config

router = APIRouter(prefix="/api/admin/settings", tags=["admin-settings"])


class SettingUpdate(BaseModel):
    key: str = Field(..., min_length=1, max_length=100)
    value: str = Field(..., max_length=500)
    description: Optional[str] = None


@router.get("")
async def settings_list(db: Session = Depends(get_db), user=Depends(require_staff)):
    pricing = get_pricing_config(db)
    return {
        "settings": {s.key: s.value for s in db.query(SystemSetting).order_by(SystemSetting.key).all()},
        "pricing": {
            "tax_rate": pricing.tax_rate,
            "free_shipping_threshold": pricing.free_shipping_threshold,
            "flat_shipping_fee": pricing.flat_shipping_fee,
        },
    }


@router.put("")
async def settings_update(body: SettingUpdate, db: Session = Depends(get_db), user=Depends(require_staff)):
    setting = set_setting(db, body.key.strip(), body.value.strip(), body.description)
    db.commit()
    return {"key": setting.key, "value": setting.value}
