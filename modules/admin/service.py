"""
Admin Module - System Settings
===============================
Runtime overrides for configured constants. A row in `system_settings`
wins over the value in config.settings.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from config import settings
from modules.admin.models import SystemSetting


def get_setting_from_db(db: Session, key: str, default: str = "") -> str:
    """Fetch a system setting using an existing DB session."""
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    return setting.value if setting else default


def parse_decimal_setting(db: Session, key: str, default: Decimal) -> Decimal:
    val = get_setting_from_db(db, key, str(default))
    try:
        return Decimal(str(val).strip())
    except (InvalidOperation, ValueError, TypeError):
        return default


def set_setting(db: Session, key: str, value: str, description: str = None) -> SystemSetting:
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    if setting:
        setting.value = value
        if description is not None:
            setting.description = description
    else:
        setting = SystemSetting(key=key, value=value, description=description)
        db.add(setting)
    db.flush()
    return setting


@dataclass(frozen=True)
class PricingConfig:
    tax_rate: Decimal = settings.TAX_RATE
    free_shipping_threshold: Decimal = settings.FREE_SHIPPING_THRESHOLD
    flat_shipping_fee: Decimal = settings.FLAT_SHIPPING_FEE


def get_pricing_config(db: Session) -> PricingConfig:
    return PricingConfig(
        tax_rate=parse_decimal_setting(db, "tax_rate", settings.TAX_RATE),
        free_shipping_threshold=parse_decimal_setting(
            db, "free_shipping_threshold", settings.FREE_SHIPPING_THRESHOLD,
        ),
        flat_shipping_fee=parse_decimal_setting(db, "flat_shipping_fee", settings.FLAT_SHIPPING_FEE),
    )
