"""
AgriMart - Shared Helpers
==========================
Pure utility functions with NO database or module dependencies.
"""

import json
import re
import secrets
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

TWO_PLACES = Decimal("0.01")


def now_utc() -> datetime:
    """Returns current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite drops tzinfo) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value) -> Decimal:
    """Round half-up to 2 decimal places."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def safe_int(value: Optional[str]) -> Optional[int]:
    """Safely convert a string to int. Returns None on failure."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return None


def format_inr(value) -> str:
    """Format an amount as rupees with comma separators."""
    if value is None:
        return "₹0.00"
    try:
        return "₹{:,.2f}".format(to_decimal(value))
    except (ValueError, TypeError, ArithmeticError):
        return str(value)


def slugify(text: str) -> str:
    """Lowercase, non-alphanumerics collapsed to '-', edges trimmed."""
    return re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")


# ==========================================
# JSON columns
# ==========================================

def load_json_list(raw: Optional[str]) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return []
    return value if isinstance(value, list) else []


def dump_json_list(value) -> Optional[str]:
    return json.dumps(list(value)) if value else None


def load_json_dict(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}
    return value if isinstance(value, dict) else {}


def dump_json_dict(value) -> Optional[str]:
    return json.dumps(dict(value), ensure_ascii=False) if value else None


# ==========================================
# Order Number Generator
# ==========================================

_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"  # no O/0/I/1/L


def generate_code(length: int = 4) -> str:
    """Generate a short, human-readable random code."""
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def generate_order_number(prefix: str = "AGR", when: Optional[datetime] = None) -> str:
    """Timestamp-ordered order number with a random suffix, e.g. AGR2610171530224KQ7."""
    when = when or now_utc()
    return f"{prefix}{when.strftime('%y%m%d%H%M%S')}{generate_code(4)}"


def generate_unique_order_number(db, prefix: str = "AGR", max_retries: int = 10) -> str:
    """Generate a unique order number (checks DB for collision)."""
    from modules.order.models import Order
    for _ in range(max_retries):
        number = generate_order_number(prefix)
        exists = db.query(Order.id).filter(Order.order_number == number).first()
        if not exists:
            return number
    raise RuntimeError("Failed to generate unique order number after retries")


def enum_value(value):
    """Plain value of a str-enum member; anything else unchanged."""
    return getattr(value, "value", value)
