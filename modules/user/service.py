"""
User Module - Service Layer
============================
Profile snapshot consumed by the coupon engine and the advisory filter.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from common.exceptions import NotFoundError
from modules.user.models import User


@dataclass
class UserProfile:
    """Read-only view of a user for rule evaluation."""
    user_id: int
    user_type: str = "new"  # new | existing
    state: Optional[str] = None
    district: Optional[str] = None
    crops: List[str] = field(default_factory=list)
    soil_type: Optional[str] = None
    farm_size: Optional[Decimal] = None
    prior_orders: int = 0

    @property
    def is_new(self) -> bool:
        return self.user_type == "new"


class UserService:

    def get_user(self, db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError(f"User #{user_id} not found")
        return user

    def count_prior_orders(self, db: Session, user_id: int) -> int:
        """Orders that were not cancelled."""
        from modules.order.models import Order, OrderStatus
        return (
            db.query(Order)
            .filter(Order.user_id == user_id, Order.status != OrderStatus.CANCELLED)
            .count()
        )

    def get_profile(self, db: Session, user_id: int) -> UserProfile:
        user = self.get_user(db, user_id)
        prior = self.count_prior_orders(db, user_id)
        return UserProfile(
            user_id=user.id,
            user_type="new" if prior == 0 else "existing",
            state=user.state,
            district=user.district,
            crops=user.primary_crops,
            soil_type=user.soil_type,
            farm_size=user.farm_size,
            prior_orders=prior,
        )

    def update_farm_details(self, db: Session, user_id: int, data: dict) -> User:
        user = self.get_user(db, user_id)
        for key in ["state", "district", "village", "pincode", "soil_type"]:
            if key in data:
                setattr(user, key, data[key] or None)
        if "farm_size" in data:
            user.farm_size = Decimal(str(data["farm_size"])) if data["farm_size"] is not None else None
        if "primary_crops" in data:
            user.primary_crops = [c.strip() for c in (data["primary_crops"] or []) if c and c.strip()]
        db.flush()
        return user


# Singleton
user_service = UserService()
