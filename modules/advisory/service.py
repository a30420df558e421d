"""
Advisory Module - Service Layer
================================
Advisory CRUD, current/personalized/crop/search listings and engagement
counters. Filtering and ordering reuse the pure rules in `relevance`.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import update, or_
from sqlalchemy.orm import Session, selectinload

from common.exceptions import NotFoundError, ValidationError
from common.helpers import now_utc, as_utc, enum_value
from modules.advisory import relevance
from modules.advisory.models import (
    CropAdvisory, AdvisoryRegion,
    AdvisoryType, AdvisorySeason, AdvisoryPriority, AdvisoryStatus,
)
from modules.user.service import UserProfile, user_service

logger = logging.getLogger("agrimart.advisory")

_TYPES = {t.value for t in AdvisoryType}
_SEASONS = {s.value for s in AdvisorySeason}
_PRIORITIES = {p.value for p in AdvisoryPriority}
_STATUSES = {s.value for s in AdvisoryStatus}
_COUNTERS = {"views", "likes", "shares"}


def _size(value, field: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        size = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if size < 0:
        raise ValidationError(f"{field} cannot be negative")
    return size


def _date(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value)))
    except ValueError:
        raise ValidationError(f"{value} is not a valid date")


class AdvisoryService:

    # ==========================================
    # Admin: CRUD
    # ==========================================

    def create_advisory(self, db: Session, data: dict, created_by: int = None) -> CropAdvisory:
        advisory = CropAdvisory(
            title=(data.get("title") or "").strip(),
            content=(data.get("content") or "").strip(),
            summary=data.get("summary"),
            advisory_type=enum_value(data.get("advisory_type")) or AdvisoryType.GENERAL.value,
            category=(data.get("category") or "General").strip(),
            season=enum_value(data.get("season")) or AdvisorySeason.ALL_SEASON.value,
            priority=enum_value(data.get("priority")) or AdvisoryPriority.MEDIUM.value,
            status=enum_value(data.get("status")) or AdvisoryStatus.DRAFT.value,
            farm_size_min=_size(data.get("farm_size_min"), "farm_size_min"),
            farm_size_max=_size(data.get("farm_size_max"), "farm_size_max"),
            start_date=_date(data.get("start_date")) or now_utc(),
            end_date=_date(data.get("end_date")),
            is_evergreen=bool(data.get("is_evergreen")),
            is_weather_alert=bool(data.get("is_weather_alert")),
            is_featured=bool(data.get("is_featured")),
            created_by=created_by,
        )
        self._apply_lists(advisory, data)
        self.finalize_advisory(advisory)
        db.add(advisory)
        db.flush()
        logger.info(f"Advisory #{advisory.id} created: {advisory.title}")
        return advisory

    def update_advisory(self, db: Session, advisory_id: int, data: dict) -> CropAdvisory:
        advisory = self.get_advisory(db, advisory_id)
        for key in ["title", "content", "summary", "advisory_type", "category", "season", "priority", "status"]:
            if key in data and data[key] is not None:
                setattr(advisory, key, enum_value(data[key]))
        for key in ["farm_size_min", "farm_size_max"]:
            if key in data:
                setattr(advisory, key, _size(data[key], key))
        for key in ["start_date", "end_date"]:
            if key in data:
                setattr(advisory, key, _date(data[key]))
        for key in ["is_evergreen", "is_weather_alert", "is_featured"]:
            if key in data:
                setattr(advisory, key, bool(data[key]))
        if "regions" in data:
            advisory.regions = []
            db.flush()
        self._apply_lists(advisory, data)
        self.finalize_advisory(advisory)
        db.flush()
        return advisory

    def set_status(self, db: Session, advisory_id: int, status: str) -> CropAdvisory:
        status = enum_value(status)
        if status not in _STATUSES:
            raise ValidationError(f"{status} is not a valid status")
        advisory = self.get_advisory(db, advisory_id)
        advisory.status = status
        db.flush()
        logger.info(f"Advisory #{advisory.id} → {status}")
        return advisory

    def finalize_advisory(self, advisory: CropAdvisory) -> None:
        if not advisory.title:
            raise ValidationError("Advisory title is required")
        if not advisory.content:
            raise ValidationError("Advisory content is required")
        if advisory.advisory_type not in _TYPES:
            raise ValidationError(f"{advisory.advisory_type} is not a valid advisory type")
        if advisory.season not in _SEASONS:
            raise ValidationError(f"{advisory.season} is not a valid season")
        if advisory.priority not in _PRIORITIES:
            raise ValidationError(f"{advisory.priority} is not a valid priority")
        if advisory.status not in _STATUSES:
            raise ValidationError(f"{advisory.status} is not a valid status")
        if (
            advisory.farm_size_min is not None and advisory.farm_size_max is not None
            and advisory.farm_size_min > advisory.farm_size_max
        ):
            raise ValidationError("Minimum farm size cannot exceed maximum")
        if advisory.start_date and advisory.end_date and as_utc(advisory.end_date) < as_utc(advisory.start_date):
            raise ValidationError("End date must be after start date")
        if any(m < 1 or m > 12 for m in advisory.months):
            raise ValidationError("Months must be between 1 and 12")
        if advisory.advisory_type == AdvisoryType.WEATHER_ALERT:
            advisory.is_weather_alert = True

    def _apply_lists(self, advisory: CropAdvisory, data: dict) -> None:
        if "target_crops" in data:
            advisory.target_crops = [c.strip() for c in (data["target_crops"] or []) if c and c.strip()]
        if "soil_types" in data:
            advisory.soil_types = [s.strip().lower() for s in (data["soil_types"] or []) if s and s.strip()]
        if "months" in data:
            advisory.months = [int(m) for m in (data["months"] or [])]
        if "tags" in data:
            advisory.tags = [t.strip() for t in (data["tags"] or []) if t and t.strip()]
        if "regions" in data:
            regions = []
            for entry in data["regions"] or []:
                state = (entry.get("state") or "").strip()
                if not state:
                    raise ValidationError("Region state is required")
                region = AdvisoryRegion(state=state)
                region.districts = [d.strip() for d in (entry.get("districts") or []) if d and d.strip()]
                regions.append(region)
            advisory.regions = regions

    # ==========================================
    # Lookup & Listings
    # ==========================================

    def get_advisory(self, db: Session, advisory_id: int) -> CropAdvisory:
        advisory = db.query(CropAdvisory).filter(CropAdvisory.id == advisory_id).first()
        if not advisory:
            raise NotFoundError(f"Advisory #{advisory_id} not found")
        return advisory

    def _current(self, db: Session, now: datetime, season: str = None) -> List[CropAdvisory]:
        q = (
            db.query(CropAdvisory)
            .options(selectinload(CropAdvisory.regions))
            .filter(CropAdvisory.status == AdvisoryStatus.PUBLISHED.value)
        )
        if season:
            q = q.filter(CropAdvisory.season.in_([season, AdvisorySeason.ALL_SEASON.value]))
        return [a for a in q.all() if relevance.is_currently_valid(a, now)]

    def get_current_advisories(
        self,
        db: Session,
        state: str = None,
        district: str = None,
        crops: List[str] = None,
        season: str = None,
        limit: int = 20,
        now: datetime = None,
    ) -> List[CropAdvisory]:
        """Published, in-window advisories, optionally narrowed by location and crops."""
        now = now or now_utc()
        probe = UserProfile(user_id=0, state=state, district=district, crops=crops or [])
        found = []
        for advisory in self._current(db, now, season):
            if state and not relevance.region_matches(advisory, probe):
                continue
            if crops and not relevance.crops_match(advisory, probe):
                continue
            found.append(advisory)
        return relevance.rank(found, now)[:limit]

    def get_personalized_recommendations(
        self, db: Session, user_id: int, limit: int = 5, now: datetime = None,
    ) -> List[CropAdvisory]:
        now = now or now_utc()
        profile = user_service.get_profile(db, user_id)
        found = [a for a in self._current(db, now) if relevance.is_relevant_for_user(a, profile)]
        return relevance.rank(found, now)[:limit]

    def get_seasonal_advisories(
        self, db: Session, season: str, state: str = None, now: datetime = None,
    ) -> List[CropAdvisory]:
        season = (season or "").strip().lower()
        if season not in _SEASONS:
            raise ValidationError(f"{season} is not a valid season")
        return self.get_current_advisories(db, state=state, season=season, now=now, limit=100)

    def get_crop_advisories(
        self, db: Session, crop: str, limit: int = 10, now: datetime = None,
    ) -> List[CropAdvisory]:
        if not (crop or "").strip():
            raise ValidationError("Crop name is required")
        now = now or now_utc()
        probe = UserProfile(user_id=0, crops=[crop])
        found = [
            a for a in self._current(db, now)
            if a.target_crops and relevance.crops_match(a, probe)
        ]
        return relevance.rank(found, now)[:limit]

    def search_advisories(
        self, db: Session, term: str, limit: int = 20, now: datetime = None,
    ) -> List[CropAdvisory]:
        term = (term or "").strip()
        if not term:
            return []
        now = now or now_utc()
        pattern = f"%{term}%"
        matches = (
            db.query(CropAdvisory)
            .filter(
                CropAdvisory.status == AdvisoryStatus.PUBLISHED.value,
                or_(
                    CropAdvisory.title.ilike(pattern),
                    CropAdvisory.content.ilike(pattern),
                    CropAdvisory.summary.ilike(pattern),
                    CropAdvisory._tags.ilike(pattern),
                ),
            )
            .all()
        )
        found = [a for a in matches if relevance.is_currently_valid(a, now)]
        return relevance.rank(found, now)[:limit]

    # ==========================================
    # Engagement (atomic)
    # ==========================================

    def increment(self, db: Session, advisory_id: int, counter: str) -> int:
        if counter not in _COUNTERS:
            raise ValidationError(f"Unknown counter {counter}")
        column = getattr(CropAdvisory, counter)
        result = db.execute(
            update(CropAdvisory)
            .where(CropAdvisory.id == advisory_id)
            .values({counter: column + 1})
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise NotFoundError(f"Advisory #{advisory_id} not found")
        return db.query(column).filter(CropAdvisory.id == advisory_id).scalar()

    def increment_views(self, db: Session, advisory_id: int) -> int:
        return self.increment(db, advisory_id, "views")

    def increment_likes(self, db: Session, advisory_id: int) -> int:
        return self.increment(db, advisory_id, "likes")

    def increment_shares(self, db: Session, advisory_id: int) -> int:
        return self.increment(db, advisory_id, "shares")


# Singleton
advisory_service = AdvisoryService()
