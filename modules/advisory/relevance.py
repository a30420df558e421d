"""
Advisory Module - Relevance
============================
Pure functions over (advisory, user profile). No database access.

An advisory is relevant when every constrained dimension matches:
  - region:    user's state is listed; a district list narrows it further
  - crops:     any advisory crop and user crop contain one another (case-insensitive)
  - soil:      user's soil type is listed (case-insensitive)
  - farm size: user's farm size lies inside [min, max]
An empty advisory constraint passes; a constrained check with the user
attribute unset fails.
"""

from datetime import datetime

from common.helpers import as_utc, now_utc, to_decimal
from modules.advisory.models import AdvisoryStatus, AdvisoryType
from modules.user.service import UserProfile

PRIORITY_RANK = {"low": 1, "medium": 2, "high": 3, "urgent": 4}


def _norm(value) -> str:
    return (value or "").strip().lower()


def region_matches(advisory, profile: UserProfile) -> bool:
    regions = advisory.regions
    if not regions:
        return True
    state = _norm(profile.state)
    if not state:
        return False
    district = _norm(profile.district)
    for region in regions:
        if _norm(region.state) != state:
            continue
        districts = {_norm(d) for d in region.districts}
        if not districts or district in districts:
            return True
    return False


def crops_match(advisory, profile: UserProfile) -> bool:
    advisory_crops = [_norm(c) for c in advisory.target_crops if _norm(c)]
    if not advisory_crops:
        return True
    user_crops = [_norm(c) for c in profile.crops if _norm(c)]
    return any(
        a in u or u in a
        for a in advisory_crops
        for u in user_crops
    )


def soil_matches(advisory, profile: UserProfile) -> bool:
    soils = {_norm(s) for s in advisory.soil_types if _norm(s)}
    if not soils:
        return True
    return _norm(profile.soil_type) in soils


def farm_size_matches(advisory, profile: UserProfile) -> bool:
    low, high = advisory.farm_size_min, advisory.farm_size_max
    if low is None and high is None:
        return True
    if profile.farm_size is None:
        return False
    size = to_decimal(profile.farm_size)
    if low is not None and size < to_decimal(low):
        return False
    if high is not None and size > to_decimal(high):
        return False
    return True


def is_relevant_for_user(advisory, profile: UserProfile) -> bool:
    return (
        region_matches(advisory, profile)
        and crops_match(advisory, profile)
        and soil_matches(advisory, profile)
        and farm_size_matches(advisory, profile)
    )


def is_currently_valid(advisory, now: datetime = None) -> bool:
    if advisory.status != AdvisoryStatus.PUBLISHED:
        return False
    if advisory.is_evergreen:
        return True
    now = as_utc(now or now_utc())
    if advisory.start_date is not None and as_utc(advisory.start_date) > now:
        return False
    if advisory.end_date is not None and as_utc(advisory.end_date) < now:
        return False
    return True


def is_weather_alert(advisory) -> bool:
    return bool(advisory.is_weather_alert) or advisory.advisory_type == AdvisoryType.WEATHER_ALERT


def urgency_score(advisory, now: datetime = None) -> int:
    score = PRIORITY_RANK.get(_norm(advisory.priority), 2)
    if is_weather_alert(advisory):
        score += 2
    month = as_utc(now or now_utc()).month
    if month in advisory.months:
        score += 1
    return score


def sort_key(advisory, now: datetime = None) -> tuple:
    """Use with reverse=True: priority, urgency, views, then newest first."""
    created = as_utc(advisory.created_at)
    return (
        PRIORITY_RANK.get(_norm(advisory.priority), 2),
        urgency_score(advisory, now),
        advisory.views or 0,
        created.timestamp() if created else 0,
    )


def rank(advisories, now: datetime = None) -> list:
    return sorted(advisories, key=lambda a: sort_key(a, now), reverse=True)
