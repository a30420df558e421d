from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from common.exceptions import ValidationError, NotFoundError
from modules.advisory import relevance
from modules.advisory.models import CropAdvisory, AdvisoryRegion
from modules.advisory.service import advisory_service
from modules.user.service import UserProfile

NOW = datetime(2026, 7, 10, 9, 0, tzinfo=timezone.utc)


def advisory(states=(), crops=(), soils=(), size=(None, None), **kwargs):
    fields = dict(
        title="Advisory", content="Body", priority="medium", status="published",
        advisory_type="general", views=0, is_evergreen=True, is_weather_alert=False,
        created_at=NOW,
    )
    fields.update(kwargs)
    months = fields.pop("months", [])
    a = CropAdvisory(farm_size_min=size[0], farm_size_max=size[1], **fields)
    a.regions = [AdvisoryRegion(state=s) for s in states]
    a.target_crops = list(crops)
    a.soil_types = list(soils)
    a.months = months
    return a


def farmer(**overrides):
    data = dict(user_id=1, state="Punjab", district="Ludhiana", crops=["Wheat"],
                soil_type="alluvial", farm_size=Decimal("5"))
    data.update(overrides)
    return UserProfile(**data)


# ==========================================
# Relevance
# ==========================================

def test_region_relevance():
    punjab_wheat = advisory(states=["Punjab"], crops=["wheat"])
    assert relevance.is_relevant_for_user(punjab_wheat, farmer())
    assert not relevance.is_relevant_for_user(punjab_wheat, farmer(state="Gujarat"))


def test_district_narrows_region():
    a = advisory()
    region = AdvisoryRegion(state="Punjab")
    region.districts = ["Bathinda"]
    a.regions = [region]
    assert not relevance.region_matches(a, farmer())
    assert relevance.region_matches(a, farmer(district="bathinda"))


def test_crop_match_is_substring_both_ways():
    assert relevance.crops_match(advisory(crops=["wheat"]), farmer(crops=["Durum Wheat"]))
    assert relevance.crops_match(advisory(crops=["basmati rice"]), farmer(crops=["rice"]))
    assert not relevance.crops_match(advisory(crops=["cotton"]), farmer())


def test_unset_user_attribute_fails_constrained_check():
    assert not relevance.soil_matches(advisory(soils=["black"]), farmer(soil_type=None))
    assert not relevance.farm_size_matches(advisory(size=(Decimal("1"), None)), farmer(farm_size=None))
    assert not relevance.region_matches(advisory(states=["Punjab"]), farmer(state=None))


def test_unconstrained_advisory_matches_everyone():
    assert relevance.is_relevant_for_user(advisory(), farmer(state=None, crops=[], soil_type=None))


def test_farm_size_bounds_inclusive():
    a = advisory(size=(Decimal("2"), Decimal("5")))
    assert relevance.farm_size_matches(a, farmer(farm_size=Decimal("5")))
    assert not relevance.farm_size_matches(a, farmer(farm_size=Decimal("5.5")))


def test_validity_window():
    a = advisory(is_evergreen=False, start_date=NOW - timedelta(days=1), end_date=NOW + timedelta(days=1))
    assert relevance.is_currently_valid(a, NOW)
    assert not relevance.is_currently_valid(a, NOW + timedelta(days=2))
    assert not relevance.is_currently_valid(advisory(status="draft"), NOW)


def test_urgency_score():
    assert relevance.urgency_score(advisory(priority="urgent"), NOW) == 4
    storm = advisory(priority="high", advisory_type="weather-alert", months=[7])
    assert relevance.urgency_score(storm, NOW) == 3 + 2 + 1


def test_ranking_order():
    low_popular = advisory(title="low", priority="low", views=500)
    high_old = advisory(title="high-old", priority="high", created_at=NOW - timedelta(days=3))
    high_new = advisory(title="high-new", priority="high")
    high_alert = advisory(title="alert", priority="high", is_weather_alert=True)
    ranked = relevance.rank([low_popular, high_old, high_new, high_alert], NOW)
    assert [a.title for a in ranked] == ["alert", "high-new", "high-old", "low"]


# ==========================================
# Service
# ==========================================

def publish(db, **data):
    payload = {"title": "Advisory", "content": "Body", "category": "Crops", "status": "published",
               "is_evergreen": True}
    payload.update(data)
    a = advisory_service.create_advisory(db, payload)
    db.commit()
    return a


def test_personalized_recommendations(db, make_user):
    user = make_user(state="Punjab", primary_crops=["wheat"])
    publish(db, title="Punjab wheat rust", regions=[{"state": "Punjab"}], target_crops=["wheat"])
    publish(db, title="Gujarat cotton", regions=[{"state": "Gujarat"}], target_crops=["cotton"])
    publish(db, title="Draft", status="draft")

    titles = [a.title for a in advisory_service.get_personalized_recommendations(db, user.id)]
    assert titles == ["Punjab wheat rust"]


def test_current_advisories_filters(db):
    publish(db, title="Kharif paddy", season="kharif", target_crops=["paddy"])
    publish(db, title="Rabi wheat", season="rabi", target_crops=["wheat"])
    publish(db, title="Any time")

    kharif = [a.title for a in advisory_service.get_current_advisories(db, season="kharif")]
    assert sorted(kharif) == ["Any time", "Kharif paddy"]
    by_crop = [a.title for a in advisory_service.get_crop_advisories(db, "wheat")]
    assert by_crop == ["Rabi wheat"]
    with pytest.raises(ValidationError):
        advisory_service.get_seasonal_advisories(db, "monsoon")


def test_expired_advisory_hidden(db):
    publish(db, title="Old", is_evergreen=False,
            start_date=NOW - timedelta(days=30), end_date=NOW - timedelta(days=1))
    assert advisory_service.get_current_advisories(db, now=NOW) == []


def test_search(db):
    publish(db, title="Aphid control in mustard", tags=["pests"])
    publish(db, title="Drip irrigation basics")
    assert [a.title for a in advisory_service.search_advisories(db, "aphid")] == ["Aphid control in mustard"]
    assert [a.title for a in advisory_service.search_advisories(db, "pests")] == ["Aphid control in mustard"]
    assert advisory_service.search_advisories(db, "  ") == []


def test_weather_type_sets_alert_flag(db):
    a = publish(db, advisory_type="weather-alert", priority="urgent")
    assert a.is_weather_alert is True


def test_create_validation(db):
    with pytest.raises(ValidationError):
        advisory_service.create_advisory(db, {"title": "", "content": "x"})
    with pytest.raises(ValidationError):
        advisory_service.create_advisory(db, {"title": "t", "content": "x", "priority": "critical"})
    with pytest.raises(ValidationError):
        advisory_service.create_advisory(db, {
            "title": "t", "content": "x", "farm_size_min": 10, "farm_size_max": 2,
        })


def test_engagement_counters(db):
    a = publish(db)
    assert advisory_service.increment_views(db, a.id) == 1
    assert advisory_service.increment_views(db, a.id) == 2
    assert advisory_service.increment_likes(db, a.id) == 1
    with pytest.raises(NotFoundError):
        advisory_service.increment_shares(db, 9999)
