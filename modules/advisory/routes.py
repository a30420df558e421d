"""
Advisory Routes
================
Current, personalized, seasonal, crop and search listings plus
engagement counters.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config.database import get_db
from modules.advisory import relevance
from modules.advisory.service import advisory_service
from modules.auth.deps import require_login

router = APIRouter(prefix="/api/advisories", tags=["advisory"])


def advisory_to_dict(advisory, detail: bool = False) -> dict:
    data = {
        "id": advisory.id,
        "title": advisory.title,
        "summary": advisory.summary,
        "advisory_type": advisory.advisory_type,
        "category": advisory.category,
        "season": advisory.season,
        "priority": advisory.priority,
        "urgency_score": relevance.urgency_score(advisory),
        "is_weather_alert": relevance.is_weather_alert(advisory),
        "target_crops": advisory.target_crops,
        "views": advisory.views,
        "likes": advisory.likes,
        "shares": advisory.shares,
        "created_at": advisory.created_at,
    }
    if detail:
        data.update({
            "content": advisory.content,
            "status": advisory.status,
            "regions": [{"state": r.state, "districts": r.districts} for r in advisory.regions],
            "soil_types": advisory.soil_types,
            "months": advisory.months,
            "farm_size_min": advisory.farm_size_min,
            "farm_size_max": advisory.farm_size_max,
            "tags": advisory.tags,
            "start_date": advisory.start_date,
            "end_date": advisory.end_date,
            "is_evergreen": advisory.is_evergreen,
        })
    return data


@router.get("")
async def current_advisories(
    state: Optional[str] = None,
    district: Optional[str] = None,
    crops: List[str] = Query([]),
    season: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    found = advisory_service.get_current_advisories(
        db, state=state, district=district, crops=crops, season=season, limit=limit,
    )
    return [advisory_to_dict(a) for a in found]


@router.get("/recommended")
async def recommended(
    limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    return [advisory_to_dict(a) for a in advisory_service.get_personalized_recommendations(db, me.id, limit)]


@router.get("/search")
async def search(q: str = Query(""), db: Session = Depends(get_db)):
    return [advisory_to_dict(a) for a in advisory_service.search_advisories(db, q)]


@router.get("/season/{season}")
async def seasonal(season: str, state: Optional[str] = None, db: Session = Depends(get_db)):
    return [advisory_to_dict(a) for a in advisory_service.get_seasonal_advisories(db, season, state)]


@router.get("/crop/{crop}")
async def by_crop(crop: str, limit: int = Query(10, ge=1, le=50), db: Session = Depends(get_db)):
    return [advisory_to_dict(a) for a in advisory_service.get_crop_advisories(db, crop, limit)]


@router.get("/{advisory_id}")
async def advisory_detail(advisory_id: int, db: Session = Depends(get_db)):
    advisory_service.increment_views(db, advisory_id)
    db.commit()
    return advisory_to_dict(advisory_service.get_advisory(db, advisory_id), detail=True)


@router.post("/{advisory_id}/like")
async def like(advisory_id: int, db: Session = Depends(get_db), me=Depends(require_login)):
    likes = advisory_service.increment_likes(db, advisory_id)
    db.commit()
    return {"likes": likes}


@router.post("/{advisory_id}/share")
async def share(advisory_id: int, db: Session = Depends(get_db)):
    shares = advisory_service.increment_shares(db, advisory_id)
    db.commit()
    return {"shares": shares}
