from fastapi import APIRouter, HTTPException, Query
from datetime import datetime, timedelta, timezone
from typing import Any, List

from safetravel.api.deps import PipelineDep, http_error
from safetravel.config import settings
from safetravel.core.risk_scorer import risk_category
from safetravel.database import SessionDep
from safetravel.exceptions import MissingTourist
from safetravel.models.location import LocationRead
from safetravel.models.tourist import SafetyScoreRead, Tourist, TouristCreate, TouristRead

router = APIRouter()

@router.post("", response_model=TouristRead)
async def register_tourist(
    db: SessionDep,
    pipeline: PipelineDep,
    tourist_data: TouristCreate
):
    tourist = await db.get(Tourist, tourist_data.id) if tourist_data.id else None

    if tourist is None:
        tourist = Tourist(
            **tourist_data.model_dump(exclude={"id", "planned_route"}),
            planned_route=tourist_data.route_json(),
            safety_score=settings.SAFETY_SCORE_INITIAL,
            risk_category=risk_category(settings.SAFETY_SCORE_INITIAL).value
        )
        if tourist_data.id:
            tourist.id = tourist_data.id
    else:
        # Re-registration refreshes the profile and reactivates the tourist
        for key, value in tourist_data.model_dump(exclude={"id", "planned_route"}).items():
            setattr(tourist, key, value)
        tourist.planned_route = tourist_data.route_json()
        if not tourist.is_active:
            tourist.is_active = True
            tourist.safety_score = settings.SAFETY_SCORE_INITIAL
            tourist.risk_category = risk_category(settings.SAFETY_SCORE_INITIAL).value

    db.add(tourist)
    await db.commit()
    await db.refresh(tourist)

    pipeline.register_tourist(
        tourist.id,
        group_size=tourist.group_size,
        planned_route=tourist.route_points(),
        safety_score=tourist.safety_score
    )
    return tourist

@router.get("/{tourist_id}", response_model=TouristRead)
async def get_tourist(db: SessionDep, tourist_id: str):
    tourist = await db.get(Tourist, tourist_id)
    if not tourist:
        raise HTTPException(status_code=404, detail="Tourist not found")
    return tourist

@router.delete("/{tourist_id}")
async def deactivate_tourist(
    db: SessionDep,
    pipeline: PipelineDep,
    tourist_id: str
) -> dict[str, Any]:
    tourist = await db.get(Tourist, tourist_id)
    if not tourist or not tourist.is_active:
        raise HTTPException(status_code=404, detail="Tourist not found")

    try:
        pipeline.deactivate_tourist(tourist_id)
    except MissingTourist:
        pass  # never loaded into this process

    tourist.is_active = False
    tourist.safety_score = settings.SAFETY_SCORE_INITIAL
    tourist.risk_category = risk_category(settings.SAFETY_SCORE_INITIAL).value
    db.add(tourist)
    await db.commit()

    return {"message": "Tourist deactivated", "tourist_id": tourist_id}

@router.get("/{tourist_id}/safety-score", response_model=SafetyScoreRead)
async def get_safety_score(pipeline: PipelineDep, tourist_id: str):
    try:
        score, category = pipeline.safety_score(tourist_id)
        zones = sorted(pipeline.store.get(tourist_id).membership)
    except MissingTourist as e:
        raise http_error(404, e)

    return SafetyScoreRead(
        tourist_id=tourist_id,
        safety_score=score,
        risk_category=category,
        zones=zones
    )

@router.get("/{tourist_id}/locations", response_model=List[LocationRead])
async def get_location_history(
    pipeline: PipelineDep,
    tourist_id: str,
    hours: int = Query(default=24, ge=1, le=24 * 7)
):
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    try:
        fixes = pipeline.store.history(tourist_id, since=since, limit=settings.LOCATION_HISTORY_LIMIT)
    except MissingTourist as e:
        raise http_error(404, e)
    return [LocationRead.from_fix(fix) for fix in fixes]
