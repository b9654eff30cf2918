from fastapi import APIRouter, Query
from sqlmodel import select
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from safetravel.api.deps import PipelineDep, http_error
from safetravel.core.types import AlertStatus
from safetravel.database import SessionDep
from safetravel.exceptions import AlertNotFound, MissingTourist
from safetravel.models.alert import AlertRecord, PanicRequest, ResolveRequest

router = APIRouter()

@router.post("/panic")
async def trigger_panic(pipeline: PipelineDep, panic_data: PanicRequest) -> dict[str, Any]:
    """Panic or medical emergency raised from the tourist's device"""
    try:
        alert, created = await pipeline.raise_panic(
            panic_data.tourist_id,
            panic_data.latitude,
            panic_data.longitude,
            alert_type=panic_data.alert_type,
            message=panic_data.message
        )
    except MissingTourist as e:
        raise http_error(404, e)

    return {
        "message": "Emergency alert sent" if created else "Emergency alert already active",
        "created": created,
        "alert": alert.to_dict()
    }

@router.get("/active")
async def get_active_alerts(
    pipeline: PipelineDep,
    tourist_id: Optional[str] = None
) -> List[dict[str, Any]]:
    return [alert.to_dict() for alert in pipeline.dispatcher.active_alerts(tourist_id)]

@router.get("/auto-resolve-candidates")
async def get_auto_resolve_candidates(pipeline: PipelineDep) -> List[dict[str, Any]]:
    candidates = pipeline.dispatcher.auto_resolution_candidates(datetime.now(timezone.utc))
    return [alert.to_dict() for alert in candidates]

@router.get("/history")
async def get_alert_history(
    db: SessionDep,
    tourist_id: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=200)
) -> List[dict[str, Any]]:
    query = select(AlertRecord)
    if tourist_id:
        query = query.where(AlertRecord.tourist_id == tourist_id)
    result = await db.execute(query.order_by(AlertRecord.created_at.desc()).limit(limit))
    return [record.to_alert().to_dict() for record in result.scalars().all()]

async def _resolved_record(db, alert_id: str, error: AlertNotFound) -> Dict[str, Any]:
    """Resolved alerts are only kept in the database"""
    record = await db.get(AlertRecord, alert_id)
    if record is None or record.status != AlertStatus.RESOLVED:
        raise http_error(404, error)
    return record.to_alert().to_dict()

@router.put("/{alert_id}/acknowledge")
async def acknowledge_alert(db: SessionDep, pipeline: PipelineDep, alert_id: str) -> dict[str, Any]:
    try:
        alert = await pipeline.dispatcher.acknowledge(alert_id)
    except AlertNotFound as e:
        return {"message": "Alert already resolved", "alert": await _resolved_record(db, alert_id, e)}
    return {"message": "Alert acknowledged", "alert": alert.to_dict()}

@router.put("/{alert_id}/resolve")
async def resolve_alert(
    db: SessionDep,
    pipeline: PipelineDep,
    alert_id: str,
    resolve_data: Optional[ResolveRequest] = None
) -> dict[str, Any]:
    notes = resolve_data.resolution_notes if resolve_data else None
    try:
        alert = await pipeline.dispatcher.resolve(alert_id, notes)
    except AlertNotFound as e:
        return {"message": "Alert already resolved", "alert": await _resolved_record(db, alert_id, e)}
    return {"message": "Alert resolved", "alert": alert.to_dict()}
