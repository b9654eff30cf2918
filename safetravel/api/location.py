import logging
from fastapi import APIRouter, Request
from typing import Any, Dict

from safetravel.api.deps import PipelineDep, http_error
from safetravel.core.pipeline import FixOutcome, FixStatus
from safetravel.exceptions import (
    IndexUnavailable, MissingTourist, PersistenceFailed, SafeTravelError, StaleFix
)
from safetravel.models.location import LocationBatch, LocationFixCreate

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS = {
    MissingTourist: 404,
    StaleFix: 409,
    IndexUnavailable: 503,
    PersistenceFailed: 503,
}

def _status_for(error: SafeTravelError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status_code
    return 400

async def _publish_location(request: Request, outcome: FixOutcome, fix_data: LocationFixCreate):
    websocket_manager = request.app.state.websocket_manager
    await websocket_manager.broadcast({
        "type": "location_update",
        "tourist_id": outcome.tourist_id,
        "latitude": fix_data.latitude,
        "longitude": fix_data.longitude,
        "safety_score": outcome.safety_score,
        "risk_category": outcome.risk_category.value,
        "zones": outcome.membership,
        "timestamp": outcome.timestamp.isoformat()
    })

@router.post("/update")
async def update_location(
    request: Request,
    pipeline: PipelineDep,
    location_data: LocationFixCreate
) -> dict[str, Any]:
    fix = location_data.to_fix()
    try:
        outcome = await pipeline.process_fix(fix)
    except SafeTravelError as e:
        raise http_error(_status_for(e), e)

    if outcome.status == FixStatus.ACCEPTED:
        await _publish_location(request, outcome, location_data)

    return {
        "message": "Location accepted" if outcome.status == FixStatus.ACCEPTED else "Duplicate location ignored",
        **outcome.to_dict()
    }

@router.post("/batch")
async def update_locations(
    request: Request,
    pipeline: PipelineDep,
    batch: LocationBatch
) -> dict[str, Any]:
    """Upload of fixes queued on the device while offline"""
    fixes = [item.to_fix() for item in batch.fixes]
    results = await pipeline.process_batch(fixes)

    acks: list[Dict[str, Any]] = []
    accepted = 0
    for fix, fix_data, result in zip(fixes, batch.fixes, results):
        if isinstance(result, SafeTravelError):
            acks.append({
                "status": "rejected",
                "http_status": _status_for(result),
                "tourist_id": fix.tourist_id,
                "timestamp": fix.timestamp.isoformat(),
                **result.to_dict()
            })
            continue
        if result.status == FixStatus.ACCEPTED:
            accepted += 1
            await _publish_location(request, result, fix_data)
        acks.append(result.to_dict())

    logger.info(f"Batch upload: {accepted}/{len(fixes)} fixes accepted")
    return {"accepted": accepted, "total": len(fixes), "results": acks}
