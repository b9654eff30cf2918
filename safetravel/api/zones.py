from fastapi import APIRouter, HTTPException, Query
from sqlmodel import select
from datetime import datetime, timezone
from typing import Any, List

from safetravel.api.deps import PipelineDep, http_error
from safetravel.core.geometry import validate_zone
from safetravel.core.types import GeoPoint, Zone
from safetravel.database import SessionDep
from safetravel.exceptions import IndexUnavailable, InvalidGeometry
from safetravel.models.zone import GeofenceZone, ZoneCreate, ZoneRead, ZoneUpdate

router = APIRouter()

def checked_zone(record: GeofenceZone) -> Zone:
    """Build and validate the pipeline zone for a record, or raise a 422"""
    try:
        return validate_zone(record.to_zone())
    except InvalidGeometry as e:
        raise http_error(422, e)
    except (ValueError, TypeError) as e:
        raise http_error(422, InvalidGeometry(f"Zone {record.id} is malformed: {e}", zone_id=record.id))

def zone_summary(zone: Zone) -> dict[str, Any]:
    return {
        "id": zone.id,
        "name": zone.name,
        "shape": zone.shape.value,
        "category": zone.category.value,
        "risk_level": zone.risk_level,
    }

@router.post("", response_model=ZoneRead)
async def create_zone(
    db: SessionDep,
    pipeline: PipelineDep,
    zone_data: ZoneCreate
):
    record = zone_data.to_record()
    if await db.get(GeofenceZone, record.id):
        raise HTTPException(status_code=409, detail=f"Zone {record.id} already exists")

    zone = checked_zone(record)

    db.add(record)
    await db.commit()
    await db.refresh(record)

    pipeline.registry.upsert(zone)
    return ZoneRead.from_record(record)

@router.get("", response_model=List[ZoneRead])
async def list_zones(db: SessionDep, include_inactive: bool = False):
    query = select(GeofenceZone)
    if not include_inactive:
        query = query.where(GeofenceZone.is_active == True)
    result = await db.execute(query.order_by(GeofenceZone.id))
    return [ZoneRead.from_record(record) for record in result.scalars().all()]

@router.get("/nearest")
async def nearest_zone(
    pipeline: PipelineDep,
    latitude: float = Query(ge=-90, le=90),
    longitude: float = Query(ge=-180, le=180)
) -> dict[str, Any]:
    try:
        nearest = pipeline.nearest_zone(GeoPoint(latitude, longitude), at=datetime.now(timezone.utc))
    except IndexUnavailable as e:
        raise http_error(503, e)

    if nearest is None:
        return {"zone": None, "distance_meters": None, "inside": False}

    zone, distance = nearest
    return {
        "zone": zone_summary(zone),
        "distance_meters": round(distance, 1),
        "inside": distance == 0
    }

@router.get("/{zone_id}", response_model=ZoneRead)
async def get_zone(db: SessionDep, zone_id: str):
    record = await db.get(GeofenceZone, zone_id)
    if not record:
        raise HTTPException(status_code=404, detail="Zone not found")
    return ZoneRead.from_record(record)

@router.put("/{zone_id}", response_model=ZoneRead)
async def update_zone(
    db: SessionDep,
    pipeline: PipelineDep,
    zone_id: str,
    zone_update: ZoneUpdate
):
    record = await db.get(GeofenceZone, zone_id)
    if not record:
        raise HTTPException(status_code=404, detail="Zone not found")

    zone_update.apply_to(record)
    try:
        zone = checked_zone(record)
    except HTTPException:
        await db.rollback()
        raise

    db.add(record)
    await db.commit()
    await db.refresh(record)

    pipeline.registry.upsert(zone)
    return ZoneRead.from_record(record)

@router.delete("/{zone_id}")
async def deactivate_zone(
    db: SessionDep,
    pipeline: PipelineDep,
    zone_id: str,
    permanent: bool = False
) -> dict[str, Any]:
    record = await db.get(GeofenceZone, zone_id)
    if not record:
        raise HTTPException(status_code=404, detail="Zone not found")

    if permanent:
        await db.delete(record)
        await db.commit()
        pipeline.registry.remove(zone_id)
        return {"message": "Zone deleted", "zone_id": zone_id}

    record.is_active = False
    record.updated_at = datetime.now(timezone.utc)
    db.add(record)
    await db.commit()

    pipeline.registry.deactivate(zone_id)
    return {"message": "Zone deactivated", "zone_id": zone_id}
