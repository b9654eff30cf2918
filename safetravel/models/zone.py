from sqlmodel import SQLModel, Field, Column, DateTime
from pydantic import field_validator
from datetime import datetime, timezone
from typing import Optional, List
import json
import uuid

from safetravel.core.types import ActiveHours, Zone, ZoneCategory, ZoneShape, ensure_utc

def check_vertex_pairs(vertices):
    if vertices is not None and any(len(pair) != 2 for pair in vertices):
        raise ValueError("Each vertex must be a [longitude, latitude] pair")
    return vertices

class GeofenceZoneBase(SQLModel):
    name: str
    description: Optional[str] = None
    shape: ZoneShape = ZoneShape.CIRCLE
    category: ZoneCategory
    risk_level: int = Field(default=1, ge=1, le=5)

    # Circle
    center_latitude: Optional[float] = None
    center_longitude: Optional[float] = None
    radius_meters: Optional[float] = None

    # Daily window in local hours, seasonal window in absolute time
    active_start_hour: Optional[int] = Field(default=None, ge=0, le=23)
    active_end_hour: Optional[int] = Field(default=None, ge=0, le=23)
    active_from: Optional[datetime] = None
    active_until: Optional[datetime] = None

class GeofenceZone(GeofenceZoneBase, table=True):

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    vertices: Optional[str] = None  # JSON list of [lng, lat]
    is_active: bool = True
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )
    updated_at: Optional[datetime] = None

    def to_zone(self) -> Zone:
        vertices = json.loads(self.vertices) if self.vertices else []
        active_hours = None
        if self.active_start_hour is not None and self.active_end_hour is not None:
            active_hours = ActiveHours(self.active_start_hour, self.active_end_hour)

        return Zone(
            id=self.id,
            name=self.name,
            shape=ZoneShape(self.shape),
            risk_level=self.risk_level,
            category=ZoneCategory(self.category),
            vertices=tuple((float(lng), float(lat)) for lng, lat in vertices),
            center_latitude=self.center_latitude,
            center_longitude=self.center_longitude,
            radius_meters=self.radius_meters,
            active_hours=active_hours,
            active_from=ensure_utc(self.active_from),
            active_until=ensure_utc(self.active_until),
            is_active=self.is_active,
            description=self.description
        )

class ZoneCreate(GeofenceZoneBase):
    id: Optional[str] = None
    vertices: Optional[List[List[float]]] = None  # [[lng, lat], ...]

    @field_validator("vertices")
    @classmethod
    def check_pairs(cls, v):
        return check_vertex_pairs(v)

    @field_validator("active_from", "active_until")
    @classmethod
    def assume_utc(cls, v):
        return ensure_utc(v)

    def to_record(self) -> GeofenceZone:
        data = self.model_dump(exclude={"id", "vertices"})
        record = GeofenceZone(**data, vertices=json.dumps(self.vertices) if self.vertices else None)
        if self.id:
            record.id = self.id
        return record

class ZoneUpdate(SQLModel):
    name: Optional[str] = None
    description: Optional[str] = None
    shape: Optional[ZoneShape] = None
    category: Optional[ZoneCategory] = None
    risk_level: Optional[int] = Field(default=None, ge=1, le=5)
    center_latitude: Optional[float] = None
    center_longitude: Optional[float] = None
    radius_meters: Optional[float] = None
    vertices: Optional[List[List[float]]] = None
    active_start_hour: Optional[int] = Field(default=None, ge=0, le=23)
    active_end_hour: Optional[int] = Field(default=None, ge=0, le=23)
    active_from: Optional[datetime] = None
    active_until: Optional[datetime] = None
    is_active: Optional[bool] = None

    @field_validator("vertices")
    @classmethod
    def check_pairs(cls, v):
        return check_vertex_pairs(v)

    @field_validator("active_from", "active_until")
    @classmethod
    def assume_utc(cls, v):
        return ensure_utc(v)

    def apply_to(self, record: GeofenceZone) -> GeofenceZone:
        changes = self.model_dump(exclude_unset=True)
        if "vertices" in changes:
            vertices = changes.pop("vertices")
            record.vertices = json.dumps(vertices) if vertices else None
        for key, value in changes.items():
            setattr(record, key, value)
        record.updated_at = datetime.now(timezone.utc)
        return record

class ZoneRead(GeofenceZoneBase):
    id: str
    vertices: Optional[List[List[float]]] = None
    is_active: bool

    @classmethod
    def from_record(cls, record: GeofenceZone) -> "ZoneRead":
        data = record.model_dump(exclude={"vertices", "created_at", "updated_at"})
        return cls(**data, vertices=json.loads(record.vertices) if record.vertices else None)
