from sqlmodel import SQLModel, Field, Column, DateTime
from datetime import datetime, timezone
from typing import Optional, List
import json
import uuid

from safetravel.core.types import GeoPoint, RiskCategory

class Waypoint(SQLModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

class TouristBase(SQLModel):
    name: str
    nationality: Optional[str] = None
    phone: Optional[str] = None
    emergency_contact: Optional[str] = None
    group_size: int = 1

class Tourist(TouristBase, table=True):

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    planned_route: Optional[str] = None  # JSON list of [lat, lng]
    safety_score: int = 100
    risk_category: str = RiskCategory.LOW.value
    is_active: bool = True
    last_check_in: Optional[datetime] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

    def route_points(self) -> List[GeoPoint]:
        if not self.planned_route:
            return []
        return [GeoPoint(lat, lng) for lat, lng in json.loads(self.planned_route)]

class TouristCreate(TouristBase):
    id: Optional[str] = None
    group_size: int = Field(default=1, ge=1, le=100)
    planned_route: List[Waypoint] = []

    def route_json(self) -> Optional[str]:
        if not self.planned_route:
            return None
        return json.dumps([[w.latitude, w.longitude] for w in self.planned_route])

class TouristRead(TouristBase):
    id: str
    safety_score: int
    risk_category: str
    is_active: bool
    last_check_in: Optional[datetime]
    created_at: datetime

class SafetyScoreRead(SQLModel):
    tourist_id: str
    safety_score: int
    risk_category: RiskCategory
    zones: List[str] = []
