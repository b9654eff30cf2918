from sqlmodel import SQLModel, Field, Column, DateTime
from pydantic import field_validator
from datetime import datetime, timezone
from typing import Optional, List

from safetravel.core.types import LocationFix, ensure_utc

class LocationFixBase(SQLModel):
    tourist_id: str = Field(index=True)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    altitude: Optional[float] = None
    accuracy: Optional[float] = Field(default=None, ge=0)
    speed: Optional[float] = Field(default=None, ge=0)

class LocationLog(LocationFixBase, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), index=True))
    safety_score: Optional[int] = None

class LocationFixCreate(LocationFixBase):
    timestamp: datetime

    @field_validator("latitude", "longitude")
    @classmethod
    def seven_decimals(cls, v: float) -> float:
        return round(v, 7)

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def to_fix(self) -> LocationFix:
        return LocationFix(
            tourist_id=self.tourist_id,
            latitude=self.latitude,
            longitude=self.longitude,
            timestamp=self.timestamp,
            altitude=self.altitude,
            accuracy=self.accuracy,
            speed=self.speed
        )

class LocationBatch(SQLModel):
    fixes: List[LocationFixCreate] = Field(min_length=1, max_length=500)

class LocationRead(LocationFixBase):
    timestamp: datetime

    @classmethod
    def from_fix(cls, fix: LocationFix) -> "LocationRead":
        return cls(**fix.to_dict())
