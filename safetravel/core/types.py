import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ZoneShape(str, Enum):
    CIRCLE = "circle"
    POLYGON = "polygon"

class ZoneCategory(str, Enum):
    DANGER = "danger"
    RESTRICTED = "restricted"
    SAFE = "safe"
    TOURIST_ZONE = "tourist_zone"
    WEATHER = "weather"
    WILDLIFE = "wildlife"

class TransitionType(str, Enum):
    ENTERED = "entered"
    EXITED = "exited"

class AlertType(str, Enum):
    GEOFENCE = "geofence"
    HAZARD = "hazard"
    WEATHER = "weather"
    ANOMALY = "anomaly"
    PANIC = "panic"
    MEDICAL = "medical"

class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

_SEVERITY_RANK = {
    AlertSeverity.LOW: 0,
    AlertSeverity.MEDIUM: 1,
    AlertSeverity.HIGH: 2,
    AlertSeverity.CRITICAL: 3,
}

class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"

class RiskCategory(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class LocationFix:
    """A single timestamped location reading, immutable once recorded"""
    tourist_id: str
    latitude: float
    longitude: float
    timestamp: datetime
    altitude: Optional[float] = None
    accuracy: Optional[float] = None
    speed: Optional[float] = None

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tourist_id": self.tourist_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "accuracy": self.accuracy,
            "speed": self.speed,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ActiveHours:
    """Daily window in local hours; end < start wraps past midnight"""
    start_hour: int
    end_hour: int

    def contains(self, hour: int) -> bool:
        if self.start_hour == self.end_hour:
            return True
        if self.start_hour < self.end_hour:
            return self.start_hour <= hour < self.end_hour
        return hour >= self.start_hour or hour < self.end_hour


@dataclass(frozen=True)
class Zone:
    """
    Geofence or hazard area.

    Polygon vertices are ``(longitude, latitude)`` pairs; circles use
    center + radius in meters.
    """
    id: str
    name: str
    shape: ZoneShape
    risk_level: int
    category: ZoneCategory
    vertices: Tuple[Tuple[float, float], ...] = ()
    center_latitude: Optional[float] = None
    center_longitude: Optional[float] = None
    radius_meters: Optional[float] = None
    active_hours: Optional[ActiveHours] = None
    active_from: Optional[datetime] = None
    active_until: Optional[datetime] = None
    is_active: bool = True
    description: Optional[str] = None

    def is_active_at(self, when: Optional[datetime], tz: tzinfo = timezone.utc) -> bool:
        if not self.is_active:
            return False
        if when is None:
            return True
        if self.active_from and when < self.active_from:
            return False
        if self.active_until and when > self.active_until:
            return False
        if self.active_hours:
            return self.active_hours.contains(when.astimezone(tz).hour)
        return True


@dataclass(frozen=True)
class TransitionEvent:
    tourist_id: str
    zone: Zone
    transition: TransitionType
    fix: LocationFix


@dataclass(frozen=True)
class RiskEvent:
    """Emitted when a score update crosses below the alert threshold"""
    tourist_id: str
    previous_score: int
    score: int
    category: RiskCategory
    fix: LocationFix


@dataclass(frozen=True)
class PanicEvent:
    tourist_id: str
    alert_type: AlertType
    latitude: float
    longitude: float
    timestamp: datetime
    message: Optional[str] = None


@dataclass
class Alert:
    tourist_id: str
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    dedup_key: str
    zone_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: AlertStatus = AlertStatus.ACTIVE
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status != AlertStatus.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tourist_id": self.tourist_id,
            "type": self.alert_type.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "title": self.title,
            "message": self.message,
            "zone_id": self.zone_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "dedup_key": self.dedup_key,
            "created_at": self.created_at.isoformat(),
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_notes": self.resolution_notes,
        }


def make_dedup_key(tourist_id: str, zone_id: Optional[str], kind: str) -> str:
    return f"{tourist_id}:{zone_id or '-'}:{kind}"


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
