from sqlmodel import SQLModel, Field, Column, DateTime
from pydantic import field_validator
from datetime import datetime, timezone
from typing import Optional

from safetravel.core.types import Alert, AlertSeverity, AlertStatus, AlertType, ensure_utc

class AlertRecordBase(SQLModel):
    tourist_id: str = Field(index=True)
    zone_id: Optional[str] = None
    alert_type: AlertType
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.ACTIVE
    title: str
    message: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    dedup_key: str = Field(index=True)
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None

class AlertRecord(AlertRecordBase, table=True):

    id: str = Field(primary_key=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertRecord":
        return cls(
            id=alert.id,
            tourist_id=alert.tourist_id,
            zone_id=alert.zone_id,
            alert_type=alert.alert_type,
            severity=alert.severity,
            status=alert.status,
            title=alert.title,
            message=alert.message,
            latitude=alert.latitude,
            longitude=alert.longitude,
            dedup_key=alert.dedup_key,
            created_at=alert.created_at,
            acknowledged_at=alert.acknowledged_at,
            resolved_at=alert.resolved_at,
            resolution_notes=alert.resolution_notes
        )

    def update_from(self, alert: Alert):
        self.status = alert.status
        self.acknowledged_at = alert.acknowledged_at
        self.resolved_at = alert.resolved_at
        self.resolution_notes = alert.resolution_notes

    def to_alert(self) -> Alert:
        return Alert(
            id=self.id,
            tourist_id=self.tourist_id,
            zone_id=self.zone_id,
            alert_type=AlertType(self.alert_type),
            severity=AlertSeverity(self.severity),
            status=AlertStatus(self.status),
            title=self.title,
            message=self.message,
            latitude=self.latitude,
            longitude=self.longitude,
            dedup_key=self.dedup_key,
            created_at=ensure_utc(self.created_at),
            acknowledged_at=ensure_utc(self.acknowledged_at),
            resolved_at=ensure_utc(self.resolved_at),
            resolution_notes=self.resolution_notes
        )

class PanicRequest(SQLModel):
    tourist_id: str
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    alert_type: AlertType = AlertType.PANIC
    message: Optional[str] = None

    @field_validator("alert_type")
    @classmethod
    def emergency_types_only(cls, v: AlertType) -> AlertType:
        if v not in (AlertType.PANIC, AlertType.MEDICAL):
            raise ValueError("Panic requests must be of type 'panic' or 'medical'")
        return v

class ResolveRequest(SQLModel):
    resolution_notes: Optional[str] = None
