import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Union

from safetravel.core.types import (
    Alert, AlertSeverity, AlertStatus, AlertType, PanicEvent, RiskEvent,
    TransitionEvent, TransitionType, Zone, ZoneCategory, make_dedup_key
)
from safetravel.exceptions import AlertNotFound

logger = logging.getLogger(__name__)

AlertSubscriber = Callable[[str, Alert], Awaitable[None]]
DispatchableEvent = Union[TransitionEvent, RiskEvent, PanicEvent]

ALERT_CREATED = "alert.created"
ALERT_ACKNOWLEDGED = "alert.acknowledged"
ALERT_RESOLVED = "alert.resolved"

ALWAYS_ALERT_CATEGORIES = {ZoneCategory.RESTRICTED, ZoneCategory.DANGER}
HAZARD_CATEGORIES = {ZoneCategory.DANGER, ZoneCategory.WILDLIFE}

PANIC_TITLES = {
    AlertType.PANIC: "🚨 EMERGENCY ALERT",
    AlertType.MEDICAL: "🏥 MEDICAL EMERGENCY",
}

PANIC_MESSAGES = {
    AlertType.PANIC: "Tourist has triggered a panic alert and requires immediate assistance.",
    AlertType.MEDICAL: "Tourist requires immediate medical assistance.",
}

def severity_for_risk(risk_level: int) -> AlertSeverity:
    if risk_level >= 5:
        return AlertSeverity.CRITICAL
    if risk_level == 4:
        return AlertSeverity.HIGH
    if risk_level == 3:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW

def alert_type_for_zone(zone: Zone) -> AlertType:
    if zone.category == ZoneCategory.WEATHER:
        return AlertType.WEATHER
    if zone.category in HAZARD_CATEGORIES:
        return AlertType.HAZARD
    return AlertType.GEOFENCE

def _location_str(lat: float, lng: float) -> str:
    return f"Location: {lat:.6f}, {lng:.6f}"


class AlertDispatcher:
    """
    Turns transition, risk and panic events into alert records.

    At most one non-resolved alert exists per dedup key
    (tourist, zone, transition type); repeats are suppressed until the open
    alert is resolved. Only open alerts are held here; a resolved alert is
    dropped once subscribers have seen it. Delivery (SMS/push/email)
    belongs to subscribers.
    """

    def __init__(
        self,
        min_risk_level: int = 3,
        auto_resolve_after: timedelta = timedelta(hours=24),
        low_score_threshold: int = 40
    ):
        self.min_risk_level = min_risk_level
        self.auto_resolve_after = auto_resolve_after
        self.low_score_threshold = low_score_threshold
        self._open: Dict[str, Alert] = {}
        self._open_by_key: Dict[str, str] = {}
        self._subscribers: List[AlertSubscriber] = []

    def __len__(self) -> int:
        return len(self._open)

    def subscribe(self, subscriber: AlertSubscriber):
        self._subscribers.append(subscriber)

    def build_alert(self, event: DispatchableEvent) -> Optional[Alert]:
        """Decide whether the event warrants an alert, without dedup or side effects"""
        if isinstance(event, TransitionEvent):
            return self._alert_for_transition(event)
        if isinstance(event, RiskEvent):
            return self._alert_for_risk(event)
        if isinstance(event, PanicEvent):
            return self._alert_for_panic(event)
        raise TypeError(f"Cannot dispatch {type(event).__name__}")

    async def dispatch(self, event: DispatchableEvent) -> Optional[Alert]:
        alert = self.build_alert(event)
        if alert is None:
            return None

        open_id = self._open_by_key.get(alert.dedup_key)
        if open_id is not None:
            logger.info(f"Suppressed duplicate alert {alert.dedup_key} (open alert {open_id})")
            return None

        self._open[alert.id] = alert
        self._open_by_key[alert.dedup_key] = alert.id

        log = logger.critical if alert.severity == AlertSeverity.CRITICAL else logger.warning
        log(f"Alert {alert.id} [{alert.severity.value}] {alert.alert_type.value} for tourist {alert.tourist_id}: {alert.title}")

        await self._emit(ALERT_CREATED, alert)
        return alert

    def get(self, alert_id: str) -> Alert:
        alert = self._open.get(alert_id)
        if alert is None:
            raise AlertNotFound(alert_id)
        return alert

    async def acknowledge(self, alert_id: str) -> Alert:
        alert = self.get(alert_id)
        if alert.status == AlertStatus.ACTIVE:
            alert.status = AlertStatus.ACKNOWLEDGED
            alert.acknowledged_at = datetime.now(timezone.utc)
            await self._emit(ALERT_ACKNOWLEDGED, alert)
        return alert

    async def resolve(self, alert_id: str, resolution_notes: Optional[str] = None) -> Alert:
        alert = self.get(alert_id)
        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = datetime.now(timezone.utc)
        alert.resolution_notes = resolution_notes
        if self._open_by_key.get(alert.dedup_key) == alert.id:
            del self._open_by_key[alert.dedup_key]
        del self._open[alert.id]
        await self._emit(ALERT_RESOLVED, alert)
        return alert

    def find_open(self, dedup_key: str) -> Optional[Alert]:
        alert_id = self._open_by_key.get(dedup_key)
        return self._open.get(alert_id) if alert_id else None

    def restore(self, alert: Alert):
        """Load a previously persisted open alert so dedup survives restarts"""
        if not alert.is_open:
            return
        self._open[alert.id] = alert
        self._open_by_key[alert.dedup_key] = alert.id

    def active_alerts(self, tourist_id: Optional[str] = None) -> List[Alert]:
        alerts = [
            a for a in self._open.values()
            if tourist_id is None or a.tourist_id == tourist_id
        ]
        alerts.sort(key=lambda a: (-a.severity.rank, a.created_at))
        return alerts

    def auto_resolution_candidates(self, now: Optional[datetime] = None) -> List[Alert]:
        """
        Non-critical open alerts older than the auto-resolve age.
        Resolution itself is left to the response workflow.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.auto_resolve_after
        return [
            a for a in self.active_alerts()
            if a.severity != AlertSeverity.CRITICAL and a.created_at <= cutoff
        ]

    async def _emit(self, event_name: str, alert: Alert):
        if not self._subscribers:
            return
        results = await asyncio.gather(
            *(subscriber(event_name, alert) for subscriber in self._subscribers),
            return_exceptions=True
        )
        for subscriber, result in zip(self._subscribers, results):
            if isinstance(result, BaseException):
                logger.error(f"Alert subscriber {getattr(subscriber, '__name__', subscriber)} failed for {alert.id}: {result}")

    def _alert_for_transition(self, event: TransitionEvent) -> Optional[Alert]:
        if event.transition != TransitionType.ENTERED:
            return None

        zone = event.zone
        if zone.category == ZoneCategory.SAFE:
            return None

        severity = severity_for_risk(zone.risk_level)
        if zone.category in ALWAYS_ALERT_CATEGORIES:
            if severity.rank < AlertSeverity.MEDIUM.rank:
                severity = AlertSeverity.MEDIUM
        elif zone.risk_level < self.min_risk_level:
            return None

        category = zone.category.value.replace("_", " ")
        return Alert(
            tourist_id=event.tourist_id,
            alert_type=alert_type_for_zone(zone),
            severity=severity,
            title=f"Entered {category} zone: {zone.name}",
            message=(
                f"Tourist entered {category} zone '{zone.name}' "
                f"(risk level {zone.risk_level}). {_location_str(event.fix.latitude, event.fix.longitude)}"
            ),
            dedup_key=make_dedup_key(event.tourist_id, zone.id, TransitionType.ENTERED.value),
            zone_id=zone.id,
            latitude=event.fix.latitude,
            longitude=event.fix.longitude,
            created_at=event.fix.timestamp
        )

    def _alert_for_risk(self, event: RiskEvent) -> Optional[Alert]:
        if event.score >= self.low_score_threshold:
            return None
        severity = AlertSeverity.CRITICAL if event.score < self.low_score_threshold / 2 else AlertSeverity.HIGH
        return Alert(
            tourist_id=event.tourist_id,
            alert_type=AlertType.ANOMALY,
            severity=severity,
            title="Safety score dropped",
            message=(
                f"Safety score fell from {event.previous_score} to {event.score} "
                f"({event.category.value} risk). {_location_str(event.fix.latitude, event.fix.longitude)}"
            ),
            dedup_key=make_dedup_key(event.tourist_id, None, "low_safety_score"),
            latitude=event.fix.latitude,
            longitude=event.fix.longitude,
            created_at=event.fix.timestamp
        )

    def _alert_for_panic(self, event: PanicEvent) -> Alert:
        base = PANIC_MESSAGES.get(event.alert_type, "Tourist requires emergency assistance.")
        message = f"{base} {_location_str(event.latitude, event.longitude)}"
        if event.message:
            message = f"{message}\n{event.message}"
        return Alert(
            tourist_id=event.tourist_id,
            alert_type=event.alert_type,
            severity=AlertSeverity.CRITICAL,
            title=PANIC_TITLES.get(event.alert_type, "⚠️ EMERGENCY ALERT"),
            message=message,
            dedup_key=make_dedup_key(event.tourist_id, None, event.alert_type.value),
            latitude=event.latitude,
            longitude=event.longitude,
            created_at=event.timestamp
        )
