import logging
from sqlmodel import select

from safetravel.core.alert_dispatcher import ALERT_CREATED
from safetravel.core.geometry import validate_zone
from safetravel.core.pipeline import SafetyPipeline
from safetravel.core.types import Alert, AlertStatus, LocationFix, RiskCategory
from safetravel.exceptions import InvalidGeometry
from safetravel.models.alert import AlertRecord
from safetravel.models.location import LocationLog
from safetravel.models.tourist import Tourist
from safetravel.models.zone import GeofenceZone

logger = logging.getLogger(__name__)

class AlertRecorder:
    """Alert subscriber that mirrors alert records and status changes into the database"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def __call__(self, event_name: str, alert: Alert):
        async with self.session_factory() as db:
            if event_name == ALERT_CREATED:
                db.add(AlertRecord.from_alert(alert))
            else:
                record = await db.get(AlertRecord, alert.id)
                if record is None:
                    record = AlertRecord.from_alert(alert)
                else:
                    record.update_from(alert)
                db.add(record)
            await db.commit()


class FixRecorder:
    """Writes each accepted fix and the tourist's new score, awaited by the pipeline before it commits"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def __call__(self, fix: LocationFix, safety_score: int, category: RiskCategory):
        async with self.session_factory() as db:
            db.add(LocationLog(
                tourist_id=fix.tourist_id,
                latitude=fix.latitude,
                longitude=fix.longitude,
                altitude=fix.altitude,
                accuracy=fix.accuracy,
                speed=fix.speed,
                timestamp=fix.timestamp,
                safety_score=safety_score
            ))

            tourist = await db.get(Tourist, fix.tourist_id)
            if tourist is not None:
                tourist.safety_score = safety_score
                tourist.risk_category = category.value
                tourist.last_check_in = fix.timestamp
                db.add(tourist)

            await db.commit()


async def restore_pipeline_state(pipeline: SafetyPipeline, session_factory):
    """
    Rebuild in-memory state from the database at startup: zones go into
    the index, active tourists get their lanes back and open alerts
    re-arm deduplication.
    """
    async with session_factory() as db:
        zone_result = await db.execute(select(GeofenceZone))
        zones = []
        for record in zone_result.scalars().all():
            try:
                zones.append(validate_zone(record.to_zone()))
            except (InvalidGeometry, ValueError, TypeError) as e:
                logger.error(f"Skipping unreadable zone {record.id}: {e}")
        pipeline.registry.publish(zones)

        tourist_result = await db.execute(select(Tourist).where(Tourist.is_active == True))
        tourists = tourist_result.scalars().all()
        for tourist in tourists:
            pipeline.register_tourist(
                tourist.id,
                group_size=tourist.group_size,
                planned_route=tourist.route_points(),
                safety_score=tourist.safety_score
            )

        alert_result = await db.execute(
            select(AlertRecord).where(AlertRecord.status != AlertStatus.RESOLVED)
        )
        alerts = alert_result.scalars().all()
        for record in alerts:
            pipeline.dispatcher.restore(record.to_alert())

    logger.info(
        f"Restored {len(zones)} zones, {len(tourists)} tourists and {len(alerts)} open alerts"
    )
