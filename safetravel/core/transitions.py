import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List

from safetravel.core import geometry
from safetravel.core.state_store import TouristState
from safetravel.core.types import LocationFix, TransitionEvent, TransitionType, Zone
from safetravel.core.zone_index import ZoneIndex
from safetravel.exceptions import InvalidGeometry, StaleFix

logger = logging.getLogger(__name__)

@dataclass
class TransitionResult:
    fix: LocationFix
    previous: Dict[str, Zone]
    current: Dict[str, Zone]
    events: List[TransitionEvent] = field(default_factory=list)
    duplicate: bool = False

    @property
    def entered(self) -> List[TransitionEvent]:
        return [e for e in self.events if e.transition == TransitionType.ENTERED]

    @property
    def exited(self) -> List[TransitionEvent]:
        return [e for e in self.events if e.transition == TransitionType.EXITED]


class TransitionDetector:
    """
    Diffs zone membership between consecutive fixes of one tourist.

    Ordering is enforced by the fix timestamp, not arrival order: an older
    fix raises ``StaleFix`` and an equal timestamp is treated as a
    resubmission of the fix already processed.
    """

    def __init__(self, query_radius: float = 0.0, history_window: timedelta = timedelta(hours=24)):
        self.query_radius = query_radius
        self.history_window = history_window

    def evaluate(self, state: TouristState, fix: LocationFix, snapshot: ZoneIndex) -> TransitionResult:
        previous = state.membership
        last = state.last_fix

        if last is not None:
            if fix.timestamp < last.timestamp:
                logger.warning(
                    f"Stale fix for tourist {fix.tourist_id}: "
                    f"{fix.timestamp.isoformat()} < {last.timestamp.isoformat()}"
                )
                raise StaleFix(
                    "Fix is older than the last processed fix",
                    tourist_id=fix.tourist_id,
                    timestamp=fix.timestamp.isoformat(),
                    last_timestamp=last.timestamp.isoformat()
                )
            if fix.timestamp == last.timestamp:
                if (fix.latitude, fix.longitude) != (last.latitude, last.longitude):
                    logger.warning(
                        f"Tourist {fix.tourist_id} resubmitted timestamp "
                        f"{fix.timestamp.isoformat()} with different coordinates; ignored"
                    )
                return TransitionResult(fix=fix, previous=previous, current=previous, duplicate=True)

        current: Dict[str, Zone] = {}
        point = fix.point
        for zone in snapshot.query_candidates(point, self.query_radius, at=fix.timestamp):
            try:
                inside = geometry.contains(zone, point)
            except (InvalidGeometry, ArithmeticError, ValueError, TypeError) as e:
                # Keep the previous answer so a broken zone never fakes a transition
                logger.critical(
                    f"Containment check failed for zone {zone.id}, tourist {fix.tourist_id}: {e}"
                )
                inside = zone.id in previous
            if inside:
                current[zone.id] = zone

        events = [
            TransitionEvent(fix.tourist_id, current[zid], TransitionType.ENTERED, fix)
            for zid in sorted(current.keys() - previous.keys())
        ]
        events.extend(
            TransitionEvent(fix.tourist_id, previous[zid], TransitionType.EXITED, fix)
            for zid in sorted(previous.keys() - current.keys())
        )

        return TransitionResult(fix=fix, previous=previous, current=current, events=events)

    def commit(self, state: TouristState, result: TransitionResult):
        """Swap in the new membership set and advance the tourist's clock"""
        if result.duplicate:
            return
        state.membership = result.current
        state.last_fix = result.fix
        state.record_fix(result.fix, self.history_window)
