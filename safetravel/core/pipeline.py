import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union
from zoneinfo import ZoneInfo

from safetravel.core import geometry
from safetravel.core.alert_dispatcher import AlertDispatcher
from safetravel.core.risk_scorer import RiskScorer, RiskWeights, risk_category
from safetravel.core.state_store import TouristState, TouristStateStore
from safetravel.core.transitions import TransitionDetector
from safetravel.core.types import (
    Alert, AlertType, GeoPoint, LocationFix, PanicEvent, RiskCategory, RiskEvent,
    Zone, make_dedup_key
)
from safetravel.core.zone_index import ZoneIndex, ZoneRegistry
from safetravel.exceptions import IndexUnavailable, MissingTourist, PersistenceFailed, SafeTravelError

logger = logging.getLogger(__name__)

FixRecorder = Callable[[LocationFix, int, RiskCategory], Awaitable[None]]

class FixStatus(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"

@dataclass
class FixOutcome:
    """Acknowledgment returned to the ingestion caller for every fix"""
    status: FixStatus
    tourist_id: str
    timestamp: datetime
    safety_score: int
    risk_category: RiskCategory
    membership: List[str] = field(default_factory=list)
    entered: List[str] = field(default_factory=list)
    exited: List[str] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "tourist_id": self.tourist_id,
            "timestamp": self.timestamp.isoformat(),
            "safety_score": self.safety_score,
            "risk_category": self.risk_category.value,
            "membership": self.membership,
            "entered": self.entered,
            "exited": self.exited,
            "alerts": [alert.to_dict() for alert in self.alerts],
        }


class SafetyPipeline:
    """
    Location fix -> candidate zones -> exact membership -> transitions ->
    score update -> alerts.

    Fixes for one tourist are serialized on that tourist's lock; different
    tourists proceed concurrently. All tracking state is owned by this
    instance rather than module globals.
    """

    def __init__(
        self,
        registry: ZoneRegistry,
        store: TouristStateStore,
        detector: TransitionDetector,
        scorer: RiskScorer,
        dispatcher: AlertDispatcher,
        retry_attempts: int = 5,
        retry_base_delay: float = 0.05,
        fix_recorder: Optional[FixRecorder] = None
    ):
        self.registry = registry
        self.store = store
        self.detector = detector
        self.scorer = scorer
        self.dispatcher = dispatcher
        self.retry_attempts = max(1, retry_attempts)
        self.retry_base_delay = retry_base_delay
        self.fix_recorder = fix_recorder

    @classmethod
    def from_settings(cls, settings) -> "SafetyPipeline":
        tz = ZoneInfo(settings.LOCAL_TIMEZONE)
        return cls(
            registry=ZoneRegistry(
                cell_degrees=settings.ZONE_INDEX_CELL_DEGREES,
                max_cells_per_zone=settings.ZONE_INDEX_MAX_CELLS_PER_ZONE,
                tz=tz
            ),
            store=TouristStateStore(initial_score=settings.SAFETY_SCORE_INITIAL),
            detector=TransitionDetector(
                query_radius=settings.ZONE_QUERY_RADIUS_METERS,
                history_window=timedelta(hours=settings.LOCATION_HISTORY_HOURS)
            ),
            scorer=RiskScorer(
                weights=RiskWeights.from_settings(settings),
                max_step=settings.SAFETY_SCORE_MAX_STEP,
                max_route_deviation=settings.ROUTE_DEVIATION_MAX_METERS,
                tz=tz
            ),
            dispatcher=AlertDispatcher(
                min_risk_level=settings.ALERT_MIN_RISK_LEVEL,
                auto_resolve_after=timedelta(hours=settings.ALERT_AUTO_RESOLVE_HOURS),
                low_score_threshold=settings.SAFETY_SCORE_ALERT_THRESHOLD
            ),
            retry_attempts=settings.INDEX_RETRY_ATTEMPTS,
            retry_base_delay=settings.INDEX_RETRY_BASE_DELAY
        )

    # Tourists

    def register_tourist(
        self,
        tourist_id: str,
        group_size: int = 1,
        planned_route: Sequence[GeoPoint] = (),
        safety_score: Optional[int] = None
    ) -> TouristState:
        return self.store.register(tourist_id, group_size, planned_route, safety_score)

    def deactivate_tourist(self, tourist_id: str) -> TouristState:
        return self.store.deactivate(tourist_id)

    def safety_score(self, tourist_id: str) -> Tuple[int, RiskCategory]:
        score = self.store.get(tourist_id).safety_score
        return score, risk_category(score)

    # Fix processing

    async def _snapshot(self) -> ZoneIndex:
        delay = self.retry_base_delay
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return self.registry.snapshot()
            except IndexUnavailable:
                if attempt == self.retry_attempts:
                    raise
                logger.warning(f"Zone index unavailable (attempt {attempt}/{self.retry_attempts}), retrying in {delay:.2f}s")
                await asyncio.sleep(delay)
                delay *= 2

    async def process_fix(self, fix: LocationFix) -> FixOutcome:
        state = self.store.get(fix.tourist_id)

        async with state.lock:
            if state.deactivated:
                raise MissingTourist(f"Tourist {fix.tourist_id} is deactivated", tourist_id=fix.tourist_id)

            snapshot = await self._snapshot()
            result = self.detector.evaluate(state, fix, snapshot)

            if result.duplicate:
                logger.debug(f"Duplicate fix for tourist {fix.tourist_id} at {fix.timestamp.isoformat()}")
                return self._outcome(FixStatus.DUPLICATE, state, fix)

            previous_score = state.safety_score
            signals = self.scorer.build_signals(
                fix.point,
                fix.timestamp,
                result.current.values(),
                group_size=state.group_size,
                planned_route=state.planned_route
            )
            new_score = self.scorer.update_score(previous_score, signals)

            # Written before commit: a failed write leaves the state untouched
            if self.fix_recorder is not None:
                await self._record(fix, new_score)

            self.detector.commit(state, result)
            state.safety_score = new_score

            alerts: List[Alert] = []
            for event in result.events:
                if state.deactivated:
                    logger.info(f"Tourist {fix.tourist_id} deactivated mid-fix; remaining alerts dropped")
                    break
                alert = await self.dispatcher.dispatch(event)
                if alert:
                    alerts.append(alert)

            threshold = self.dispatcher.low_score_threshold
            if not state.deactivated and previous_score >= threshold > state.safety_score:
                alert = await self.dispatcher.dispatch(RiskEvent(
                    tourist_id=fix.tourist_id,
                    previous_score=previous_score,
                    score=state.safety_score,
                    category=risk_category(state.safety_score),
                    fix=fix
                ))
                if alert:
                    alerts.append(alert)

            outcome = self._outcome(FixStatus.ACCEPTED, state, fix)
            outcome.entered = [e.zone.id for e in result.entered]
            outcome.exited = [e.zone.id for e in result.exited]
            outcome.alerts = alerts
            return outcome

    async def _record(self, fix: LocationFix, score: int):
        try:
            await self.fix_recorder(fix, score, risk_category(score))
        except SafeTravelError:
            raise
        except Exception as e:
            logger.error(f"Could not store fix for tourist {fix.tourist_id} at {fix.timestamp.isoformat()}: {e}")
            raise PersistenceFailed(
                f"Fix for tourist {fix.tourist_id} was not stored",
                tourist_id=fix.tourist_id,
                timestamp=fix.timestamp.isoformat()
            ) from e

    async def process_batch(self, fixes: Sequence[LocationFix]) -> List[Union[FixOutcome, SafeTravelError]]:
        """
        Process fixes from many tourists. Each tourist's fixes run in input
        order on one lane; lanes run concurrently. Results keep input order,
        with the exception in place of the outcome for rejected fixes.
        """
        lanes: "OrderedDict[str, List[int]]" = OrderedDict()
        for position, fix in enumerate(fixes):
            lanes.setdefault(fix.tourist_id, []).append(position)

        results: List[Union[FixOutcome, SafeTravelError, None]] = [None] * len(fixes)

        async def run_lane(positions: List[int]):
            for position in positions:
                try:
                    results[position] = await self.process_fix(fixes[position])
                except SafeTravelError as e:
                    results[position] = e

        await asyncio.gather(*(run_lane(positions) for positions in lanes.values()))
        return results

    def _outcome(self, status: FixStatus, state: TouristState, fix: LocationFix) -> FixOutcome:
        return FixOutcome(
            status=status,
            tourist_id=fix.tourist_id,
            timestamp=fix.timestamp,
            safety_score=state.safety_score,
            risk_category=risk_category(state.safety_score),
            membership=sorted(state.membership)
        )

    # Panic / emergency

    async def raise_panic(
        self,
        tourist_id: str,
        latitude: float,
        longitude: float,
        alert_type: AlertType = AlertType.PANIC,
        message: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ) -> Tuple[Alert, bool]:
        """
        Returns (alert, created). A repeated panic while one is still open
        returns the open alert instead of creating another.
        """
        self.store.get(tourist_id)
        alert = await self.dispatcher.dispatch(PanicEvent(
            tourist_id=tourist_id,
            alert_type=alert_type,
            latitude=latitude,
            longitude=longitude,
            timestamp=timestamp or datetime.now(timezone.utc),
            message=message
        ))
        if alert is not None:
            return alert, True
        existing = self.dispatcher.find_open(make_dedup_key(tourist_id, None, alert_type.value))
        return existing, False

    # Zone queries

    def nearest_zone(self, point: GeoPoint, at: Optional[datetime] = None) -> Optional[Tuple[Zone, float]]:
        snapshot = self.registry.snapshot()
        zones = [z for z in snapshot.zones if z.is_active_at(at, snapshot.tz)]
        return geometry.nearest_zone(point, zones)
