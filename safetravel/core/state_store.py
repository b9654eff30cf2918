import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, FrozenSet, List, Optional, Sequence, Tuple

from safetravel.core.types import GeoPoint, LocationFix, Zone
from safetravel.exceptions import MissingTourist

logger = logging.getLogger(__name__)

class TouristState:
    """
    Working state for one tourist's processing lane.

    Membership, score and history are only mutated while ``lock`` is held
    by the pipeline, which serializes fixes for the same tourist.
    """

    def __init__(
        self,
        tourist_id: str,
        safety_score: int,
        group_size: int = 1,
        planned_route: Sequence[GeoPoint] = ()
    ):
        self.tourist_id = tourist_id
        self.safety_score = safety_score
        self.group_size = group_size
        self.planned_route: Tuple[GeoPoint, ...] = tuple(planned_route)
        self.membership: Dict[str, Zone] = {}
        self.last_fix: Optional[LocationFix] = None
        self.history: Deque[LocationFix] = deque()
        self.deactivated = False
        self.lock = asyncio.Lock()

    @property
    def membership_ids(self) -> FrozenSet[str]:
        return frozenset(self.membership)

    def record_fix(self, fix: LocationFix, window: timedelta):
        self.history.append(fix)
        cutoff = fix.timestamp - window
        while self.history and self.history[0].timestamp < cutoff:
            self.history.popleft()

    def reset(self, initial_score: int):
        self.membership = {}
        self.last_fix = None
        self.history.clear()
        self.safety_score = initial_score


class TouristStateStore:
    """Per-tourist state keyed by tourist id"""

    def __init__(self, initial_score: int = 100):
        self.initial_score = initial_score
        self._states: Dict[str, TouristState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def register(
        self,
        tourist_id: str,
        group_size: int = 1,
        planned_route: Sequence[GeoPoint] = (),
        safety_score: Optional[int] = None
    ) -> TouristState:
        state = self._states.get(tourist_id)
        if state is None:
            state = TouristState(
                tourist_id,
                safety_score=self.initial_score if safety_score is None else safety_score,
                group_size=group_size,
                planned_route=planned_route
            )
            self._states[tourist_id] = state
            logger.info(f"Registered tourist {tourist_id}")
        else:
            # Re-registration only refreshes the profile
            state.group_size = group_size
            state.planned_route = tuple(planned_route)
        return state

    def get(self, tourist_id: str) -> TouristState:
        state = self._states.get(tourist_id)
        if state is None:
            raise MissingTourist(f"Unknown tourist {tourist_id}", tourist_id=tourist_id)
        return state

    def deactivate(self, tourist_id: str) -> TouristState:
        """
        Tombstone the tourist and drop its state. A fix already in flight
        still holds the old state object and sees ``deactivated``.
        """
        state = self._states.pop(tourist_id, None)
        if state is None:
            raise MissingTourist(f"Unknown tourist {tourist_id}", tourist_id=tourist_id)
        state.deactivated = True
        state.reset(self.initial_score)
        logger.info(f"Deactivated tourist {tourist_id}")
        return state

    def history(self, tourist_id: str, since: Optional[datetime] = None, limit: int = 100) -> List[LocationFix]:
        """Most recent fixes first"""
        fixes = [
            fix for fix in reversed(self.get(tourist_id).history)
            if since is None or fix.timestamp >= since
        ]
        return fixes[:limit]
