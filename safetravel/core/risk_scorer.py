import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Iterable, Sequence

from safetravel.core.geometry import distance
from safetravel.core.types import GeoPoint, RiskCategory, Zone, ZoneCategory
from safetravel.exceptions import ScoreOutOfBounds

logger = logging.getLogger(__name__)

SCORE_MIN = 0
SCORE_MAX = 100

class TimeOfDay(str, Enum):
    DAY = "day"          # 06:00 - 18:00
    EVENING = "evening"  # 18:00 - 22:00
    NIGHT = "night"      # 22:00 - 06:00

TIME_OF_DAY_RISK = {
    TimeOfDay.DAY: 0.0,
    TimeOfDay.EVENING: 0.5,
    TimeOfDay.NIGHT: 1.0,
}

def time_of_day_bucket(when: datetime, tz: tzinfo = timezone.utc) -> TimeOfDay:
    hour = when.astimezone(tz).hour
    if 6 <= hour < 18:
        return TimeOfDay.DAY
    if 18 <= hour < 22:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT

def group_size_risk(group_size: int) -> float:
    """Solo travellers carry the most risk"""
    if group_size <= 1:
        return 1.0
    if group_size == 2:
        return 0.6
    if group_size <= 4:
        return 0.3
    return 0.1

def risk_category(score: int) -> RiskCategory:
    if score >= 80:
        return RiskCategory.LOW
    if score >= 60:
        return RiskCategory.MEDIUM
    if score >= 40:
        return RiskCategory.HIGH
    return RiskCategory.CRITICAL


@dataclass(frozen=True)
class RiskWeights:
    location: float = 0.30
    weather: float = 0.20
    group_size: float = 0.20
    time_of_day: float = 0.15
    route_deviation: float = 0.15

    def __post_init__(self):
        values = (self.location, self.weather, self.group_size, self.time_of_day, self.route_deviation)
        if any(w < 0 for w in values):
            raise ValueError("Risk weights must be non-negative")
        if abs(sum(values) - 1.0) > 1e-6:
            raise ValueError(f"Risk weights must sum to 1.0 (got {sum(values):.4f})")

    @classmethod
    def from_settings(cls, settings) -> "RiskWeights":
        return cls(
            location=settings.RISK_WEIGHT_LOCATION,
            weather=settings.RISK_WEIGHT_WEATHER,
            group_size=settings.RISK_WEIGHT_GROUP_SIZE,
            time_of_day=settings.RISK_WEIGHT_TIME_OF_DAY,
            route_deviation=settings.RISK_WEIGHT_ROUTE_DEVIATION
        )


@dataclass(frozen=True)
class RiskSignals:
    zone_risk_level: int = 0  # max over current memberships, 0 when outside all zones
    weather_severity: int = 0  # 0-5
    time_of_day: TimeOfDay = TimeOfDay.DAY
    group_size: int = 1
    route_deviation_meters: float = 0.0


class RiskScorer:
    """
    Weighted safety score with bounded per-update movement.

    Each update moves the score toward the target implied by the current
    signals by at most ``max_step`` points, so one noisy fix cannot swing
    the score across categories.
    """

    def __init__(
        self,
        weights: RiskWeights = RiskWeights(),
        max_step: int = 10,
        max_route_deviation: float = 5000.0,
        tz: tzinfo = timezone.utc
    ):
        if max_step <= 0:
            raise ValueError("max_step must be positive")
        self.weights = weights
        self.max_step = max_step
        self.max_route_deviation = max_route_deviation
        self.tz = tz

    def weighted_risk(self, signals: RiskSignals) -> float:
        w = self.weights
        deviation = 0.0
        if self.max_route_deviation > 0:
            deviation = min(max(signals.route_deviation_meters, 0.0) / self.max_route_deviation, 1.0)

        risk = (
            w.location * _clamp_unit(signals.zone_risk_level / 5)
            + w.weather * _clamp_unit(signals.weather_severity / 5)
            + w.group_size * group_size_risk(signals.group_size)
            + w.time_of_day * TIME_OF_DAY_RISK[signals.time_of_day]
            + w.route_deviation * deviation
        )
        return _clamp_unit(risk)

    def target_score(self, signals: RiskSignals) -> int:
        return int(round(SCORE_MAX * (1.0 - self.weighted_risk(signals))))

    def update_score(self, current: int, signals: RiskSignals) -> int:
        current = clamp_score(current)
        delta = self.target_score(signals) - current
        step = max(-self.max_step, min(self.max_step, delta))
        return clamp_score(current + step)

    def build_signals(
        self,
        point: GeoPoint,
        when: datetime,
        memberships: Iterable[Zone],
        group_size: int = 1,
        planned_route: Sequence[GeoPoint] = ()
    ) -> RiskSignals:
        zones = list(memberships)
        zone_risk = max((z.risk_level for z in zones), default=0)
        weather = max((z.risk_level for z in zones if z.category == ZoneCategory.WEATHER), default=0)
        deviation = min((distance(point, waypoint) for waypoint in planned_route), default=0.0)

        return RiskSignals(
            zone_risk_level=zone_risk,
            weather_severity=weather,
            time_of_day=time_of_day_bucket(when, self.tz),
            group_size=group_size,
            route_deviation_meters=deviation
        )


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))

def clamp_score(score: int) -> int:
    if SCORE_MIN <= score <= SCORE_MAX:
        return score
    error = ScoreOutOfBounds(f"Safety score {score} outside [0, 100]; clamped", score=score)
    logger.warning(error.message)
    return max(SCORE_MIN, min(SCORE_MAX, score))
