"""
Core modules for SafeTravel monitoring

This package contains the safety pipeline and its building blocks:
- geometry: Distances, containment tests and zone validation
- zone_index: Spatial index over geofence zones with atomic snapshot swaps
- transitions: Zone entry/exit detection per tourist
- risk_scorer: Weighted risk factors and bounded safety score updates
- alert_dispatcher: Alert creation, deduplication and lifecycle
- pipeline: Per-tourist ordered fix processing tying the above together
"""

from .geometry import (
    calculate_distance,
    contains,
    nearest_zone,
    point_in_polygon,
    validate_zone
)

from .zone_index import (
    ZoneIndex,
    ZoneRegistry
)

from .risk_scorer import (
    RiskScorer,
    RiskWeights,
    risk_category
)

from .alert_dispatcher import (
    AlertDispatcher
)

from .pipeline import (
    FixOutcome,
    FixStatus,
    SafetyPipeline
)

__all__ = [
    # Geometry
    "calculate_distance",
    "contains",
    "nearest_zone",
    "point_in_polygon",
    "validate_zone",

    # Zone index
    "ZoneIndex",
    "ZoneRegistry",

    # Scoring
    "RiskScorer",
    "RiskWeights",
    "risk_category",

    # Alerting
    "AlertDispatcher",

    # Pipeline
    "FixOutcome",
    "FixStatus",
    "SafetyPipeline"
]
