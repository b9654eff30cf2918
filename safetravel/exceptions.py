"""
Error taxonomy for the monitoring pipeline.

Routers in ``safetravel.api`` translate these into HTTP responses; the core
raises them and never returns sentinel values for rejected input.
"""
from typing import Any, Dict, Optional


class SafeTravelError(Exception):
    """Base class for all pipeline errors"""

    code = "safetravel_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.context}


class InvalidGeometry(SafeTravelError):
    """Malformed zone definition, rejected at registration"""

    code = "invalid_geometry"


class StaleFix(SafeTravelError):
    """Fix older than the last processed fix for the same tourist"""

    code = "stale_fix"


class MissingTourist(SafeTravelError):
    """Fix or request references an unknown or deactivated tourist"""

    code = "missing_tourist"


class IndexUnavailable(SafeTravelError):
    """No zone index snapshot has been published yet"""

    code = "index_unavailable"


class PersistenceFailed(SafeTravelError):
    """Accepted fix could not be written; tourist state was left unchanged"""

    code = "persistence_failed"


class ScoreOutOfBounds(SafeTravelError):
    """Score left [0, 100]; always clamped, never propagated"""

    code = "score_out_of_bounds"


class AlertNotFound(SafeTravelError):
    code = "alert_not_found"

    def __init__(self, alert_id: str, message: Optional[str] = None):
        super().__init__(message or f"Alert {alert_id} not found", alert_id=alert_id)
