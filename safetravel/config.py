from pydantic import model_validator
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./safetravel.db"
    DATABASE_ECHO: bool = False

    # Region (active_hours and time-of-day buckets are evaluated here)
    LOCAL_TIMEZONE: str = "Asia/Kolkata"

    # Risk weights, must sum to 1.0
    RISK_WEIGHT_LOCATION: float = 0.30
    RISK_WEIGHT_WEATHER: float = 0.20
    RISK_WEIGHT_GROUP_SIZE: float = 0.20
    RISK_WEIGHT_TIME_OF_DAY: float = 0.15
    RISK_WEIGHT_ROUTE_DEVIATION: float = 0.15

    # Safety score
    SAFETY_SCORE_INITIAL: int = 100
    SAFETY_SCORE_MAX_STEP: int = 10
    SAFETY_SCORE_ALERT_THRESHOLD: int = 40
    ROUTE_DEVIATION_MAX_METERS: float = 5000.0

    # Alerting
    ALERT_MIN_RISK_LEVEL: int = 3
    ALERT_AUTO_RESOLVE_HOURS: int = 24

    # Location history window
    LOCATION_HISTORY_HOURS: int = 24
    LOCATION_HISTORY_LIMIT: int = 100

    # Zone index
    ZONE_INDEX_CELL_DEGREES: float = 0.1
    ZONE_INDEX_MAX_CELLS_PER_ZONE: int = 2500
    ZONE_QUERY_RADIUS_METERS: float = 0.0
    INDEX_RETRY_ATTEMPTS: int = 5
    INDEX_RETRY_BASE_DELAY: float = 0.05

    # Authority integration (alert records are POSTed here when set)
    AUTHORITY_WEBHOOK_URL: str = ""
    AUTHORITY_API_KEY: str = ""
    AUTHORITY_TIMEOUT_SECONDS: float = 10.0

    @model_validator(mode="after")
    def check_risk_weights(self) -> "Settings":
        total = (
            self.RISK_WEIGHT_LOCATION
            + self.RISK_WEIGHT_WEATHER
            + self.RISK_WEIGHT_GROUP_SIZE
            + self.RISK_WEIGHT_TIME_OF_DAY
            + self.RISK_WEIGHT_ROUTE_DEVIATION
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Risk weights must sum to 1.0 (got {total:.4f})")
        return self

    class Config:
        env_file = ".env"

settings = Settings()
