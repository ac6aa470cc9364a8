import math
import os
from dataclasses import dataclass

LOG_FORMATS = ("json", "text")


def _float_env(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = os.environ.get(name, str(default)).strip()
    try:
        parsed = float(raw)
    except ValueError:
        parsed = default
    if not math.isfinite(parsed):
        parsed = default
    return min(maximum, max(minimum, parsed))


def _int_env(name: str, default: int, minimum: int) -> int:
    raw = os.environ.get(name, str(default)).strip()
    try:
        parsed = int(raw)
    except ValueError:
        parsed = default
    return max(minimum, parsed)


@dataclass(frozen=True)
class Config:
    database_url: str
    listen_database_url: str
    poll_interval_seconds: float = 5.0
    batch_size: int = 10
    max_retries: int = 3
    health_port: int = 8081
    log_format: str = "json"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL must be set")

        log_format = os.environ.get("PMC_LOG_FORMAT", "json").strip().lower()
        return cls(
            database_url=database_url,
            listen_database_url=os.environ.get("PMC_WORKER_LISTEN_DATABASE_URL") or database_url,
            poll_interval_seconds=_float_env("PMC_POLL_INTERVAL", 5.0, 0.1, 3600.0),
            batch_size=_int_env("PMC_BATCH_SIZE", 10, 1),
            max_retries=_int_env("PMC_MAX_RETRIES", 3, 0),
            health_port=_int_env("PMC_HEALTH_PORT", 8081, 1),
            log_format=log_format if log_format in LOG_FORMATS else "json",
            log_level=os.environ.get("PMC_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )


@dataclass(frozen=True)
class CalibrationSettings:
    fitness_time_constant: float = 42.0
    fatigue_time_constant: float = 7.0
    learning_half_life_days: float = 30.0


def calibration_settings() -> CalibrationSettings:
    """Tunables for the calibration flows, read fresh on every call."""
    return CalibrationSettings(
        fitness_time_constant=_float_env("PMC_FITNESS_TIME_CONSTANT", 42.0, 1.0, 365.0),
        fatigue_time_constant=_float_env("PMC_FATIGUE_TIME_CONSTANT", 7.0, 1.0, 365.0),
        learning_half_life_days=_float_env("PMC_LEARNING_HALF_LIFE_DAYS", 30.0, 1.0, 365.0),
    )
