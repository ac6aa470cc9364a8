"""Range validation and sanitization for externally supplied values.

Observations come out of screenshot extraction, imports and manual entry;
anything outside these ranges is a misread, not a training fact.
"""

from __future__ import annotations

import logging
import math
import unicodedata
from collections.abc import Callable, Mapping
from datetime import date, timedelta
from typing import Any

logger = logging.getLogger(__name__)

FITNESS_RANGE = (0.0, 500.0)
FATIGUE_RANGE = (0.0, 500.0)
FORM_RANGE = (-200.0, 200.0)
STRESS_RANGE = (0.0, 1000.0)
WEEKLY_STRESS_RANGE = (0.0, 7000.0)
FTP_RANGE = (50.0, 600.0)
HEART_RATE_RANGE = (30.0, 250.0)
PACE_RANGE = (120.0, 1200.0)  # 2:00/km to 20:00/km
POWER_RANGE = (0.0, 2500.0)
DURATION_RANGE = (0.0, 86400.0)

MAX_TEXT_LENGTH = 10000
MAX_SHORT_TEXT_LENGTH = 500

# Tolerance for TSB vs CTL - ATL on rounded platform readouts.
FORM_CONSISTENCY_TOLERANCE = 5.0


class ValidationError(ValueError):
    def __init__(self, *, code: str, field: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.field = field


def validate_range(value: float, *, field: str, bounds: tuple[float, float]) -> float:
    low, high = bounds
    if not isinstance(value, (int, float)) or not math.isfinite(value) or not low <= value <= high:
        raise ValidationError(
            code="value_out_of_range",
            field=field,
            message=f"{field} value {value} is out of valid range ({low}-{high})",
        )
    return float(value)


def validate_fitness(value: float) -> float:
    return validate_range(value, field="fitness", bounds=FITNESS_RANGE)


def validate_fatigue(value: float) -> float:
    return validate_range(value, field="fatigue", bounds=FATIGUE_RANGE)


def validate_form(value: float) -> float:
    return validate_range(value, field="form", bounds=FORM_RANGE)


def validate_stress(value: float) -> float:
    return validate_range(value, field="stress", bounds=STRESS_RANGE)


def validate_weekly_stress(value: float) -> float:
    return validate_range(value, field="weekly_stress", bounds=WEEKLY_STRESS_RANGE)


def validate_ftp(value: float) -> float:
    return validate_range(value, field="ftp", bounds=FTP_RANGE)


def validate_heart_rate(value: float) -> float:
    return validate_range(value, field="heart_rate", bounds=HEART_RATE_RANGE)


def validate_pace(value: float) -> float:
    return validate_range(value, field="pace", bounds=PACE_RANGE)


def validate_power(value: float) -> float:
    return validate_range(value, field="power", bounds=POWER_RANGE)


def validate_duration(value: float) -> float:
    return validate_range(value, field="duration_seconds", bounds=DURATION_RANGE)


_WORKOUT_FIELD_CHECKS: dict[str, Callable[[float], float]] = {
    "duration_seconds": validate_duration,
    "normalized_power": validate_power,
    "ftp": validate_ftp,
    "running_ftp": validate_ftp,
    "normalized_graded_pace": validate_pace,
    "average_pace": validate_pace,
    "threshold_pace": validate_pace,
    "average_heart_rate": validate_heart_rate,
    "threshold_heart_rate": validate_heart_rate,
    "max_heart_rate": validate_heart_rate,
    "precalculated_stress": validate_stress,
}


def workout_input_issues(values: Mapping[str, Any]) -> list[tuple[str, ValidationError]]:
    """Implausible workout telemetry fields, keyed by field name. Never raises."""
    issues: list[tuple[str, ValidationError]] = []
    for name, check in _WORKOUT_FIELD_CHECKS.items():
        value = values.get(name)
        if value is None:
            continue
        try:
            check(value)
        except ValidationError as exc:
            issues.append((name, exc))
    return issues


def validate_pmc_values(
    fitness: float | None,
    fatigue: float | None,
    form: float | None,
) -> tuple[float | None, float | None, float | None]:
    """Validate a fitness/fatigue/form triple; warn when form disagrees with the pair."""
    checked_fitness = validate_fitness(fitness) if fitness is not None else None
    checked_fatigue = validate_fatigue(fatigue) if fatigue is not None else None
    checked_form = validate_form(form) if form is not None else None

    if checked_fitness is not None and checked_fatigue is not None and checked_form is not None:
        expected = checked_fitness - checked_fatigue
        if abs(checked_form - expected) > FORM_CONSISTENCY_TOLERANCE:
            logger.warning(
                "Form %.1f does not match fitness - fatigue %.1f",
                checked_form,
                expected,
            )

    return checked_fitness, checked_fatigue, checked_form


def validate_observed_stress(
    daily_stress: float | None, weekly_stress: float | None
) -> tuple[float | None, float | None]:
    checked_daily = (
        validate_range(daily_stress, field="daily_stress", bounds=STRESS_RANGE)
        if daily_stress is not None
        else None
    )
    checked_weekly = validate_weekly_stress(weekly_stress) if weekly_stress is not None else None
    return checked_daily, checked_weekly


def validate_observation_date(
    value: date,
    *,
    today: date | None = None,
    allow_future: bool = False,
) -> date:
    today = today or date.today()
    if value < today - timedelta(days=3653):
        raise ValidationError(
            code="invalid_date", field="effective_date", message="Date is too far in the past"
        )
    if not allow_future and value > today:
        raise ValidationError(
            code="invalid_date", field="effective_date", message="Date is in the future"
        )
    if value > today + timedelta(days=366):
        raise ValidationError(
            code="invalid_date", field="effective_date", message="Date is too far in the future"
        )
    return value


def sanitize_text(value: str, *, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Drop control characters (keeping newlines and tabs) and cap the length."""
    cleaned = "".join(
        ch for ch in value
        if ch in "\n\t" or unicodedata.category(ch) != "Cc"
    )
    return cleaned[:max_length]


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def finite_or_zero(value: float | None) -> float:
    """Best-effort numeric coercion: None, NaN, inf and negatives become 0."""
    if value is None:
        return 0.0
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(parsed) or parsed < 0:
        return 0.0
    return parsed
