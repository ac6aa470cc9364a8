"""Learning evidence derived from calibration observations.

Each data point pairs an externally observed daily stress value (read
directly, or inferred by inverting the load recurrence) with the stress the
engine computed for the same day. The ratio between the two is what the
scaling profile learns from.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Literal

from .load_calculator import DEFAULT_FATIGUE_DAYS, DEFAULT_FITNESS_DAYS
from .models import ActivityCategory, CalibrationObservation, WorkoutStressRecord
from .validation import ValidationError, validate_observed_stress

logger = logging.getLogger(__name__)

DerivationMethod = Literal[
    "direct",
    "derived_from_fitness",
    "derived_from_fatigue",
    "cross_validated",
    "manual",
]

IntensityBucket = Literal["recovery", "endurance", "tempo", "high_intensity"]
INTENSITY_BUCKETS: tuple[IntensityBucket, ...] = (
    "recovery",
    "endurance",
    "tempo",
    "high_intensity",
)

LEARNING_HALF_LIFE_DAYS = 30.0
MIN_LEARNING_CONFIDENCE = 0.5
DERIVED_CONFIDENCE_DISCOUNT = 0.9
MIN_CROSS_VALIDATION_AGREEMENT = 0.8


def intensity_bucket(intensity_factor: float | None) -> IntensityBucket | None:
    if intensity_factor is None or intensity_factor <= 0:
        return None
    if intensity_factor < 0.75:
        return "recovery"
    if intensity_factor < 0.90:
        return "endurance"
    if intensity_factor <= 1.05:
        return "tempo"
    return "high_intensity"


@dataclass
class TSSCalibrationDataPoint:
    effective_date: date
    computed_daily_stress: float
    confidence: float
    extracted_daily_stress: float | None = None
    extracted_weekly_stress: float | None = None
    computed_weekly_stress: float | None = None
    scaling_ratio: float | None = None
    category: ActivityCategory | None = None
    is_multi_sport: bool = False
    method: DerivationMethod = "direct"
    is_valid: bool = True
    invalid_reason: str | None = None
    calibration_record_id: str | None = None
    intensity_factor: float | None = None
    intensity_bucket: IntensityBucket | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def __post_init__(self) -> None:
        if (
            self.scaling_ratio is None
            and self.extracted_daily_stress is not None
            and self.computed_daily_stress > 0
        ):
            self.scaling_ratio = self.extracted_daily_stress / self.computed_daily_stress

    @property
    def is_usable_for_learning(self) -> bool:
        return (
            self.is_valid
            and self.scaling_ratio is not None
            and math.isfinite(self.scaling_ratio)
            and self.confidence >= MIN_LEARNING_CONFIDENCE
            and self.computed_daily_stress > 0
        )

    def age_in_days(self, today: date) -> int:
        return max(0, (today - self.effective_date).days)

    def time_weight(self, today: date, half_life_days: float = LEARNING_HALF_LIFE_DAYS) -> float:
        return 0.5 ** (self.age_in_days(today) / half_life_days)

    def learning_weight(
        self,
        today: date,
        half_life_days: float = LEARNING_HALF_LIFE_DAYS,
    ) -> float:
        return self.time_weight(today, half_life_days) * self.confidence

    def invalidate(self, reason: str) -> None:
        self.is_valid = False
        self.invalid_reason = reason

    @property
    def summary(self) -> str:
        parts = [self.effective_date.isoformat()]
        if self.extracted_daily_stress is not None:
            parts.append(f"External: {int(self.extracted_daily_stress)}")
        parts.append(f"Computed: {int(self.computed_daily_stress)}")
        if self.scaling_ratio is not None:
            parts.append(f"({(self.scaling_ratio - 1) * 100:+.0f}%)")
        return " | ".join(parts)


@dataclass(frozen=True)
class DayContext:
    """Activity mix of the day a data point describes."""

    category: ActivityCategory | None = None
    is_multi_sport: bool = False

    @property
    def learning_category(self) -> ActivityCategory | None:
        # Multi-sport days never feed a per-category factor.
        return None if self.is_multi_sport else self.category


def dominant_category(workouts: Sequence[WorkoutStressRecord]) -> DayContext:
    """Category holding the largest share of the day's stress."""
    totals: dict[ActivityCategory, float] = {}
    for workout in workouts:
        totals[workout.category] = totals.get(workout.category, 0.0) + max(0.0, workout.stress)
    if not totals:
        return DayContext()
    category = max(totals, key=lambda key: totals[key])
    return DayContext(category=category, is_multi_sport=len(totals) > 1)


def derive_stress(today_value: float, yesterday_value: float, time_constant: float) -> float:
    """Invert one step of the load recurrence (result may be negative)."""
    return time_constant * (today_value - yesterday_value) + yesterday_value


def agreement(first: float, second: float) -> float:
    average = (first + second) / 2
    if average <= 0:
        return 0.0
    return 1 - abs(first - second) / average


def direct_point(
    effective_date: date,
    extracted_stress: float,
    computed_stress: float,
    confidence: float,
    *,
    context: DayContext = DayContext(),
    calibration_record_id: str | None = None,
) -> TSSCalibrationDataPoint:
    return TSSCalibrationDataPoint(
        effective_date=effective_date,
        extracted_daily_stress=extracted_stress,
        computed_daily_stress=computed_stress,
        confidence=confidence,
        category=context.learning_category,
        is_multi_sport=context.is_multi_sport,
        method="direct",
        calibration_record_id=calibration_record_id,
    )


def weekly_point(
    effective_date: date,
    extracted_weekly_stress: float,
    computed_weekly_stress: float,
    confidence: float,
    *,
    context: DayContext = DayContext(),
    calibration_record_id: str | None = None,
) -> TSSCalibrationDataPoint | None:
    """Direct point from weekly totals, stored as the daily averages of the week."""
    if extracted_weekly_stress <= 0 or computed_weekly_stress <= 0:
        return None
    return TSSCalibrationDataPoint(
        effective_date=effective_date,
        extracted_daily_stress=extracted_weekly_stress / 7,
        computed_daily_stress=computed_weekly_stress / 7,
        extracted_weekly_stress=extracted_weekly_stress,
        computed_weekly_stress=computed_weekly_stress,
        confidence=confidence,
        category=context.learning_category,
        is_multi_sport=context.is_multi_sport,
        method="direct",
        calibration_record_id=calibration_record_id,
    )


def derive_stress_from_fitness(
    effective_date: date,
    today_fitness: float,
    yesterday_fitness: float,
    computed_stress: float,
    confidence: float,
    *,
    time_constant: float = DEFAULT_FITNESS_DAYS,
    context: DayContext = DayContext(),
    calibration_record_id: str | None = None,
) -> TSSCalibrationDataPoint:
    derived = derive_stress(today_fitness, yesterday_fitness, time_constant)
    return TSSCalibrationDataPoint(
        effective_date=effective_date,
        extracted_daily_stress=max(0.0, derived),
        computed_daily_stress=computed_stress,
        confidence=confidence * DERIVED_CONFIDENCE_DISCOUNT,
        category=context.learning_category,
        is_multi_sport=context.is_multi_sport,
        method="derived_from_fitness",
        calibration_record_id=calibration_record_id,
    )


def derive_stress_from_fatigue(
    effective_date: date,
    today_fatigue: float,
    yesterday_fatigue: float,
    computed_stress: float,
    confidence: float,
    *,
    time_constant: float = DEFAULT_FATIGUE_DAYS,
    context: DayContext = DayContext(),
    calibration_record_id: str | None = None,
) -> TSSCalibrationDataPoint:
    derived = derive_stress(today_fatigue, yesterday_fatigue, time_constant)
    return TSSCalibrationDataPoint(
        effective_date=effective_date,
        extracted_daily_stress=max(0.0, derived),
        computed_daily_stress=computed_stress,
        confidence=confidence * DERIVED_CONFIDENCE_DISCOUNT,
        category=context.learning_category,
        is_multi_sport=context.is_multi_sport,
        method="derived_from_fatigue",
        calibration_record_id=calibration_record_id,
    )


def cross_validated_point(
    effective_date: date,
    *,
    today_fitness: float,
    yesterday_fitness: float,
    today_fatigue: float,
    yesterday_fatigue: float,
    computed_stress: float,
    confidence: float,
    fitness_days: float = DEFAULT_FITNESS_DAYS,
    fatigue_days: float = DEFAULT_FATIGUE_DAYS,
    context: DayContext = DayContext(),
    calibration_record_id: str | None = None,
) -> TSSCalibrationDataPoint | None:
    """Average of the fitness- and fatigue-derived estimates, or None when they disagree."""
    from_fitness = derive_stress(today_fitness, yesterday_fitness, fitness_days)
    from_fatigue = derive_stress(today_fatigue, yesterday_fatigue, fatigue_days)
    if from_fitness < 0 or from_fatigue < 0:
        return None

    match = agreement(from_fitness, from_fatigue)
    if match < MIN_CROSS_VALIDATION_AGREEMENT:
        logger.debug(
            "Rejected cross-validation on %s: fitness=%.1f fatigue=%.1f agreement=%.2f",
            effective_date.isoformat(),
            from_fitness,
            from_fatigue,
            match,
        )
        return None

    return TSSCalibrationDataPoint(
        effective_date=effective_date,
        extracted_daily_stress=(from_fitness + from_fatigue) / 2,
        computed_daily_stress=computed_stress,
        confidence=confidence * min(1.0, match),
        category=context.learning_category,
        is_multi_sport=context.is_multi_sport,
        method="cross_validated",
        calibration_record_id=calibration_record_id,
    )


def workout_comparison_point(
    workout: WorkoutStressRecord,
    external_stress: float,
    match_confidence: float,
    *,
    external_intensity_factor: float | None = None,
) -> TSSCalibrationDataPoint:
    """Per-workout comparison against an imported score for the same session."""
    intensity = external_intensity_factor or workout.intensity_factor
    computed = workout.original_stress if workout.original_stress is not None else workout.stress
    return TSSCalibrationDataPoint(
        effective_date=workout.started_on,
        extracted_daily_stress=external_stress,
        computed_daily_stress=computed,
        confidence=match_confidence,
        category=workout.category,
        is_multi_sport=False,
        method="direct",
        intensity_factor=intensity if intensity and intensity > 0 else None,
        intensity_bucket=intensity_bucket(intensity),
    )


def _has_usable_inputs(
    observation: CalibrationObservation,
    computed_daily_stress: float,
    computed_weekly_stress: float | None,
    yesterday: tuple[float, float] | None,
) -> bool:
    values = (
        observation.daily_stress,
        observation.weekly_stress,
        observation.fitness,
        observation.fatigue,
        computed_daily_stress,
        computed_weekly_stress,
        *(yesterday or ()),
    )
    if any(value is not None and not math.isfinite(value) for value in values):
        return False
    try:
        validate_observed_stress(observation.daily_stress, observation.weekly_stress)
    except ValidationError:
        return False
    return True


def create_data_points(
    observation: CalibrationObservation,
    *,
    effective_date: date,
    computed_daily_stress: float,
    computed_weekly_stress: float | None = None,
    yesterday: tuple[float, float] | None = None,
    context: DayContext = DayContext(),
    calibration_record_id: str | None = None,
    fitness_days: float = DEFAULT_FITNESS_DAYS,
    fatigue_days: float = DEFAULT_FATIGUE_DAYS,
) -> list[TSSCalibrationDataPoint]:
    """Turn one observation into learning evidence.

    Order: direct daily stress, weekly totals, then (with yesterday's
    ``(fitness, fatigue)``) a cross-validated derivation falling back to the
    fitness-derived estimate.
    """
    if not _has_usable_inputs(
        observation, computed_daily_stress, computed_weekly_stress, yesterday
    ):
        logger.warning(
            "Skipping data points for %s: non-finite or out-of-range stress input",
            effective_date.isoformat(),
        )
        return []

    confidence = observation.confidence

    if observation.daily_stress is not None and observation.daily_stress > 0:
        point = direct_point(
            effective_date,
            observation.daily_stress,
            computed_daily_stress,
            confidence,
            context=context,
            calibration_record_id=calibration_record_id,
        )
        logger.info(
            "Created direct stress data point: extracted=%d computed=%d",
            int(observation.daily_stress),
            int(computed_daily_stress),
        )
        return [point]

    if observation.weekly_stress is not None and computed_weekly_stress is not None:
        point = weekly_point(
            effective_date,
            observation.weekly_stress,
            computed_weekly_stress,
            confidence,
            context=context,
            calibration_record_id=calibration_record_id,
        )
        if point is not None:
            logger.info(
                "Created weekly stress data point: extracted=%d computed=%d",
                int(observation.weekly_stress),
                int(computed_weekly_stress),
            )
            return [point]

    if observation.fitness is None or observation.fatigue is None or yesterday is None:
        return []

    yesterday_fitness, yesterday_fatigue = yesterday
    crossed = cross_validated_point(
        effective_date,
        today_fitness=observation.fitness,
        yesterday_fitness=yesterday_fitness,
        today_fatigue=observation.fatigue,
        yesterday_fatigue=yesterday_fatigue,
        computed_stress=computed_daily_stress,
        confidence=confidence,
        fitness_days=fitness_days,
        fatigue_days=fatigue_days,
        context=context,
        calibration_record_id=calibration_record_id,
    )
    if crossed is not None:
        logger.info(
            "Created cross-validated stress data point: derived=%d computed=%d",
            int(crossed.extracted_daily_stress or 0),
            int(computed_daily_stress),
        )
        return [crossed]

    fallback = derive_stress_from_fitness(
        effective_date,
        observation.fitness,
        yesterday_fitness,
        computed_daily_stress,
        confidence,
        time_constant=fitness_days,
        context=context,
        calibration_record_id=calibration_record_id,
    )
    logger.info(
        "Created fitness-derived stress data point: derived=%d computed=%d",
        int(fallback.extracted_daily_stress or 0),
        int(computed_daily_stress),
    )
    return [fallback]
