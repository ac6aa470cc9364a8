"""Shared record types and external input contracts.

Daily state and workout records are plain dataclasses; inputs handed over by
the extraction, import and manual-entry collaborators are pydantic models so
they are normalized once at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .validation import (
    MAX_TEXT_LENGTH,
    clamp,
    finite_or_zero,
    sanitize_text,
    validate_fatigue,
    validate_fitness,
)

ActivityCategory = Literal["run", "bike", "swim", "strength", "other"]
ACTIVITY_CATEGORIES: tuple[ActivityCategory, ...] = ("run", "bike", "swim", "strength", "other")

# Categories with their own learned scaling factor.
SCALED_CATEGORIES: tuple[ActivityCategory, ...] = ("bike", "run", "swim")

StressMethod = Literal[
    "precalculated",
    "power",
    "running_power",
    "pace",
    "swim",
    "heart_rate",
    "estimated",
]

STRESS_METHOD_QUALITY: dict[StressMethod, int] = {
    "precalculated": 4,
    "power": 3,
    "running_power": 3,
    "pace": 2,
    "swim": 2,
    "heart_rate": 1,
    "estimated": 0,
}

StateSource = Literal["computed", "manual_seed", "calibration_adjusted"]
CalibrationSource = Literal["screenshot", "manual", "initial_seed", "api"]


def stress_method_quality(method: StressMethod) -> int:
    return STRESS_METHOD_QUALITY[method]


@dataclass(frozen=True)
class DailyLoadState:
    day: date
    total_stress: float
    fitness: float
    fatigue: float
    form: float
    source: StateSource = "computed"

    @classmethod
    def create(
        cls,
        day: date,
        *,
        total_stress: float = 0.0,
        fitness: float = 0.0,
        fatigue: float = 0.0,
        source: StateSource = "computed",
    ) -> "DailyLoadState":
        return cls(
            day=day,
            total_stress=total_stress,
            fitness=fitness,
            fatigue=fatigue,
            form=fitness - fatigue,
            source=source,
        )

    def with_load(
        self,
        *,
        fitness: float,
        fatigue: float,
        source: StateSource | None = None,
    ) -> "DailyLoadState":
        """Return a copy with new fitness/fatigue; form is always re-derived."""
        return replace(
            self,
            fitness=fitness,
            fatigue=fatigue,
            form=fitness - fatigue,
            source=source or self.source,
        )

    def as_triple(self) -> dict[str, float]:
        return {"fitness": self.fitness, "fatigue": self.fatigue, "form": self.form}


@dataclass(frozen=True)
class WorkoutStressRecord:
    workout_id: str
    started_on: date
    duration_seconds: float
    category: ActivityCategory
    stress: float
    intensity_factor: float
    method: StressMethod
    distance_meters: float | None = None
    original_stress: float | None = None
    applied_scaling_factor: float | None = None

    @property
    def quality(self) -> int:
        return stress_method_quality(self.method)


class CalibrationObservation(BaseModel):
    """One reading of an external platform's PMC panel."""

    effective_date: date | None = None
    fitness: float | None = None
    fatigue: float | None = None
    form: float | None = None
    daily_stress: float | None = None
    weekly_stress: float | None = None
    confidence: float = 0.0
    raw_text: str = ""

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, value: float) -> float:
        # NaN and inf count as no confidence
        return clamp(finite_or_zero(value), 0.0, 1.0)

    @field_validator("raw_text")
    @classmethod
    def clean_raw_text(cls, value: str) -> str:
        return sanitize_text(value, max_length=MAX_TEXT_LENGTH)

    @property
    def has_load_values(self) -> bool:
        return self.fitness is not None or self.fatigue is not None or self.form is not None

    @property
    def is_valid(self) -> bool:
        return self.confidence >= 0.5 and self.has_load_values

    @property
    def has_learning_data(self) -> bool:
        return (
            self.daily_stress is not None
            or self.weekly_stress is not None
            or (self.fitness is not None and self.fatigue is not None)
        )

    def describe(self) -> str:
        parts: list[str] = []
        if self.fitness is not None:
            parts.append(f"CTL: {int(self.fitness)}")
        if self.fatigue is not None:
            parts.append(f"ATL: {int(self.fatigue)}")
        if self.form is not None:
            parts.append(f"TSB: {int(self.form)}")
        if self.daily_stress is not None:
            parts.append(f"TSS: {int(self.daily_stress)}")
        return ", ".join(parts) if parts else "No values found"


class WorkoutTelemetry(BaseModel):
    """Raw per-workout numbers handed over by wearable sync or CSV import."""

    workout_id: str | None = None
    started_on: date
    duration_seconds: float
    category: ActivityCategory = "other"
    distance_meters: float | None = None

    normalized_power: float | None = None
    power_samples: list[float] = Field(default_factory=list)
    ftp: float | None = None
    running_ftp: float | None = None

    normalized_graded_pace: float | None = None
    average_pace: float | None = None
    threshold_pace: float | None = None
    total_ascent: float | None = None
    total_descent: float | None = None

    average_heart_rate: float | None = None
    threshold_heart_rate: float | None = None
    max_heart_rate: float | None = None
    heart_rate_samples: list[float] = Field(default_factory=list)

    swim_pace_per_100m: float | None = None
    swim_threshold_pace_per_100m: float | None = None

    precalculated_stress: float | None = None
    precalculated_intensity_factor: float | None = None

    perceived_intensity: float | None = None


class ManualSeed(BaseModel):
    fitness: float
    fatigue: float
    effective_date: date

    @field_validator("fitness")
    @classmethod
    def check_fitness(cls, value: float) -> float:
        return validate_fitness(value)

    @field_validator("fatigue")
    @classmethod
    def check_fatigue(cls, value: float) -> float:
        return validate_fatigue(value)


class LearnJobPayload(BaseModel):
    calibration_record_id: str = Field(min_length=1)
    observation: CalibrationObservation = Field(default_factory=CalibrationObservation)


class RecomputeJobPayload(BaseModel):
    """Day range to rebuild; a missing ``start`` means the whole workout history."""

    start: date | None = None
    end: date | None = None
