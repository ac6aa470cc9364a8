"""Performance Management Chart recurrence (fitness / fatigue / form).

fitness_t = fitness_{t-1} + (stress_t - fitness_{t-1}) / tau_fitness
fatigue_t = fatigue_{t-1} + (stress_t - fatigue_{t-1}) / tau_fatigue
form_t    = fitness_t - fatigue_t

One step per calendar day. Days without an entry in the stress mapping are
rest days (stress 0); nothing here invents workouts.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Literal

from .models import DailyLoadState, StateSource

DEFAULT_FITNESS_DAYS = 42.0
DEFAULT_FATIGUE_DAYS = 7.0

AcwrStatus = Literal["optimal", "undertraining", "caution", "high_risk", "very_low", "unknown"]
FormStatus = Literal["very_fresh", "fresh", "neutral", "tired", "very_tired"]


def next_fitness(
    previous_fitness: float,
    stress: float,
    time_constant: float = DEFAULT_FITNESS_DAYS,
) -> float:
    return previous_fitness + (stress - previous_fitness) / time_constant


def next_fatigue(
    previous_fatigue: float,
    stress: float,
    time_constant: float = DEFAULT_FATIGUE_DAYS,
) -> float:
    return previous_fatigue + (stress - previous_fatigue) / time_constant


def form_of(fitness: float, fatigue: float) -> float:
    return fitness - fatigue


def step(
    previous: DailyLoadState | None,
    day: date,
    stress: float,
    *,
    fitness_days: float = DEFAULT_FITNESS_DAYS,
    fatigue_days: float = DEFAULT_FATIGUE_DAYS,
    source: StateSource = "computed",
) -> DailyLoadState:
    """Advance one day from ``previous`` (zero state when None)."""
    prev_fitness = previous.fitness if previous is not None else 0.0
    prev_fatigue = previous.fatigue if previous is not None else 0.0
    fitness = next_fitness(prev_fitness, stress, fitness_days)
    fatigue = next_fatigue(prev_fatigue, stress, fatigue_days)
    return DailyLoadState.create(
        day,
        total_stress=stress,
        fitness=fitness,
        fatigue=fatigue,
        source=source,
    )


def _days(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def compute_series(
    daily_stress: Mapping[date, float],
    start: date,
    end: date,
    *,
    initial_fitness: float = 0.0,
    initial_fatigue: float = 0.0,
    fitness_days: float = DEFAULT_FITNESS_DAYS,
    fatigue_days: float = DEFAULT_FATIGUE_DAYS,
    pinned: Mapping[date, DailyLoadState] | None = None,
) -> list[DailyLoadState]:
    """Compute one state per day in ``[start, end]``.

    ``initial_fitness``/``initial_fatigue`` are the values on the day before
    ``start``. A ``pinned`` day keeps its given state and the series carries on
    from it.
    """
    results: list[DailyLoadState] = []
    fitness = initial_fitness
    fatigue = initial_fatigue
    pinned = pinned or {}
    for day in _days(start, end):
        if day in pinned:
            state = pinned[day]
            fitness, fatigue = state.fitness, state.fatigue
            results.append(state)
            continue
        stress = daily_stress.get(day, 0.0)
        fitness = next_fitness(fitness, stress, fitness_days)
        fatigue = next_fatigue(fatigue, stress, fatigue_days)
        results.append(
            DailyLoadState.create(day, total_stress=stress, fitness=fitness, fatigue=fatigue)
        )
    return results


def sum_daily_stress(workouts: Iterable[tuple[date, float]]) -> dict[date, float]:
    """Group ``(day, stress)`` pairs into per-day totals."""
    totals: dict[date, float] = {}
    for day, stress in workouts:
        totals[day] = totals.get(day, 0.0) + stress
    return totals


@dataclass(frozen=True)
class LoadProjection:
    day: date
    planned_stress: float
    fitness: float
    fatigue: float
    form: float


def project_series(
    current_fitness: float,
    current_fatigue: float,
    planned_stress: Sequence[float],
    *,
    start: date,
    fitness_days: float = DEFAULT_FITNESS_DAYS,
    fatigue_days: float = DEFAULT_FATIGUE_DAYS,
) -> list[LoadProjection]:
    """Project fitness/fatigue forward; ``start`` is the day of the first planned value."""
    results: list[LoadProjection] = []
    fitness = current_fitness
    fatigue = current_fatigue
    day = start
    for stress in planned_stress:
        fitness = next_fitness(fitness, stress, fitness_days)
        fatigue = next_fatigue(fatigue, stress, fatigue_days)
        results.append(
            LoadProjection(
                day=day,
                planned_stress=stress,
                fitness=fitness,
                fatigue=fatigue,
                form=form_of(fitness, fatigue),
            )
        )
        day += timedelta(days=1)
    return results


def days_to_target_form(
    current_fitness: float,
    current_fatigue: float,
    target_form: float,
    *,
    max_days: int = 30,
    fitness_days: float = DEFAULT_FITNESS_DAYS,
    fatigue_days: float = DEFAULT_FATIGUE_DAYS,
) -> int | None:
    """Rest days needed until form reaches ``target_form``; None if not within ``max_days``."""
    fitness = current_fitness
    fatigue = current_fatigue
    for day in range(1, max_days + 1):
        fitness = next_fitness(fitness, 0.0, fitness_days)
        fatigue = next_fatigue(fatigue, 0.0, fatigue_days)
        if form_of(fitness, fatigue) >= target_form:
            return day
    return None


def acute_chronic_ratio(fitness: float, fatigue: float) -> float | None:
    if fitness <= 0:
        return None
    return fatigue / fitness


def acwr_status(ratio: float | None) -> AcwrStatus:
    if ratio is None:
        return "unknown"
    if 0.8 <= ratio <= 1.3:
        return "optimal"
    if 0.5 <= ratio < 0.8:
        return "undertraining"
    if 1.3 < ratio < 1.5:
        return "caution"
    if ratio >= 1.5:
        return "high_risk"
    return "very_low"


def training_monotony(daily_stress: Sequence[float]) -> float | None:
    """Mean over standard deviation of the last seven days."""
    if len(daily_stress) < 7:
        return None
    week = list(daily_stress[-7:])
    mean = sum(week) / 7
    if mean <= 0:
        return None
    variance = sum((value - mean) ** 2 for value in week) / 7
    std_dev = math.sqrt(variance)
    if std_dev == 0:
        return None
    return mean / std_dev


def training_strain(daily_stress: Sequence[float]) -> float | None:
    monotony = training_monotony(daily_stress)
    if monotony is None:
        return None
    return sum(daily_stress[-7:]) * monotony


def form_status(form: float) -> FormStatus:
    if form >= 25:
        return "very_fresh"
    if form >= 10:
        return "fresh"
    if form >= -10:
        return "neutral"
    if form >= -25:
        return "tired"
    return "very_tired"
