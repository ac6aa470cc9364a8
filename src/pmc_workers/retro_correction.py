"""Retroactive additive correction of stored daily load state.

A trusted calibration shifts every day on/after its effective date by the
same constant. The recurrence is linear, so day-to-day differences are
unchanged: calibration moves the level of the curve, never its shape.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, timedelta

from .calibration_records import CalibrationRecord
from .errors import CalibrationError
from .load_calculator import DEFAULT_FATIGUE_DAYS, DEFAULT_FITNESS_DAYS, step
from .models import DailyLoadState

logger = logging.getLogger(__name__)


def ensure_applicable(record: CalibrationRecord) -> None:
    if not record.is_trustworthy:
        raise CalibrationError(code="low_confidence")


def applied_note(record: CalibrationRecord) -> str:
    return (
        f"Applied delta: CTL {record.fitness_delta:+.1f}, "
        f"ATL {record.fatigue_delta:+.1f}"
    )


def shift_states(
    record: CalibrationRecord,
    states: Sequence[DailyLoadState],
) -> list[DailyLoadState]:
    """Return the shifted copies of every state dated on/after the effective date.

    Fitness only moves when the record observed fitness, fatigue likewise; form
    is re-derived on every row.
    """
    affected = sorted(
        (state for state in states if state.day >= record.effective_date),
        key=lambda state: state.day,
    )
    fitness_shift = record.fitness_delta if record.observed_fitness is not None else 0.0
    fatigue_shift = record.fatigue_delta if record.observed_fatigue is not None else 0.0

    shifted: list[DailyLoadState] = []
    for state in affected:
        shifted.append(
            state.with_load(
                fitness=state.fitness + fitness_shift,
                fatigue=state.fatigue + fatigue_shift,
                source="calibration_adjusted",
            )
        )
    return shifted


def day_to_day_changes(states: Sequence[DailyLoadState]) -> list[tuple[float, float]]:
    """(fitness change, fatigue change) between consecutive days, ascending."""
    ordered = sorted(states, key=lambda state: state.day)
    return [
        (current.fitness - previous.fitness, current.fatigue - previous.fatigue)
        for previous, current in zip(ordered, ordered[1:])
    ]


def check_trend_preserved(
    before: Sequence[DailyLoadState],
    after: Sequence[DailyLoadState],
    *,
    tolerance: float = 1e-6,
) -> bool:
    before_changes = day_to_day_changes(before)
    after_changes = day_to_day_changes(after)
    if len(before_changes) != len(after_changes):
        return False
    return all(
        abs(b_fit - a_fit) <= tolerance and abs(b_fat - a_fat) <= tolerance
        for (b_fit, b_fat), (a_fit, a_fat) in zip(before_changes, after_changes)
    )


def materialize_missing_days(
    prior: DailyLoadState | None,
    effective_date: date,
    *,
    fitness_days: float = DEFAULT_FITNESS_DAYS,
    fatigue_days: float = DEFAULT_FATIGUE_DAYS,
) -> list[DailyLoadState]:
    """Rows to insert so that ``effective_date`` has a state before shifting.

    Forward-fills rest days from the nearest earlier row; with no history at
    all a single zero row is created on the effective date.
    """
    if prior is None:
        return [DailyLoadState.create(effective_date)]
    if prior.day >= effective_date:
        return []

    rows: list[DailyLoadState] = []
    current = prior
    day = prior.day + timedelta(days=1)
    while day <= effective_date:
        current = step(
            current,
            day,
            0.0,
            fitness_days=fitness_days,
            fatigue_days=fatigue_days,
        )
        rows.append(current)
        day += timedelta(days=1)
    logger.info(
        "Forward-filled %d day(s) up to %s before calibration",
        len(rows),
        effective_date.isoformat(),
    )
    return rows


def seeded_state(
    existing: DailyLoadState | None,
    fitness: float,
    fatigue: float,
    effective_date: date,
) -> DailyLoadState:
    """State for a manual seed: overwrite the day's load, keep its stress total."""
    if existing is None:
        return DailyLoadState.create(
            effective_date,
            fitness=fitness,
            fatigue=fatigue,
            source="manual_seed",
        )
    return existing.with_load(fitness=fitness, fatigue=fatigue, source="manual_seed")
