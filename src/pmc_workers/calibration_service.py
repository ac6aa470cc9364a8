"""Calibration and learning flows over a PostgreSQL connection.

Recording a calibration and learning from it are separate steps with
separate failure channels: a record is committed before any learning runs,
and a learning failure is reported through ``LearningOutcome`` instead of
being raised to the recording caller.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Literal

import psycopg

from . import store
from .calibration_datapoints import (
    TSSCalibrationDataPoint,
    create_data_points,
    dominant_category,
    workout_comparison_point,
)
from .calibration_records import (
    CalibrationCheck,
    CalibrationRecord,
    build_calibration_record,
    check_calibration_needed,
    initial_seed_record,
)
from .config import CalibrationSettings, calibration_settings
from .errors import CalibrationError
from .load_calculator import compute_series
from .logging import calibration_context
from .metrics import record_calibration_applied, record_calibration_recorded, record_learning_run
from .models import (
    CalibrationObservation,
    CalibrationSource,
    DailyLoadState,
    LearnJobPayload,
    ManualSeed,
    WorkoutStressRecord,
    WorkoutTelemetry,
)
from .retro_correction import (
    applied_note,
    ensure_applicable,
    materialize_missing_days,
    seeded_state,
    shift_states,
)
from .scaling_profile import (
    LearningStatistics,
    ScalingProfile,
    learning_statistics,
    recalculate_profile,
    reset_profile,
)
from .stress_score import apply_scaling, best_stress_score
from .validation import (
    ValidationError,
    validate_observation_date,
    validate_observed_stress,
    validate_pmc_values,
    validate_stress,
    workout_input_issues,
)

logger = logging.getLogger(__name__)

LEARN_JOB_TYPE = "calibration.learn"
RECOMPUTE_JOB_TYPE = "load.recompute"

LearnMode = Literal["inline", "deferred", "skip"]


@dataclass(frozen=True)
class LearningOutcome:
    record_id: str | None
    data_points_created: int = 0
    skipped_reason: str | None = None
    error: CalibrationError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CalibrationResult:
    record: CalibrationRecord
    learning: LearningOutcome | None = None
    learning_job_id: int | None = None


def _usable_observation(observation: CalibrationObservation) -> CalibrationObservation:
    if not observation.is_valid:
        raise CalibrationError(code="no_usable_values")
    try:
        validate_pmc_values(observation.fitness, observation.fatigue, observation.form)
        validate_observed_stress(observation.daily_stress, observation.weekly_stress)
    except ValidationError as exc:
        raise CalibrationError(code="no_usable_values", message=str(exc), field=exc.field) from exc
    return observation


def _effective_date(observation: CalibrationObservation, today: date | None) -> date:
    today = today or date.today()
    if observation.effective_date is None:
        return today
    try:
        return validate_observation_date(observation.effective_date, today=today)
    except ValidationError as exc:
        raise CalibrationError(code=exc.code, message=str(exc), field=exc.field) from exc


async def record_calibration(
    conn: psycopg.AsyncConnection[Any],
    observation: CalibrationObservation,
    *,
    source: CalibrationSource = "screenshot",
    today: date | None = None,
) -> CalibrationRecord:
    """Compare an observation with computed state and persist the record.

    Raises ``CalibrationError`` (``no_usable_values``) for observations that
    carry nothing usable and (``persistence_failed``) when the write fails.
    """
    _usable_observation(observation)
    effective_date = _effective_date(observation, today)

    try:
        async with conn.transaction():
            computed = await store.fetch_state_on_or_before(conn, effective_date)
            record = build_calibration_record(
                observation.model_copy(update={"effective_date": effective_date}),
                computed,
                source=source,
            )
            await store.insert_calibration_record(conn, record)
    except psycopg.Error as exc:
        raise CalibrationError(code="persistence_failed", message=str(exc)) from exc

    record_calibration_recorded()
    logger.info(
        "Recorded calibration %s for %s (%s, needs_calibration=%s)",
        record.id,
        record.effective_date.isoformat(),
        record.delta_summary or "no deltas",
        record.needs_calibration,
        extra=calibration_context(record_id=record.id, effective_date=record.effective_date),
    )
    return record


async def _yesterday_values(
    conn: psycopg.AsyncConnection[Any], day: date
) -> tuple[float, float] | None:
    """Previous day's (fitness, fatigue): an observed calibration wins over stored state."""
    previous = day - timedelta(days=1)
    calibration = await store.fetch_calibration_on(conn, previous)
    if (
        calibration is not None
        and calibration.observed_fitness is not None
        and calibration.observed_fatigue is not None
    ):
        return calibration.observed_fitness, calibration.observed_fatigue
    state = await store.fetch_state(conn, previous)
    if state is not None:
        return state.fitness, state.fatigue
    return None


def _unscaled_total(workouts: Sequence[WorkoutStressRecord]) -> float:
    return sum(
        w.original_stress if w.original_stress is not None else w.stress for w in workouts
    )


async def _relearn(
    conn: psycopg.AsyncConnection[Any],
    profile: ScalingProfile,
    today: date,
    settings: CalibrationSettings,
) -> ScalingProfile:
    points = await store.fetch_data_points(conn)
    recalculate_profile(profile, points, today, half_life_days=settings.learning_half_life_days)
    await store.save_scaling_profile(conn, profile)
    return profile


async def learn_from_calibration(
    conn: psycopg.AsyncConnection[Any],
    observation: CalibrationObservation,
    record: CalibrationRecord,
    *,
    today: date | None = None,
    settings: CalibrationSettings | None = None,
) -> LearningOutcome:
    """Derive data points from an observation and re-learn the scaling profile.

    Runs in one transaction with the profile row locked. Raises on failure.
    """
    settings = settings or calibration_settings()
    today = today or date.today()
    day = record.effective_date

    async with conn.transaction():
        profile = await store.load_scaling_profile(conn, for_update=True)
        if not profile.learning_enabled:
            logger.info("Learning disabled, skipping calibration %s", record.id)
            return LearningOutcome(record_id=record.id, skipped_reason="learning_disabled")
        if not observation.has_learning_data:
            return LearningOutcome(record_id=record.id, skipped_reason="no_learning_data")

        workouts = await store.fetch_workouts_between(conn, day, day)
        computed_weekly = None
        if observation.weekly_stress is not None:
            week = await store.fetch_workouts_between(conn, day - timedelta(days=6), day)
            computed_weekly = _unscaled_total(week)
        yesterday = None
        if observation.fitness is not None and observation.fatigue is not None:
            yesterday = await _yesterday_values(conn, day)

        points = create_data_points(
            observation,
            effective_date=day,
            computed_daily_stress=_unscaled_total(workouts),
            computed_weekly_stress=computed_weekly,
            yesterday=yesterday,
            context=dominant_category(workouts),
            calibration_record_id=record.id,
            fitness_days=settings.fitness_time_constant,
            fatigue_days=settings.fatigue_time_constant,
        )
        await store.insert_data_points(conn, points)
        await _relearn(conn, profile, today, settings)

    logger.info(
        "Processed calibration %s: %d data point(s), factor=%.3f confidence=%.0f%%",
        record.id,
        len(points),
        profile.global_factor,
        profile.global_confidence * 100,
    )
    return LearningOutcome(record_id=record.id, data_points_created=len(points))


async def run_learning_step(
    conn: psycopg.AsyncConnection[Any],
    observation: CalibrationObservation,
    record: CalibrationRecord,
    *,
    today: date | None = None,
    settings: CalibrationSettings | None = None,
) -> LearningOutcome:
    """``learn_from_calibration`` with its failures contained and reported."""
    try:
        outcome = await learn_from_calibration(
            conn, observation, record, today=today, settings=settings
        )
    except Exception as exc:
        logger.exception(
            "Learning failed for calibration %s",
            record.id,
            extra=calibration_context(record_id=record.id, effective_date=record.effective_date),
        )
        record_learning_run(success=False)
        error = (
            exc
            if isinstance(exc, CalibrationError)
            else CalibrationError(code="learning_failed", message=str(exc))
        )
        return LearningOutcome(record_id=record.id, error=error)

    record_learning_run(success=True)
    return outcome


def learning_job_payload(
    observation: CalibrationObservation, record: CalibrationRecord
) -> dict[str, Any]:
    return LearnJobPayload(
        calibration_record_id=record.id, observation=observation
    ).model_dump(mode="json")


async def enqueue_learning(
    conn: psycopg.AsyncConnection[Any],
    observation: CalibrationObservation,
    record: CalibrationRecord,
) -> int | None:
    """Hand learning to the worker; a failed enqueue never fails the caller."""
    try:
        async with conn.transaction():
            return await store.enqueue_job(
                conn, LEARN_JOB_TYPE, learning_job_payload(observation, record)
            )
    except psycopg.Error:
        logger.exception("Failed to enqueue learning for calibration %s", record.id)
        record_learning_run(success=False)
        return None


async def process_observation(
    conn: psycopg.AsyncConnection[Any],
    observation: CalibrationObservation,
    *,
    source: CalibrationSource = "screenshot",
    learn: LearnMode = "inline",
    today: date | None = None,
    settings: CalibrationSettings | None = None,
) -> CalibrationResult:
    """Record an observation, then learn from it inline or through a job."""
    record = await record_calibration(conn, observation, source=source, today=today)
    learning_observation = observation.model_copy(update={"effective_date": record.effective_date})

    if learn == "skip" or not observation.has_learning_data:
        return CalibrationResult(record=record)
    if learn == "deferred":
        job_id = await enqueue_learning(conn, learning_observation, record)
        return CalibrationResult(record=record, learning_job_id=job_id)

    outcome = await run_learning_step(
        conn, learning_observation, record, today=today, settings=settings
    )
    return CalibrationResult(record=record, learning=outcome)


async def apply_calibration(
    conn: psycopg.AsyncConnection[Any],
    record_id: str,
    *,
    settings: CalibrationSettings | None = None,
) -> CalibrationRecord:
    """Shift stored state from the record's effective date onwards.

    Refuses untrusted records (``low_confidence``). The whole range is shifted
    in one transaction with every touched row locked.
    """
    settings = settings or calibration_settings()
    try:
        async with conn.transaction():
            record = await store.fetch_calibration_record(conn, record_id, for_update=True)
            if record is None:
                raise CalibrationError(code="record_not_found")
            ensure_applicable(record)
            if record.applied:
                logger.info("Calibration %s already applied", record.id)
                return record

            if await store.fetch_state(conn, record.effective_date) is None:
                prior = await store.fetch_state_on_or_before(conn, record.effective_date)
                await store.upsert_states(
                    conn,
                    materialize_missing_days(
                        prior,
                        record.effective_date,
                        fitness_days=settings.fitness_time_constant,
                        fatigue_days=settings.fatigue_time_constant,
                    ),
                )

            states = await store.fetch_states_from(conn, record.effective_date, for_update=True)
            shifted = shift_states(record, states)
            await store.upsert_states(conn, shifted)
            record.mark_applied(applied_note(record))
            await store.mark_record_applied(conn, record)
    except psycopg.Error as exc:
        raise CalibrationError(code="persistence_failed", message=str(exc)) from exc

    record_calibration_applied()
    logger.info(
        "Applied calibration %s to %d day(s): %s",
        record.id,
        len(shifted),
        record.note,
        extra=calibration_context(record_id=record.id, effective_date=record.effective_date),
    )
    return record


async def create_initial_seed(
    conn: psycopg.AsyncConnection[Any], seed: ManualSeed
) -> CalibrationRecord:
    """Set the seed day's load directly and keep an applied audit record of it."""
    record = initial_seed_record(seed.fitness, seed.fatigue, seed.effective_date)
    try:
        async with conn.transaction():
            existing = await store.fetch_state(conn, seed.effective_date)
            state = seeded_state(existing, seed.fitness, seed.fatigue, seed.effective_date)
            await store.upsert_states(conn, [state])
            await store.insert_calibration_record(conn, record)
    except psycopg.Error as exc:
        raise CalibrationError(code="persistence_failed", message=str(exc)) from exc

    logger.info(
        "Seeded load on %s: fitness=%.1f fatigue=%.1f",
        seed.effective_date.isoformat(),
        seed.fitness,
        seed.fatigue,
    )
    return record


async def record_workout(
    conn: psycopg.AsyncConnection[Any],
    telemetry: WorkoutTelemetry,
    *,
    today: date | None = None,
    settings: CalibrationSettings | None = None,
) -> WorkoutStressRecord:
    """Score a workout, pre-scaled by the learned factor for its category.

    Load state is rebuilt from the workout's day onward in the same transaction.
    """
    for name, issue in workout_input_issues(telemetry.model_dump()):
        logger.warning("Workout %s has implausible %s: %s", telemetry.workout_id, name, issue)
    today = today or date.today()
    result = best_stress_score(telemetry)

    async with conn.transaction():
        profile = await store.load_scaling_profile(conn)
        factor = profile.scaling_factor(telemetry.category)
        if factor != 1.0:
            result = apply_scaling(result, factor)

        record = WorkoutStressRecord(
            workout_id=telemetry.workout_id or str(uuid.uuid4()),
            started_on=telemetry.started_on,
            duration_seconds=telemetry.duration_seconds,
            category=telemetry.category,
            stress=result.stress,
            intensity_factor=result.intensity_factor,
            method=result.method,
            distance_meters=telemetry.distance_meters,
            original_stress=result.original_stress,
            applied_scaling_factor=result.applied_scaling_factor,
        )
        await store.upsert_workout(conn, record)
        await recompute_daily_states(
            conn, record.started_on, max(record.started_on, today), settings=settings
        )

    logger.debug(
        "Scored workout %s: stress=%.1f method=%s factor=%.3f",
        record.workout_id,
        record.stress,
        record.method,
        factor,
    )
    return record


async def record_workout_comparison(
    conn: psycopg.AsyncConnection[Any],
    workout_id: str,
    external_stress: float,
    match_confidence: float,
    *,
    external_intensity_factor: float | None = None,
    today: date | None = None,
    settings: CalibrationSettings | None = None,
) -> LearningOutcome:
    """Learn from an externally scored copy of one stored workout."""
    try:
        validate_stress(external_stress)
    except ValidationError as exc:
        raise CalibrationError(code="no_usable_values", message=str(exc), field=exc.field) from exc
    settings = settings or calibration_settings()
    today = today or date.today()
    async with conn.transaction():
        profile = await store.load_scaling_profile(conn, for_update=True)
        if not profile.learning_enabled:
            return LearningOutcome(record_id=None, skipped_reason="learning_disabled")
        workout = await store.fetch_workout(conn, workout_id)
        if workout is None:
            raise CalibrationError(code="record_not_found", message=f"Unknown workout {workout_id}")
        point = workout_comparison_point(
            workout,
            external_stress,
            match_confidence,
            external_intensity_factor=external_intensity_factor,
        )
        await store.insert_data_points(conn, [point])
        await _relearn(conn, profile, today, settings)

    logger.info(
        "Recorded workout comparison for %s: external=%.0f computed=%.0f",
        workout_id,
        external_stress,
        point.computed_daily_stress,
    )
    return LearningOutcome(record_id=None, data_points_created=1)


async def recompute_daily_states(
    conn: psycopg.AsyncConnection[Any],
    start: date,
    end: date | None = None,
    *,
    settings: CalibrationSettings | None = None,
) -> list[DailyLoadState]:
    """Rebuild states for ``[start, end]`` from workouts.

    The series is anchored on the latest stored state before ``start``; when
    that state is older than the day before, the missing days in between are
    rebuilt too. Manual seeds inside the range are kept as they are.
    """
    settings = settings or calibration_settings()
    end = end or date.today()
    if end < start:
        return []

    async with conn.transaction():
        anchor = await store.fetch_state_on_or_before(conn, start - timedelta(days=1))
        if anchor is not None:
            start = anchor.day + timedelta(days=1)
        daily_stress = await store.daily_stress_between(conn, start, end)
        pinned = {
            state.day: state
            for state in await store.fetch_states_between(conn, start, end)
            if state.source == "manual_seed"
        }
        states = compute_series(
            daily_stress,
            start,
            end,
            initial_fitness=anchor.fitness if anchor is not None else 0.0,
            initial_fatigue=anchor.fatigue if anchor is not None else 0.0,
            fitness_days=settings.fitness_time_constant,
            fatigue_days=settings.fatigue_time_constant,
            pinned=pinned,
        )
        await store.upsert_states(conn, states)

    logger.info("Recomputed %d day(s) from %s", len(states), start.isoformat())
    return states


async def load_series(
    conn: psycopg.AsyncConnection[Any], start: date, end: date
) -> list[dict[str, Any]]:
    states = await store.fetch_states_between(conn, start, end)
    return [{"day": state.day.isoformat(), **state.as_triple()} for state in states]


async def calibration_history(
    conn: psycopg.AsyncConnection[Any], *, limit: int = 50
) -> list[CalibrationRecord]:
    return await store.fetch_calibration_history(conn, limit=limit)


async def delete_calibration(conn: psycopg.AsyncConnection[Any], record_id: str) -> None:
    """Remove a record from history; already-shifted state is left as it is."""
    if not await store.delete_calibration_record(conn, record_id):
        raise CalibrationError(code="record_not_found")


async def check_calibration(
    conn: psycopg.AsyncConnection[Any],
    observation: CalibrationObservation,
    *,
    today: date | None = None,
) -> CalibrationCheck:
    day = observation.effective_date or today or date.today()
    current = await store.fetch_state_on_or_before(conn, day)
    return check_calibration_needed(observation, current)


async def set_learning_enabled(conn: psycopg.AsyncConnection[Any], enabled: bool) -> ScalingProfile:
    async with conn.transaction():
        profile = await store.load_scaling_profile(conn, for_update=True)
        profile.learning_enabled = enabled
        await store.save_scaling_profile(conn, profile)
    logger.info("Learning %s", "enabled" if enabled else "disabled")
    return profile


async def complete_calibration(conn: psycopg.AsyncConnection[Any]) -> ScalingProfile:
    """Mark calibration done and stop asking for manual observations."""
    async with conn.transaction():
        profile = await store.load_scaling_profile(conn, for_update=True)
        profile.calibration_complete = True
        profile.manual_calibration_enabled = False
        await store.save_scaling_profile(conn, profile)
    return profile


async def reset_learning(conn: psycopg.AsyncConnection[Any]) -> ScalingProfile:
    async with conn.transaction():
        profile = await store.load_scaling_profile(conn, for_update=True)
        deleted = await store.delete_all_data_points(conn)
        reset_profile(profile)
        await store.save_scaling_profile(conn, profile)
    logger.info("Learning data reset (%d data point(s) deleted)", deleted)
    return profile


async def invalidate_data_point(
    conn: psycopg.AsyncConnection[Any],
    point_id: str,
    reason: str,
    *,
    today: date | None = None,
    settings: CalibrationSettings | None = None,
) -> ScalingProfile:
    """Exclude one data point from learning and re-learn without it."""
    settings = settings or calibration_settings()
    async with conn.transaction():
        profile = await store.load_scaling_profile(conn, for_update=True)
        if not await store.invalidate_data_point(conn, point_id, reason):
            raise CalibrationError(code="record_not_found", message=f"Unknown data point {point_id}")
        await _relearn(conn, profile, today or date.today(), settings)
    return profile


async def get_learning_statistics(
    conn: psycopg.AsyncConnection[Any], *, today: date | None = None
) -> LearningStatistics:
    profile = await store.load_scaling_profile(conn)
    points: list[TSSCalibrationDataPoint] = await store.fetch_data_points(conn)
    return learning_statistics(profile, points, today or date.today())
