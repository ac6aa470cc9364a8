"""PostgreSQL persistence for load state, calibrations, learning data and jobs.

Every function takes an open ``psycopg.AsyncConnection`` and leaves
transaction control to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json

from .calibration_datapoints import TSSCalibrationDataPoint
from .calibration_records import CalibrationRecord
from .models import DailyLoadState, WorkoutStressRecord
from .scaling_profile import FactorStats, ScalingProfile

logger = logging.getLogger(__name__)

JOB_CHANNEL = "pmc_jobs"
PROFILE_ROW_ID = 1

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS workout_stress_records (
        workout_id TEXT PRIMARY KEY,
        started_on DATE NOT NULL,
        duration_seconds DOUBLE PRECISION NOT NULL,
        category TEXT NOT NULL,
        stress DOUBLE PRECISION NOT NULL,
        intensity_factor DOUBLE PRECISION NOT NULL,
        method TEXT NOT NULL,
        distance_meters DOUBLE PRECISION,
        original_stress DOUBLE PRECISION,
        applied_scaling_factor DOUBLE PRECISION,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS workout_stress_records_started_on_idx
        ON workout_stress_records (started_on)
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_load_states (
        day DATE PRIMARY KEY,
        total_stress DOUBLE PRECISION NOT NULL DEFAULT 0,
        fitness DOUBLE PRECISION NOT NULL,
        fatigue DOUBLE PRECISION NOT NULL,
        form DOUBLE PRECISION NOT NULL,
        source TEXT NOT NULL DEFAULT 'computed',
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS calibration_records (
        id UUID PRIMARY KEY,
        effective_date DATE NOT NULL,
        captured_at TIMESTAMPTZ NOT NULL,
        observed_fitness DOUBLE PRECISION,
        observed_fatigue DOUBLE PRECISION,
        observed_form DOUBLE PRECISION,
        computed_fitness DOUBLE PRECISION NOT NULL,
        computed_fatigue DOUBLE PRECISION NOT NULL,
        computed_form DOUBLE PRECISION NOT NULL,
        fitness_delta DOUBLE PRECISION NOT NULL,
        fatigue_delta DOUBLE PRECISION NOT NULL,
        form_delta DOUBLE PRECISION NOT NULL,
        confidence DOUBLE PRECISION NOT NULL,
        source TEXT NOT NULL,
        raw_text TEXT NOT NULL DEFAULT '',
        applied BOOLEAN NOT NULL DEFAULT FALSE,
        note TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS calibration_records_effective_date_idx
        ON calibration_records (effective_date)
    """,
    """
    CREATE TABLE IF NOT EXISTS tss_calibration_data_points (
        id UUID PRIMARY KEY,
        effective_date DATE NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        extracted_daily_stress DOUBLE PRECISION,
        computed_daily_stress DOUBLE PRECISION NOT NULL,
        extracted_weekly_stress DOUBLE PRECISION,
        computed_weekly_stress DOUBLE PRECISION,
        scaling_ratio DOUBLE PRECISION,
        category TEXT,
        is_multi_sport BOOLEAN NOT NULL DEFAULT FALSE,
        method TEXT NOT NULL,
        confidence DOUBLE PRECISION NOT NULL,
        is_valid BOOLEAN NOT NULL DEFAULT TRUE,
        invalid_reason TEXT,
        calibration_record_id UUID REFERENCES calibration_records (id) ON DELETE SET NULL,
        intensity_factor DOUBLE PRECISION,
        intensity_bucket TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scaling_profile (
        id SMALLINT PRIMARY KEY CHECK (id = 1),
        global_factor DOUBLE PRECISION NOT NULL DEFAULT 1.0,
        global_confidence DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        global_sample_count INTEGER NOT NULL DEFAULT 0,
        category_stats JSONB NOT NULL DEFAULT '{}'::jsonb,
        intensity_stats JSONB NOT NULL DEFAULT '{}'::jsonb,
        learning_enabled BOOLEAN NOT NULL DEFAULT TRUE,
        min_samples_for_confidence INTEGER NOT NULL DEFAULT 3,
        min_scaling_factor DOUBLE PRECISION NOT NULL DEFAULT 0.8,
        max_scaling_factor DOUBLE PRECISION NOT NULL DEFAULT 1.5,
        auto_disable_threshold DOUBLE PRECISION NOT NULL DEFAULT 0.95,
        calibration_complete BOOLEAN NOT NULL DEFAULT FALSE,
        manual_calibration_enabled BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS background_jobs (
        id BIGSERIAL PRIMARY KEY,
        job_type TEXT NOT NULL,
        payload JSONB NOT NULL DEFAULT '{}'::jsonb,
        status TEXT NOT NULL DEFAULT 'pending',
        priority INTEGER NOT NULL DEFAULT 0,
        attempt INTEGER NOT NULL DEFAULT 0,
        max_retries INTEGER NOT NULL DEFAULT 3,
        scheduled_for TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ,
        error_message TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS background_jobs_pending_idx
        ON background_jobs (scheduled_for)
        WHERE status = 'pending'
    """,
)


async def ensure_schema(conn: psycopg.AsyncConnection[Any]) -> None:
    """Create every table the engine uses (idempotent)."""
    for statement in SCHEMA_STATEMENTS:
        await conn.execute(statement)
    logger.info("Schema ensured (%d statements)", len(SCHEMA_STATEMENTS))


# --- daily load state -------------------------------------------------------


def _state_from_row(row: dict[str, Any]) -> DailyLoadState:
    return DailyLoadState(
        day=row["day"],
        total_stress=float(row["total_stress"]),
        fitness=float(row["fitness"]),
        fatigue=float(row["fatigue"]),
        form=float(row["form"]),
        source=row["source"],
    )


_STATE_COLUMNS = "day, total_stress, fitness, fatigue, form, source"


async def fetch_state(
    conn: psycopg.AsyncConnection[Any], day: date
) -> DailyLoadState | None:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"SELECT {_STATE_COLUMNS} FROM daily_load_states WHERE day = %s",
            (day,),
        )
        row = await cur.fetchone()
    return _state_from_row(row) if row is not None else None


async def fetch_state_on_or_before(
    conn: psycopg.AsyncConnection[Any], day: date
) -> DailyLoadState | None:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"""
            SELECT {_STATE_COLUMNS} FROM daily_load_states
            WHERE day <= %s
            ORDER BY day DESC
            LIMIT 1
            """,
            (day,),
        )
        row = await cur.fetchone()
    return _state_from_row(row) if row is not None else None


async def fetch_states_from(
    conn: psycopg.AsyncConnection[Any],
    day: date,
    *,
    for_update: bool = False,
) -> list[DailyLoadState]:
    """All states dated on/after ``day``, ascending."""
    lock = " FOR UPDATE" if for_update else ""
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"""
            SELECT {_STATE_COLUMNS} FROM daily_load_states
            WHERE day >= %s
            ORDER BY day ASC{lock}
            """,
            (day,),
        )
        rows = await cur.fetchall()
    return [_state_from_row(row) for row in rows]


async def fetch_states_between(
    conn: psycopg.AsyncConnection[Any], start: date, end: date
) -> list[DailyLoadState]:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"""
            SELECT {_STATE_COLUMNS} FROM daily_load_states
            WHERE day BETWEEN %s AND %s
            ORDER BY day ASC
            """,
            (start, end),
        )
        rows = await cur.fetchall()
    return [_state_from_row(row) for row in rows]


async def upsert_states(
    conn: psycopg.AsyncConnection[Any], states: Sequence[DailyLoadState]
) -> int:
    if not states:
        return 0
    async with conn.cursor() as cur:
        await cur.executemany(
            """
            INSERT INTO daily_load_states (day, total_stress, fitness, fatigue, form, source)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (day) DO UPDATE SET
                total_stress = EXCLUDED.total_stress,
                fitness = EXCLUDED.fitness,
                fatigue = EXCLUDED.fatigue,
                form = EXCLUDED.form,
                source = EXCLUDED.source,
                updated_at = NOW()
            """,
            [
                (s.day, s.total_stress, s.fitness, s.fatigue, s.form, s.source)
                for s in states
            ],
        )
    return len(states)


# --- workouts ---------------------------------------------------------------


def _workout_from_row(row: dict[str, Any]) -> WorkoutStressRecord:
    return WorkoutStressRecord(
        workout_id=row["workout_id"],
        started_on=row["started_on"],
        duration_seconds=float(row["duration_seconds"]),
        category=row["category"],
        stress=float(row["stress"]),
        intensity_factor=float(row["intensity_factor"]),
        method=row["method"],
        distance_meters=row["distance_meters"],
        original_stress=row["original_stress"],
        applied_scaling_factor=row["applied_scaling_factor"],
    )


_WORKOUT_COLUMNS = (
    "workout_id, started_on, duration_seconds, category, stress, intensity_factor, "
    "method, distance_meters, original_stress, applied_scaling_factor"
)


async def upsert_workout(
    conn: psycopg.AsyncConnection[Any], record: WorkoutStressRecord
) -> None:
    await conn.execute(
        f"""
        INSERT INTO workout_stress_records ({_WORKOUT_COLUMNS})
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (workout_id) DO UPDATE SET
            started_on = EXCLUDED.started_on,
            duration_seconds = EXCLUDED.duration_seconds,
            category = EXCLUDED.category,
            stress = EXCLUDED.stress,
            intensity_factor = EXCLUDED.intensity_factor,
            method = EXCLUDED.method,
            distance_meters = EXCLUDED.distance_meters,
            original_stress = EXCLUDED.original_stress,
            applied_scaling_factor = EXCLUDED.applied_scaling_factor
        """,
        (
            record.workout_id,
            record.started_on,
            record.duration_seconds,
            record.category,
            record.stress,
            record.intensity_factor,
            record.method,
            record.distance_meters,
            record.original_stress,
            record.applied_scaling_factor,
        ),
    )


async def fetch_workout(
    conn: psycopg.AsyncConnection[Any], workout_id: str
) -> WorkoutStressRecord | None:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"SELECT {_WORKOUT_COLUMNS} FROM workout_stress_records WHERE workout_id = %s",
            (workout_id,),
        )
        row = await cur.fetchone()
    return _workout_from_row(row) if row is not None else None


async def fetch_workouts_between(
    conn: psycopg.AsyncConnection[Any], start: date, end: date
) -> list[WorkoutStressRecord]:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"""
            SELECT {_WORKOUT_COLUMNS} FROM workout_stress_records
            WHERE started_on BETWEEN %s AND %s
            ORDER BY started_on ASC, workout_id ASC
            """,
            (start, end),
        )
        rows = await cur.fetchall()
    return [_workout_from_row(row) for row in rows]


async def daily_stress_between(
    conn: psycopg.AsyncConnection[Any], start: date, end: date
) -> dict[date, float]:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            """
            SELECT started_on AS day, SUM(stress) AS total
            FROM workout_stress_records
            WHERE started_on BETWEEN %s AND %s
            GROUP BY started_on
            """,
            (start, end),
        )
        rows = await cur.fetchall()
    return {row["day"]: float(row["total"]) for row in rows}


async def earliest_workout_day(conn: psycopg.AsyncConnection[Any]) -> date | None:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute("SELECT MIN(started_on) AS first_day FROM workout_stress_records")
        row = await cur.fetchone()
    return row["first_day"] if row is not None else None


async def latest_seed_day(conn: psycopg.AsyncConnection[Any]) -> date | None:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            "SELECT MAX(day) AS seed_day FROM daily_load_states WHERE source = 'manual_seed'"
        )
        row = await cur.fetchone()
    return row["seed_day"] if row is not None else None


# --- calibration records ----------------------------------------------------


_RECORD_COLUMNS = (
    "id, effective_date, captured_at, observed_fitness, observed_fatigue, observed_form, "
    "computed_fitness, computed_fatigue, computed_form, confidence, source, raw_text, "
    "applied, note"
)


def _record_from_row(row: dict[str, Any]) -> CalibrationRecord:
    return CalibrationRecord(
        id=str(row["id"]),
        effective_date=row["effective_date"],
        captured_at=row["captured_at"],
        observed_fitness=row["observed_fitness"],
        observed_fatigue=row["observed_fatigue"],
        observed_form=row["observed_form"],
        computed_fitness=float(row["computed_fitness"]),
        computed_fatigue=float(row["computed_fatigue"]),
        computed_form=float(row["computed_form"]),
        confidence=float(row["confidence"]),
        source=row["source"],
        raw_text=row["raw_text"] or "",
        applied=bool(row["applied"]),
        note=row["note"],
    )


async def insert_calibration_record(
    conn: psycopg.AsyncConnection[Any], record: CalibrationRecord
) -> None:
    await conn.execute(
        """
        INSERT INTO calibration_records (
            id, effective_date, captured_at,
            observed_fitness, observed_fatigue, observed_form,
            computed_fitness, computed_fatigue, computed_form,
            fitness_delta, fatigue_delta, form_delta,
            confidence, source, raw_text, applied, note
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            record.id,
            record.effective_date,
            record.captured_at,
            record.observed_fitness,
            record.observed_fatigue,
            record.observed_form,
            record.computed_fitness,
            record.computed_fatigue,
            record.computed_form,
            record.fitness_delta,
            record.fatigue_delta,
            record.form_delta,
            record.confidence,
            record.source,
            record.raw_text,
            record.applied,
            record.note,
        ),
    )


async def fetch_calibration_record(
    conn: psycopg.AsyncConnection[Any],
    record_id: str,
    *,
    for_update: bool = False,
) -> CalibrationRecord | None:
    lock = " FOR UPDATE" if for_update else ""
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"SELECT {_RECORD_COLUMNS} FROM calibration_records WHERE id = %s{lock}",
            (record_id,),
        )
        row = await cur.fetchone()
    return _record_from_row(row) if row is not None else None


async def fetch_calibration_on(
    conn: psycopg.AsyncConnection[Any], day: date
) -> CalibrationRecord | None:
    """Latest record on ``day`` that observed both fitness and fatigue."""
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"""
            SELECT {_RECORD_COLUMNS} FROM calibration_records
            WHERE effective_date = %s
              AND observed_fitness IS NOT NULL
              AND observed_fatigue IS NOT NULL
            ORDER BY captured_at DESC
            LIMIT 1
            """,
            (day,),
        )
        row = await cur.fetchone()
    return _record_from_row(row) if row is not None else None


async def fetch_calibration_history(
    conn: psycopg.AsyncConnection[Any], *, limit: int = 50
) -> list[CalibrationRecord]:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"""
            SELECT {_RECORD_COLUMNS} FROM calibration_records
            ORDER BY effective_date DESC, captured_at DESC
            LIMIT %s
            """,
            (limit,),
        )
        rows = await cur.fetchall()
    return [_record_from_row(row) for row in rows]


async def mark_record_applied(
    conn: psycopg.AsyncConnection[Any], record: CalibrationRecord
) -> None:
    await conn.execute(
        "UPDATE calibration_records SET applied = %s, note = %s WHERE id = %s",
        (record.applied, record.note, record.id),
    )


async def delete_calibration_record(
    conn: psycopg.AsyncConnection[Any], record_id: str
) -> bool:
    async with conn.cursor() as cur:
        await cur.execute("DELETE FROM calibration_records WHERE id = %s", (record_id,))
        return cur.rowcount > 0


# --- learning data points ---------------------------------------------------


_POINT_COLUMNS = (
    "id, effective_date, created_at, extracted_daily_stress, computed_daily_stress, "
    "extracted_weekly_stress, computed_weekly_stress, scaling_ratio, category, "
    "is_multi_sport, method, confidence, is_valid, invalid_reason, "
    "calibration_record_id, intensity_factor, intensity_bucket"
)


def _point_from_row(row: dict[str, Any]) -> TSSCalibrationDataPoint:
    record_id = row["calibration_record_id"]
    return TSSCalibrationDataPoint(
        id=str(row["id"]),
        effective_date=row["effective_date"],
        created_at=row["created_at"],
        extracted_daily_stress=row["extracted_daily_stress"],
        computed_daily_stress=float(row["computed_daily_stress"]),
        extracted_weekly_stress=row["extracted_weekly_stress"],
        computed_weekly_stress=row["computed_weekly_stress"],
        scaling_ratio=row["scaling_ratio"],
        category=row["category"],
        is_multi_sport=bool(row["is_multi_sport"]),
        method=row["method"],
        confidence=float(row["confidence"]),
        is_valid=bool(row["is_valid"]),
        invalid_reason=row["invalid_reason"],
        calibration_record_id=str(record_id) if record_id is not None else None,
        intensity_factor=row["intensity_factor"],
        intensity_bucket=row["intensity_bucket"],
    )


async def insert_data_points(
    conn: psycopg.AsyncConnection[Any], points: Sequence[TSSCalibrationDataPoint]
) -> int:
    if not points:
        return 0
    async with conn.cursor() as cur:
        await cur.executemany(
            f"""
            INSERT INTO tss_calibration_data_points ({_POINT_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            [
                (
                    p.id,
                    p.effective_date,
                    p.created_at,
                    p.extracted_daily_stress,
                    p.computed_daily_stress,
                    p.extracted_weekly_stress,
                    p.computed_weekly_stress,
                    p.scaling_ratio,
                    p.category,
                    p.is_multi_sport,
                    p.method,
                    p.confidence,
                    p.is_valid,
                    p.invalid_reason,
                    p.calibration_record_id,
                    p.intensity_factor,
                    p.intensity_bucket,
                )
                for p in points
            ],
        )
    return len(points)


async def fetch_data_points(
    conn: psycopg.AsyncConnection[Any], *, valid_only: bool = True
) -> list[TSSCalibrationDataPoint]:
    where = "WHERE is_valid" if valid_only else ""
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"""
            SELECT {_POINT_COLUMNS} FROM tss_calibration_data_points
            {where}
            ORDER BY effective_date DESC, created_at DESC
            """
        )
        rows = await cur.fetchall()
    return [_point_from_row(row) for row in rows]


async def invalidate_data_point(
    conn: psycopg.AsyncConnection[Any], point_id: str, reason: str
) -> bool:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            UPDATE tss_calibration_data_points
            SET is_valid = FALSE, invalid_reason = %s
            WHERE id = %s
            """,
            (reason, point_id),
        )
        return cur.rowcount > 0


async def delete_all_data_points(conn: psycopg.AsyncConnection[Any]) -> int:
    async with conn.cursor() as cur:
        await cur.execute("DELETE FROM tss_calibration_data_points")
        return cur.rowcount


# --- scaling profile --------------------------------------------------------


def _stats_to_json(stats: dict[str, FactorStats]) -> dict[str, dict[str, Any]]:
    return {
        key: {"factor": value.factor, "sample_count": value.sample_count}
        for key, value in stats.items()
    }


def _stats_from_json(raw: dict[str, Any] | None, keys: Sequence[str]) -> dict[str, FactorStats]:
    raw = raw or {}
    stats: dict[str, FactorStats] = {}
    for key in keys:
        entry = raw.get(key) or {}
        factor = entry.get("factor")
        stats[key] = FactorStats(
            factor=float(factor) if factor is not None else None,
            sample_count=int(entry.get("sample_count") or 0),
        )
    return stats


def _profile_from_row(row: dict[str, Any]) -> ScalingProfile:
    profile = ScalingProfile(
        global_factor=float(row["global_factor"]),
        global_confidence=float(row["global_confidence"]),
        global_sample_count=int(row["global_sample_count"]),
        learning_enabled=bool(row["learning_enabled"]),
        min_samples_for_confidence=int(row["min_samples_for_confidence"]),
        min_scaling_factor=float(row["min_scaling_factor"]),
        max_scaling_factor=float(row["max_scaling_factor"]),
        auto_disable_threshold=float(row["auto_disable_threshold"]),
        calibration_complete=bool(row["calibration_complete"]),
        manual_calibration_enabled=bool(row["manual_calibration_enabled"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
    profile.categories = _stats_from_json(row["category_stats"], list(profile.categories))
    profile.intensity_buckets = _stats_from_json(
        row["intensity_stats"], list(profile.intensity_buckets)
    )
    return profile


async def load_scaling_profile(
    conn: psycopg.AsyncConnection[Any], *, for_update: bool = False
) -> ScalingProfile:
    """Load the single profile row, creating it with defaults on first use.

    ``for_update`` locks the row until the surrounding transaction ends, which
    serializes concurrent learners.
    """
    await conn.execute(
        "INSERT INTO scaling_profile (id) VALUES (%s) ON CONFLICT (id) DO NOTHING",
        (PROFILE_ROW_ID,),
    )
    lock = " FOR UPDATE" if for_update else ""
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(f"SELECT * FROM scaling_profile WHERE id = %s{lock}", (PROFILE_ROW_ID,))
        row = await cur.fetchone()
    if row is None:
        raise RuntimeError("scaling_profile row missing after insert")
    return _profile_from_row(row)


async def save_scaling_profile(
    conn: psycopg.AsyncConnection[Any], profile: ScalingProfile
) -> None:
    await conn.execute(
        """
        UPDATE scaling_profile SET
            global_factor = %s,
            global_confidence = %s,
            global_sample_count = %s,
            category_stats = %s,
            intensity_stats = %s,
            learning_enabled = %s,
            min_samples_for_confidence = %s,
            min_scaling_factor = %s,
            max_scaling_factor = %s,
            auto_disable_threshold = %s,
            calibration_complete = %s,
            manual_calibration_enabled = %s,
            updated_at = %s
        WHERE id = %s
        """,
        (
            profile.global_factor,
            profile.global_confidence,
            profile.global_sample_count,
            Json(_stats_to_json(profile.categories)),
            Json(_stats_to_json(profile.intensity_buckets)),
            profile.learning_enabled,
            profile.min_samples_for_confidence,
            profile.min_scaling_factor,
            profile.max_scaling_factor,
            profile.auto_disable_threshold,
            profile.calibration_complete,
            profile.manual_calibration_enabled,
            profile.updated_at,
            PROFILE_ROW_ID,
        ),
    )


# --- jobs -------------------------------------------------------------------


async def enqueue_job(
    conn: psycopg.AsyncConnection[Any],
    job_type: str,
    payload: dict[str, Any],
    *,
    max_retries: int = 3,
) -> int | None:
    """Queue a background job and wake listening workers."""
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            """
            INSERT INTO background_jobs (job_type, payload, max_retries)
            VALUES (%s, %s, %s)
            RETURNING id
            """,
            (job_type, Json(payload), max_retries),
        )
        row = await cur.fetchone()
    job_id = int(row["id"]) if row is not None else None
    await conn.execute("SELECT pg_notify(%s, %s)", (JOB_CHANNEL, job_type))
    logger.info("Enqueued %s job (job_id=%s)", job_type, job_id)
    return job_id
