"""Background jobs for deferred learning and load-state recomputation."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import psycopg

from .. import store
from ..calibration_service import (
    LEARN_JOB_TYPE,
    RECOMPUTE_JOB_TYPE,
    learn_from_calibration,
    recompute_daily_states,
)
from ..errors import CalibrationError
from ..metrics import record_learning_run
from ..models import LearnJobPayload, RecomputeJobPayload
from ..registry import register

logger = logging.getLogger(__name__)


@register(LEARN_JOB_TYPE, LearnJobPayload)
async def handle_calibration_learn(
    conn: psycopg.AsyncConnection[Any], payload: LearnJobPayload
) -> None:
    """Learn from a recorded calibration; errors propagate so the worker retries."""
    record_id = payload.calibration_record_id
    record = await store.fetch_calibration_record(conn, record_id)
    if record is None:
        raise CalibrationError(code="record_not_found", message=f"Unknown calibration {record_id}")

    try:
        outcome = await learn_from_calibration(conn, payload.observation, record)
    except Exception:
        record_learning_run(success=False)
        raise
    record_learning_run(success=True)
    logger.info(
        "%s completed (record_id=%s, data_points=%d, skipped=%s)",
        LEARN_JOB_TYPE,
        record_id,
        outcome.data_points_created,
        outcome.skipped_reason,
    )


@register(RECOMPUTE_JOB_TYPE, RecomputeJobPayload)
async def handle_load_recompute(
    conn: psycopg.AsyncConnection[Any], payload: RecomputeJobPayload
) -> None:
    """Rebuild load state; without ``start``, from the day after the latest manual seed."""
    start = payload.start
    if start is None:
        seed_day = await store.latest_seed_day(conn)
        if seed_day is not None:
            start = seed_day + timedelta(days=1)
        else:
            start = await store.earliest_workout_day(conn)
        if start is None:
            logger.info("%s skipped: no workouts recorded", RECOMPUTE_JOB_TYPE)
            return
    states = await recompute_daily_states(conn, start, payload.end)
    logger.info("%s completed (start=%s, days=%d)", RECOMPUTE_JOB_TYPE, start, len(states))
