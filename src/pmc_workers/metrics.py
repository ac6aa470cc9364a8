"""Process-local counters for jobs, calibrations and learning runs.

Only touched from the event loop thread.
"""

import time

_start_time = time.monotonic()

_metrics: dict = {
    "jobs_processed": 0,
    "jobs_failed": 0,
    "jobs_dead": 0,
    "calibrations_recorded": 0,
    "calibrations_applied": 0,
    "learning_runs": 0,
    "learning_failures": 0,
    "handlers": {},
}


def record_handler_invocation(handler_name: str, duration_ms: float, success: bool) -> None:
    """Record a single handler invocation with timing."""
    h = _metrics["handlers"].setdefault(handler_name, {
        "invocations": 0,
        "successes": 0,
        "failures": 0,
        "total_duration_ms": 0.0,
    })
    h["invocations"] += 1
    h["total_duration_ms"] += duration_ms
    if success:
        h["successes"] += 1
    else:
        h["failures"] += 1


def record_job_completed() -> None:
    _metrics["jobs_processed"] += 1


def record_job_failed() -> None:
    _metrics["jobs_failed"] += 1


def record_job_dead() -> None:
    _metrics["jobs_dead"] += 1


def record_calibration_recorded() -> None:
    _metrics["calibrations_recorded"] += 1


def record_calibration_applied() -> None:
    _metrics["calibrations_applied"] += 1


def record_learning_run(success: bool) -> None:
    _metrics["learning_runs"] += 1
    if not success:
        _metrics["learning_failures"] += 1


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    return {
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "jobs_processed": _metrics["jobs_processed"],
        "jobs_failed": _metrics["jobs_failed"],
        "jobs_dead": _metrics["jobs_dead"],
        "calibrations_recorded": _metrics["calibrations_recorded"],
        "calibrations_applied": _metrics["calibrations_applied"],
        "learning_runs": _metrics["learning_runs"],
        "learning_failures": _metrics["learning_failures"],
        "handlers": {
            name: dict(stats)
            for name, stats in _metrics["handlers"].items()
        },
    }
