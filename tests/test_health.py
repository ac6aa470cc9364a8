import json
from unittest.mock import AsyncMock, patch

import psycopg
import pytest

from pmc_workers.health import build_health_response, probe_database
from pmc_workers.metrics import get_metrics, record_calibration_recorded, record_learning_run


def _split(response: str) -> tuple[str, dict]:
    head, body = response.split("\r\n\r\n", 1)
    return head.splitlines()[0], json.loads(body)


def test_healthy():
    status_line, body = _split(
        build_health_response("/health", "ok", {"pending": 2, "dead": 1})
    )
    assert status_line == "HTTP/1.1 200 OK"
    assert body["status"] == "ok"
    assert body["db"] == "ok"
    assert body["job_queue"] == {"pending": 2, "dead": 1}
    assert "calibrations_recorded" in body["metrics"]


def test_degraded_when_database_unreachable():
    status_line, body = _split(build_health_response("/health", "error"))
    assert status_line == "HTTP/1.1 503 Service Unavailable"
    assert body["status"] == "degraded"
    assert body["job_queue"] == {}


def test_unknown_path():
    status_line, body = _split(build_health_response("/metrics", "skipped"))
    assert status_line == "HTTP/1.1 404 Not Found"
    assert body == {"error": "not_found"}


def test_content_length_matches_body():
    response = build_health_response("/health", "ok")
    head, body = response.split("\r\n\r\n", 1)
    assert f"Content-Length: {len(body)}" in head


def test_metrics_counters():
    before = get_metrics()
    record_calibration_recorded()
    record_learning_run(success=True)
    record_learning_run(success=False)
    after = get_metrics()

    assert after["calibrations_recorded"] == before["calibrations_recorded"] + 1
    assert after["learning_runs"] == before["learning_runs"] + 2
    assert after["learning_failures"] == before["learning_failures"] + 1


@pytest.mark.asyncio
async def test_probe_reports_error_for_unreachable_database():
    with patch(
        "pmc_workers.health.psycopg.AsyncConnection.connect",
        new=AsyncMock(side_effect=psycopg.OperationalError("refused")),
    ):
        assert await probe_database("postgresql://nowhere/pmc") == ("error", {})
