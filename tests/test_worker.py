"""Unit tests for job dispatch, retry backoff and dead-lettering."""

from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from pmc_workers.config import Config
from pmc_workers.errors import CalibrationError
from pmc_workers.metrics import get_metrics
from pmc_workers.worker import Worker, is_permanent_failure


class _FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class _FakeCursor:
    def __init__(self):
        self.execute = AsyncMock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


def _make_mock_conn():
    conn = AsyncMock()
    conn.transaction = MagicMock(return_value=_FakeTransaction())
    conn.execute = AsyncMock()
    fake_cursor = _FakeCursor()
    conn.cursor = MagicMock(return_value=fake_cursor)
    conn._fake_cursor = fake_cursor
    return conn


@pytest.fixture
def worker():
    return Worker(Config(database_url="postgresql://test", listen_database_url="postgresql://test"))


def _job(job_type="calibration.learn", attempt=1, max_retries=3):
    return {
        "id": 42,
        "job_type": job_type,
        "payload": {"calibration_record_id": "abc"},
        "attempt": attempt,
        "max_retries": max_retries,
    }


class TestProcessJob:
    @pytest.mark.asyncio
    async def test_success_marks_completed(self, worker):
        conn = _make_mock_conn()
        handler = AsyncMock()
        with patch("pmc_workers.worker.get_handler", return_value=handler):
            await worker._process_job(conn, _job())

        handler.assert_awaited_once_with(conn, {"calibration_record_id": "abc"})
        sql, params = conn.execute.await_args.args
        assert "status = 'completed'" in sql
        assert params == (42,)
        stats = get_metrics()["handlers"]["calibration.learn"]
        assert stats["successes"] >= 1

    @pytest.mark.asyncio
    async def test_failure_schedules_retry_with_backoff(self, worker):
        conn = _make_mock_conn()
        handler = AsyncMock(side_effect=RuntimeError("flaky"))
        with patch("pmc_workers.worker.get_handler", return_value=handler):
            await worker._process_job(conn, _job(attempt=2))

        sql, params = conn._fake_cursor.execute.await_args.args
        assert "status = 'pending'" in sql
        assert params == ("flaky", 4.0, 42)
        conn.commit.assert_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_retries_mark_dead(self, worker):
        conn = _make_mock_conn()
        dead_before = get_metrics()["jobs_dead"]
        handler = AsyncMock(side_effect=RuntimeError("still broken"))
        with patch("pmc_workers.worker.get_handler", return_value=handler):
            await worker._process_job(conn, _job(attempt=3, max_retries=3))

        sql, params = conn._fake_cursor.execute.await_args.args
        assert "status = 'dead'" in sql
        assert params == ("Retries exhausted: still broken", 42)
        assert get_metrics()["jobs_dead"] == dead_before + 1

    @pytest.mark.asyncio
    async def test_configured_retry_cap_applies(self):
        capped = Worker(
            Config(
                database_url="postgresql://test",
                listen_database_url="postgresql://test",
                max_retries=1,
            )
        )
        conn = _make_mock_conn()
        handler = AsyncMock(side_effect=RuntimeError("timeout"))
        with patch("pmc_workers.worker.get_handler", return_value=handler):
            await capped._process_job(conn, _job(attempt=1, max_retries=3))

        sql, _ = conn._fake_cursor.execute.await_args.args
        assert "status = 'dead'" in sql

    @pytest.mark.asyncio
    async def test_missing_record_is_dead_without_retry(self, worker):
        conn = _make_mock_conn()
        handler = AsyncMock(side_effect=CalibrationError(code="record_not_found"))
        with patch("pmc_workers.worker.get_handler", return_value=handler):
            await worker._process_job(conn, _job(attempt=1))

        sql, params = conn._fake_cursor.execute.await_args.args
        assert "status = 'dead'" in sql
        assert params == ("Calibration record does not exist", 42)

    @pytest.mark.asyncio
    async def test_unknown_job_type_is_dead_immediately(self, worker):
        conn = _make_mock_conn()
        with patch("pmc_workers.worker.get_handler", return_value=None):
            await worker._process_job(conn, _job(job_type="nope"))

        sql, params = conn._fake_cursor.execute.await_args.args
        assert "status = 'dead'" in sql
        assert params == ("No handler for job_type=nope", 42)
        conn.execute.assert_not_awaited()


class TestDrain:
    @pytest.mark.asyncio
    async def test_process_batch_runs_claimed_jobs(self, worker):
        conn = _make_mock_conn()
        conn.__aenter__.return_value = conn
        with (
            patch(
                "pmc_workers.worker.psycopg.AsyncConnection.connect",
                new=AsyncMock(return_value=conn),
            ),
            patch.object(worker, "_claim_jobs", new=AsyncMock(return_value=[_job(), _job()])),
            patch.object(worker, "_process_job", new=AsyncMock()) as process,
        ):
            assert await worker.process_batch() == 2
        assert process.await_count == 2
        conn.commit.assert_awaited()

    @pytest.mark.asyncio
    async def test_process_batch_survives_connection_errors(self, worker):
        with patch(
            "pmc_workers.worker.psycopg.AsyncConnection.connect",
            new=AsyncMock(side_effect=psycopg.OperationalError("down")),
        ):
            assert await worker.process_batch() == 0

    @pytest.mark.asyncio
    async def test_full_batches_are_drained_back_to_back(self, worker):
        sizes = [10, 10, 3]

        async def batch():
            size = sizes.pop(0)
            if not sizes:
                worker.request_shutdown()
            return size

        worker._wake.set()
        with patch.object(worker, "process_batch", new=batch):
            await worker._drain_loop()
        assert sizes == []


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_uses_skip_locked(self, worker):
        cursor = _FakeCursor()
        cursor.fetchall = AsyncMock(return_value=[_job()])
        conn = AsyncMock()
        conn.cursor = MagicMock(return_value=cursor)

        jobs = await worker._claim_jobs(conn)

        assert jobs == [_job()]
        sql, params = cursor.execute.await_args.args
        assert "FOR UPDATE SKIP LOCKED" in sql
        assert params == (10,)


@pytest.mark.parametrize(
    ("exc", "permanent"),
    [
        (ValueError("Invalid calibration.learn payload"), True),
        (CalibrationError(code="record_not_found"), True),
        (CalibrationError(code="persistence_failed"), False),
        (RuntimeError("connection reset"), False),
    ],
)
def test_permanent_failure_triage(exc, permanent):
    assert is_permanent_failure(exc) is permanent
