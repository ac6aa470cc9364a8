import asyncio
import logging
import signal
import time
from typing import Any

import psycopg
from psycopg.rows import dict_row

from .config import Config
from .errors import CalibrationError
from .logging import calibration_context
from .metrics import (
    record_handler_invocation,
    record_job_completed,
    record_job_dead,
    record_job_failed,
)
from .registry import get_handler
from .store import JOB_CHANNEL, ensure_schema

logger = logging.getLogger(__name__)


class Worker:
    """Drains ``background_jobs``; NOTIFY on the job channel wakes it early.

    A single drain loop owns all job processing. The LISTEN connection only
    sets the wake event, and the poll interval bounds how long a due retry
    waits when no notification arrives.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        self._shutdown = asyncio.Event()
        self._wake = asyncio.Event()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)

        async with await psycopg.AsyncConnection.connect(self.config.database_url) as conn:
            await ensure_schema(conn)
            await conn.commit()

        logger.info(
            "Worker ready (poll_interval=%.1fs, batch_size=%d, max_retries=%d, dedicated_listen=%s)",
            self.config.poll_interval_seconds,
            self.config.batch_size,
            self.config.max_retries,
            self.config.listen_database_url != self.config.database_url,
        )
        async with asyncio.TaskGroup() as tg:
            tg.create_task(self._listen_loop())
            tg.create_task(self._drain_loop())

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown.set()
        self._wake.set()

    async def _listen_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                async with await psycopg.AsyncConnection.connect(
                    self.config.listen_database_url, autocommit=True
                ) as conn:
                    await conn.execute(f"LISTEN {JOB_CHANNEL}")
                    logger.info("Listening on %s channel", JOB_CHANNEL)
                    while not self._shutdown.is_set():
                        # notifies() ends on timeout; the connection is kept.
                        async for notify in conn.notifies(
                            timeout=self.config.poll_interval_seconds
                        ):
                            logger.debug("NOTIFY received: %s", notify.payload)
                            self._wake.set()
                            if self._shutdown.is_set():
                                break
            except psycopg.OperationalError:
                if self._shutdown.is_set():
                    break
                logger.warning("LISTEN connection lost, reconnecting in 5s")
                await asyncio.sleep(5)
        logger.info("Listen loop stopped")

    async def _drain_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(
                    self._wake.wait(), timeout=self.config.poll_interval_seconds
                )
            except TimeoutError:
                pass
            self._wake.clear()
            # A full batch means more may be waiting.
            while not self._shutdown.is_set():
                if await self.process_batch() < self.config.batch_size:
                    break
        logger.info("Drain loop stopped")

    async def process_batch(self) -> int:
        """Claim and run one batch of due jobs; returns how many were claimed."""
        try:
            async with await psycopg.AsyncConnection.connect(self.config.database_url) as conn:
                jobs = await self._claim_jobs(conn)
                await conn.commit()  # claims survive a crash mid-batch
                for job in jobs:
                    await self._process_job(conn, job)
        except Exception:
            logger.exception("Job batch failed")
            return 0
        return len(jobs)

    async def _claim_jobs(
        self, conn: psycopg.AsyncConnection[Any]
    ) -> list[dict[str, Any]]:
        """Claim pending jobs using SELECT FOR UPDATE SKIP LOCKED."""
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                UPDATE background_jobs
                SET status = 'processing', started_at = NOW(), attempt = attempt + 1
                WHERE id IN (
                    SELECT id FROM background_jobs
                    WHERE status = 'pending' AND scheduled_for <= NOW()
                    ORDER BY scheduled_for, priority DESC, id
                    LIMIT %s
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING id, job_type, payload, attempt, max_retries
                """,
                (self.config.batch_size,),
            )
            return await cur.fetchall()

    async def _process_job(
        self, conn: psycopg.AsyncConnection[Any], job: dict[str, Any]
    ) -> None:
        """Run one job in its own transaction and settle its row."""
        job_id = job["id"]
        job_type = job["job_type"]
        context = calibration_context(job_type=job_type, job_id=job_id, attempt=job["attempt"])

        route = get_handler(job_type)
        if route is None:
            logger.warning("No handler for job_type=%s (job_id=%d)", job_type, job_id, extra=context)
            await self._mark_dead(conn, job_id, f"No handler for job_type={job_type}")
            return

        started = time.monotonic()
        try:
            # Handler and completion mark commit together.
            async with conn.transaction():
                await route(conn, job["payload"])
                await conn.execute(
                    """
                    UPDATE background_jobs
                    SET status = 'completed', completed_at = NOW()
                    WHERE id = %s
                    """,
                    (job_id,),
                )
        except Exception as exc:
            record_handler_invocation(job_type, _elapsed_ms(started), success=False)
            logger.exception("Job %d failed (type=%s)", job_id, job_type, extra=context)
            if is_permanent_failure(exc):
                await self._mark_dead(conn, job_id, str(exc))
            elif job["attempt"] >= min(job["max_retries"], self.config.max_retries):
                await self._mark_dead(conn, job_id, f"Retries exhausted: {exc}")
            else:
                await self._schedule_retry(conn, job_id, job["attempt"], str(exc))
            return

        record_handler_invocation(job_type, _elapsed_ms(started), success=True)
        record_job_completed()
        logger.info("Job %d completed (type=%s)", job_id, job_type, extra=context)

    async def _mark_dead(
        self, conn: psycopg.AsyncConnection[Any], job_id: int, error: str
    ) -> None:
        record_job_dead()
        logger.error("Job %d is dead: %s", job_id, error)
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE background_jobs
                SET status = 'dead', error_message = %s, completed_at = NOW()
                WHERE id = %s
                """,
                (error, job_id),
            )
        await conn.commit()

    async def _schedule_retry(
        self,
        conn: psycopg.AsyncConnection[Any],
        job_id: int,
        attempt: int,
        error: str,
    ) -> None:
        record_job_failed()
        backoff_seconds = 2**attempt
        logger.info("Job %d retrying in %ds (attempt=%d)", job_id, backoff_seconds, attempt)
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE background_jobs
                SET status = 'pending',
                    error_message = %s,
                    scheduled_for = NOW() + make_interval(secs => %s)
                WHERE id = %s
                """,
                (error, float(backoff_seconds), job_id),
            )
        await conn.commit()


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


def is_permanent_failure(exc: BaseException) -> bool:
    """Malformed payloads and input-class calibration errors fail the same way on retry."""
    if isinstance(exc, CalibrationError):
        return exc.error_class == "input"
    return isinstance(exc, ValueError)
