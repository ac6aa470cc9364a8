"""Plain asyncio HTTP endpoint for container healthchecks.

``GET /health`` answers 200 when the database is reachable and 503 otherwise,
with the in-process counters and the background job queue depth per status.
"""

import asyncio
import json
import logging
from typing import Any

import psycopg

from .metrics import get_metrics

logger = logging.getLogger(__name__)

_STATUS_LINES = {
    200: "HTTP/1.1 200 OK",
    404: "HTTP/1.1 404 Not Found",
    503: "HTTP/1.1 503 Service Unavailable",
}


async def probe_database(db_url: str, timeout: float = 2.0) -> tuple[str, dict[str, int]]:
    """Return ``("ok", queue counts)`` or ``("error", {})`` within ``timeout``."""
    try:
        async with asyncio.timeout(timeout):
            async with await psycopg.AsyncConnection.connect(db_url, autocommit=True) as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "SELECT status, count(*) FROM background_jobs GROUP BY status"
                    )
                    rows = await cur.fetchall()
    except Exception:
        logger.debug("Health database probe failed", exc_info=True)
        return "error", {}
    return "ok", {status: int(count) for status, count in rows}


def _http(code: int, payload: dict[str, Any]) -> str:
    body = json.dumps(payload)
    return (
        f"{_STATUS_LINES[code]}\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n\r\n{body}"
    )


def build_health_response(
    path: str, db_status: str, job_queue: dict[str, int] | None = None
) -> str:
    if path != "/health":
        return _http(404, {"error": "not_found"})

    metrics = get_metrics()
    healthy = db_status == "ok"
    return _http(
        200 if healthy else 503,
        {
            "status": "ok" if healthy else "degraded",
            "uptime_seconds": metrics["uptime_seconds"],
            "db": db_status,
            "job_queue": job_queue or {},
            "metrics": metrics,
        },
    )


async def start_health_server(port: int, db_url: str) -> asyncio.Server:
    async def serve(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request_line = await asyncio.wait_for(reader.readline(), timeout=5)
            parts = request_line.decode("utf-8", errors="replace").split()
            path = parts[1] if len(parts) >= 2 else "/"
            if path == "/health":
                db_status, job_queue = await probe_database(db_url)
            else:
                db_status, job_queue = "skipped", {}
            writer.write(build_health_response(path, db_status, job_queue).encode())
            await writer.drain()
        except Exception:
            logger.debug("Health endpoint request error", exc_info=True)
        finally:
            writer.close()
            await writer.wait_closed()

    server = await asyncio.start_server(serve, "0.0.0.0", port)
    logger.info("Health endpoint listening on port %d", port)
    return server
