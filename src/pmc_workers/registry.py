"""Job routing: one handler per job_type, fed a validated payload model."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import psycopg
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

JobHandler = Callable[[psycopg.AsyncConnection[Any], Any], Awaitable[None]]


@dataclass(frozen=True)
class JobRoute:
    job_type: str
    handler: JobHandler
    payload_model: type[BaseModel]

    def parse(self, payload: dict[str, Any] | None) -> BaseModel:
        try:
            return self.payload_model.model_validate(payload or {})
        except PydanticValidationError as exc:
            raise ValueError(f"Invalid {self.job_type} payload: {exc}") from exc

    async def __call__(
        self, conn: psycopg.AsyncConnection[Any], payload: dict[str, Any] | None
    ) -> None:
        await self.handler(conn, self.parse(payload))


_routes: dict[str, JobRoute] = {}


def register(
    job_type: str, payload_model: type[BaseModel]
) -> Callable[[JobHandler], JobHandler]:
    """Route ``job_type`` (e.g. 'calibration.learn') to the decorated handler.

    The stored JSON payload is validated against ``payload_model`` before the
    handler runs, so a malformed job fails like any other handler error.
    """

    def decorator(fn: JobHandler) -> JobHandler:
        if job_type in _routes:
            raise ValueError(f"Duplicate handler for job_type={job_type!r}")
        _routes[job_type] = JobRoute(job_type, fn, payload_model)
        logger.info(
            "Registered %s for job_type=%s (payload=%s)",
            fn.__name__,
            job_type,
            payload_model.__name__,
        )
        return fn

    return decorator


def get_handler(job_type: str) -> JobRoute | None:
    return _routes.get(job_type)


def registered_types() -> list[str]:
    return sorted(_routes)
