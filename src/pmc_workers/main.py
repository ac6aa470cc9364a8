"""Entry point for the PMC worker process (``pmc-workers``)."""

import asyncio
import logging

from . import handlers  # noqa: F401  (registers job handlers)
from .config import Config, calibration_settings
from .health import start_health_server
from .logging import parse_log_level, setup_logging
from .registry import registered_types
from .worker import Worker

logger = logging.getLogger(__name__)


async def serve(config: Config) -> None:
    health_server = await start_health_server(config.health_port, config.database_url)
    try:
        await Worker(config).run()
    finally:
        health_server.close()
        await health_server.wait_closed()


def main() -> None:
    config = Config.from_env()
    setup_logging(config.log_format, parse_log_level(config.log_level))

    settings = calibration_settings()
    logger.info(
        "PMC worker starting (jobs=%s, health_port=%d, ctl_tau=%.0f, atl_tau=%.0f, "
        "learning_half_life=%.0fd)",
        ",".join(registered_types()),
        config.health_port,
        settings.fitness_time_constant,
        settings.fatigue_time_constant,
        settings.learning_half_life_days,
    )
    asyncio.run(serve(config))


if __name__ == "__main__":
    main()
