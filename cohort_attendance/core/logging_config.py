# cohort_attendance/core/logging_config.py
import logging
import sys

import structlog

from cohort_attendance.core.config import get_settings


def configure_logging() -> None:
    """
    Configure stdlib logging and structlog from application settings.

    Modules obtain loggers with `structlog.get_logger(__name__)` and log
    key/value events; this wires them to the root stdlib handler so that
    uvicorn/sqlalchemy output and our own events share one stream.
    """
    settings = get_settings()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.LOG_JSON
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
