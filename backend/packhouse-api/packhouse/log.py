# packhouse/log.py

import logging
import sys

import structlog

from packhouse import config


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Route stdlib and structlog output through one renderer.

    Called once from ``packhouse.main``. Safe to call again (tests do).
    """
    level_name = (level or config.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if (fmt or config.LOG_FORMAT) == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # access log is chatty at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
