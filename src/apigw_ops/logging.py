import logging
import os
from typing import Any

import structlog

DEFAULT_LOG_LEVEL = "WARNING"


def configure_logging(level: int | str | None = None) -> None:
    """Configure structlog/standard logging bridge. Records go to stderr as JSON."""

    if level is None:
        level = os.environ.get("APIGW_LOG_LEVEL", DEFAULT_LOG_LEVEL)
    if isinstance(level, str):
        level = level.upper()

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s")


def bind_context(**kwargs: Any) -> None:
    """Bind fields (stack, command) onto every log record emitted afterwards."""

    structlog.contextvars.bind_contextvars(**kwargs)
