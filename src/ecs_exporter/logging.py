import logging
from typing import Any

import structlog


def configure_logging(level: int | str = logging.INFO, json_output: bool = True) -> None:
    """Configure structlog/standard logging bridge."""

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format="%(message)s")
    # botocore is chatty at INFO about credential lookups
    logging.getLogger("botocore").setLevel(logging.WARNING)
