import logging
import sys
from typing import Any

import structlog


def configure_logging(level: int | str = logging.INFO, *, json_output: bool = True) -> None:
    """Configure structlog over the stdlib logging bridge.

    Events are rendered as JSON lines on stderr; ``json_output=False`` uses
    the console renderer for interactive runs.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    renderer: Any = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def bind_cycle_context(cycle: int, **kwargs: Any) -> None:
    """Tag every log event of the current task with the scrape cycle number."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(cycle=cycle, **kwargs)
