from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "redis")


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def setup_logging(level: int = logging.INFO, use_json: bool = False) -> None:
    """
    Configure structlog and route stdlib logging through the same renderer.

    Args:
        level: Logging level (default: INFO)
        use_json: Emit JSON lines instead of the coloured console format.
            Console output falls back to JSON when stdout is not a TTY.
    """
    if use_json or not sys.stdout.isatty():
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )

    # stdlib records (httpx, aiosqlite, redis) share the structlog renderer
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=[structlog.stdlib.add_logger_name, *_shared_processors()],
        )
    )
    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
