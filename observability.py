"""Structured logging configuration with structlog.

Call ``configure_logging`` once at startup, then use structlog normally::

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("vote_cast", priority_id="...")

Production output is JSON, one object per line; development output goes
through the colored console renderer.
"""

import logging

import structlog
from structlog.typing import Processor


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def configure_logging(environment: str = "production", level: str = "INFO") -> None:
    """Configure structlog processors for the given environment."""
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
