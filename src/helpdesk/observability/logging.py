"""structlog configuration for the threading service.

Two renderings share one processor chain:

- production: one JSON object per line, exceptions flattened into an
  ``exception`` field, INFO and above
- development: colored console output, DEBUG and above

Every event carries the ``service`` name bound here, so lines from the
webhook and sync workers can be told apart after aggregation.
"""

from __future__ import annotations

import logging

import structlog

SERVICE_NAME = "helpdesk-threading"


def _processors(production: bool) -> list[structlog.types.Processor]:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if production:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def configure_logging(
    production: bool = False,
    *,
    level: str | None = None,
    service: str = SERVICE_NAME,
) -> None:
    """Configure structlog for production (JSON) or development (console).

    Args:
        production: Render JSON at INFO instead of console output at DEBUG.
        level: Level name overriding the mode's default, e.g. ``"WARNING"``.
        service: Value of the ``service`` field bound to every event.

    Raises:
        ValueError: *level* is not a standard logging level name.
    """
    if level is None:
        min_level = logging.INFO if production else logging.DEBUG
    else:
        levels = logging.getLevelNamesMapping()
        if level.upper() not in levels:
            raise ValueError(f"unknown log level: {level!r}")
        min_level = levels[level.upper()]

    structlog.configure(
        processors=_processors(production),
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service)
