"""Structured logging setup.

Modules log through ``structlog.get_logger(__name__)`` with an event name and
key/value fields::

    logger.info("component_initialized", component="database")

:func:`configure_logging` installs the processor chain once, at application
startup. Without it structlog's development defaults apply.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.types import Processor

from ignition.settings import IgnitionSettings

__all__ = ["configure_logging"]


def configure_logging(settings: Optional[IgnitionSettings] = None):
    """Configure structlog (and the stdlib root logger) from settings.

    Args:
        settings: Settings to apply; read from the environment if omitted.
    """
    settings = settings or IgnitionSettings()
    level = getattr(logging, settings.log_level)

    json_logs = settings.json_logs
    if json_logs is None:
        json_logs = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
