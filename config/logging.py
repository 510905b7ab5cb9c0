"""
Application logging configuration.

structlog renders JSON in production and coloured console output in
development. Engine modules log through ``structlog.get_logger(__name__)``
so every event lands under the ``rebalancer`` logger tree.

Usage:
    from config.logging import configure_structlog, get_logging_config

    configure_structlog(debug=True)
    LOGGING = get_logging_config(debug=True)
"""

import sys
from typing import Any

import structlog

ENGINE_LOGGERS = ("rebalancer", "rebalancer.services")


def _foreign_pre_chain() -> list[Any]:
    """Processors applied to records that come from plain ``logging`` calls."""
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def configure_structlog(debug: bool = False) -> None:
    """
    Configure structlog for the engine.

    Must be called early in settings initialization, before any logging occurs.

    Args:
        debug: If True, use pretty console output with colors.
               If False, use JSON output for log aggregation.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if debug:
        renderers: list[Any] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=shared_processors + renderers,  # type: ignore
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logging_config(debug: bool = False, engine_level: str | None = None) -> dict[str, Any]:
    """
    Return the Django LOGGING dict.

    Args:
        debug: Console formatter when True, JSON formatter otherwise
        engine_level: Level for the ``rebalancer`` loggers; defaults to
            DEBUG in debug mode and INFO otherwise

    Returns:
        Django LOGGING configuration dict
    """
    formatter = "console" if debug else "json"
    engine_level = engine_level or ("DEBUG" if debug else "INFO")

    loggers: dict[str, dict[str, Any]] = {
        name: {"handlers": ["console"], "level": engine_level, "propagate": False}
        for name in ENGINE_LOGGERS
    }
    loggers["django"] = {"handlers": ["console"], "level": "INFO", "propagate": False}
    loggers["django.db.backends"] = {
        "handlers": ["console"],
        "level": "WARNING",
        "propagate": False,
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processor": structlog.processors.JSONRenderer(),
                "foreign_pre_chain": _foreign_pre_chain(),
            },
            "console": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processor": structlog.dev.ConsoleRenderer(colors=True),
                "foreign_pre_chain": _foreign_pre_chain(),
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
                "stream": sys.stdout,
            },
        },
        "root": {
            "handlers": ["console"],
            "level": "INFO",
        },
        "loggers": loggers,
    }
