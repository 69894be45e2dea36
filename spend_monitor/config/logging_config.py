"""Logging configuration for Spend Monitor."""

import logging
import logging.config
import sys
from typing import Any, Dict

import structlog

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structured logging.

    Console output goes through rich on stderr; JSON output is meant for
    schedulers and log shippers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render events as JSON lines instead of console text
    """
    level = level.upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler: Dict[str, Any]
    if json_output:
        handler = {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "plain",
            "stream": "ext://sys.stderr",
        }
    else:
        handler = {
            "class": "rich.logging.RichHandler",
            "level": level,
            "formatter": "plain",
            "show_time": False,
            "show_level": False,
            "markup": False,
        }

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(message)s"},
        },
        "handlers": {"console": handler},
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        "loggers": {
            "openai": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(logging_config)
