"""Structured logging setup.

Every module logs through ``structlog.get_logger(__name__)`` with a
snake_case event name and key/value context. ``setup_logging`` wires
structlog onto the standard library so output lands on stdout as JSON lines
(or as a readable console rendering for local runs).
"""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure stdlib logging and structlog.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        log_format: ``json`` for one JSON object per line, ``console`` for
            structlog's coloured key=value renderer.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True,
    )

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if log_format == "console":
        # ConsoleRenderer formats exceptions itself
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
