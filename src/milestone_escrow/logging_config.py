"""structlog setup for the escrow service.

Every module logs dotted event names with keyword context
(``coordinator.verify.ledger_confirmed``, ``oracle.repository.result``).
The request-id middleware binds ``request_id`` into the contextvars, so all
entries emitted while one request drives the coordinator share it.

Oracle configs carry API tokens; any event key that names a credential is
masked before rendering, wherever the value came from.

Usage:
    from milestone_escrow.logging_config import setup_logging, get_logger
    setup_logging(log_level="INFO", json_logs=True)
    logger = get_logger(__name__)
    logger.info("project.created", project_id="abc-123", total="100")
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Third-party loggers and the level they are held at.
_NOISY_LOGGERS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "aiosqlite": logging.WARNING,
}

_CREDENTIAL_KEYS = frozenset({"access_token", "github_token", "figma_token", "token"})
_MASK = "***"


def mask_credentials(
    _logger: Any, _method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask credential values, including inside a nested ``config`` dict."""
    for key, value in event_dict.items():
        if key in _CREDENTIAL_KEYS and value:
            event_dict[key] = _MASK
        elif isinstance(value, dict) and _CREDENTIAL_KEYS.intersection(value):
            event_dict[key] = {
                k: (_MASK if k in _CREDENTIAL_KEYS and v else v) for k, v in value.items()
            }
    return event_dict


def setup_logging(
    log_level: str = "DEBUG",
    json_logs: bool = False,
    sql_echo: bool = False,
) -> None:
    """Route structlog and stdlib logging through one ProcessorFormatter.

    Args:
        log_level: Root level name (DEBUG, INFO, ...). Unknown names fall back to DEBUG.
        json_logs: JSON lines (deployment) instead of the colored console renderer.
        sql_echo: Let ``sqlalchemy.engine`` through at INFO instead of quieting it.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        mask_credentials,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if json_logs:
        # Tracebacks become a string field so each entry stays one JSON line.
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for name, level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    if sql_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
