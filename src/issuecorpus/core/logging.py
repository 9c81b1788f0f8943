# src/issuecorpus/core/logging.py
"""Structured logging for corpus builds.

structlog and stdlib logging share one handler and one renderer, so lines
from SQLAlchemy, tenacity and dynaconf read like the pipeline's own.
Run-scoped fields (process name, resume flag) live in contextvars and are
merged into every line emitted while a run is in flight.
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

from issuecorpus.core.config import LoggingSettings

# Libraries that log every statement, pool checkout or settings lookup.
_CHATTY_LIBRARIES: tuple[str, ...] = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.engine.Engine",
    "sqlalchemy.pool",
    "sqlalchemy.dialects",
    "dynaconf",
)


def _drop_formatter_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Strip the bookkeeping keys ProcessorFormatter injects."""
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderer_chain(json_output: bool) -> list[Any]:
    if json_output:
        return [
            _drop_formatter_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [_drop_formatter_fields, structlog.dev.ConsoleRenderer(colors=False)]


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
) -> None:
    """Route structlog and stdlib logging to stdout through one renderer.

    Args:
        json_output: Emit JSON lines instead of console text
        level: Root log level (DEBUG, INFO, WARNING, ERROR)
    """
    log_level = getattr(logging, level.upper())
    pre_chain = _pre_chain()

    # Not cached: configure_logging may run again with other settings
    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processors=_renderer_chain(json_output), foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    library_level = max(log_level, logging.WARNING)
    for name in _CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)


def configure_from_settings(settings: LoggingSettings) -> None:
    configure_logging(json_output=settings.json_output, level=settings.level)


def run_context(process_name: str, **fields: Any) -> AbstractContextManager[Any]:
    """Bind ``process_name`` and extra fields to every line logged inside the block.

    Example:
        with run_context("corpus", resume=True):
            logger.info("Corpus build started")  # carries process_name and resume
    """
    return structlog.contextvars.bound_contextvars(process_name=process_name, **fields)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Module logger; pass ``__name__``."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
