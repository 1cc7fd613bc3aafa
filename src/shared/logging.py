"""Structured logging for the MCP Gateway.

structlog renders every event; standard library loggers (uvicorn,
SQLAlchemy, GitPython) are routed to stdout at the same level. Request
scoped values are carried in structlog context variables.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Third-party loggers that are only useful when debugging
CHATTY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "git.cmd", "asyncio")


def add_service(service: str) -> Processor:
    """Processor stamping every event with the gateway name."""

    def processor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service)
        return event_dict

    return processor


def drop_color_message(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    # uvicorn duplicates the message with ANSI codes under this key
    event_dict.pop("color_message", None)
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    service: str = "mcp-gateway"
) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        log_level: Minimum level name; unknown names fall back to INFO
        json_output: Render JSON lines instead of the coloured console format
        service: Value of the ``service`` key added to every event
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_service(service),
        drop_color_message,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", stream=sys.stdout, level=level, force=True)
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """Return a structlog logger, optionally bound to ``initial_context``."""
    logger = structlog.get_logger(name)
    return logger.bind(**initial_context) if initial_context else logger


@contextmanager
def request_context(**context: Any) -> Iterator[None]:
    """Bind values to every log event emitted inside the block."""
    with structlog.contextvars.bound_contextvars(**context):
        yield
