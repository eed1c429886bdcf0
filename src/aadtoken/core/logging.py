"""Structured logging for aadtoken.

Every module logs through structlog bound to the stdlib 'aadtoken' logger
tree, so output never lands on stdout, where the CLI prints tokens.

On import, if the host application has not configured structlog yet, a
library default is installed: events go to stdlib logging and no handler
is added, so only warnings and errors reach stderr (via logging.lastResort)
until the application sets up logging itself.

configure_logging() is for the CLI and for scripts that want aadtoken's
own output: it attaches a single stderr handler to the 'aadtoken' logger
and may be called again to change level or format.

A correlation ID (acquisition_id) held in a contextvar ties together the
log lines of one token acquisition: cache lookup, refresh and grant flow.

Usage:
    from aadtoken.core.logging import get_logger, set_correlation_id

    logger = get_logger(__name__)

    # In the token manager:
    set_correlation_id(uuid.uuid4().hex[:12])

    logger.info("Token acquired", auth_type="device_code", fingerprint="3f2a...")
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any, TextIO

import structlog

# Parent of every module logger in the package
LIBRARY_LOGGER = "aadtoken"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Handler installed by configure_logging(), replaced on reconfiguration
_handler: logging.Handler | None = None


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context.

    Args:
        correlation_id: Identifier for this acquisition, or None to clear
    """
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get the current correlation ID, if set."""
    return _correlation_id.get()


def add_correlation_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor adding the acquisition ID to log entries."""
    correlation_id = _correlation_id.get()
    if correlation_id is not None:
        event_dict["acquisition_id"] = correlation_id
    return event_dict


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        add_correlation_id,
    ]


def _configure_structlog(renderer: structlog.types.Processor) -> None:
    # Loggers are not cached so a later configure_logging() call takes effect
    structlog.configure(
        processors=_shared_processors() + [structlog.processors.format_exc_info, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def configure_default_logging() -> None:
    """Install the library default: stdlib logging, no handlers of our own."""
    _configure_structlog(structlog.dev.ConsoleRenderer(colors=False))


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Send aadtoken's logs to stderr (or stream) at log_level.

    Only the 'aadtoken' logger is touched; the root logger and the host
    application's handlers are left alone. Safe to call repeatedly.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable format
        stream: Where to write; defaults to the current sys.stderr
    """
    global _handler

    stream = stream or sys.stderr
    library_logger = logging.getLogger(LIBRARY_LOGGER)
    if _handler is not None:
        library_logger.removeHandler(_handler)
    _handler = logging.StreamHandler(stream)
    _handler.setFormatter(logging.Formatter("%(message)s"))
    library_logger.addHandler(_handler)
    library_logger.setLevel(getattr(logging, log_level.upper()))
    library_logger.propagate = False

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())
    _configure_structlog(renderer)


def reset_logging() -> None:
    """Undo configure_logging() and return to the library default."""
    global _handler

    library_logger = logging.getLogger(LIBRARY_LOGGER)
    if _handler is not None:
        library_logger.removeHandler(_handler)
        _handler = None
    library_logger.setLevel(logging.NOTSET)
    library_logger.propagate = True
    configure_default_logging()


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, normally get_logger(__name__)."""
    return structlog.get_logger(name or LIBRARY_LOGGER)


if not structlog.is_configured():
    configure_default_logging()
