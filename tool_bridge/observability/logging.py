"""
Structured Logging Module.

Structured JSON logging with correlation ID support. The orchestrator binds
each session id as the correlation id, so every lifecycle event emitted while
a session runs (tool dispatch, server restarts it triggers, model errors) can
be grouped by session.

Library modules that only need plain diagnostics use ``logging.getLogger``;
lifecycle events (server state changes, session progress) go through
``get_logger`` so they carry structured fields.

Pattern: Structured logging for observability
Pattern: Singleton configuration (configure once at startup)
"""

import contextvars
import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional, TextIO

import structlog
from structlog.typing import EventDict, FilteringBoundLogger, Processor


_configured: bool = False


# =============================================================================
# Correlation ID Context
# =============================================================================

_correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """
    Get the current correlation ID.

    Returns:
        Correlation ID if set, None otherwise
    """
    return _correlation_id_var.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID for the current context."""
    _correlation_id_var.set(None)


@contextmanager
def correlation_id_context(correlation_id: str) -> Generator[None, None, None]:
    """
    Context manager for setting correlation ID.

    Tasks created inside the block inherit the id, since asyncio copies
    the current context into new tasks.

    Example:
        >>> with correlation_id_context("sess-12345"):
        ...     logger.info("session started")
    """
    token = _correlation_id_var.set(correlation_id)
    try:
        yield
    finally:
        _correlation_id_var.reset(token)


# =============================================================================
# Custom Processors
# =============================================================================


def add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add correlation ID to log event if set."""
    correlation_id = get_correlation_id()
    if correlation_id is not None:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def add_timestamp(
    logger: logging.Logger, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO 8601 timestamp to log event."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def rename_level(
    logger: logging.Logger, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Rename log_level to level for cleaner output."""
    if "log_level" in event_dict:
        event_dict["level"] = event_dict.pop("log_level")
    return event_dict


# =============================================================================
# Singleton Configuration
# =============================================================================


def _stderr_logger_factory(*_args: object) -> structlog.PrintLogger:
    """Resolve sys.stderr per logger so replaced streams are honored."""
    return structlog.PrintLogger(file=sys.stderr)


def _configure_structlog(level: str, stream: Optional[TextIO]) -> None:
    processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        add_timestamp,
        add_correlation_id,
        rename_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_level_to_int(level)),
        context_class=dict,
        logger_factory=(
            structlog.PrintLoggerFactory(file=stream)
            if stream is not None
            else _stderr_logger_factory
        ),
        cache_logger_on_first_use=False,
    )


def configure_logging(
    level: str = "INFO",
    stream: Optional[TextIO] = None,
    force: bool = False,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    This should be called once at application startup. Subsequent calls
    are no-ops unless force=True.

    Output goes to ``stream`` (default: stderr), never stdout: in stdio
    deployments stdout may be owned by a protocol peer.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        stream: Output stream (default: sys.stderr)
        force: Force reconfiguration (for testing only)

    Example:
        >>> configure_logging(level="DEBUG")
        >>> logger = get_logger(__name__)
    """
    global _configured

    if _configured and not force:
        return

    _configure_structlog(level, stream)
    logging.basicConfig(
        level=_level_to_int(level),
        stream=stream or sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )

    _configured = True


def reset_logging() -> None:
    """
    Reset logging configuration state.

    WARNING: This should only be used in tests.
    """
    global _configured
    _configured = False
    structlog.reset_defaults()


# =============================================================================
# Logger Factory
# =============================================================================


def get_logger(name: str) -> FilteringBoundLogger:
    """
    Get a structured logger bound to a component name.

    The returned logger is lazy: configuration is looked up on every call,
    so module-level loggers pick up configure_logging() made later.
    Until the application configures logging, events render as JSON on
    stderr at INFO level.

    Args:
        name: Logger name (typically module name)

    Returns:
        Structlog logger with ``logger=name`` bound

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("server_state_changed", server="fs", state="running")
    """
    if not _configured and not structlog.is_configured():
        _configure_structlog("INFO", None)
    return structlog.get_logger(logger=name)


def _level_to_int(level: str) -> int:
    """Convert level string to logging int."""
    levels = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return levels.get(level.upper(), logging.INFO)
