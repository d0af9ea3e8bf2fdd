"""Structured logging configuration for taskledger.

Uses structlog so store, context and sync events carry their ids and
paths as key/value pairs, rendered for the console or as JSON lines.
"""

import logging
import sys
from typing import TYPE_CHECKING

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from taskledger.config import TaskLedgerSettings


def configure_logging(settings: "TaskLedgerSettings | None" = None) -> None:
    """Configure structured logging based on settings.

    Args:
        settings: Application settings. If None, uses defaults.
    """
    log_level = logging.WARNING
    log_format = "console"

    if settings is not None:
        log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
        log_format = settings.log_format

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name) if name else structlog.get_logger()


def bind_context(**kwargs: object) -> None:
    """Bind context variables to all subsequent log calls in the current context.

    Example:
        bind_context(replica="/home/me/.local/share/taskledger/replica.json")
        logger.info("batch_committed")  # Will include replica

    Args:
        **kwargs: Key-value pairs to bind to logging context
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


def unbind_context(*keys: str) -> None:
    """Remove specific keys from the logging context.

    Args:
        *keys: Keys to remove from context
    """
    structlog.contextvars.unbind_contextvars(*keys)


class Loggers:
    """Pre-configured logger instances for taskledger components."""

    @staticmethod
    def store() -> structlog.stdlib.BoundLogger:
        """Logger for the task store and replica persistence."""
        return get_logger("taskledger.store")

    @staticmethod
    def translator() -> structlog.stdlib.BoundLogger:
        """Logger for operation translation."""
        return get_logger("taskledger.translator")

    @staticmethod
    def locking() -> structlog.stdlib.BoundLogger:
        """Logger for file locks."""
        return get_logger("taskledger.locking")

    @staticmethod
    def context() -> structlog.stdlib.BoundLogger:
        """Logger for context resolution and taskrc access."""
        return get_logger("taskledger.context")

    @staticmethod
    def sync() -> structlog.stdlib.BoundLogger:
        """Logger for the sync bridge."""
        return get_logger("taskledger.sync")

    @staticmethod
    def config() -> structlog.stdlib.BoundLogger:
        """Logger for configuration."""
        return get_logger("taskledger.config")
