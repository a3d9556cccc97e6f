"""
EtagWatch Structured Logging Module.

Provides consistent, structured logging throughout the watcher.
Requires Python 3.11+.
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any, TextIO

import structlog
from structlog.types import Processor

from utils.config import LoggingSettings, get_settings

# File opened by the last configure_logging call, closed on reconfigure
_log_file: TextIO | None = None


def _add_app_context(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add application context to all log entries."""
    settings = get_settings()
    event_dict["app"] = settings.app_name
    event_dict["version"] = settings.app_version
    return event_dict


def _build_processors(log_format: str) -> list[Processor]:
    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_app_context,
    ]
    if log_format == "json":
        return [*shared, structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [
        *shared,
        structlog.dev.ConsoleRenderer(colors=False, exception_formatter=structlog.dev.plain_traceback),
    ]


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """
    Configure structured logging for a process embedding the watcher.

    Call this once at startup. Library code only logs through
    ``get_logger``; without this call structlog's defaults apply.

    Args:
        settings: Logging settings, defaults to the ``LOG_*`` environment
    """
    global _log_file

    settings = settings or get_settings().logging
    level = logging.getLevelNamesMapping().get(settings.level.upper(), logging.INFO)

    previous = _log_file
    if settings.file_path is not None:
        _log_file = settings.file_path.open("a", encoding="utf-8")
        logger_factory = structlog.WriteLoggerFactory(file=_log_file)
    else:
        _log_file = None
        logger_factory = structlog.PrintLoggerFactory(file=sys.stdout)

    structlog.configure(
        processors=_build_processors(settings.format),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=False,
    )

    if previous is not None:
        previous.close()

    # watchdog logs every emitter start/stop through stdlib logging
    logging.getLogger("watchdog").setLevel(max(level, logging.WARNING))


def watch_context(root_path: str) -> AbstractContextManager[Any]:
    """
    Bind the watched root to every log entry emitted in the block.

    Context variables are per thread, so each watcher thread binds its
    own root.
    """
    return structlog.contextvars.bound_contextvars(watch_root=root_path)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically the class or module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class LoggerMixin:
    """
    Mixin class to add logging capability to any class.

    Usage:
        class PathRegistry(LoggerMixin):
            def remove(self, path):
                self.log.debug("path_removed", path=path)
    """

    @property
    def log(self) -> structlog.stdlib.BoundLogger:
        """Get logger bound to this class name."""
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger
