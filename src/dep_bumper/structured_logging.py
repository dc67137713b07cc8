"""
Structured logging configuration for dep-bumper.

Provides consistent, machine-readable event logs for update collection,
registry lookups, graph building and source patching. Events go to stderr
so that JSON reports written to stdout stay parseable.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_RECORD_KEYS = frozenset(
    [
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
        "taskName",
    ]
)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class EventLogger:
    """Structured logger for engine events."""

    def __init__(self, name: str = "dep_bumper"):
        self.logger = logging.getLogger(f"dep_bumper.{name}")
        self._setup_logger()
        self.run_context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.propagate = False
            self.logger.setLevel(logging.WARNING)

    def set_run_context(
        self,
        root_module: Optional[str] = None,
        load_remote: Optional[bool] = None,
    ) -> None:
        """Set run context attached to every subsequent event."""
        self.run_context = {}
        if root_module:
            self.run_context["root_module"] = root_module
        if load_remote is not None:
            self.run_context["load_remote"] = load_remote

    def clear_run_context(self) -> None:
        self.run_context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.run_context, **kwargs}
        getattr(self.logger, level.lower())(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        """Log info level event."""
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        """Log warning level event."""
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        """Log error level event."""
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        """Log debug level event."""
        self._log("debug", event_type, **kwargs)


# Global logger instances
_updater_logger = EventLogger("updater")
_registry_logger = EventLogger("registry")
_graph_logger = EventLogger("graph")
_patcher_logger = EventLogger("patcher")

_ALL_LOGGERS = (_updater_logger, _registry_logger, _graph_logger, _patcher_logger)


def get_updater_logger() -> EventLogger:
    """Get update collection logger."""
    return _updater_logger


def get_graph_logger() -> EventLogger:
    """Get graph building logger."""
    return _graph_logger


def get_patcher_logger() -> EventLogger:
    """Get source patching logger."""
    return _patcher_logger


def log_registry_check(
    package_name: str,
    registry: str,
    latest_version: Optional[str],
    response_time_ms: Optional[float] = None,
) -> None:
    """Log registry lookup result."""
    log_data: Dict[str, Any] = {
        "package_name": package_name,
        "registry": registry,
        "latest_version": latest_version,
    }
    if response_time_ms is not None:
        log_data["response_time_ms"] = response_time_ms

    _registry_logger.debug("registry_check_completed", **log_data)


def log_update_found(name: str, from_version: str, to_version: str, referrer: Optional[str]) -> None:
    """Log a composed dependency update."""
    _updater_logger.info(
        "dependency_update_found",
        dependency=name,
        version_from=from_version,
        version_to=to_version,
        referrer=referrer,
    )


def set_run_context(
    root_module: Optional[str] = None, load_remote: Optional[bool] = None
) -> None:
    """Set global run context for all loggers."""
    for logger in _ALL_LOGGERS:
        logger.set_run_context(root_module, load_remote)


def clear_run_context() -> None:
    """Clear global run context."""
    for logger in _ALL_LOGGERS:
        logger.clear_run_context()


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure logging levels for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)
    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
