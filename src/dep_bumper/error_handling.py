"""
Diagnostics for dep-bumper.

Failures that only affect one dependency edge or one referrer are reported
here instead of being raised, so a run keeps going and the caller can look
at the per-category counts afterwards.
"""

import logging
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ErrorLevel(Enum):
    WARNING = "WARNING"
    ERROR = "ERROR"


class ErrorCategory(Enum):
    """Where a diagnostic came from."""

    NETWORK = "NETWORK"
    CREDENTIAL = "CREDENTIAL"
    FILESYSTEM = "FILESYSTEM"
    GRAPH = "GRAPH"
    PATCH = "PATCH"


@dataclass
class ErrorContext:
    """One reported diagnostic."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    suggestions: List[str] = field(default_factory=list)


class SecureLogger:
    """Logger that strips credentials out of messages before emitting them."""

    SENSITIVE_PATTERNS = [
        (r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', 'token="[REDACTED]"'),
        (r"(https?://[^@\s]+:)[^@\s]+@", r"\1[REDACTED]@"),
        (r"Authorization:\s*\w+\s+([^\s]+)", "Authorization: [REDACTED]"),
    ]
    SENSITIVE_KEYS = ("token", "password", "secret", "credential", "auth")

    def __init__(
        self, name: str, level: int = logging.WARNING, log_format: str = DEFAULT_LOG_FORMAT
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        if not self.logger.handlers:
            self.logger.addHandler(logging.StreamHandler(sys.stderr))
        formatter = logging.Formatter(log_format)
        for handler in self.logger.handlers:
            handler.setFormatter(formatter)

    def _sanitize_message(self, message: str) -> str:
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            message = re.sub(pattern, replacement, message, flags=re.IGNORECASE)
        return message

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        for key, value in data.items():
            if any(sensitive in key.lower() for sensitive in self.SENSITIVE_KEYS):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = self._sanitize_message(value)
            else:
                sanitized[key] = value
        return sanitized

    def log_error_context(self, context: ErrorContext) -> None:
        log_data: Dict[str, Any] = {
            "category": context.category.value,
            "function": f"{context.module}.{context.function}",
            "details": self._sanitize_dict(context.details),
        }
        if context.exception:
            log_data["exception"] = type(context.exception).__name__
        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        level = getattr(logging, context.level.value)
        self.logger.log(level, f"{self._sanitize_message(context.message)} | {log_data}")


class ErrorHandler:
    """
    Central sink for diagnostics.

    Every reported diagnostic is logged and counted under
    `"{CATEGORY}_{LEVEL}"`, e.g. `"PATCH_WARNING"`.
    """

    def __init__(
        self,
        logger_name: str = "dep_bumper",
        log_level: int = logging.WARNING,
        log_format: str = DEFAULT_LOG_FORMAT,
    ):
        self.logger = SecureLogger(logger_name, log_level, log_format)
        self.error_stats: Dict[str, int] = {}

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1
        self.logger.log_error_context(context)
        return context

    def warning(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(ErrorLevel.WARNING, category, message, module, function, **kwargs)

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(ErrorLevel.ERROR, category, message, module, function, **kwargs)

    def get_error_stats(self) -> Dict[str, int]:
        return self.error_stats.copy()

    def reset_stats(self) -> None:
        self.error_stats.clear()


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    log_format: str = DEFAULT_LOG_FORMAT,
    logger_name: str = "dep_bumper",
) -> ErrorHandler:
    """Replace the global handler with one using the given level and format."""
    global _global_error_handler
    _global_error_handler = ErrorHandler(logger_name, log_level, log_format)
    return _global_error_handler


def _sanitize_url(url: str) -> str:
    parsed = urlparse(url)
    sanitized_url = f"{parsed.scheme}://{parsed.hostname}"
    if parsed.port:
        sanitized_url += f":{parsed.port}"
    return sanitized_url + parsed.path


def log_network_error(
    message: str,
    module: str,
    function: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    exception: Optional[Exception] = None,
) -> None:
    """
    Report a failed registry lookup.

    Resolution failures are isolated to one dependency, so they are reported
    at warning level and never raised.
    """
    details: Dict[str, Any] = {}
    if url is not None:
        details["url"] = _sanitize_url(url)
    if status_code is not None:
        details["status_code"] = status_code

    get_error_handler().warning(
        ErrorCategory.NETWORK,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=["Check network connectivity", "Verify the registry URL"],
    )


def log_credential_error(
    message: str,
    module: str,
    function: str,
    credential_type: Optional[str] = None,
    exception: Optional[Exception] = None,
) -> None:
    details = {}
    if credential_type is not None:
        details["credential_type"] = credential_type

    get_error_handler().warning(
        ErrorCategory.CREDENTIAL,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=["Check the registry token"],
    )


def log_patch_warning(
    message: str,
    module: str,
    function: str,
    specifier: Optional[str] = None,
    referrer: Optional[str] = None,
) -> None:
    """Report an update that could not be applied to its referrer."""
    details = {}
    if specifier is not None:
        details["specifier"] = specifier
    if referrer is not None:
        details["referrer"] = referrer

    get_error_handler().warning(
        ErrorCategory.PATCH,
        message,
        module,
        function,
        details=details,
        suggestions=["Update this import by hand"],
    )


def log_filesystem_error(
    message: str,
    module: str,
    function: str,
    file_path: Optional[str] = None,
    exception: Optional[Exception] = None,
) -> None:
    details = {}
    if file_path is not None:
        # File name only
        details["file_path"] = Path(file_path).name

    get_error_handler().error(
        ErrorCategory.FILESYSTEM,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=["Check that the file exists and is writable"],
    )
