"""Structured logging configuration for the site monitor."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sitemonitor.classifier import SampleRecord

# Extra fields rendered by the formatters when present on a record
CONTEXT_FIELDS = ("site", "outcome", "status_code", "elapsed_ms")


class DiagnosticFilter(logging.Filter):
    """Filter that gates debug log messages based on diagnostic tags.

    When installed on a handler, this filter examines each DEBUG-level log
    record for a ``diagnostic_tag`` attribute (set via the ``extra`` dict).
    Records whose tag is **not** in the set of enabled tags are suppressed.
    Records at levels above DEBUG, or without a ``diagnostic_tag``, always
    pass through.

    The scheduler tags its per-decision debug lines with ``"scheduling"``;
    they stay silent unless ``MONITOR_DIAGNOSTIC_TAGS=scheduling`` (or ``*``)
    is set.

    Attributes:
        enabled_tags: Frozenset of tag strings that are allowed through.
        allow_all: If ``True``, all tagged diagnostics are emitted.
    """

    def __init__(self, enabled_tags: frozenset[str] | None = None) -> None:
        super().__init__()
        self.enabled_tags: frozenset[str] = enabled_tags or frozenset()
        self.allow_all: bool = "*" in self.enabled_tags

    def filter(self, record: logging.LogRecord) -> bool:
        """Decide whether the log record should be emitted."""
        if record.levelno != logging.DEBUG:
            return True

        tag: str | None = getattr(record, "diagnostic_tag", None)
        if tag is None:
            return True

        if self.allow_all:
            return True

        return tag in self.enabled_tags

    @classmethod
    def from_config_string(cls, tags_csv: str) -> DiagnosticFilter:
        """Create a filter from a comma-separated configuration string.

        Args:
            tags_csv: Comma-separated list of tags (e.g. ``"scheduling"``).
                ``"*"`` enables all tags. An empty string means no tagged
                diagnostics are emitted.

        Returns:
            A configured ``DiagnosticFilter`` instance.
        """
        if not tags_csv.strip():
            return cls(frozenset())
        tags = frozenset(t.strip() for t in tags_csv.split(",") if t.strip())
        return cls(tags)


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs structured log messages.

    Includes timestamp, level, component, message, and any site context.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with structured output."""
        # "sitemonitor.scheduler" -> "scheduler"
        component = record.name.split(".")[-1] if "." in record.name else record.name

        timestamp = datetime.fromtimestamp(record.created, tz=UTC).strftime("%Y-%m-%d %H:%M:%S.%f")[
            :-3
        ]

        parts = [
            f"{timestamp}",
            f"[{record.levelname:8}]",
            f"[{component:12}]",
        ]

        context_parts = []
        for key in CONTEXT_FIELDS:
            if hasattr(record, key):
                context_parts.append(f"{key}={getattr(record, key)}")

        if context_parts:
            parts.append(f"[{' '.join(context_parts)}]")

        parts.append(record.getMessage())

        if record.exc_info:
            parts.append(self.formatException(record.exc_info))

        return " ".join(parts)


class JSONFormatter(logging.Formatter):
    """Formatter that outputs JSON log messages for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        component = record.name.split(".")[-1] if "." in record.name else record.name

        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "component": component,
            "message": record.getMessage(),
        }

        for key in CONTEXT_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ContextAdapter(logging.LoggerAdapter[logging.Logger]):
    """Logger adapter that adds context to all log messages.

    Usage:
        logger = get_logger(__name__)
        site_logger = logger.with_context(site="example")
        site_logger.info("Sampling")
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        """Merge the adapter context into the ``extra`` dict of the call."""
        extra = kwargs.get("extra", {})
        if self.extra is not None:
            extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


class MonitorLogger(logging.Logger):
    """Custom logger with context support."""

    def with_context(self, **context: Any) -> ContextAdapter:
        """Create a logger adapter with additional context."""
        return ContextAdapter(self, context)


logging.setLoggerClass(MonitorLogger)


def get_logger(name: str) -> MonitorLogger:
    """Get a logger with the custom MonitorLogger class.

    Args:
        name: Logger name (typically __name__).

    Returns:
        MonitorLogger instance.
    """
    return logging.getLogger(name)  # type: ignore[return-value]


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    replace_handlers: bool = True,
    diagnostic_tags: str = "",
    log_file: Path | None = None,
) -> None:
    """Configure logging for the application.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
        json_format: If True, output JSON-formatted logs.
        replace_handlers: If True, remove existing handlers before adding new ones.
        diagnostic_tags: Comma-separated list of diagnostic tags to enable on
            the console handler. ``"*"`` enables all tagged diagnostics.
        log_file: Optional file that receives a copy of every log line.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    if replace_handlers:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()

    formatter: logging.Formatter = JSONFormatter() if json_format else StructuredFormatter()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)
    handler.addFilter(DiagnosticFilter.from_config_string(diagnostic_tags))
    root_logger.addHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(DiagnosticFilter.from_config_string(diagnostic_tags))
        root_logger.addHandler(file_handler)

    logging.getLogger("sitemonitor").setLevel(numeric_level)
    # httpx logs every request at INFO, which duplicates the sample log lines
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))


def log_sample(logger: logging.Logger, record: SampleRecord) -> None:
    """Log one classified sample at a level matching its outcome.

    Args:
        logger: Logger to use.
        record: The classified sample.
    """
    elapsed_ms = round(record.elapsed * 1000)
    if record.outcome.is_failure:
        log_method = logger.warning
    else:
        log_method = logger.info

    message = f"Sample {record.outcome} for {record.site_name} in {elapsed_ms}ms"
    if record.message:
        message = f"{message}: {record.message}"

    log_method(
        message,
        extra={
            "site": record.site_name,
            "outcome": str(record.outcome),
            "status_code": record.status_code,
            "elapsed_ms": elapsed_ms,
        },
    )


__all__ = [
    "ContextAdapter",
    "DiagnosticFilter",
    "JSONFormatter",
    "MonitorLogger",
    "StructuredFormatter",
    "get_logger",
    "log_sample",
    "setup_logging",
]
