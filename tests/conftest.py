"""Shared pytest fixtures for site monitor tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

ENV_VARS = (
    "MONITOR_LOG_LEVEL",
    "MONITOR_LOG_JSON",
    "MONITOR_LOG_FILE",
    "MONITOR_DIAGNOSTIC_TAGS",
    "MONITOR_PROBE_TIMEOUT",
    "MONITOR_SHUTDOWN_GRACE_SECONDS",
    "MONITOR_USER_AGENT",
    "DATABASE_URL",
    "DB_DRIVER",
    "DB_HOST",
    "DB_PORT",
    "DB_USER",
    "DB_PASS",
    "DB_NAME",
    "MAILGUN_API_KEY",
    "MAILGUN_DOMAIN",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASSWORD",
    "MONITOR_MAIL_FROM",
    "MONITOR_WEB_ENABLED",
    "MONITOR_WEB_HOST",
    "MONITOR_WEB_PORT",
    "MONITOR_SHUTDOWN_PASSWORD",
    "MONITOR_STORAGE_FAILURE_THRESHOLD",
    "MONITOR_STORAGE_RECOVERY_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Isolate tests from the developer's environment and any .env file."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    """Restore root logger handlers and level after tests that call setup_logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("sitemonitor").setLevel(logging.NOTSET)
    logging.getLogger("httpx").setLevel(logging.NOTSET)
