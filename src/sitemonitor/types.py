"""Type definitions and enums for the site monitor.

This module provides centralized enums for sample outcomes and alert
transports, replacing magic strings throughout the codebase with type-safe
constants.

Usage:
    from sitemonitor.types import OutcomeKind

    # OutcomeKind inherits from StrEnum, so direct comparison works
    if record.outcome == OutcomeKind.SUCCESS:
        ...
"""

from __future__ import annotations

from enum import StrEnum


class OutcomeKind(StrEnum):
    """Classification of a single sample.

    Members are declared in classifier precedence order: the first condition
    that applies to a probe result decides its kind.

    Values:
        TRANSPORT_FAILURE: The request could not complete ("transport_failure")
        STATUS_FAILURE: A response arrived with a non-200 status ("status_failure")
        TOKEN_MISSING: The expected token is absent from the body ("token_missing")
        LATENCY_EXCEEDED: The response was slower than allowed ("latency_exceeded")
        SUCCESS: None of the above ("success")
    """

    TRANSPORT_FAILURE = "transport_failure"
    STATUS_FAILURE = "status_failure"
    TOKEN_MISSING = "token_missing"
    LATENCY_EXCEEDED = "latency_exceeded"
    SUCCESS = "success"

    @property
    def is_failure(self) -> bool:
        """True for every kind except SUCCESS."""
        return self is not OutcomeKind.SUCCESS

    @property
    def counts_toward_streak(self) -> bool:
        """True if this kind extends the consecutive-failure streak.

        Only slow responses count. Outages (transport, status and content
        failures) are recorded but leave the streak untouched.
        """
        return self is OutcomeKind.LATENCY_EXCEEDED

    @property
    def error_code(self) -> str:
        """Short code stored in the ``error_code`` column of a sample row."""
        return _ERROR_CODES[self]


_ERROR_CODES: dict[OutcomeKind, str] = {
    OutcomeKind.TRANSPORT_FAILURE: "TRANSPORT",
    OutcomeKind.STATUS_FAILURE: "STATUS",
    OutcomeKind.TOKEN_MISSING: "TOKEN",
    OutcomeKind.LATENCY_EXCEEDED: "SLOW",
    OutcomeKind.SUCCESS: "OK",
}


class NotifierType(StrEnum):
    """Enum for alert delivery transports.

    Values:
        MAILGUN: Mailgun HTTP messages API ("mailgun")
        SMTP: Plain SMTP relay ("smtp")
        NONE: Alerts are logged but not delivered ("none")
    """

    MAILGUN = "mailgun"
    SMTP = "smtp"
    NONE = "none"


__all__ = [
    "NotifierType",
    "OutcomeKind",
]
