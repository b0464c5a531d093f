"""Outcome classification for probe results.

A probe result is judged against the site policy in a fixed precedence
order; the first rule that applies decides the outcome:

1. TRANSPORT_FAILURE - the request could not complete
2. STATUS_FAILURE - a response arrived but the status is not 200
3. TOKEN_MISSING - the expected token is not a substring of the body
4. LATENCY_EXCEEDED - the response took longer than ``alert_load_time``
5. SUCCESS

:func:`run_sample` combines probing and classification into a pipeline that
always returns a :class:`SampleRecord` and never raises, so the scheduler can
re-arm unconditionally.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from sitemonitor.config import SiteConfig
from sitemonitor.logging import get_logger
from sitemonitor.probe import ProbeResult
from sitemonitor.types import OutcomeKind

logger = get_logger(__name__)

# Status code stored when no HTTP response was received
TRANSPORT_FAILURE_STATUS = 0

HTTP_OK = 200


class Prober(Protocol):
    """Anything that can turn a URL into a ProbeResult."""

    def probe(self, url: str) -> ProbeResult: ...


@dataclass(frozen=True)
class Outcome:
    """Classification of one probe result."""

    kind: OutcomeKind
    message: str | None = None


@dataclass(frozen=True)
class SampleRecord:
    """Immutable record of one sample, handed to the sample sink.

    Attributes:
        site_name: Identifier of the sampled site.
        sampled_at: UTC time the sample completed.
        elapsed: Seconds the probe took.
        status_code: HTTP status, or TRANSPORT_FAILURE_STATUS when the request
            did not complete.
        outcome: Classified outcome.
        message: Optional detail (error description, expected token, limit).
    """

    site_name: str
    sampled_at: datetime
    elapsed: float
    status_code: int
    outcome: OutcomeKind
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        """True if the sample was classified as SUCCESS."""
        return self.outcome == OutcomeKind.SUCCESS


def classify(
    transport_error: str | None,
    status_code: int | None,
    body: str,
    elapsed: float,
    site: SiteConfig,
) -> Outcome:
    """Classify a raw probe result against site policy.

    Args:
        transport_error: Description of a failed request, or None.
        status_code: HTTP status received, or None.
        body: Response body text.
        elapsed: Seconds the request took.
        site: Policy of the sampled site.

    Returns:
        Exactly one Outcome, chosen by the precedence order of this module.
    """
    if transport_error is not None or status_code is None:
        return Outcome(OutcomeKind.TRANSPORT_FAILURE, transport_error or "No response received")

    if status_code != HTTP_OK:
        return Outcome(OutcomeKind.STATUS_FAILURE, f"HTTP status {status_code}")

    # An empty token is found in every body
    if site.expected_token not in body:
        return Outcome(
            OutcomeKind.TOKEN_MISSING, f"Expected token {site.expected_token!r} not found"
        )

    if elapsed > site.alert_load_time:
        return Outcome(
            OutcomeKind.LATENCY_EXCEEDED,
            f"Response took {elapsed:.3f}s, limit is {site.alert_load_time:g}s",
        )

    return Outcome(OutcomeKind.SUCCESS)


def build_sample_record(
    site: SiteConfig,
    result: ProbeResult,
    outcome: Outcome,
    sampled_at: datetime | None = None,
) -> SampleRecord:
    """Create the SampleRecord for a classified probe result."""
    return SampleRecord(
        site_name=site.name,
        sampled_at=sampled_at or datetime.now(tz=UTC),
        elapsed=result.elapsed,
        status_code=result.status_code if result.status_code is not None else TRANSPORT_FAILURE_STATUS,
        outcome=outcome.kind,
        message=outcome.message,
    )


def run_sample(
    prober: Prober,
    site: SiteConfig,
    now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
) -> SampleRecord:
    """Probe a site and classify the result.

    Any exception escaping the prober is converted into a TRANSPORT_FAILURE
    record so that callers always receive a SampleRecord.

    Args:
        prober: Object performing the HTTP request.
        site: The site to sample.
        now: Wall-clock source for ``sampled_at``.

    Returns:
        The classified sample.
    """
    try:
        result = prober.probe(site.url)
    except Exception as e:
        logger.exception(
            "Probe for %s raised unexpectedly", site.name, extra={"site": site.name}
        )
        result = ProbeResult(elapsed=0.0, transport_error=f"{type(e).__name__}: {e}")

    outcome = classify(
        result.transport_error,
        result.status_code,
        result.body,
        result.elapsed,
        site,
    )
    return build_sample_record(site, result, outcome, sampled_at=now())


__all__ = [
    "HTTP_OK",
    "TRANSPORT_FAILURE_STATUS",
    "Outcome",
    "Prober",
    "SampleRecord",
    "build_sample_record",
    "classify",
    "run_sample",
]
