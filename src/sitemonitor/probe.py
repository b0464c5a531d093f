"""HTTP probe executor.

Issues one GET per sample and reports what happened without judging it:
classification against site policy is the job of
:mod:`sitemonitor.classifier`.
"""

from __future__ import annotations

import time
import types
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from sitemonitor.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PROBE_TIMEOUT = 30.0


@dataclass(frozen=True)
class ProbeResult:
    """Raw outcome of one HTTP request.

    Attributes:
        elapsed: Seconds from request start until the body was read or the
            request failed.
        status_code: HTTP status, or None if no response was received.
        body: Decoded response body (empty on transport failure).
        transport_error: Description of the failure when the request could
            not complete (DNS, connect, timeout, reset), otherwise None.
    """

    elapsed: float
    status_code: int | None = None
    body: str = ""
    transport_error: str | None = None


def describe_transport_error(error: Exception) -> str:
    """Render an httpx error as a short description for logs and sample rows."""
    detail = str(error)
    name = type(error).__name__
    return f"{name}: {detail}" if detail else name


class HttpProbe:
    """Synchronous HTTP prober with a bounded per-request timeout.

    One ``httpx.Client`` is reused across samples so connections to the same
    host can be kept alive. The timeout applies to connect, read, write and
    pool acquisition, so a hung server cannot hold the single sampling slot
    indefinitely.

    Example:
        with HttpProbe(timeout=10.0) as probe:
            result = probe.probe("https://example.com/health")
    """

    def __init__(
        self,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        user_agent: str = "site-monitor",
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        """Initialize the probe.

        Args:
            timeout: Seconds allowed for each phase of a request.
            user_agent: Value of the User-Agent header.
            transport: Optional httpx transport, used by tests to inject
                ``httpx.MockTransport``.
            clock: Monotonic clock used to measure elapsed time.
        """
        self._timeout = timeout
        self._clock = clock
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            headers={"User-Agent": user_agent},
            transport=transport,
        )

    @property
    def timeout(self) -> float:
        """Per-request timeout in seconds."""
        return self._timeout

    def probe(self, url: str) -> ProbeResult:
        """Request ``url`` once and measure how long it took.

        Never raises for network problems: they are reported through
        ``ProbeResult.transport_error``.

        Args:
            url: The URL to GET.

        Returns:
            ProbeResult describing the response or the failure.
        """
        start = self._clock()
        try:
            response = self._client.get(url)
            body = response.text
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            elapsed = self._clock() - start
            logger.debug("Probe of %s failed after %.3fs: %s", url, elapsed, e)
            return ProbeResult(elapsed=elapsed, transport_error=describe_transport_error(e))

        elapsed = self._clock() - start
        return ProbeResult(elapsed=elapsed, status_code=response.status_code, body=body)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> HttpProbe:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        self.close()


__all__ = [
    "DEFAULT_PROBE_TIMEOUT",
    "HttpProbe",
    "ProbeResult",
    "describe_transport_error",
]
