"""Read-only state accessor for the web surface.

The routes never touch the scheduler directly. They go through
:class:`MonitorStateAccessor`, which turns a :class:`~sitemonitor.main.MonitorStatus`
snapshot into plain rows ready for template rendering and JSON responses.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from sitemonitor.classifier import SampleRecord
    from sitemonitor.main import MonitorStatus
    from sitemonitor.state import SiteStatus


@dataclass(frozen=True)
class SampleInfo:
    """Read-only view of one sample."""

    site_name: str
    sampled_at: datetime
    elapsed_ms: int
    status_code: int
    outcome: str
    error_code: str
    message: str | None


@dataclass(frozen=True)
class SiteRow:
    """One row of the per-site status table."""

    name: str
    url: str
    active: bool
    # Seconds until the next sample, None for inactive sites
    due_in: float | None
    total_samples: int
    total_failures: int
    consecutive_failures: int
    alert_armed: bool
    last_sample: SampleInfo | None


@dataclass(frozen=True)
class DashboardState:
    """Immutable snapshot rendered by the status page."""

    running: bool
    started_at: datetime | None
    uptime_seconds: float
    in_flight: str | None
    sites: list[SiteRow]
    total_samples: int
    total_failures: int
    last_sample: SampleInfo | None
    last_error: SampleInfo | None
    alerts_sent: int
    alerts_failed: int
    storage_state: str | None


class MonitorStateProvider(Protocol):
    """Operations of the monitor used by the web surface."""

    def status(self) -> MonitorStatus: ...

    def stop(self) -> None: ...

    def is_shutdown_requested(self) -> bool: ...


def _sample_info(record: SampleRecord | None) -> SampleInfo | None:
    if record is None:
        return None
    return SampleInfo(
        site_name=record.site_name,
        sampled_at=record.sampled_at,
        elapsed_ms=round(record.elapsed * 1000),
        status_code=record.status_code,
        outcome=str(record.outcome),
        error_code=record.outcome.error_code,
        message=record.message,
    )


class MonitorStateAccessor:
    """Builds DashboardState snapshots from a running monitor."""

    def __init__(
        self,
        monitor: MonitorStateProvider,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the accessor.

        Args:
            monitor: The monitor to read from.
            clock: Same monotonic clock the scheduler uses for due times.
            wall_clock: Source of the current time for uptime.
        """
        self._monitor = monitor
        self._clock = clock
        self._wall_clock = wall_clock

    def _site_row(self, site: SiteStatus, now: float) -> SiteRow:
        if not site.active or site.next_due_at == math.inf:
            due_in = None
        else:
            due_in = max(0.0, site.next_due_at - now)
        return SiteRow(
            name=site.name,
            url=site.url,
            active=site.active,
            due_in=due_in,
            total_samples=site.total_samples,
            total_failures=site.total_failures,
            consecutive_failures=site.consecutive_failures,
            alert_armed=site.alert_armed,
            last_sample=_sample_info(site.last_sample),
        )

    def get_state(self) -> DashboardState:
        """Take a snapshot of the monitor."""
        status = self._monitor.status()
        now = self._clock()
        uptime = 0.0
        if status.started_at is not None:
            current = self._wall_clock() if self._wall_clock else datetime.now(tz=status.started_at.tzinfo)
            uptime = max(0.0, (current - status.started_at).total_seconds())

        return DashboardState(
            running=status.running,
            started_at=status.started_at,
            uptime_seconds=uptime,
            in_flight=status.in_flight,
            sites=[self._site_row(site, now) for site in status.sites],
            total_samples=status.total_samples,
            total_failures=status.total_failures,
            last_sample=_sample_info(status.last_sample),
            last_error=_sample_info(status.last_error),
            alerts_sent=status.alerts_sent,
            alerts_failed=status.alerts_failed,
            storage_state=status.storage["state"] if status.storage else None,
        )

    def request_stop(self) -> None:
        self._monitor.stop()

    def is_shutdown_requested(self) -> bool:
        return self._monitor.is_shutdown_requested()


__all__ = [
    "DashboardState",
    "MonitorStateAccessor",
    "MonitorStateProvider",
    "SampleInfo",
    "SiteRow",
]
