"""Site monitor facade.

This module contains the SiteMonitor class, which composes the scheduler,
the sample sink and the alert dispatcher and exposes the operations used by
the process runner and the administrative web surface: start, run, stop,
dynamic reset and status.

The module structure follows single responsibility:
- cli.py: Command-line argument parsing
- bootstrap.py: Startup and dependency wiring
- app.py: Application runner and lifecycle
- shutdown.py: Graceful termination
- dashboard_server.py: Status and stop endpoints
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from sitemonitor.alerts import AlertDispatcher
from sitemonitor.classifier import SampleRecord
from sitemonitor.config import Config, SiteConfig
from sitemonitor.logging import get_logger
from sitemonitor.scheduler import SiteScheduler
from sitemonitor.state import SiteStatus
from sitemonitor.storage import SampleSink

logger = get_logger(__name__)


@dataclass(frozen=True)
class MonitorStatus:
    """Point-in-time view of the whole monitor."""

    running: bool
    started_at: datetime | None
    in_flight: str | None
    sites: list[SiteStatus]
    last_sample: SampleRecord | None
    last_error: SampleRecord | None
    alerts_sent: int
    alerts_failed: int
    storage: dict[str, Any] | None

    @property
    def total_samples(self) -> int:
        return sum(site.total_samples for site in self.sites)

    @property
    def total_failures(self) -> int:
        return sum(site.total_failures for site in self.sites)


def _latest(records: Iterable[SampleRecord | None]) -> SampleRecord | None:
    present = [record for record in records if record is not None]
    if not present:
        return None
    return max(present, key=lambda record: record.sampled_at)


class SiteMonitor:
    """Long-running monitor over the configured sites.

    Usage:
        monitor = SiteMonitor(config, scheduler, sink, dispatcher)
        monitor.run()  # blocks until stop() is called
    """

    def __init__(
        self,
        config: Config,
        scheduler: SiteScheduler,
        sink: SampleSink,
        dispatcher: AlertDispatcher,
        config_loader: Callable[[], Config] | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Application configuration.
            scheduler: Scheduler built over ``config.sites``.
            sink: Sample sink the scheduler writes to.
            dispatcher: Alert dispatcher the scheduler uses.
            config_loader: Reloads the configuration for :meth:`dynamic_reset`.
        """
        self.config = config
        self._scheduler = scheduler
        self._sink = sink
        self._dispatcher = dispatcher
        self._config_loader = config_loader
        self._stop_event = threading.Event()
        self._closed = False
        self._close_lock = threading.Lock()
        self._started_at: datetime | None = None

    @property
    def scheduler(self) -> SiteScheduler:
        return self._scheduler

    def is_shutdown_requested(self) -> bool:
        """Check if stop has been requested."""
        return self._stop_event.is_set()

    def start(self) -> None:
        """Start sampling in the background and return immediately."""
        if self._started_at is None:
            self._started_at = datetime.now(tz=UTC)
        active = len(self.config.active_sites)
        if active == 0:
            logger.warning("No active sites configured, the monitor will stay idle")
        else:
            logger.info("Starting site monitor for %d active site(s)", active)
        self._scheduler.start()

    def run(self) -> None:
        """Start sampling and block until :meth:`stop` is called, then clean up."""
        self.start()
        try:
            self._stop_event.wait()
        finally:
            self.stop()
            self.close()
        logger.info("Site monitor shutdown complete")

    def stop(self) -> None:
        """Stop scheduling samples. Safe to call more than once, from any thread."""
        if not self._stop_event.is_set():
            logger.info("Stop requested")
        self._stop_event.set()
        self._scheduler.stop()

    # Name used by ShutdownHandler callbacks
    request_shutdown = stop

    def close(self) -> None:
        """Wait for an in-flight probe, then release the dispatcher and sink."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        grace = self.config.scheduler.shutdown_grace_seconds
        if not self._scheduler.wait_idle(timeout=grace):
            logger.warning(
                "Probe of %s still in flight after %.1fs grace period, abandoning it",
                self._scheduler.in_flight,
                grace,
            )
        self._dispatcher.shutdown(wait=False)
        close = getattr(self._sink, "close", None)
        if callable(close):
            close()

    def run_once(self) -> list[SampleRecord]:
        """Sample every active site once without starting the loop."""
        records = self._scheduler.run_once()
        failures = sum(1 for record in records if not record.succeeded)
        logger.info("Single pass completed: %d sample(s), %d failure(s)", len(records), failures)
        return records

    def dynamic_reset(self, sites: Iterable[SiteConfig] | None = None) -> None:
        """Replace the monitored site set without restarting.

        Args:
            sites: New site set. If omitted, the configuration is reloaded
                with the loader given at construction.

        Raises:
            ConfigurationError: If the reloaded configuration is invalid or two
                sites share a name; the current site set is kept.
            RuntimeError: If no sites are given and no loader is available.
        """
        if sites is None:
            if self._config_loader is None:
                raise RuntimeError("No configuration loader available for dynamic reset")
            new_config = self._config_loader()
            sites = new_config.sites
            self._scheduler.reconfigure(sites)
            self.config = new_config
        else:
            sites = tuple(sites)
            self._scheduler.reconfigure(sites)
            self.config = replace(self.config, sites=sites)
        update_sites = getattr(self._sink, "update_sites", None)
        if callable(update_sites):
            update_sites(sites)

    def status(self) -> MonitorStatus:
        """Collect a status snapshot for reporting."""
        sites = self._scheduler.snapshot()
        breaker = getattr(self._sink, "breaker", None)
        return MonitorStatus(
            running=self._scheduler.running,
            started_at=self._started_at,
            in_flight=self._scheduler.in_flight,
            sites=sites,
            last_sample=_latest(site.last_sample for site in sites),
            last_error=_latest(site.last_failure for site in sites),
            alerts_sent=self._dispatcher.alerts_sent,
            alerts_failed=self._dispatcher.alerts_failed,
            storage=breaker.get_status() if breaker is not None else None,
        )


__all__ = [
    "MonitorStatus",
    "SiteMonitor",
]
