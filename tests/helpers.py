"""Test helper functions for site monitor tests.

These helpers build configuration objects, sample records and fully wired
schedulers with sensible defaults while allowing customization.

Usage
=====

Import and use helpers directly in tests::

    from tests.helpers import make_harness, make_site

    def test_example():
        harness = make_harness([make_site("alpha", sample_interval=5)])
        harness.scheduler.start()
        harness.timers.fire()
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sitemonitor.alerts import AlertDispatcher
from sitemonitor.classifier import SampleRecord
from sitemonitor.config import Config, DashboardConfig, SchedulerConfig, SiteConfig
from sitemonitor.main import MonitorStatus
from sitemonitor.scheduler import SiteScheduler
from sitemonitor.state import SiteStatus
from sitemonitor.types import OutcomeKind
from tests.mocks import FakeClock, FakeTimerFactory, RecordingNotifier, RecordingSink, ScriptedProber

FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


def make_site(
    name: str = "alpha",
    url: str | None = None,
    expected_token: str = "ok",
    sample_interval: float = 10.0,
    alert_load_time: float = 1.0,
    alert_threshold: int = 3,
    active: bool = True,
    alert_emails: tuple[str, ...] = ("ops@example.com",),
    max_load_time: float = 0.0,
) -> SiteConfig:
    """Create a SiteConfig; the URL defaults to https://<name>.example.com/."""
    return SiteConfig(
        name=name,
        url=url or f"https://{name}.example.com/",
        expected_token=expected_token,
        sample_interval=sample_interval,
        alert_load_time=alert_load_time,
        alert_threshold=alert_threshold,
        active=active,
        alert_emails=alert_emails,
        max_load_time=max_load_time,
    )


def make_record(
    site_name: str = "alpha",
    outcome: OutcomeKind = OutcomeKind.SUCCESS,
    elapsed: float = 0.1,
    status_code: int = 200,
    message: str | None = None,
    sampled_at: datetime = FIXED_NOW,
) -> SampleRecord:
    return SampleRecord(
        site_name=site_name,
        sampled_at=sampled_at,
        elapsed=elapsed,
        status_code=status_code,
        outcome=outcome,
        message=message,
    )


def make_config(
    sites: tuple[SiteConfig, ...] = (),
    shutdown_grace_seconds: float = 1.0,
    shutdown_password: str = "secret",
    **overrides: Any,
) -> Config:
    """Create a Config with short grace periods for tests."""
    overrides.setdefault("scheduler", SchedulerConfig(shutdown_grace_seconds=shutdown_grace_seconds))
    overrides.setdefault("dashboard", DashboardConfig(shutdown_password=shutdown_password))
    return Config(sites=sites, **overrides)



def make_site_status(
    name: str = "alpha",
    active: bool = True,
    next_due_at: float = 25.0,
    last_sample: SampleRecord | None = None,
    last_failure: SampleRecord | None = None,
) -> SiteStatus:
    return SiteStatus(
        name=name,
        url=f"https://{name}.example.com/",
        active=active,
        next_due_at=next_due_at,
        total_samples=4,
        total_failures=1,
        consecutive_failures=1,
        alert_armed=False,
        last_sample=last_sample,
        last_failure=last_failure,
    )


def make_status(sites: list[SiteStatus], **overrides: Any) -> MonitorStatus:
    """Create a running MonitorStatus started at FIXED_NOW."""
    values: dict[str, Any] = {
        "running": True,
        "started_at": FIXED_NOW,
        "in_flight": None,
        "sites": sites,
        "last_sample": None,
        "last_error": None,
        "alerts_sent": 0,
        "alerts_failed": 0,
        "storage": None,
    }
    values.update(overrides)
    return MonitorStatus(**values)


@dataclass
class SchedulerHarness:
    """A scheduler wired to fakes, plus handles on every fake."""

    scheduler: SiteScheduler
    clock: FakeClock
    timers: FakeTimerFactory
    prober: ScriptedProber
    sink: RecordingSink
    notifier: RecordingNotifier
    dispatcher: AlertDispatcher

    def state(self, name: str):
        """Snapshot of one site."""
        for status in self.scheduler.snapshot():
            if status.name == name:
                return status
        raise KeyError(name)

    def delivered_alerts(self) -> list[str]:
        """Wait for background deliveries and return the alerted site names."""
        self.dispatcher.shutdown(wait=True)
        return [call.site_name for call in self.notifier.calls]


def make_harness(
    sites: list[SiteConfig],
    prober: ScriptedProber | None = None,
    sink: RecordingSink | None = None,
    notifier: RecordingNotifier | None = None,
) -> SchedulerHarness:
    clock = FakeClock()
    timers = FakeTimerFactory(clock)
    prober = prober or ScriptedProber()
    if prober.clock is None:
        prober.clock = clock
    sink = sink or RecordingSink()
    notifier = notifier or RecordingNotifier()
    dispatcher = AlertDispatcher(notifier)
    scheduler = SiteScheduler(
        sites,
        prober=prober,
        sink=sink,
        dispatcher=dispatcher,
        clock=clock,
        timer_factory=timers,
        wall_clock=lambda: FIXED_NOW,
    )
    return SchedulerHarness(
        scheduler=scheduler,
        clock=clock,
        timers=timers,
        prober=prober,
        sink=sink,
        notifier=notifier,
        dispatcher=dispatcher,
    )
