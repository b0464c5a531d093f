"""Mock classes for site monitor tests.

This module provides reusable fakes for the collaborators of the scheduler:
a manual clock, a timer factory whose timers only fire when a test says so,
a scripted prober, and recording sinks and notifiers.

Usage Guidelines:

    **Direct instantiation** is the preferred approach for most tests::

        from tests.mocks import FakeClock, FakeTimerFactory, ScriptedProber

        def test_example():
            clock = FakeClock()
            timers = FakeTimerFactory(clock)
            prober = ScriptedProber(clock)
            # ... build a SiteScheduler and call timers.fire() ...
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from sitemonitor.alerts import AlertContext, NotificationError
from sitemonitor.classifier import SampleRecord
from sitemonitor.probe import ProbeResult


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeTimer:
    """Timer that records its delay and runs only when fired by the test."""

    delay: float
    callback: Callable[[], None]
    created_at: float
    cancelled: bool = False
    fired: bool = False

    @property
    def due_at(self) -> float:
        return self.created_at + self.delay

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimerFactory:
    """Timer factory for deterministic scheduler tests."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay=delay, callback=callback, created_at=self.clock())
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> FakeTimer | None:
        """The armed timer, if any."""
        live = [t for t in self.timers if not t.cancelled and not t.fired]
        return live[-1] if live else None

    def fire(self) -> FakeTimer:
        """Advance the clock to the pending timer's due time and run it."""
        timer = self.pending
        if timer is None:
            raise AssertionError("No timer is armed")
        timer.fired = True
        self.clock.now = max(self.clock.now, timer.due_at)
        timer.callback()
        return timer


def ok_result(elapsed: float = 0.1, body: str = "<html>ok</html>") -> ProbeResult:
    return ProbeResult(elapsed=elapsed, status_code=200, body=body)


class ScriptedProber:
    """Prober returning scripted results and advancing the fake clock by ``elapsed``.

    Results are taken per URL from ``scripts``; when a script runs out, or
    there is none for the URL, ``default`` is returned. A script entry may be
    an exception instance, which is raised.
    """

    def __init__(
        self,
        clock: FakeClock | None = None,
        default: ProbeResult | None = None,
        scripts: dict[str, list[ProbeResult | Exception]] | None = None,
        on_probe: Callable[[str], None] | None = None,
    ) -> None:
        self.clock = clock
        self.default = default or ok_result()
        self.scripts = {url: list(results) for url, results in (scripts or {}).items()}
        self.on_probe = on_probe
        self.calls: list[str] = []

    def probe(self, url: str) -> ProbeResult:
        self.calls.append(url)
        if self.on_probe is not None:
            self.on_probe(url)
        script = self.scripts.get(url)
        result = script.pop(0) if script else self.default
        if isinstance(result, Exception):
            raise result
        if self.clock is not None:
            self.clock.advance(result.elapsed)
        return result


class RecordingSink:
    """Sample sink that keeps every record in memory."""

    def __init__(self, fail: bool = False, raise_error: Exception | None = None) -> None:
        self.records: list[SampleRecord] = []
        self.fail = fail
        self.raise_error = raise_error
        self.site_updates: list[list[str]] = []
        self.closed = False

    def append(self, record: SampleRecord) -> bool:
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail:
            return False
        self.records.append(record)
        return True

    def update_sites(self, sites) -> None:
        self.site_updates.append([site.name for site in sites])

    def close(self) -> None:
        self.closed = True


@dataclass
class NotifierCall:
    site_name: str
    destinations: list[str]
    context: AlertContext


@dataclass
class RecordingNotifier:
    """Notifier that records deliveries, optionally failing them."""

    fail: bool = False
    calls: list[NotifierCall] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def notify(self, site_name: str, destinations: Sequence[str], context: AlertContext) -> None:
        with self._lock:
            self.calls.append(NotifierCall(site_name, list(destinations), context))
        if self.fail:
            raise NotificationError(f"delivery to {site_name} failed")


class MockMonitor:
    """Stand-in for SiteMonitor in web surface tests."""

    def __init__(self, status) -> None:
        self._status = status
        self.stop_calls = 0

    def status(self):
        return self._status

    def stop(self) -> None:
        self.stop_calls += 1

    def is_shutdown_requested(self) -> bool:
        return self.stop_calls > 0
