"""Sampling scheduler.

The scheduler owns the health state of every site and runs one probe at a
time, forever:

1. If stopped or a probe is in flight, do nothing.
2. Pick the active site with the smallest ``next_due_at``; configuration
   order breaks ties.
3. Arm a single timer for the time remaining until that site is due. A site
   that is already due gets a zero-delay timer, so dispatch always happens on
   a fresh timer thread and never by recursion.
4. When the timer fires, set the in-flight guard and sample the site.
5. After the sample settles, commit the outcome, set
   ``next_due_at = completion + sample_interval``, clear the guard and go
   back to step 1.

Only one timer handle exists at a time. Arming a new one cancels the previous
one and bumps a generation counter, so a stale timer that already fired is
ignored.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Protocol

from sitemonitor.alerts import AlertDispatcher
from sitemonitor.classifier import Prober, SampleRecord, run_sample
from sitemonitor.config import SiteConfig, check_unique_names
from sitemonitor.logging import get_logger, log_sample
from sitemonitor.state import SiteHealthState, SiteStatus
from sitemonitor.storage import SampleSink
from sitemonitor.types import OutcomeKind

logger = get_logger(__name__)

_SCHEDULING = {"diagnostic_tag": "scheduling"}


class TimerHandle(Protocol):
    """A started, cancellable one-shot timer."""

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def thread_timer(delay: float, callback: Callable[[], None]) -> TimerHandle:
    """Start a daemon ``threading.Timer`` running ``callback`` after ``delay`` seconds."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.name = "sample-timer"
    timer.start()
    return timer


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class SiteScheduler:
    """Single-flight sampling loop over a set of sites.

    Thread Safety:
        All scheduling state is guarded by one lock. The probe itself runs
        outside the lock while the in-flight guard is set, so status readers
        and ``stop`` are never blocked by a slow site.

    Example:
        scheduler = SiteScheduler(config.sites, HttpProbe(), sink, dispatcher)
        scheduler.start()
        ...
        scheduler.stop()
        scheduler.wait_idle(timeout=10.0)
    """

    def __init__(
        self,
        sites: Iterable[SiteConfig],
        prober: Prober,
        sink: SampleSink,
        dispatcher: AlertDispatcher,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: TimerFactory = thread_timer,
        wall_clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the scheduler.

        Args:
            sites: Sites in configuration order.
            prober: Performs the HTTP request of each sample.
            sink: Receives every sample record.
            dispatcher: Decides on and delivers alerts.
            clock: Monotonic clock in seconds used for due times.
            timer_factory: Creates the deferred wake-up timer.
            wall_clock: UTC time source for sample timestamps.
        """
        self._prober = prober
        self._sink = sink
        self._dispatcher = dispatcher
        self._clock = clock
        self._timer_factory = timer_factory
        self._wall_clock = wall_clock

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._states: list[SiteHealthState] = []
        self._by_name: dict[str, SiteHealthState] = {}
        sites = list(sites)
        check_unique_names(sites)
        self._replace_states(SiteHealthState.initial(site) for site in sites)

        self._in_flight: SiteHealthState | None = None
        self._timer: TimerHandle | None = None
        self._generation = 0
        self._running = False
        self._stopped = False

    # -- public API ---------------------------------------------------------

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running and not self._stopped

    @property
    def stopped(self) -> bool:
        with self._lock:
            return self._stopped

    @property
    def in_flight(self) -> str | None:
        """Name of the site currently being sampled, if any."""
        with self._lock:
            return self._in_flight.site.name if self._in_flight is not None else None

    def start(self) -> None:
        """Begin sampling. Calling it again, or after ``stop``, has no effect."""
        with self._lock:
            if self._running or self._stopped:
                return
            self._running = True
            logger.info(
                "Scheduler started with %d site(s), %d active",
                len(self._states),
                sum(1 for s in self._states if s.site.active),
            )
            self._queue_next_locked()

    def stop(self) -> None:
        """Stop scheduling new samples. Idempotent.

        An in-flight probe is not interrupted; use :meth:`wait_idle` to give
        it a bounded grace period.
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._cancel_timer_locked()
            self._idle.notify_all()
        logger.info("Scheduler stopped")

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no probe is in flight.

        Returns:
            True if the scheduler is idle, False if the timeout expired first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight is None, timeout)

    def reconfigure(self, sites: Iterable[SiteConfig]) -> None:
        """Atomically replace the site set.

        Sites whose name is unchanged keep their counters and due time. New
        names start fresh and are due immediately. Removed names are dropped;
        if one of them is being sampled, its result is discarded when the
        probe completes.

        Raises:
            ConfigurationError: If two sites share a name; the current site
                set is kept.
        """
        sites = list(sites)
        check_unique_names(sites)
        with self._lock:
            states = []
            for site in sites:
                existing = self._by_name.get(site.name)
                if existing is None:
                    states.append(SiteHealthState.initial(site))
                else:
                    existing.apply_site(site)
                    states.append(existing)
            removed = set(self._by_name) - {site.name for site in sites}
            self._replace_states(states)
            logger.info(
                "Site set replaced: %d site(s), %d removed",
                len(states),
                len(removed),
            )
            self._queue_next_locked()

    def snapshot(self) -> list[SiteStatus]:
        """Return status snapshots of every site in configuration order."""
        with self._lock:
            return [state.snapshot() for state in self._states]

    def run_once(self) -> list[SampleRecord]:
        """Sample every active site once, in configuration order, on this thread.

        Intended for one-shot runs; the timer loop is not involved.

        Raises:
            RuntimeError: If the scheduler loop is running.
        """
        with self._lock:
            if self._running:
                raise RuntimeError("run_once cannot be used while the scheduler is running")
            states = [state for state in self._states if state.site.active]

        records = []
        for state in states:
            with self._lock:
                if self._stopped:
                    break
                self._in_flight = state
            records.append(self._sample(state))
        return records

    # -- internals ----------------------------------------------------------

    def _replace_states(self, states: Iterable[SiteHealthState]) -> None:
        self._states = list(states)
        self._by_name = {state.site.name: state for state in self._states}

    def _cancel_timer_locked(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _select_locked(self) -> SiteHealthState | None:
        best: SiteHealthState | None = None
        for state in self._states:
            if not state.schedulable:
                continue
            # Strict comparison keeps the first site in configuration order on ties
            if best is None or state.next_due_at < best.next_due_at:
                best = state
        return best

    def _queue_next_locked(self) -> None:
        if not self._running or self._stopped or self._in_flight is not None:
            return

        self._cancel_timer_locked()
        state = self._select_locked()
        if state is None:
            logger.debug("No active site to schedule", extra=_SCHEDULING)
            return

        delay = max(0.0, state.next_due_at - self._clock())
        generation = self._generation
        logger.debug(
            "Next sample %s in %.3fs",
            state.site.name,
            delay,
            extra=_SCHEDULING,
        )
        self._timer = self._timer_factory(delay, lambda: self._on_timer(generation))

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug("Ignoring stale timer", extra=_SCHEDULING)
                return
            self._timer = None
            if self._stopped or self._in_flight is not None:
                return
            state = self._select_locked()
            if state is None:
                return
            if state.next_due_at > self._clock():
                # Woke up early, or the site set changed since arming
                self._queue_next_locked()
                return
            self._in_flight = state

        self._sample(state)

    def _sample(self, state: SiteHealthState) -> SampleRecord:
        """Probe one site and commit the outcome. The in-flight guard must be set."""
        site = state.site
        record: SampleRecord | None = None
        completed_at: float | None = None
        try:
            record = run_sample(self._prober, site, now=self._wall_clock)
            completed_at = self._clock()
            log_sample(logger, record)
            self._commit(state, record)
        except Exception:
            logger.exception("Unexpected error while sampling %s", site.name, extra={"site": site.name})
        finally:
            with self._lock:
                if self._by_name.get(state.site.name) is state:
                    state.reschedule(completed_at if completed_at is not None else self._clock())
                self._in_flight = None
                self._idle.notify_all()
                self._queue_next_locked()

        if record is None:
            # Only reachable through a failure in this module, which was logged above
            record = SampleRecord(
                site_name=site.name,
                sampled_at=self._wall_clock(),
                elapsed=0.0,
                status_code=0,
                outcome=OutcomeKind.TRANSPORT_FAILURE,
                message="Sampling failed unexpectedly",
            )
        return record

    def _commit(self, state: SiteHealthState, record: SampleRecord) -> None:
        with self._lock:
            if self._by_name.get(state.site.name) is not state:
                logger.info(
                    "Discarding sample for %s, site was removed while in flight",
                    record.site_name,
                )
                return
            state.record(record)
            self._dispatcher.maybe_dispatch(state)

        self._sink.append(record)


__all__ = [
    "SiteScheduler",
    "TimerFactory",
    "TimerHandle",
    "thread_timer",
]
