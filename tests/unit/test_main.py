"""Tests for the SiteMonitor facade."""

from __future__ import annotations

import threading

import pytest

from sitemonitor.config import ConfigurationError
from sitemonitor.main import SiteMonitor
from sitemonitor.probe import ProbeResult
from sitemonitor.types import OutcomeKind
from tests.helpers import SchedulerHarness, make_config, make_harness, make_site
from tests.mocks import ScriptedProber


def make_monitor(sites, prober=None, config_loader=None) -> tuple[SiteMonitor, SchedulerHarness]:
    harness = make_harness(list(sites), prober=prober)
    monitor = SiteMonitor(
        config=make_config(tuple(sites)),
        scheduler=harness.scheduler,
        sink=harness.sink,
        dispatcher=harness.dispatcher,
        config_loader=config_loader,
    )
    return monitor, harness


class TestLifecycle:
    """Tests for start, stop and close."""

    def test_start_arms_first_sample(self) -> None:
        monitor, harness = make_monitor([make_site("alpha")])

        monitor.start()

        assert harness.scheduler.running is True
        assert harness.timers.pending is not None
        assert harness.timers.pending.delay == 0.0

    def test_stop_is_idempotent(self) -> None:
        monitor, harness = make_monitor([make_site("alpha")])
        monitor.start()

        monitor.stop()
        monitor.stop()

        assert monitor.is_shutdown_requested() is True
        assert harness.scheduler.stopped is True
        assert harness.timers.pending is None

    def test_close_releases_sink_once(self) -> None:
        monitor, harness = make_monitor([make_site("alpha")])

        monitor.stop()
        monitor.close()
        monitor.close()

        assert harness.sink.closed is True

    def test_run_blocks_until_stopped(self) -> None:
        monitor, harness = make_monitor([make_site("alpha")])
        runner = threading.Thread(target=monitor.run)

        runner.start()
        monitor.stop()
        runner.join(timeout=5)

        assert not runner.is_alive()
        assert harness.sink.closed is True
        assert harness.scheduler.running is False

    def test_request_shutdown_alias(self) -> None:
        monitor, _ = make_monitor([make_site("alpha")])

        monitor.request_shutdown()

        assert monitor.is_shutdown_requested() is True


class TestRunOnce:
    def test_returns_one_record_per_active_site(self) -> None:
        sites = [make_site("alpha"), make_site("beta", active=False), make_site("gamma")]
        monitor, harness = make_monitor(sites)

        records = monitor.run_once()

        assert [record.site_name for record in records] == ["alpha", "gamma"]
        assert len(harness.sink.records) == 2


class TestDynamicReset:
    """Tests for SiteMonitor.dynamic_reset."""

    def test_explicit_site_set(self) -> None:
        monitor, harness = make_monitor([make_site("alpha")])
        monitor.start()

        monitor.dynamic_reset([make_site("beta")])

        assert [status.name for status in harness.scheduler.snapshot()] == ["beta"]
        assert harness.sink.site_updates == [["beta"]]
        assert [site.name for site in monitor.config.active_sites] == ["beta"]

    def test_reload_from_loader(self) -> None:
        reloaded = make_config((make_site("alpha"), make_site("gamma")))
        monitor, harness = make_monitor([make_site("alpha")], config_loader=lambda: reloaded)

        monitor.dynamic_reset()

        assert monitor.config is reloaded
        assert [status.name for status in harness.scheduler.snapshot()] == ["alpha", "gamma"]

    def test_invalid_reload_keeps_current_sites(self) -> None:
        def broken_loader():
            raise ConfigurationError("Duplicate site name 'alpha'")

        monitor, harness = make_monitor([make_site("alpha")], config_loader=broken_loader)

        with pytest.raises(ConfigurationError):
            monitor.dynamic_reset()

        assert [status.name for status in harness.scheduler.snapshot()] == ["alpha"]

    def test_duplicate_names_keep_current_sites(self) -> None:
        monitor, harness = make_monitor([make_site("alpha")])

        with pytest.raises(ConfigurationError, match="Duplicate site name"):
            monitor.dynamic_reset([make_site("beta"), make_site("beta")])

        assert [status.name for status in harness.scheduler.snapshot()] == ["alpha"]
        assert [site.name for site in monitor.config.sites] == ["alpha"]
        assert harness.sink.site_updates == []

    def test_without_loader(self) -> None:
        monitor, _ = make_monitor([make_site("alpha")])

        with pytest.raises(RuntimeError, match="No configuration loader"):
            monitor.dynamic_reset()


class TestStatus:
    """Tests for SiteMonitor.status."""

    def test_aggregates_sites(self) -> None:
        prober = ScriptedProber(
            scripts={"https://beta.example.com/": [ProbeResult(elapsed=0.1, status_code=503, body="")]}
        )
        monitor, _ = make_monitor([make_site("alpha"), make_site("beta")], prober=prober)
        monitor.run_once()

        status = monitor.status()

        assert status.running is False
        assert status.started_at is None
        assert status.total_samples == 2
        assert status.total_failures == 1
        assert status.last_error is not None
        assert status.last_error.site_name == "beta"
        assert status.last_error.outcome == OutcomeKind.STATUS_FAILURE
        assert status.storage is None

    def test_started_at_set_on_start(self) -> None:
        monitor, _ = make_monitor([make_site("alpha")])

        monitor.start()

        assert monitor.status().started_at is not None
        assert monitor.status().running is True
