"""Core application runner for the site monitor.

This module provides the main application runner that coordinates:
- Web server lifecycle
- Signal handling
- Continuous sampling and single-pass mode

Web-less Operation Mode:
    The monitor keeps sampling if the web surface fails to start. The failure
    is logged as a warning and the status and stop endpoints are simply not
    available; SIGINT and SIGTERM still stop the process.
"""

from __future__ import annotations

import argparse
from typing import TYPE_CHECKING

from sitemonitor.bootstrap import BootstrapContext, bootstrap, create_monitor_from_context
from sitemonitor.cli import parse_args
from sitemonitor.dashboard_server import DashboardServer
from sitemonitor.logging import get_logger
from sitemonitor.shutdown import create_shutdown_handler

if TYPE_CHECKING:
    from sitemonitor.main import SiteMonitor

logger = get_logger(__name__)


def start_dashboard(context: BootstrapContext, monitor: SiteMonitor) -> DashboardServer | None:
    """Start the web server if enabled.

    Args:
        context: Bootstrap context with configuration.
        monitor: Monitor reported on and stopped by the endpoints.

    Returns:
        DashboardServer if started successfully, None otherwise.
    """
    config = context.config
    if not config.dashboard.enabled:
        logger.info("Web surface is disabled via configuration")
        return None
    if not config.dashboard.shutdown_password:
        logger.warning("No shutdown password configured, /status shows no details and /stop is disabled")

    extra = {"host": config.dashboard.host, "port": config.dashboard.port}
    try:
        from sitemonitor.dashboard import create_app

        logger.info("Starting web server on %s:%s", config.dashboard.host, config.dashboard.port)
        web_app = create_app(monitor, config.dashboard.shutdown_password)
        server = DashboardServer(host=config.dashboard.host, port=config.dashboard.port)
        server.start(web_app)
        return server
    except ImportError as e:
        logger.warning(
            "Web server startup failed: dependencies not available. "
            "Sampling continues without the web surface. Error: %s",
            e,
            extra=extra,
        )
        return None
    except OSError as e:
        logger.warning(
            "Web server startup failed: network/OS error. "
            "Sampling continues without the web surface. Error: %s",
            e,
            extra=extra,
        )
        return None
    except RuntimeError as e:
        logger.warning(
            "Web server startup failed: runtime error. "
            "Sampling continues without the web surface. Error: %s",
            e,
            extra=extra,
        )
        return None
    except (ValueError, TypeError) as e:
        logger.warning(
            "Web server startup failed: configuration error. "
            "Sampling continues without the web surface. Error: %s",
            e,
            extra=extra,
        )
        return None
    except Exception as e:
        # The web surface is optional and must never stop sampling
        logger.warning(
            "Web server startup failed: unexpected error (%s). "
            "Sampling continues without the web surface. Error: %s",
            type(e).__name__,
            e,
            extra=extra,
        )
        return None


def run_once_mode(monitor: SiteMonitor) -> int:
    """Sample every active site once.

    Returns:
        Exit code: 0 if every sample succeeded, 1 otherwise.
    """
    logger.info("Sampling every active site once (--once mode)")
    try:
        records = monitor.run_once()
    finally:
        monitor.stop()
        monitor.close()
    return 0 if all(record.succeeded for record in records) else 1


def run_continuous_mode(monitor: SiteMonitor) -> int:
    """Sample until a signal or /stop request arrives.

    Returns:
        Exit code: 0 for a clean shutdown.
    """
    handler = create_shutdown_handler(monitor.stop)
    try:
        monitor.run()
    finally:
        handler.restore_signal_handlers()
    if handler.received_signal:
        logger.info("Exiting after %s", handler.received_signal)
    return 0


def run_application(parsed: argparse.Namespace, context: BootstrapContext) -> int:
    """Run the main application with the given context.

    Args:
        parsed: Parsed command-line arguments.
        context: Bootstrap context with all dependencies.

    Returns:
        Exit code for the application.
    """
    monitor = create_monitor_from_context(context)

    try:
        if parsed.once:
            return run_once_mode(monitor)

        dashboard_server = start_dashboard(context, monitor)
        try:
            return run_continuous_mode(monitor)
        finally:
            if dashboard_server is not None:
                dashboard_server.shutdown()
    finally:
        close_prober = getattr(context.prober, "close", None)
        if callable(close_prober):
            close_prober()


def main(args: list[str] | None = None) -> int:
    """Main entry point for the application.

    Args:
        args: Optional list of command-line arguments.

    Returns:
        Exit code for the application.
    """
    parsed = parse_args(args)

    context = bootstrap(parsed)
    if context is None:
        return 1

    return run_application(parsed, context)


__all__ = [
    "main",
    "run_application",
    "run_continuous_mode",
    "run_once_mode",
    "start_dashboard",
]
