"""Signal handling for the site monitor process.

SIGINT and SIGTERM stop the scheduler the same way ``/stop`` does. The
monitor then gives an in-flight sample its grace period before exiting, so
a signal never cuts a sample row in half.
"""

from __future__ import annotations

import signal
from collections.abc import Callable
from types import FrameType
from typing import Any

from sitemonitor.logging import get_logger

logger = get_logger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """Calls a stop callback once, on the first stop signal or request.

    Attributes:
        received_signal: Name of the signal that started the shutdown, or
            None if it was requested directly.
    """

    def __init__(self, on_shutdown: Callable[[], None] | None = None) -> None:
        """Initialize the handler.

        Args:
            on_shutdown: Called once when shutdown starts, normally
                ``SiteMonitor.stop``.
        """
        self._shutdown_requested = False
        self._on_shutdown = on_shutdown
        self._previous_handlers: dict[int, Any] = {}
        self.received_signal: str | None = None

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def request_shutdown(self) -> None:
        """Stop the monitor. Later calls only log."""
        if self._shutdown_requested:
            logger.info("Already stopping, waiting for the in-flight sample to settle")
            return
        self._shutdown_requested = True
        logger.info("Stopping site monitor")
        if self._on_shutdown is not None:
            self._on_shutdown()

    def handle_signal(self, signum: int, frame: FrameType | None) -> None:
        """Signal handler for SIGINT and SIGTERM."""
        name = signal.Signals(signum).name
        if self.received_signal is None:
            self.received_signal = name
        logger.info("Received %s", name)
        self.request_shutdown()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to :meth:`handle_signal`, remembering the old handlers."""
        for signum in STOP_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self.handle_signal)
        logger.debug("Stop signal handlers installed")

    def restore_signal_handlers(self) -> None:
        """Put back the handlers that were active before installation."""
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)
        self._previous_handlers.clear()


def create_shutdown_handler(on_shutdown: Callable[[], None] | None = None) -> ShutdownHandler:
    """Create a ShutdownHandler with its signal handlers installed."""
    handler = ShutdownHandler(on_shutdown)
    handler.install_signal_handlers()
    return handler


__all__ = [
    "STOP_SIGNALS",
    "ShutdownHandler",
    "create_shutdown_handler",
]
