"""Background web server for the status and stop endpoints.

Runs uvicorn in a daemon thread next to the sampling scheduler. The web
surface is optional: failing to start it never affects sampling.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import uvicorn
    from starlette.types import ASGIApp

from sitemonitor.logging import get_logger

logger = get_logger(__name__)

STARTUP_TIMEOUT = 5.0
SHUTDOWN_TIMEOUT = 5.0


class DashboardServer:
    """uvicorn server running in a background thread.

    Example:
        server = DashboardServer(host="127.0.0.1", port=3399)
        server.start(create_app(monitor))
        ...
        server.shutdown()
    """

    def __init__(self, host: str, port: int) -> None:
        self._host = host
        self._port = port
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def is_running(self) -> bool:
        """Check if the server is currently running."""
        return self._server is not None and self._server.started

    def start(self, app: ASGIApp) -> None:
        """Start serving ``app`` and wait until uvicorn reports it has started.

        Returns after at most STARTUP_TIMEOUT seconds even if the server is
        not up yet.
        """
        import uvicorn

        config = uvicorn.Config(
            app=app,
            host=self._host,
            port=self._port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        server = self._server

        self._thread = threading.Thread(
            target=server.run,
            name="web-server",
            daemon=True,
        )
        self._thread.start()

        start_wait = time.monotonic()
        while not server.started:
            if time.monotonic() - start_wait > STARTUP_TIMEOUT:
                logger.warning("Web server startup timed out, continuing anyway")
                break
            if not self._thread.is_alive():
                logger.warning("Web server exited during startup")
                break
            time.sleep(0.05)

        if server.started:
            logger.info("Web server started at http://%s:%s", self._host, self._port)

    def shutdown(self) -> None:
        """Signal the server to exit and wait for its thread."""
        if self._server is None:
            return
        logger.info("Shutting down web server...")
        self._server.should_exit = True

        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=SHUTDOWN_TIMEOUT)
            if self._thread.is_alive():
                logger.warning("Web server thread did not terminate gracefully")

        logger.info("Web server shutdown complete")


__all__ = ["DashboardServer"]
