"""Route handlers for the web surface.

- ``/status``: HTML status page when ``pass`` matches the shutdown password,
  otherwise a short acknowledgement that the monitor is up
- ``/status.json``: the same data as JSON, password protected
- ``/stop``: stops the monitor when ``pass`` matches
- ``/health``: unauthenticated liveness check
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse

from sitemonitor.dashboard.models import HealthResponse, StatusResponse, StopResponse

if TYPE_CHECKING:
    from sitemonitor.dashboard.state import MonitorStateAccessor

logger = logging.getLogger(__name__)

STATUS_ACKNOWLEDGEMENT = "Site monitor is running."


def create_routes(state_accessor: MonitorStateAccessor, password: str) -> APIRouter:
    """Create the web routes for a monitor.

    Args:
        state_accessor: Read access to the monitor, plus its stop operation.
        password: Shutdown password. An empty password disables the
            protected views.

    Returns:
        An APIRouter with all routes configured.
    """
    router = APIRouter()

    def _authorized(supplied: str | None) -> bool:
        if not password or supplied is None:
            return False
        return secrets.compare_digest(supplied.encode("utf-8"), password.encode("utf-8"))

    @router.get("/status", response_model=None)
    async def status_page(
        request: Request,
        pass_: str | None = Query(default=None, alias="pass"),
    ) -> HTMLResponse | PlainTextResponse:
        """Render the status page, or acknowledge without details."""
        if not _authorized(pass_):
            return PlainTextResponse(STATUS_ACKNOWLEDGEMENT)

        templates = request.app.state.templates
        return await templates.template_response(
            request=request,
            name="status.html",
            context={"state": state_accessor.get_state()},
        )

    @router.get("/status.json", response_model=StatusResponse)
    async def status_json(
        pass_: str | None = Query(default=None, alias="pass"),
    ) -> StatusResponse:
        """Return the monitor status as JSON."""
        if not _authorized(pass_):
            raise HTTPException(status_code=403, detail="Invalid password")
        return StatusResponse.model_validate(state_accessor.get_state())

    @router.get("/stop", response_model=StopResponse)
    async def stop(
        request: Request,
        pass_: str | None = Query(default=None, alias="pass"),
    ) -> StopResponse:
        """Stop the monitor."""
        if not _authorized(pass_):
            client = request.client.host if request.client else "unknown"
            logger.warning("Rejected stop request from %s", client)
            raise HTTPException(status_code=403, detail="Invalid password")

        logger.info("Stop requested through the web surface")
        state_accessor.request_stop()
        return StopResponse(stopping=True, message="Site monitor is stopping.")

    @router.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Report liveness without touching any dependency."""
        stopping = state_accessor.is_shutdown_requested()
        return HealthResponse(status="stopping" if stopping else "healthy", running=not stopping)

    return router


__all__ = ["STATUS_ACKNOWLEDGEMENT", "create_routes"]
