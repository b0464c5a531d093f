"""FastAPI application factory for the web surface.

Custom Jinja2 filters:
    format_duration: Formats a duration in seconds as a human-readable string.
        Example: 125 -> "2m 5s", 45 -> "45s"
    format_time: Formats a datetime as ``YYYY-MM-DD HH:MM:SS UTC``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape

from sitemonitor.dashboard.routes import create_routes
from sitemonitor.dashboard.state import MonitorStateAccessor

if TYPE_CHECKING:
    from sitemonitor.dashboard.state import MonitorStateProvider


def format_duration(seconds: float | int | None) -> str:
    """Format a duration in seconds as a human-readable string.

    Examples:
        >>> format_duration(125)
        '2m 5s'
        >>> format_duration(3725)
        '1h 2m 5s'
        >>> format_duration(None)
        '0s'
    """
    if seconds is None or seconds < 0:
        return "0s"

    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, remaining_seconds = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {remaining_seconds}s"
    if minutes > 0:
        return f"{minutes}m {remaining_seconds}s"
    return f"{remaining_seconds}s"


def format_time(value: datetime | None) -> str:
    """Format a datetime in UTC, or a dash when missing."""
    if value is None:
        return "-"
    return value.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


class TemplateEnvironmentWrapper:
    """Renders templates from an async Jinja2 Environment into HTML responses."""

    def __init__(self, env: Environment) -> None:
        self._env = env

    async def template_response(
        self,
        *,
        request: object,
        name: str,
        context: dict[str, Any] | None = None,
    ) -> HTMLResponse:
        """Render ``name`` with ``context``. Must be awaited."""
        template = self._env.get_template(name)
        context = context or {}
        context["request"] = request
        content = await template.render_async(**context)
        return HTMLResponse(content=content)


def create_app(
    monitor: MonitorStateProvider,
    password: str = "",
    *,
    templates_dir: Path | None = None,
    state_accessor: MonitorStateAccessor | None = None,
) -> FastAPI:
    """Create the FastAPI application serving the status and stop endpoints.

    Args:
        monitor: The monitor to report on and stop.
        password: Shutdown password protecting the status page and /stop.
        templates_dir: Optional custom templates directory. Defaults to the
            templates/ directory within this package.
        state_accessor: Optional accessor, used by tests to inject clocks.

    Returns:
        A configured FastAPI application.
    """
    from sitemonitor import __version__

    app = FastAPI(
        title="Site Monitor",
        description="Status and control endpoints for the site monitor",
        version=__version__,
    )

    if templates_dir is None:
        templates_dir = Path(__file__).parent / "templates"

    template_env = Environment(
        loader=FileSystemLoader(str(templates_dir)),
        autoescape=select_autoescape(["html", "xml"]),
        enable_async=True,
    )
    template_env.filters["format_duration"] = format_duration
    template_env.filters["format_time"] = format_time

    app.state.templates = TemplateEnvironmentWrapper(template_env)

    accessor = state_accessor or MonitorStateAccessor(monitor)
    app.include_router(create_routes(accessor, password))

    return app


__all__ = ["TemplateEnvironmentWrapper", "create_app", "format_duration", "format_time"]
