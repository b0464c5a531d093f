"""Web surface for the site monitor.

A small FastAPI application exposing the status page, a password-protected
stop endpoint and a liveness check. Routes read the monitor through
:class:`MonitorStateAccessor` and never touch scheduler internals.
"""

from sitemonitor.dashboard.app import create_app
from sitemonitor.dashboard.state import (
    DashboardState,
    MonitorStateAccessor,
    MonitorStateProvider,
    SampleInfo,
    SiteRow,
)

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "create_app",
    "DashboardState",
    "MonitorStateAccessor",
    "MonitorStateProvider",
    "SampleInfo",
    "SiteRow",
]
