"""Pydantic response models for the JSON endpoints of the web surface."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

# NOTE: Update this list when adding new models to this module.
__all__: list[str] = [
    "HealthResponse",
    "SampleResponse",
    "SiteStatusResponse",
    "StatusResponse",
    "StopResponse",
]


class HealthResponse(BaseModel):
    """Liveness of the monitor process."""

    status: Literal["healthy", "stopping"]
    running: bool


class SampleResponse(BaseModel):
    """One sample as reported by the status API."""

    model_config = ConfigDict(from_attributes=True)

    site_name: str
    sampled_at: datetime
    elapsed_ms: int
    status_code: int
    outcome: str
    error_code: str
    message: str | None = None


class SiteStatusResponse(BaseModel):
    """Health of one site."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    url: str
    active: bool
    due_in: float | None = None
    total_samples: int
    total_failures: int
    consecutive_failures: int
    alert_armed: bool
    last_sample: SampleResponse | None = None


class StatusResponse(BaseModel):
    """Full monitor status."""

    model_config = ConfigDict(from_attributes=True)

    running: bool
    started_at: datetime | None = None
    uptime_seconds: float
    in_flight: str | None = None
    total_samples: int
    total_failures: int
    alerts_sent: int
    alerts_failed: int
    storage_state: str | None = None
    last_sample: SampleResponse | None = None
    last_error: SampleResponse | None = None
    sites: list[SiteStatusResponse]


class StopResponse(BaseModel):
    """Acknowledgement of a stop request."""

    stopping: bool
    message: str
