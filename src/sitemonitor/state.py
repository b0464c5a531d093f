"""Per-site health state owned by the scheduler.

Each monitored site has exactly one :class:`SiteHealthState`. The scheduler
is the only writer; other components read immutable :class:`SiteStatus`
snapshots.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from sitemonitor.classifier import SampleRecord
from sitemonitor.config import SiteConfig
from sitemonitor.types import OutcomeKind

# next_due_at of an inactive site: never eligible
NEVER_DUE = math.inf

# next_due_at forced at startup so every active site is sampled once immediately
DUE_NOW = -math.inf


@dataclass(frozen=True)
class SiteStatus:
    """Read-only snapshot of one site's health for status reporting."""

    name: str
    url: str
    active: bool
    next_due_at: float
    total_samples: int
    total_failures: int
    consecutive_failures: int
    alert_armed: bool
    last_sample: SampleRecord | None
    last_failure: SampleRecord | None


@dataclass
class SiteHealthState:
    """Mutable sampling state of one site.

    Attributes:
        site: Current policy of the site.
        next_due_at: Scheduler clock time at which the site is next eligible.
        total_samples: Samples taken since startup.
        total_failures: Samples with any non-success outcome.
        consecutive_failures: Length of the current slow-response streak.
        alert_armed: True once an alert fired for the current streak.
        last_sample: Most recent sample.
        last_failure: Most recent non-success sample.
    """

    site: SiteConfig
    next_due_at: float = NEVER_DUE
    total_samples: int = 0
    total_failures: int = 0
    consecutive_failures: int = 0
    alert_armed: bool = False
    last_sample: SampleRecord | None = None
    last_failure: SampleRecord | None = None

    @classmethod
    def initial(cls, site: SiteConfig) -> SiteHealthState:
        """Create startup state: active sites are due immediately."""
        return cls(site=site, next_due_at=DUE_NOW if site.active else NEVER_DUE)

    @property
    def name(self) -> str:
        return self.site.name

    @property
    def schedulable(self) -> bool:
        """True if the scheduler may ever pick this site."""
        return self.site.active and self.next_due_at != NEVER_DUE

    def record(self, sample: SampleRecord) -> None:
        """Apply a classified sample to the counters.

        A success clears the streak and disarms alerting before anything else
        is updated. Only LATENCY_EXCEEDED extends the streak; other failures
        are counted in ``total_failures`` but leave the streak as it was.
        """
        if sample.outcome == OutcomeKind.SUCCESS:
            self.consecutive_failures = 0
            self.alert_armed = False
        else:
            self.total_failures += 1
            self.last_failure = sample
            if sample.outcome.counts_toward_streak:
                self.consecutive_failures += 1

        self.total_samples += 1
        self.last_sample = sample

    def needs_alert(self) -> bool:
        """True if the streak reached the threshold and no alert fired for it yet."""
        return (
            self.consecutive_failures >= self.site.alert_threshold
            and not self.alert_armed
        )

    def arm_alert(self) -> None:
        """Mark the current streak as alerted."""
        self.alert_armed = True

    def reschedule(self, completed_at: float) -> None:
        """Set the next due time one interval after ``completed_at``."""
        if self.site.active:
            self.next_due_at = completed_at + self.site.sample_interval
        else:
            self.next_due_at = NEVER_DUE

    def apply_site(self, site: SiteConfig) -> None:
        """Replace the policy while keeping counters.

        A site that becomes active is due immediately; a site that becomes
        inactive is never due. An active site that stays active keeps its
        current due time.
        """
        was_active = self.site.active
        self.site = site
        if not site.active:
            self.next_due_at = NEVER_DUE
        elif not was_active or self.next_due_at == NEVER_DUE:
            self.next_due_at = DUE_NOW

    def snapshot(self) -> SiteStatus:
        """Return an immutable copy for readers outside the scheduler."""
        return SiteStatus(
            name=self.site.name,
            url=self.site.url,
            active=self.site.active,
            next_due_at=self.next_due_at,
            total_samples=self.total_samples,
            total_failures=self.total_failures,
            consecutive_failures=self.consecutive_failures,
            alert_armed=self.alert_armed,
            last_sample=self.last_sample,
            last_failure=self.last_failure,
        )


__all__ = [
    "DUE_NOW",
    "NEVER_DUE",
    "SiteHealthState",
    "SiteStatus",
]
