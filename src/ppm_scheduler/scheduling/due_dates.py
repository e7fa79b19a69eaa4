from datetime import datetime

from ppm_scheduler.clock import Clock, utcnow
from ppm_scheduler.models.orm import MaintenancePlan
from ppm_scheduler.scheduling.recurrence import add_period


class DueDateService:
    """Computes the single next due-date of a time-based maintenance plan."""

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or utcnow

    def next_due_date(
        self, plan: MaintenancePlan, from_instant: datetime | None = None
    ) -> datetime | None:
        """Return one period after ``from_instant`` (default: now), or None.

        None means the plan is not time-based or its frequency rule is invalid.
        """
        if plan.frequency_type != "time":
            return None

        base = from_instant or self.clock()
        return add_period(base, plan.frequency_unit, plan.frequency_value)
