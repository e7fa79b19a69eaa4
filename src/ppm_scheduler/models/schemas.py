from datetime import date
from typing import Any

from pydantic import BaseModel, Field

# --- Work-order extension schemas ---


class ScheduleOutcome(BaseModel):
    """What the extension run decided for a single schedule."""

    schedule_id: int
    plan_name: str | None = None
    extended: bool = False
    count: int = 0
    reason: str | None = None
    error: str | None = None
    start_from: date | None = None
    first_due: date | None = None
    last_due: date | None = None


class ExtensionStats(BaseModel):
    processed: int = 0
    extended: int = 0
    skipped: int = 0
    errors: int = 0
    generated_count: int = 0
    dry_run: bool = False
    cancelled: bool = False
    outcomes: list[ScheduleOutcome] = Field(default_factory=list)


# --- SLA schemas ---


class SlaCheckSummary(BaseModel):
    definitions_checked: int = 0
    work_orders_checked: int = 0
    violations_found: int = 0
    notifications_sent: int = 0
    errors: int = 0
    cancelled: bool = False


# --- Notification schemas ---


class NotificationPayload(BaseModel):
    company_id: int | None
    type: str
    action: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_by: int | None = None
