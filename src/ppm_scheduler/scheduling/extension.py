import logging
import threading
from datetime import datetime

from dateutil.relativedelta import relativedelta
from sqlalchemy import select
from sqlalchemy.orm import Session

from ppm_scheduler.clock import Clock
from ppm_scheduler.models.orm import MaintenancePlan, ScheduleMaintenance
from ppm_scheduler.models.schemas import ExtensionStats, ScheduleOutcome
from ppm_scheduler.scheduling.generation import WorkOrderGenerationEngine

logger = logging.getLogger("ppm_scheduler.extension")

DEFAULT_THRESHOLD_MONTHS = 3


def whole_months_between(start: datetime, end: datetime) -> int:
    """Signed number of complete months from ``start`` to ``end``."""
    delta = relativedelta(end, start)
    return delta.years * 12 + delta.months


class ExtensionDriver:
    """Keeps active time-based schedules supplied with upcoming work orders.

    Meant to run periodically (e.g. a daily cron). Each schedule is handled
    and committed on its own; a failing schedule is logged and counted
    without stopping the rest of the batch.
    """

    def __init__(
        self,
        session: Session,
        engine: WorkOrderGenerationEngine,
        clock: Clock | None = None,
        threshold_months: int = DEFAULT_THRESHOLD_MONTHS,
    ):
        self.session = session
        self.engine = engine
        self.clock = clock or engine.clock
        self.threshold_months = threshold_months

    def active_schedules(self, schedule_id: int | None = None) -> list[ScheduleMaintenance]:
        stmt = (
            select(ScheduleMaintenance)
            .join(ScheduleMaintenance.plan)
            .where(
                MaintenancePlan.frequency_type == "time",
                MaintenancePlan.is_active.is_(True),
            )
            .order_by(ScheduleMaintenance.id)
        )
        if schedule_id is not None:
            stmt = stmt.where(ScheduleMaintenance.id == schedule_id)
        return list(self.session.scalars(stmt).all())

    def process_schedule(
        self,
        schedule: ScheduleMaintenance,
        force: bool = False,
        dry_run: bool = False,
    ) -> ScheduleOutcome:
        """Decide whether a schedule needs more work orders and create them."""
        plan = schedule.plan
        outcome = ScheduleOutcome(
            schedule_id=schedule.id, plan_name=plan.name if plan else None
        )

        if plan is None or plan.frequency_type != "time":
            outcome.reason = "plan missing or not time-based"
            return outcome

        latest = self.engine.latest_work_order(schedule)

        if latest is None and not force:
            outcome.reason = (
                "no existing work orders; use --force to generate initial work orders"
            )
            return outcome

        if latest is not None:
            start_from = latest.due_date
        else:
            start_from = schedule.start_date or self.clock()
        outcome.start_from = start_from.date()

        if latest is not None and not force:
            months_until_last = whole_months_between(self.clock(), latest.due_date)
            if months_until_last > self.threshold_months:
                outcome.reason = (
                    f"last work order is {months_until_last} months away"
                )
                return outcome

        if dry_run:
            due_dates = self.engine.candidate_due_dates(schedule, start_from)
            outcome.count = len(due_dates)
            outcome.extended = bool(due_dates)
            if due_dates:
                outcome.first_due = due_dates[0].date()
                outcome.last_due = due_dates[-1].date()
            return outcome

        new_ids = self.engine.extend_from_schedule(schedule, start_from)
        outcome.count = len(new_ids)
        outcome.extended = bool(new_ids)
        if not new_ids:
            outcome.reason = "no new due-dates within the horizon"
        return outcome

    def run(
        self,
        schedule_id: int | None = None,
        force: bool = False,
        dry_run: bool = False,
        stop_event: threading.Event | None = None,
    ) -> ExtensionStats:
        """Process every active time-based schedule (or just ``schedule_id``).

        Args:
            schedule_id: Restrict the run to one schedule.
            force: Generate for schedules without work orders and ignore the
                look-ahead threshold.
            dry_run: Compute the due-dates that would be created without writing.
            stop_event: When set, the run stops after the schedule in progress.

        Returns:
            Aggregate counts plus one outcome per processed schedule.
        """
        stats = ExtensionStats(dry_run=dry_run)
        schedules = self.active_schedules(schedule_id)
        logger.info("Found %d schedule(s) to process", len(schedules))

        for schedule in schedules:
            if stop_event is not None and stop_event.is_set():
                logger.warning(
                    "Extension run cancelled after %d schedule(s)", stats.processed
                )
                stats.cancelled = True
                break

            schedule_key = schedule.id
            stats.processed += 1
            try:
                outcome = self.process_schedule(schedule, force=force, dry_run=dry_run)
            except Exception as exc:
                self.session.rollback()
                stats.errors += 1
                stats.outcomes.append(
                    ScheduleOutcome(schedule_id=schedule_key, error=str(exc))
                )
                logger.error(
                    "Failed to extend work orders for schedule %s: %s",
                    schedule_key,
                    exc,
                )
                continue

            stats.outcomes.append(outcome)
            if outcome.extended:
                stats.extended += 1
                stats.generated_count += outcome.count
            else:
                stats.skipped += 1
                logger.debug("Schedule %s skipped: %s", schedule_key, outcome.reason)

        return stats
