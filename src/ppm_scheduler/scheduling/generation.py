import logging
from datetime import date, datetime

from dateutil.relativedelta import relativedelta
from sqlalchemy import select
from sqlalchemy.orm import Session

from ppm_scheduler.clock import Clock, utcnow
from ppm_scheduler.models.orm import (
    Asset,
    MaintenancePlan,
    ScheduleMaintenance,
    WorkOrder,
    WorkOrderPart,
    WorkOrderStatus,
)
from ppm_scheduler.scheduling.recurrence import (
    DEFAULT_HORIZON_MONTHS,
    DEFAULT_MAX_OCCURRENCES,
    expand,
)

logger = logging.getLogger("ppm_scheduler.generation")


class WorkOrderGenerationEngine:
    """Creates preventive-maintenance work orders for maintenance schedules.

    Every call that writes does so in one transaction on ``session``: either
    all work orders for the schedule are committed or none are.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        horizon_months: int = DEFAULT_HORIZON_MONTHS,
        max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
        actor_id: int | None = None,
    ):
        self.session = session
        self.clock = clock or utcnow
        self.horizon_months = horizon_months
        self.max_occurrences = max_occurrences
        self.actor_id = actor_id

    def generate_from_schedule(self, schedule: ScheduleMaintenance) -> list[int]:
        """Populate a schedule with work orders for the next horizon.

        Intended for the first run of a schedule. Dates are not checked
        against existing work orders; the (schedule_id, due_on) unique
        constraint rejects a repeated run instead.

        Returns:
            Ids of the created work orders, empty if the plan is missing,
            not time-based, or has no usable frequency rule.
        """
        plan = self._time_based_plan(schedule)
        if plan is None:
            return []

        start = schedule.start_date or self.clock()
        due_dates = self._expand(plan, start)
        if not due_dates:
            return []

        return self._create_work_orders(schedule, plan, due_dates, merge_ids=False)

    def extend_from_schedule(
        self, schedule: ScheduleMaintenance, from_instant: datetime
    ) -> list[int]:
        """Create work orders for due-dates after ``from_instant`` that do not exist yet.

        Returns:
            Ids of the newly created work orders. Empty (with no writes) when
            every candidate date already has a work order.
        """
        plan = self._time_based_plan(schedule)
        if plan is None:
            return []

        new_dates = self.candidate_due_dates(schedule, from_instant)
        if not new_dates:
            return []

        return self._create_work_orders(schedule, plan, new_dates, merge_ids=True)

    def candidate_due_dates(
        self, schedule: ScheduleMaintenance, from_instant: datetime
    ) -> list[datetime]:
        """Due-dates an extension from ``from_instant`` would create, without writing."""
        plan = self._time_based_plan(schedule)
        if plan is None:
            return []

        due_dates = self._expand(plan, from_instant)
        if not due_dates:
            return []

        existing = self.existing_due_dates(schedule)
        return [d for d in due_dates if d.date() not in existing]

    def existing_due_dates(self, schedule: ScheduleMaintenance) -> set[date]:
        rows = self.session.scalars(
            select(WorkOrder.due_on).where(
                WorkOrder.schedule_id == schedule.id,
                WorkOrder.due_on.is_not(None),
            )
        ).all()
        return set(rows)

    def latest_work_order(self, schedule: ScheduleMaintenance) -> WorkOrder | None:
        """The schedule's work order with the latest due-date, if any."""
        return self.session.scalars(
            select(WorkOrder)
            .where(
                WorkOrder.schedule_id == schedule.id,
                WorkOrder.due_date.is_not(None),
            )
            .order_by(WorkOrder.due_date.desc())
            .limit(1)
        ).first()

    def horizon(self) -> datetime:
        return self.clock() + relativedelta(months=self.horizon_months)

    def _time_based_plan(self, schedule: ScheduleMaintenance) -> MaintenancePlan | None:
        plan = schedule.plan
        if plan is None or plan.frequency_type != "time":
            return None
        return plan

    def _expand(self, plan: MaintenancePlan, start: datetime) -> list[datetime]:
        return expand(
            plan.frequency_unit,
            plan.frequency_value,
            start,
            self.horizon(),
            self.max_occurrences,
        )

    def _create_work_orders(
        self,
        schedule: ScheduleMaintenance,
        plan: MaintenancePlan,
        due_dates: list[datetime],
        merge_ids: bool,
    ) -> list[int]:
        schedule_id = schedule.id
        try:
            status_id = self._open_status_id()
            work_order_ids = []
            for due_date in due_dates:
                work_order = self._create_work_order(schedule, plan, due_date, status_id)
                self._reserve_parts(work_order, plan)
                work_order_ids.append(work_order.id)

            if merge_ids:
                known = list(schedule.auto_generated_wo_ids or [])
                known.extend(i for i in work_order_ids if i not in known)
                schedule.auto_generated_wo_ids = known
            else:
                schedule.auto_generated_wo_ids = list(work_order_ids)

            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(
                "Failed to generate work orders for schedule %s", schedule_id
            )
            raise

        logger.info(
            "Generated %d work order(s) for schedule %s (%s to %s)",
            len(work_order_ids),
            schedule_id,
            due_dates[0].date(),
            due_dates[-1].date(),
        )
        return work_order_ids

    def _open_status_id(self) -> int | None:
        return self.session.scalars(
            select(WorkOrderStatus.id).where(WorkOrderStatus.slug == "open")
        ).first()

    def _create_work_order(
        self,
        schedule: ScheduleMaintenance,
        plan: MaintenancePlan,
        due_date: datetime,
        status_id: int | None,
    ) -> WorkOrder:
        # Schedule assets override the plan's; only the first one is used.
        asset_ids = schedule.asset_ids or plan.asset_ids or []
        asset = self.session.get(Asset, asset_ids[0]) if asset_ids else None

        assigned_to = schedule.assigned_user_id
        if assigned_to is None:
            assigned_to = plan.assigned_user_id

        work_order = WorkOrder(
            title=f"PPM: {plan.name} - {due_date:%Y-%m-%d}",
            description=plan.description
            or f"Preventive maintenance scheduled for {plan.name}",
            type="ppm",
            priority_id=plan.priority_id,
            category_id=plan.category_id,
            status_id=status_id,
            due_date=due_date,
            asset_id=asset.id if asset else None,
            location_id=asset.location_id if asset else None,
            assigned_to=assigned_to,
            assigned_by=self.actor_id,
            created_by=self.actor_id,
            company_id=plan.company_id,
            estimated_hours=plan.estimated_duration,
            notes=f"Auto-generated from maintenance schedule #{schedule.id}",
            schedule_id=schedule.id,
            meta={
                "schedule_id": schedule.id,
                "plan_id": plan.id,
                "auto_generated": True,
            },
            created_at=self.clock(),
        )
        self.session.add(work_order)
        self.session.flush()
        return work_order

    def _reserve_parts(self, work_order: WorkOrder, plan: MaintenancePlan) -> None:
        for plan_part in plan.parts:
            if plan_part.part is None:
                continue
            self.session.add(
                WorkOrderPart(
                    work_order_id=work_order.id,
                    part_id=plan_part.part_id,
                    qty=plan_part.default_qty or 1,
                    unit_cost=plan_part.part.unit_cost,
                    status="reserved",
                )
            )
        self.session.flush()
