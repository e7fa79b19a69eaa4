import logging
import threading
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import Select, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ppm_scheduler.clock import Clock, utcnow
from ppm_scheduler.models.orm import (
    SlaDefinition,
    WorkOrder,
    WorkOrderPriority,
    WorkOrderSlaViolation,
    WorkOrderStatus,
)
from ppm_scheduler.models.schemas import NotificationPayload, SlaCheckSummary
from ppm_scheduler.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger("ppm_scheduler.sla")

WORK_ORDER_SCOPES = ("work_orders", "both")
CLOSED_STATUS_SLUGS = ("completed", "cancelled")

RESPONSE_TIME = "response_time"


class ViolationState(str, Enum):
    """Where a (work order, SLA, response_time) pair stands after a check."""

    NO_VIOLATION = "no_violation"
    UNNOTIFIED = "unnotified"
    NOTIFIED = "notified"
    ALREADY_NOTIFIED = "already_notified"


def active_for_work_orders() -> Select:
    return select(SlaDefinition).where(
        SlaDefinition.is_active.is_(True),
        SlaDefinition.applies_to.in_(WORK_ORDER_SCOPES),
    )


def matches_work_order(sla: SlaDefinition, work_order: WorkOrder) -> bool:
    """Whether ``sla`` governs ``work_order``.

    A missing category or priority level on the definition is a wildcard.
    """
    if not sla.is_active or sla.applies_to not in WORK_ORDER_SCOPES:
        return False
    if sla.category_id is not None and sla.category_id != work_order.category_id:
        return False
    if sla.priority_level:
        priority_slug = work_order.priority.slug if work_order.priority else None
        if priority_slug != sla.priority_level:
            return False
    return True


class SlaViolationEngine:
    """Detects response-time breaches and notifies the people involved, once."""

    def __init__(
        self,
        session: Session,
        dispatcher: NotificationDispatcher,
        clock: Clock | None = None,
    ):
        self.session = session
        self.dispatcher = dispatcher
        self.clock = clock or utcnow

    def check_response_time_violations(
        self, stop_event: threading.Event | None = None
    ) -> SlaCheckSummary:
        """Check every active work-order SLA definition.

        A definition that fails is logged and counted; the remaining
        definitions are still checked.
        """
        summary = SlaCheckSummary()
        definitions = list(
            self.session.scalars(
                active_for_work_orders().order_by(SlaDefinition.id)
            ).all()
        )

        for sla in definitions:
            if stop_event is not None and stop_event.is_set():
                logger.warning(
                    "SLA check cancelled after %d definition(s)",
                    summary.definitions_checked,
                )
                summary.cancelled = True
                break

            sla_id = sla.id
            summary.definitions_checked += 1
            try:
                self._check_definition(sla, summary)
            except Exception:
                self.session.rollback()
                summary.errors += 1
                logger.exception(
                    "Error checking SLA violations for definition %s", sla_id
                )

        return summary

    def candidate_work_orders(self, sla: SlaDefinition) -> list[WorkOrder]:
        """Open work orders in the definition's company that fall under its filters."""
        closed_status_ids = select(WorkOrderStatus.id).where(
            WorkOrderStatus.slug.in_(CLOSED_STATUS_SLUGS)
        )
        stmt = select(WorkOrder).where(
            WorkOrder.company_id == sla.company_id,
            or_(
                WorkOrder.status_id.is_(None),
                WorkOrder.status_id.not_in(closed_status_ids),
            ),
        )

        # An SLA without a category only covers uncategorised work orders here.
        if sla.category_id is not None:
            stmt = stmt.where(WorkOrder.category_id == sla.category_id)
        else:
            stmt = stmt.where(WorkOrder.category_id.is_(None))

        if sla.priority_level:
            stmt = stmt.join(WorkOrder.priority).where(
                WorkOrderPriority.slug == sla.priority_level
            )

        return list(self.session.scalars(stmt.order_by(WorkOrder.id)).all())

    def check_response_time_violation(
        self, work_order: WorkOrder, sla: SlaDefinition
    ) -> ViolationState:
        if not sla.response_time_hours:
            return ViolationState.NO_VIOLATION

        violation_at = work_order.created_at + timedelta(
            hours=float(sla.response_time_hours)
        )
        if self.clock() < violation_at:
            return ViolationState.NO_VIOLATION

        violation = self._find_violation(work_order.id, sla.id)
        if violation is not None and violation.notified_at is not None:
            return ViolationState.ALREADY_NOTIFIED

        if violation is None:
            violation = self._create_violation(work_order.id, sla.id, violation_at)
            if violation.notified_at is not None:
                return ViolationState.ALREADY_NOTIFIED

        if self._send_notifications(work_order, sla, violation):
            return ViolationState.NOTIFIED
        return ViolationState.UNNOTIFIED

    def _check_definition(self, sla: SlaDefinition, summary: SlaCheckSummary) -> None:
        for work_order in self.candidate_work_orders(sla):
            if not matches_work_order(sla, work_order):
                continue

            summary.work_orders_checked += 1
            state = self.check_response_time_violation(work_order, sla)
            if state in (ViolationState.NOTIFIED, ViolationState.UNNOTIFIED):
                summary.violations_found += 1
            if state is ViolationState.NOTIFIED:
                summary.notifications_sent += 1

    def _find_violation(
        self, work_order_id: int, sla_definition_id: int
    ) -> WorkOrderSlaViolation | None:
        return self.session.scalars(
            select(WorkOrderSlaViolation).where(
                WorkOrderSlaViolation.work_order_id == work_order_id,
                WorkOrderSlaViolation.sla_definition_id == sla_definition_id,
                WorkOrderSlaViolation.violation_type == RESPONSE_TIME,
            )
        ).first()

    def _create_violation(
        self, work_order_id: int, sla_definition_id: int, violated_at: datetime
    ) -> WorkOrderSlaViolation:
        violation = WorkOrderSlaViolation(
            work_order_id=work_order_id,
            sla_definition_id=sla_definition_id,
            violation_type=RESPONSE_TIME,
            violated_at=violated_at,
        )
        self.session.add(violation)
        try:
            self.session.commit()
        except IntegrityError:
            # Another run recorded the same violation between our read and write.
            self.session.rollback()
            violation = self._find_violation(work_order_id, sla_definition_id)
            if violation is None:
                raise
        return violation

    def _send_notifications(
        self,
        work_order: WorkOrder,
        sla: SlaDefinition,
        violation: WorkOrderSlaViolation,
    ) -> bool:
        work_order_id = work_order.id
        sla_id = sla.id

        user_ids: list[int] = []
        for user_id in (work_order.created_by, work_order.assigned_to):
            if user_id is not None and user_id not in user_ids:
                user_ids.append(user_id)

        if not user_ids:
            logger.warning(
                "No users to notify for SLA violation (work order %s, SLA definition %s)",
                work_order_id,
                sla_id,
            )
            return False

        hours = float(sla.response_time_hours)
        payload = NotificationPayload(
            company_id=work_order.company_id,
            type="sla_violation",
            action="response_time_exceeded",
            title="SLA Response Time Exceeded",
            message=(
                f"Work order '{work_order.title}' has exceeded the "
                f"{hours:.2f} hour response time SLA"
            ),
            data={
                "workOrderId": work_order_id,
                "workOrderTitle": work_order.title,
                "slaDefinitionId": sla_id,
                "slaDefinitionName": sla.name,
                "violationType": RESPONSE_TIME,
                "responseTimeHours": hours,
                "violatedAt": violation.violated_at.isoformat(),
            },
        )

        try:
            self.dispatcher.notify(user_ids, payload)
            violation.notified_at = self.clock()
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            logger.error(
                "Failed to send SLA violation notifications "
                "(work order %s, SLA definition %s): %s",
                work_order_id,
                sla_id,
                exc,
            )
            return False

        logger.info(
            "SLA violation notifications sent for work order %s (SLA definition %s) to users %s",
            work_order_id,
            sla_id,
            user_ids,
        )
        return True
