from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
    validates,
)

from ppm_scheduler.clock import utcnow


class Base(DeclarativeBase):
    pass


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)


class Asset(Base):
    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    location_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("locations.id")
    )

    location: Mapped["Location"] = relationship()


class Part(Base):
    __tablename__ = "parts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))


class WorkOrderStatus(Base):
    __tablename__ = "work_order_statuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)


class WorkOrderPriority(Base):
    __tablename__ = "work_order_priorities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), nullable=False)


class WorkOrderCategory(Base):
    __tablename__ = "work_order_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class MaintenancePlan(Base):
    __tablename__ = "maintenance_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    priority_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("work_order_priorities.id")
    )
    category_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("work_order_categories.id")
    )
    frequency_type: Mapped[str] = mapped_column(String(20), nullable=False)
    frequency_value: Mapped[int | None] = mapped_column(Integer)
    frequency_unit: Mapped[str | None] = mapped_column(String(10))
    asset_ids: Mapped[list[int] | None] = mapped_column(JSON)
    assigned_user_id: Mapped[int | None] = mapped_column(Integer)
    assigned_role_id: Mapped[int | None] = mapped_column(Integer)
    assigned_team_id: Mapped[int | None] = mapped_column(Integer)
    estimated_duration: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    parts: Mapped[list["MaintenancePlanPart"]] = relationship(back_populates="plan")
    schedules: Mapped[list["ScheduleMaintenance"]] = relationship(
        back_populates="plan"
    )


class MaintenancePlanPart(Base):
    __tablename__ = "maintenance_plan_parts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("maintenance_plans.id"), nullable=False
    )
    part_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("parts.id"))
    default_qty: Mapped[int | None] = mapped_column(Integer)

    plan: Mapped["MaintenancePlan"] = relationship(back_populates="parts")
    part: Mapped["Part"] = relationship()


class ScheduleMaintenance(Base):
    __tablename__ = "schedule_maintenance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    maintenance_plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("maintenance_plans.id"), nullable=False
    )
    asset_ids: Mapped[list[int] | None] = mapped_column(JSON)
    start_date: Mapped[datetime | None] = mapped_column(DateTime)
    status: Mapped[str | None] = mapped_column(String(20))
    priority_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("work_order_priorities.id")
    )
    assigned_user_id: Mapped[int | None] = mapped_column(Integer)
    assigned_role_id: Mapped[int | None] = mapped_column(Integer)
    assigned_team_id: Mapped[int | None] = mapped_column(Integer)
    auto_generated_wo_ids: Mapped[list[int] | None] = mapped_column(JSON)

    plan: Mapped["MaintenancePlan"] = relationship(back_populates="schedules")


class WorkOrder(Base):
    __tablename__ = "work_orders"
    __table_args__ = (
        UniqueConstraint("schedule_id", "due_on", name="uq_work_orders_schedule_due"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    type: Mapped[str | None] = mapped_column(String(30))
    priority_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("work_order_priorities.id")
    )
    category_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("work_order_categories.id")
    )
    status_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("work_order_statuses.id")
    )
    due_date: Mapped[datetime | None] = mapped_column(DateTime)
    due_on: Mapped[date | None] = mapped_column(Date)
    asset_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("assets.id"))
    location_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("locations.id")
    )
    assigned_to: Mapped[int | None] = mapped_column(Integer)
    assigned_by: Mapped[int | None] = mapped_column(Integer)
    created_by: Mapped[int | None] = mapped_column(Integer)
    estimated_hours: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    notes: Mapped[str | None] = mapped_column(Text)
    # Weak back-reference to the generating schedule: no FK, no cascade.
    schedule_id: Mapped[int | None] = mapped_column(Integer, index=True)
    meta: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    priority: Mapped["WorkOrderPriority"] = relationship()
    category: Mapped["WorkOrderCategory"] = relationship()
    status: Mapped["WorkOrderStatus"] = relationship()
    parts: Mapped[list["WorkOrderPart"]] = relationship(back_populates="work_order")

    @validates("due_date")
    def _sync_due_on(self, key, value):
        self.due_on = value.date() if value is not None else None
        return value


class WorkOrderPart(Base):
    __tablename__ = "work_order_parts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    work_order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("work_orders.id"), nullable=False
    )
    part_id: Mapped[int] = mapped_column(Integer, ForeignKey("parts.id"), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    work_order: Mapped["WorkOrder"] = relationship(back_populates="parts")


class SlaDefinition(Base):
    __tablename__ = "sla_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    applies_to: Mapped[str] = mapped_column(String(20), nullable=False)
    priority_level: Mapped[str | None] = mapped_column(String(50))
    category_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("work_order_categories.id")
    )
    response_time_hours: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))
    containment_time_hours: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))
    completion_time_hours: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[int | None] = mapped_column(Integer)


class WorkOrderSlaViolation(Base):
    __tablename__ = "work_order_sla_violations"
    __table_args__ = (
        UniqueConstraint(
            "work_order_id",
            "sla_definition_id",
            "violation_type",
            name="uq_sla_violation_triple",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    work_order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("work_orders.id"), nullable=False
    )
    sla_definition_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sla_definitions.id"), nullable=False
    )
    violation_type: Mapped[str] = mapped_column(String(30), nullable=False)
    violated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    notified_at: Mapped[datetime | None] = mapped_column(DateTime)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int | None] = mapped_column(Integer, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str | None] = mapped_column(String(50))
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    data: Mapped[dict | None] = mapped_column(JSON)
    created_by: Mapped[int | None] = mapped_column(Integer)
    read_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
