from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from ppm_scheduler.exceptions import NotificationError
from ppm_scheduler.models.orm import (
    Asset,
    Base,
    Location,
    MaintenancePlan,
    MaintenancePlanPart,
    Part,
    ScheduleMaintenance,
    SlaDefinition,
    WorkOrder,
    WorkOrderCategory,
    WorkOrderPriority,
    WorkOrderStatus,
)
from ppm_scheduler.scheduling.generation import WorkOrderGenerationEngine

NOW = datetime(2025, 1, 1, 9, 0)
COMPANY_ID = 1
ACTOR_ID = 7


class FrozenClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def notify(self, user_ids, payload):
        if self.fail:
            raise NotificationError("delivery failed")
        self.calls.append((list(user_ids), payload))


@pytest.fixture
def engine():
    # Code under test commits, so each test gets its own database.
    eng = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    sess = Session(bind=engine)
    yield sess
    sess.close()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def statuses(session):
    rows = {
        slug: WorkOrderStatus(name=slug.replace("_", " ").title(), slug=slug)
        for slug in ("open", "in_progress", "completed", "cancelled")
    }
    session.add_all(rows.values())
    session.flush()
    return rows


@pytest.fixture
def priorities(session):
    rows = {
        slug: WorkOrderPriority(name=slug.title(), slug=slug)
        for slug in ("low", "high", "critical")
    }
    session.add_all(rows.values())
    session.flush()
    return rows


@pytest.fixture
def category(session):
    cat = WorkOrderCategory(name="HVAC")
    session.add(cat)
    session.flush()
    return cat


@pytest.fixture
def asset(session):
    location = Location(company_id=COMPANY_ID, name="Building A")
    session.add(location)
    session.flush()
    item = Asset(company_id=COMPANY_ID, name="Chiller 1", location_id=location.id)
    session.add(item)
    session.flush()
    return item


@pytest.fixture
def parts(session):
    rows = [
        Part(company_id=COMPANY_ID, name="Pleated filter", unit_cost=Decimal("12.40")),
        Part(company_id=COMPANY_ID, name="V-belt", unit_cost=Decimal("18.75")),
    ]
    session.add_all(rows)
    session.flush()
    return rows


@pytest.fixture
def monthly_plan(session, statuses, priorities, category, asset, parts):
    """Monthly chiller inspection with two parts (one without a default qty)."""
    plan = MaintenancePlan(
        company_id=COMPANY_ID,
        name="Chiller inspection",
        priority_id=priorities["high"].id,
        category_id=category.id,
        frequency_type="time",
        frequency_value=1,
        frequency_unit="months",
        asset_ids=[asset.id],
        assigned_user_id=21,
        estimated_duration=Decimal("2.50"),
        is_active=True,
    )
    session.add(plan)
    session.flush()
    session.add_all(
        [
            MaintenancePlanPart(plan_id=plan.id, part_id=parts[0].id, default_qty=2),
            MaintenancePlanPart(plan_id=plan.id, part_id=parts[1].id, default_qty=None),
        ]
    )
    session.commit()
    return plan


@pytest.fixture
def schedule(session, monthly_plan):
    sched = ScheduleMaintenance(
        maintenance_plan_id=monthly_plan.id,
        start_date=datetime(2025, 1, 1),
        status="active",
    )
    session.add(sched)
    session.commit()
    return sched


@pytest.fixture
def generator(session, clock):
    return WorkOrderGenerationEngine(session, clock=clock, actor_id=ACTOR_ID)


@pytest.fixture
def make_schedule(session):
    """Build a schedule on a fresh plan; keyword args override plan fields."""

    def _make(start_date=datetime(2025, 1, 1), **plan_fields):
        fields = {
            "company_id": COMPANY_ID,
            "name": "Generator load test",
            "frequency_type": "time",
            "frequency_value": 1,
            "frequency_unit": "months",
            "is_active": True,
        }
        fields.update(plan_fields)
        plan = MaintenancePlan(**fields)
        session.add(plan)
        session.flush()
        sched = ScheduleMaintenance(maintenance_plan_id=plan.id, start_date=start_date)
        session.add(sched)
        session.commit()
        return sched

    return _make


@pytest.fixture
def make_work_order(session, statuses):
    def _make(**fields):
        values = {
            "company_id": COMPANY_ID,
            "title": "Leaking valve in plant room",
            "type": "reactive",
            "status_id": statuses["open"].id,
            "created_by": 10,
            "assigned_to": 11,
            "created_at": NOW - timedelta(hours=5),
        }
        values.update(fields)
        work_order = WorkOrder(**values)
        session.add(work_order)
        session.commit()
        return work_order

    return _make


@pytest.fixture
def response_sla(session):
    sla = SlaDefinition(
        company_id=COMPANY_ID,
        name="Standard response",
        applies_to="work_orders",
        response_time_hours=Decimal("4.00"),
        is_active=True,
    )
    session.add(sla)
    session.commit()
    return sla


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher():
    return RecordingDispatcher(fail=True)
