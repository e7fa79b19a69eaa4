"""Demo data seeder for ppm-scheduler.

Creates two companies' worth of locations, assets, parts, maintenance plans,
schedules and SLA definitions, plus a few open work orders so that both the
extension run and the SLA check have something to do.
"""

import random
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

# Ensure src is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from ppm_scheduler.clock import utcnow
from ppm_scheduler.models.database import get_engine, init_db
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

SEED = 42
random.seed(SEED)

COMPANIES = [1, 2]

STATUSES = [
    ("Open", "open"),
    ("In Progress", "in_progress"),
    ("Completed", "completed"),
    ("Cancelled", "cancelled"),
]

PRIORITIES = [("Low", "low"), ("Medium", "medium"), ("High", "high"), ("Critical", "critical")]

CATEGORIES = ["HVAC", "Electrical", "Plumbing", "Fire Safety"]

# (plan name, frequency value, frequency unit, category index, duration hours)
PLAN_SPECS = [
    ("Chiller inspection", 1, "months", 0, Decimal("2.50")),
    ("AHU filter replacement", 3, "months", 0, Decimal("1.50")),
    ("Generator load test", 2, "weeks", 1, Decimal("3.00")),
    ("Backflow preventer test", 1, "years", 2, Decimal("1.00")),
    ("Sprinkler inspection", 6, "months", 3, Decimal("4.00")),
]

PARTS = [
    ("Pleated filter 24x24", Decimal("12.40")),
    ("V-belt A42", Decimal("18.75")),
    ("Refrigerant R-410A (lb)", Decimal("9.90")),
    ("Sprinkler head", Decimal("14.20")),
]


def seed_lookups(session: Session) -> dict[str, dict]:
    statuses = {slug: WorkOrderStatus(name=name, slug=slug) for name, slug in STATUSES}
    priorities = {
        slug: WorkOrderPriority(name=name, slug=slug) for name, slug in PRIORITIES
    }
    categories = [WorkOrderCategory(name=name) for name in CATEGORIES]
    session.add_all([*statuses.values(), *priorities.values(), *categories])
    session.flush()
    return {"statuses": statuses, "priorities": priorities, "categories": categories}


def seed_company(session: Session, company_id: int, lookups: dict) -> list[ScheduleMaintenance]:
    locations = [
        Location(company_id=company_id, name=f"Building {chr(65 + i)}") for i in range(3)
    ]
    session.add_all(locations)
    session.flush()

    assets = [
        Asset(
            company_id=company_id,
            name=f"Asset {company_id}-{i:03d}",
            location_id=random.choice(locations).id,
        )
        for i in range(1, 11)
    ]
    parts = [
        Part(company_id=company_id, name=name, unit_cost=cost) for name, cost in PARTS
    ]
    session.add_all([*assets, *parts])
    session.flush()

    schedules = []
    for name, value, unit, category_index, duration in PLAN_SPECS:
        plan = MaintenancePlan(
            company_id=company_id,
            name=name,
            priority_id=random.choice(list(lookups["priorities"].values())).id,
            category_id=lookups["categories"][category_index].id,
            frequency_type="time",
            frequency_value=value,
            frequency_unit=unit,
            asset_ids=[a.id for a in random.sample(assets, 2)],
            assigned_user_id=random.randint(100, 110),
            estimated_duration=duration,
            is_active=True,
        )
        session.add(plan)
        session.flush()

        for part in random.sample(parts, 2):
            session.add(
                MaintenancePlanPart(
                    plan_id=plan.id, part_id=part.id, default_qty=random.randint(1, 4)
                )
            )

        schedule = ScheduleMaintenance(
            maintenance_plan_id=plan.id,
            start_date=utcnow() - timedelta(days=random.randint(0, 60)),
            status="active",
        )
        session.add(schedule)
        schedules.append(schedule)

    session.add_all(
        [
            SlaDefinition(
                company_id=company_id,
                name="Critical response",
                applies_to="both",
                priority_level="critical",
                response_time_hours=Decimal("4.00"),
                completion_time_hours=Decimal("24.00"),
                is_active=True,
            ),
            SlaDefinition(
                company_id=company_id,
                name="General response",
                applies_to="work_orders",
                response_time_hours=Decimal("48.00"),
                is_active=True,
            ),
        ]
    )

    open_status = lookups["statuses"]["open"]
    critical = lookups["priorities"]["critical"]
    for i in range(5):
        session.add(
            WorkOrder(
                company_id=company_id,
                title=f"Reactive call #{company_id}-{i + 1}",
                type="reactive",
                priority_id=critical.id,
                status_id=open_status.id,
                asset_id=random.choice(assets).id,
                created_by=random.randint(100, 110),
                assigned_to=random.choice([None, random.randint(100, 110)]),
                created_at=utcnow() - timedelta(hours=random.randint(1, 72)),
            )
        )

    session.flush()
    return schedules


def main() -> None:
    """Seed the demo dataset and run the first generation for every schedule."""
    print("Initializing database...")
    engine = get_engine()
    Base.metadata.drop_all(engine)
    init_db(engine)

    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    session = SessionLocal()

    try:
        lookups = seed_lookups(session)
        schedules = []
        for company_id in COMPANIES:
            print(f"Seeding company {company_id}...")
            schedules.extend(seed_company(session, company_id, lookups))
        session.commit()

        print("Generating initial work orders...")
        generator = WorkOrderGenerationEngine(session)
        generated = sum(len(generator.generate_from_schedule(s)) for s in schedules)
        print(f"  Created {generated} PPM work orders")

        total_wo = session.scalar(select(func.count(WorkOrder.id)))
        total_sla = session.scalar(select(func.count(SlaDefinition.id)))

        print("\nDatabase summary:")
        print(f"  Schedules:        {len(schedules)}")
        print(f"  Work orders:      {total_wo}")
        print(f"  SLA definitions:  {total_sla}")

    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
