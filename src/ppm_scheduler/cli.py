import logging
import signal
import threading
from contextlib import contextmanager

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(help="ppm-scheduler CLI")
console = Console()


def _configure_logging(verbose: bool = False) -> None:
    from ppm_scheduler.config.settings import get_settings

    settings = get_settings()
    level = "DEBUG" if verbose or settings.debug else settings.log_level
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@contextmanager
def _stop_on_sigterm():
    """Let a scheduler's SIGTERM finish the current item, then stop the batch.

    The previous SIGTERM handler is put back on exit.
    """
    stop_event = threading.Event()
    previous = signal.signal(signal.SIGTERM, lambda signum, frame: stop_event.set())
    try:
        yield stop_event
    finally:
        # None means the old handler was not installed from Python.
        signal.signal(signal.SIGTERM, signal.SIG_DFL if previous is None else previous)


@app.command("init-db")
def init_db():
    """Initialize the database (create all tables)."""
    from ppm_scheduler.models.database import get_engine
    from ppm_scheduler.models.database import init_db as _init_db

    engine = get_engine()
    _init_db(engine)
    console.print("[green]Database initialized.[/green]")


@app.command("seed-demo")
def seed_demo():
    """Initialize the database and load a small demo dataset."""
    import subprocess
    import sys

    from ppm_scheduler.models.database import get_engine
    from ppm_scheduler.models.database import init_db as _init_db

    console.print("Initializing database...")
    _init_db(get_engine())
    console.print("Seeding demo data...")
    subprocess.run([sys.executable, "scripts/seed_demo.py"], check=True)
    console.print("[green]Demo data loaded.[/green]")


@app.command()
def generate(
    schedule_id: int = typer.Option(..., "--schedule-id", "-s", help="Schedule ID"),
    actor_id: int = typer.Option(
        None, "--actor-id", help="User recorded as creator of the work orders"
    ),
):
    """Generate the initial work orders for a maintenance schedule."""
    from sqlalchemy.exc import IntegrityError

    from ppm_scheduler.config.settings import get_settings
    from ppm_scheduler.models.database import get_engine, get_session
    from ppm_scheduler.models.orm import ScheduleMaintenance
    from ppm_scheduler.scheduling.generation import WorkOrderGenerationEngine

    _configure_logging()
    settings = get_settings()

    try:
        with get_session(get_engine()) as session:
            schedule = session.get(ScheduleMaintenance, schedule_id)
            if schedule is None:
                console.print(f"[red]Schedule #{schedule_id} not found.[/red]")
                raise typer.Exit(1)

            engine = WorkOrderGenerationEngine(
                session,
                horizon_months=settings.horizon_months,
                max_occurrences=settings.max_occurrences,
                actor_id=actor_id,
            )
            work_order_ids = engine.generate_from_schedule(schedule)
    except IntegrityError:
        console.print(
            f"[red]Schedule #{schedule_id} already has generated work orders; "
            "use extend-work-orders instead.[/red]"
        )
        raise typer.Exit(1)

    if not work_order_ids:
        console.print(
            f"[yellow]Nothing to generate for schedule #{schedule_id}.[/yellow]"
        )
        return
    console.print(
        f"[green]Generated {len(work_order_ids)} work order(s) "
        f"for schedule #{schedule_id}.[/green]"
    )


@app.command("extend-work-orders")
def extend_work_orders(
    schedule_id: int = typer.Option(
        None, "--schedule-id", "-s", help="Process only a specific schedule ID"
    ),
    force: bool = typer.Option(
        False, "--force", help="Generate even when no work orders exist yet"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show what would be done without executing"
    ),
    actor_id: int = typer.Option(
        None, "--actor-id", help="User recorded as creator of the work orders"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Extend work orders for maintenance schedules to keep a rolling window."""
    from ppm_scheduler.config.settings import get_settings
    from ppm_scheduler.models.database import get_engine, get_session
    from ppm_scheduler.scheduling.extension import ExtensionDriver
    from ppm_scheduler.scheduling.generation import WorkOrderGenerationEngine

    _configure_logging(verbose)
    settings = get_settings()

    if dry_run:
        console.print("[bold]DRY RUN MODE - No changes will be made[/bold]\n")

    try:
        with get_session(get_engine()) as session:
            engine = WorkOrderGenerationEngine(
                session,
                horizon_months=settings.horizon_months,
                max_occurrences=settings.max_occurrences,
                actor_id=actor_id,
            )
            driver = ExtensionDriver(
                session, engine, threshold_months=settings.extension_threshold_months
            )

            found = len(driver.active_schedules(schedule_id))
            if found == 0:
                console.print("[yellow]No active maintenance schedules found.[/yellow]")
                return
            console.print(f"Found {found} schedule(s) to process.\n")

            with _stop_on_sigterm() as stop_event:
                stats = driver.run(
                    schedule_id=schedule_id,
                    force=force,
                    dry_run=dry_run,
                    stop_event=stop_event,
                )
    except Exception as exc:
        console.print(f"[red]Extension run failed: {exc}[/red]")
        raise typer.Exit(1)

    for outcome in stats.outcomes:
        if outcome.error:
            if not dry_run:
                console.print(
                    f"[red]Error processing schedule #{outcome.schedule_id}: "
                    f"{outcome.error}[/red]"
                )
        elif dry_run and outcome.reason is None:
            console.print(
                f"Schedule #{outcome.schedule_id} ({outcome.plan_name}):"
            )
            console.print(f"  Would generate {outcome.count} new work order(s)")
            console.print(f"  Starting from: {outcome.start_from}")
            if outcome.first_due is not None:
                console.print(f"  First due date: {outcome.first_due}")
                console.print(f"  Last due date: {outcome.last_due}")
        elif verbose and outcome.reason:
            console.print(f"Schedule #{outcome.schedule_id}: {outcome.reason}")

    table = Table(title="Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Schedules Processed", str(stats.processed))
    table.add_row("Schedules Extended", str(stats.extended))
    table.add_row("Schedules Skipped", str(stats.skipped))
    table.add_row("Work Orders Generated", str(stats.generated_count))
    table.add_row("Errors", str(stats.errors))
    console.print(table)

    if stats.cancelled:
        console.print("[yellow]Run stopped early; remaining schedules untouched.[/yellow]")
    if dry_run:
        console.print("[yellow]This was a dry run. No changes were made.[/yellow]")


@app.command("check-sla-violations")
def check_sla_violations():
    """Check for SLA response time violations and send notifications."""
    from ppm_scheduler.models.database import get_engine, get_session
    from ppm_scheduler.notifications.dispatcher import DatabaseNotificationDispatcher
    from ppm_scheduler.sla.violations import SlaViolationEngine

    _configure_logging()
    console.print("Starting SLA violation check...")

    try:
        with get_session(get_engine()) as session:
            engine = SlaViolationEngine(session, DatabaseNotificationDispatcher(session))
            with _stop_on_sigterm() as stop_event:
                summary = engine.check_response_time_violations(
                    stop_event=stop_event
                )
    except Exception as exc:
        console.print(f"[red]Error checking SLA violations: {exc}[/red]")
        logging.getLogger("ppm_scheduler.cli").exception("SLA violation check failed")
        raise typer.Exit(1)

    table = Table(title="SLA Check")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Definitions Checked", str(summary.definitions_checked))
    table.add_row("Work Orders Checked", str(summary.work_orders_checked))
    table.add_row("Violations Found", str(summary.violations_found))
    table.add_row("Notifications Sent", str(summary.notifications_sent))
    table.add_row("Errors", str(summary.errors))
    console.print(table)
    console.print("[green]SLA violation check completed successfully.[/green]")


if __name__ == "__main__":
    app()
