import signal
from datetime import date
from unittest.mock import MagicMock, call, patch

from sqlalchemy.exc import IntegrityError
from typer.testing import CliRunner

from ppm_scheduler.cli import _stop_on_sigterm, app
from ppm_scheduler.models.schemas import ExtensionStats, ScheduleOutcome, SlaCheckSummary

runner = CliRunner()


def _mock_session_scope(mock_get_session, session):
    mock_get_session.return_value.__enter__ = MagicMock(return_value=session)
    mock_get_session.return_value.__exit__ = MagicMock(return_value=False)


class TestCLI:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "ppm-scheduler" in result.output

    def test_init_db(self):
        with (
            patch("ppm_scheduler.models.database.get_engine"),
            patch("ppm_scheduler.models.database.init_db"),
        ):
            result = runner.invoke(app, ["init-db"])
            assert result.exit_code == 0
            assert "initialized" in result.output.lower()

    def test_seed_demo_command_exists(self):
        result = runner.invoke(app, ["seed-demo", "--help"])
        assert result.exit_code == 0

    def test_generate(self):
        mock_engine = MagicMock()
        mock_engine.generate_from_schedule.return_value = [1, 2, 3]

        with (
            patch(
                "ppm_scheduler.scheduling.generation.WorkOrderGenerationEngine",
                return_value=mock_engine,
            ),
            patch("ppm_scheduler.models.database.get_engine"),
            patch("ppm_scheduler.models.database.get_session") as mock_get_session,
        ):
            _mock_session_scope(mock_get_session, MagicMock())
            result = runner.invoke(app, ["generate", "--schedule-id", "5"])
            assert result.exit_code == 0
            assert "Generated 3 work order(s) for schedule #5" in result.output

    def test_generate_unknown_schedule(self):
        mock_session = MagicMock()
        mock_session.get.return_value = None

        with (
            patch("ppm_scheduler.models.database.get_engine"),
            patch("ppm_scheduler.models.database.get_session") as mock_get_session,
        ):
            _mock_session_scope(mock_get_session, mock_session)
            result = runner.invoke(app, ["generate", "-s", "404"])
            assert result.exit_code == 1
            assert "not found" in result.output

    def test_generate_repeat_run(self):
        mock_engine = MagicMock()
        mock_engine.generate_from_schedule.side_effect = IntegrityError(
            "INSERT INTO work_orders", {}, Exception("UNIQUE constraint failed")
        )

        with (
            patch(
                "ppm_scheduler.scheduling.generation.WorkOrderGenerationEngine",
                return_value=mock_engine,
            ),
            patch("ppm_scheduler.models.database.get_engine"),
            patch("ppm_scheduler.models.database.get_session") as mock_get_session,
        ):
            _mock_session_scope(mock_get_session, MagicMock())
            result = runner.invoke(app, ["generate", "-s", "5"])

        assert result.exit_code == 1
        assert "already has generated work orders" in result.output
        assert not isinstance(result.exception, IntegrityError)

    def test_generate_requires_schedule_id(self):
        result = runner.invoke(app, ["generate"])
        assert result.exit_code != 0


class TestExtendWorkOrders:
    def _invoke(self, args, stats, schedules=1):
        mock_driver = MagicMock()
        mock_driver.active_schedules.return_value = [MagicMock()] * schedules
        mock_driver.run.return_value = stats

        with (
            patch(
                "ppm_scheduler.scheduling.extension.ExtensionDriver",
                return_value=mock_driver,
            ),
            patch("ppm_scheduler.scheduling.generation.WorkOrderGenerationEngine"),
            patch("ppm_scheduler.models.database.get_engine"),
            patch("ppm_scheduler.models.database.get_session") as mock_get_session,
            patch("ppm_scheduler.cli.signal.signal"),
        ):
            _mock_session_scope(mock_get_session, MagicMock())
            result = runner.invoke(app, ["extend-work-orders", *args])
        return result, mock_driver

    def test_summary(self):
        stats = ExtensionStats(
            processed=2,
            extended=1,
            skipped=1,
            generated_count=10,
            outcomes=[
                ScheduleOutcome(schedule_id=1, plan_name="Chiller", extended=True, count=10),
                ScheduleOutcome(schedule_id=2, plan_name="AHU", reason="last work order is 11 months away"),
            ],
        )
        result, mock_driver = self._invoke([], stats, schedules=2)

        assert result.exit_code == 0
        assert "Found 2 schedule(s) to process" in result.output
        assert "Work Orders Generated" in result.output
        assert "10" in result.output
        assert "11 months away" not in result.output
        mock_driver.run.assert_called_once()
        assert mock_driver.run.call_args.kwargs["force"] is False

    def test_verbose_shows_skip_reasons(self):
        stats = ExtensionStats(
            processed=1,
            skipped=1,
            outcomes=[
                ScheduleOutcome(schedule_id=2, reason="last work order is 11 months away")
            ],
        )
        result, _ = self._invoke(["--verbose"], stats)
        assert "Schedule #2: last work order is 11 months away" in result.output

    def test_dry_run(self):
        stats = ExtensionStats(
            processed=1,
            extended=1,
            generated_count=10,
            dry_run=True,
            outcomes=[
                ScheduleOutcome(
                    schedule_id=3,
                    plan_name="Chiller inspection",
                    extended=True,
                    count=10,
                    start_from=date(2025, 3, 1),
                    first_due=date(2025, 4, 1),
                    last_due=date(2026, 1, 1),
                )
            ],
        )
        result, mock_driver = self._invoke(["--dry-run", "--force", "-s", "3"], stats)

        assert result.exit_code == 0
        assert "DRY RUN MODE" in result.output
        assert "Would generate 10 new work order(s)" in result.output
        assert "First due date: 2025-04-01" in result.output
        assert "This was a dry run" in result.output
        kwargs = mock_driver.run.call_args.kwargs
        assert kwargs["dry_run"] is True
        assert kwargs["force"] is True
        assert kwargs["schedule_id"] == 3

    def test_errors_reported(self):
        stats = ExtensionStats(
            processed=1,
            errors=1,
            outcomes=[ScheduleOutcome(schedule_id=4, error="database is locked")],
        )
        result, _ = self._invoke([], stats)

        assert result.exit_code == 0
        assert "Error processing schedule #4: database is locked" in result.output

    def test_no_schedules(self):
        result, mock_driver = self._invoke([], ExtensionStats(), schedules=0)

        assert result.exit_code == 0
        assert "No active maintenance schedules found" in result.output
        mock_driver.run.assert_not_called()

    def test_run_failure_exits_non_zero(self):
        mock_driver = MagicMock()
        mock_driver.active_schedules.side_effect = RuntimeError("no such table")

        with (
            patch(
                "ppm_scheduler.scheduling.extension.ExtensionDriver",
                return_value=mock_driver,
            ),
            patch("ppm_scheduler.scheduling.generation.WorkOrderGenerationEngine"),
            patch("ppm_scheduler.models.database.get_engine"),
            patch("ppm_scheduler.models.database.get_session") as mock_get_session,
        ):
            _mock_session_scope(mock_get_session, MagicMock())
            result = runner.invoke(app, ["extend-work-orders"])

        assert result.exit_code == 1
        assert "Extension run failed" in result.output


class TestCheckSlaViolations:
    def test_summary(self):
        mock_engine = MagicMock()
        mock_engine.check_response_time_violations.return_value = SlaCheckSummary(
            definitions_checked=2,
            work_orders_checked=7,
            violations_found=3,
            notifications_sent=3,
        )

        with (
            patch("ppm_scheduler.sla.violations.SlaViolationEngine", return_value=mock_engine),
            patch("ppm_scheduler.notifications.dispatcher.DatabaseNotificationDispatcher"),
            patch("ppm_scheduler.models.database.get_engine"),
            patch("ppm_scheduler.models.database.get_session") as mock_get_session,
            patch("ppm_scheduler.cli.signal.signal"),
        ):
            _mock_session_scope(mock_get_session, MagicMock())
            result = runner.invoke(app, ["check-sla-violations"])

        assert result.exit_code == 0
        assert "Starting SLA violation check" in result.output
        assert "Violations Found" in result.output
        assert "completed successfully" in result.output

    def test_failure_exits_non_zero(self):
        mock_engine = MagicMock()
        mock_engine.check_response_time_violations.side_effect = RuntimeError(
            "connection refused"
        )

        with (
            patch("ppm_scheduler.sla.violations.SlaViolationEngine", return_value=mock_engine),
            patch("ppm_scheduler.notifications.dispatcher.DatabaseNotificationDispatcher"),
            patch("ppm_scheduler.models.database.get_engine"),
            patch("ppm_scheduler.models.database.get_session") as mock_get_session,
            patch("ppm_scheduler.cli.signal.signal"),
        ):
            _mock_session_scope(mock_get_session, MagicMock())
            result = runner.invoke(app, ["check-sla-violations"])

        assert result.exit_code == 1
        assert "Error checking SLA violations: connection refused" in result.output


class TestStopOnSigterm:
    def test_sigterm_sets_event_and_handler_is_restored(self):
        before = signal.getsignal(signal.SIGTERM)

        with _stop_on_sigterm() as stop_event:
            handler = signal.getsignal(signal.SIGTERM)
            assert handler is not before
            handler(signal.SIGTERM, None)
            assert stop_event.is_set()

        assert signal.getsignal(signal.SIGTERM) is before

    def test_restored_after_failure(self):
        before = signal.getsignal(signal.SIGTERM)
        try:
            with _stop_on_sigterm():
                raise RuntimeError("batch failed")
        except RuntimeError:
            pass
        assert signal.getsignal(signal.SIGTERM) is before

    def test_unknown_previous_handler_falls_back_to_default(self):
        with patch("ppm_scheduler.cli.signal.signal", return_value=None) as mock_signal:
            with _stop_on_sigterm():
                pass
        assert mock_signal.call_args_list[-1] == call(signal.SIGTERM, signal.SIG_DFL)

    def test_extend_run_restores_handler(self):
        previous = MagicMock()
        mock_driver = MagicMock()
        mock_driver.active_schedules.return_value = [MagicMock()]
        mock_driver.run.return_value = ExtensionStats(processed=1, skipped=1)

        with (
            patch(
                "ppm_scheduler.scheduling.extension.ExtensionDriver",
                return_value=mock_driver,
            ),
            patch("ppm_scheduler.scheduling.generation.WorkOrderGenerationEngine"),
            patch("ppm_scheduler.models.database.get_engine"),
            patch("ppm_scheduler.models.database.get_session") as mock_get_session,
            patch("ppm_scheduler.cli.signal.signal", return_value=previous) as mock_signal,
        ):
            _mock_session_scope(mock_get_session, MagicMock())
            result = runner.invoke(app, ["extend-work-orders"])

        assert result.exit_code == 0
        assert mock_signal.call_count == 2
        assert mock_signal.call_args_list[-1] == call(signal.SIGTERM, previous)
