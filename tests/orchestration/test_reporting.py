"""Tests for migrate_core.orchestration.reporting."""

from structlog.testing import capture_logs

from migrate_core.core.models import ScriptSet
from migrate_core.orchestration.reporting import LoggingReporter, Reporter
from tests._support.fakes import make_script


def test_logging_reporter_satisfies_protocol():
    assert isinstance(LoggingReporter(), Reporter)


def test_status_warns_about_ignored():
    scripts = ScriptSet(all=[make_script(1), make_script(2)], migrated=[make_script(2)], ignored=[make_script(1)])
    with capture_logs() as logs:
        LoggingReporter().report_status(scripts)
    events = [entry["event"] for entry in logs]
    assert events == ["migration.status", "migration.ignored"]
    assert logs[1]["scripts"] == ["V1_step.py"]


def test_nothing_pending():
    with capture_logs() as logs:
        LoggingReporter().report_pending([])
    assert logs[0]["event"] == "migration.nothing_pending"


def test_executed_totals_duration():
    script = make_script(1)
    script.started_at, script.finished_at = 0, 1500
    with capture_logs() as logs:
        LoggingReporter().report_executed([script, make_script(2)])
    assert logs[0]["count"] == 2
    assert logs[0]["total_seconds"] == 1.5


def test_dry_run_without_transactions_warns():
    with capture_logs() as logs:
        LoggingReporter().report_dry_run([make_script(1)], transactional=False)
    assert logs[0]["event"] == "dry_run.report_only"
    assert logs[0]["log_level"] == "warning"
