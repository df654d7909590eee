"""
Tests for Orphan Cleanup Service
"""

import json
import pytest
from datetime import datetime

import models
from services.orphan_cleanup import CleanupMode, OrphanCleanupTool
from config import TableNames


DUE = datetime(2026, 7, 15, 14, 0)


@pytest.fixture
def cleanup_tool(job_settings, fixed_clock):
    return OrphanCleanupTool(config=job_settings, clock=fixed_clock)


@pytest.fixture
def legacy_rows(db_session, make_command, make_event):
    """One live command with mirror rows plus rows left behind by a deleted one"""
    command = make_command(command_id="cmd-live")
    live_event = make_event(command, DUE)

    db_session.add_all([
        models.LegacyCalendarEvent(source_event_id=live_event.id, medication_id="cmd-live", patient_id="patient-1"),
        # Source event gone, command still live
        models.LegacyCalendarEvent(source_event_id="cmd-live_202601010900", medication_id="cmd-live",
                                   patient_id="patient-1"),
        models.LegacyCalendarEvent(source_event_id="cmd-gone_202607151400", medication_id="cmd-gone",
                                   patient_id="patient-1"),
        models.LegacySchedule(medication_id="cmd-live", patient_id="patient-1"),
        models.LegacySchedule(medication_id="cmd-gone", patient_id="patient-1"),
        models.LegacyReminder(medication_id="cmd-gone", patient_id="patient-1"),
    ])
    db_session.commit()
    return command


class TestOrphanCleanup:
    """Tests for dry-run, backup-only and execute modes"""

    def test_dry_run_changes_nothing(self, db_session, cleanup_tool, legacy_rows, tmp_path):
        report = cleanup_tool.run(db_session, CleanupMode.DRY_RUN, backup_dir=str(tmp_path))

        assert report.collections[TableNames.LEGACY_CALENDAR_EVENTS] == {"total": 3, "orphaned": 2}
        assert report.collections[TableNames.LEGACY_SCHEDULES] == {"total": 2, "orphaned": 1}
        assert report.collections[TableNames.LEGACY_REMINDERS] == {"total": 1, "orphaned": 1}
        assert report.total_orphaned == 4
        assert report.valid_command_count == 1
        assert report.backup_path is None
        assert report.report_path is None
        assert list(tmp_path.iterdir()) == []
        assert db_session.query(models.LegacyCalendarEvent).count() == 3

    def test_backup_only(self, db_session, cleanup_tool, legacy_rows, tmp_path):
        report = cleanup_tool.run(db_session, CleanupMode.BACKUP_ONLY, backup_dir=str(tmp_path))

        with open(report.backup_path, encoding="utf-8") as f:
            backup = json.load(f)
        assert len(backup["collections"][TableNames.LEGACY_CALENDAR_EVENTS]) == 2
        assert "orphaned-legacy-cleanup-" in report.backup_path
        assert report.report_path.endswith(".json")
        assert db_session.query(models.LegacyReminder).count() == 1

    def test_execute_deletes_orphans(self, db_session, cleanup_tool, legacy_rows, tmp_path):
        report = cleanup_tool.run(db_session, CleanupMode.EXECUTE, backup_dir=str(tmp_path))

        assert report.total_deleted == 4
        assert report.success is True
        remaining = db_session.query(models.LegacyCalendarEvent).all()
        assert [r.medication_id for r in remaining] == ["cmd-live"]
        assert db_session.query(models.LegacySchedule).count() == 1
        assert db_session.query(models.LegacyReminder).count() == 0

        with open(report.report_path, encoding="utf-8") as f:
            written = json.load(f)
        assert written["totals"] == {"orphaned": 4, "deleted": 4}
        assert written["mode"] == "execute"

    def test_execute_is_repeatable(self, db_session, cleanup_tool, legacy_rows, tmp_path):
        cleanup_tool.run(db_session, CleanupMode.EXECUTE, backup_dir=str(tmp_path))
        second = cleanup_tool.run(db_session, CleanupMode.EXECUTE, backup_dir=str(tmp_path))

        assert second.total_orphaned == 0
        assert second.backup_path is None
