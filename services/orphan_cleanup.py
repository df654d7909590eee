"""
Orphan Cleanup Service
Finds legacy mirror rows whose unified source no longer exists and removes
them, with dry-run, backup-only and execute modes
"""

import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from config import TableNames, settings
from tools.clock import system_clock


logger = logging.getLogger(__name__)


LEGACY_COLLECTIONS = [
    (TableNames.LEGACY_CALENDAR_EVENTS, models.LegacyCalendarEvent),
    (TableNames.LEGACY_SCHEDULES, models.LegacySchedule),
    (TableNames.LEGACY_REMINDERS, models.LegacyReminder),
]


class CleanupMode(str, Enum):
    """How far a cleanup run goes"""
    DRY_RUN = "dry_run"
    BACKUP_ONLY = "backup_only"
    EXECUTE = "execute"


@dataclass
class CleanupReport:
    """Outcome of a cleanup run"""
    report_id: str
    mode: CleanupMode
    started_at: str
    completed_at: Optional[str] = None
    valid_command_count: int = 0
    collections: Dict[str, Dict[str, int]] = field(default_factory=dict)
    deletion_results: Dict[str, Dict[str, int]] = field(default_factory=dict)
    backup_path: Optional[str] = None
    report_path: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def total_orphaned(self) -> int:
        return sum(c.get("orphaned", 0) for c in self.collections.values())

    @property
    def total_deleted(self) -> int:
        return sum(r.get("deleted", 0) for r in self.deletion_results.values())

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_id": self.report_id,
            "mode": self.mode.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "valid_command_count": self.valid_command_count,
            "collections": self.collections,
            "deletion_results": self.deletion_results,
            "totals": {
                "orphaned": self.total_orphaned,
                "deleted": self.total_deleted,
            },
            "backup_path": self.backup_path,
            "report_path": self.report_path,
            "errors": list(self.errors),
            "success": self.success,
        }


def _row_to_dict(row) -> Dict[str, Any]:
    return {column.name: getattr(row, column.name) for column in row.__table__.columns}


class OrphanCleanupTool:
    """
    Operator-invoked reconciliation of the legacy read model.

    A row is orphaned when its medication_id is not a live command id, or
    (calendar rows) when its source event no longer exists.
    """

    def __init__(self, config=None, clock=None):
        self.config = config or settings
        self.clock = clock or system_clock

    def run(
        self,
        db: Session,
        mode: CleanupMode = CleanupMode.DRY_RUN,
        backup_dir: Optional[str] = None,
    ) -> CleanupReport:
        """
        Scan, optionally back up, and optionally delete orphaned rows.

        Raises:
            SQLAlchemyError: if the scan itself cannot be completed
        """
        mode = CleanupMode(mode)
        started = self.clock.now()
        report = CleanupReport(
            report_id=f"{started.strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:6]}",
            mode=mode,
            started_at=started.isoformat(),
        )
        backup_dir = backup_dir or self.config.ORPHAN_BACKUP_DIR

        orphans = self.find_orphans(db, report)
        logger.info(
            f"Orphan scan ({mode.value}): {report.total_orphaned} orphaned rows "
            f"across {len(LEGACY_COLLECTIONS)} collections"
        )

        if mode != CleanupMode.DRY_RUN and report.total_orphaned:
            report.backup_path = self._write_backup(backup_dir, report, orphans)

        if mode == CleanupMode.EXECUTE:
            for collection, model in LEGACY_COLLECTIONS:
                ids = [row["id"] for row in orphans[collection]]
                report.deletion_results[collection] = self._delete(db, model, ids, report)

        report.completed_at = self.clock.now().isoformat()
        if mode != CleanupMode.DRY_RUN:
            report.report_path = self._write_report(backup_dir, report)
        return report

    def find_orphans(self, db: Session, report: CleanupReport) -> Dict[str, List[Dict[str, Any]]]:
        valid_commands = {row[0] for row in db.query(models.MedicationCommand.id).all()}
        live_events = {row[0] for row in db.query(models.MedicationEvent.id).all()}
        report.valid_command_count = len(valid_commands)

        orphans: Dict[str, List[Dict[str, Any]]] = {}
        for collection, model in LEGACY_COLLECTIONS:
            rows = db.query(model).all()
            found = []
            for row in rows:
                if row.medication_id not in valid_commands:
                    found.append(_row_to_dict(row))
                elif model is models.LegacyCalendarEvent and row.source_event_id not in live_events:
                    found.append(_row_to_dict(row))
            orphans[collection] = found
            report.collections[collection] = {"total": len(rows), "orphaned": len(found)}
        return orphans

    def _delete(self, db: Session, model, ids: List[Any], report: CleanupReport) -> Dict[str, int]:
        outcome = {"found": len(ids), "deleted": 0, "failed": 0}
        batch_size = self.config.WRITE_BATCH_SIZE

        for start in range(0, len(ids), batch_size):
            batch = ids[start:start + batch_size]
            try:
                db.query(model).filter(model.id.in_(batch)).delete(synchronize_session=False)
                db.commit()
                outcome["deleted"] += len(batch)
            except SQLAlchemyError as e:
                db.rollback()
                outcome["failed"] += len(batch)
                report.errors.append(f"{model.__tablename__}: {e}")
                logger.error(f"Orphan delete batch failed on {model.__tablename__}: {e}")

        return outcome

    def _write_backup(self, backup_dir: str, report: CleanupReport, orphans) -> str:
        os.makedirs(backup_dir, exist_ok=True)
        path = os.path.join(backup_dir, f"orphaned-legacy-cleanup-{report.report_id}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(
                {"report_id": report.report_id, "created_at": report.started_at, "collections": orphans},
                f,
                indent=2,
                default=str,
            )
        logger.info(f"Backup written to {path}")
        return path

    def _write_report(self, backup_dir: str, report: CleanupReport) -> str:
        os.makedirs(backup_dir, exist_ok=True)
        path = os.path.join(backup_dir, f"cleanup-report-{report.report_id}.json")
        report.report_path = path
        with open(path, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2, default=str)
        return path


orphan_cleanup_tool = OrphanCleanupTool()
