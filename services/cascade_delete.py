"""
Cascade Delete Propagator
Removes every artifact derived from a deleted medication command across the
unified event collections and the legacy mirror collections
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from config import TableNames, settings
from services.monitoring import MonitoringService, monitoring_service
from tools.clock import utcnow


logger = logging.getLogger(__name__)


# (collection, model, column holding the command id)
CASCADE_TARGETS = [
    (TableNames.MEDICATION_EVENTS, models.MedicationEvent, "command_id"),
    (TableNames.MEDICATION_EVENTS_ARCHIVE, models.ArchivedMedicationEvent, "command_id"),
    (TableNames.REMINDER_SENT_LOG, models.ReminderSentRecord, "command_id"),
    (TableNames.LEGACY_CALENDAR_EVENTS, models.LegacyCalendarEvent, "medication_id"),
    (TableNames.LEGACY_SCHEDULES, models.LegacySchedule, "medication_id"),
    (TableNames.LEGACY_REMINDERS, models.LegacyReminder, "medication_id"),
]


@dataclass
class CollectionDeleteResult:
    """Outcome for one target collection"""
    collection: str
    found: int = 0
    deleted: int = 0
    failed: int = 0
    remaining: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": self.found,
            "deleted": self.deleted,
            "failed": self.failed,
            "remaining": self.remaining,
            "error": self.error,
        }


@dataclass
class CascadeDeleteResult:
    """Outcome of a cascade delete for one command"""
    command_id: str
    success: bool = False
    collections: Dict[str, CollectionDeleteResult] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def total_found(self) -> int:
        return sum(c.found for c in self.collections.values())

    @property
    def total_deleted(self) -> int:
        return sum(c.deleted for c in self.collections.values())

    @property
    def total_failed(self) -> int:
        return sum(c.failed for c in self.collections.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command_id": self.command_id,
            "success": self.success,
            "total_found": self.total_found,
            "total_deleted": self.total_deleted,
            "total_failed": self.total_failed,
            "collections": {name: c.to_dict() for name, c in self.collections.items()},
            "errors": list(self.errors),
        }


class CascadeDeletePropagator:
    """
    Deletes derived rows collection by collection in bounded batches.
    A failure in one collection is recorded and the remaining collections
    are still processed.
    """

    def __init__(self, config=None, monitoring: Optional[MonitoringService] = None):
        self.config = config or settings
        self.monitoring = monitoring or monitoring_service

    def propagate(self, db: Session, command_id: str) -> CascadeDeleteResult:
        """
        Remove all rows referencing command_id.

        Never raises: partial failures are reported in the result, logged
        and raised as a system alert for the orphan cleanup pass.
        """
        result = CascadeDeleteResult(command_id=command_id)
        logger.info(f"Cascade delete started for command {command_id}")

        for collection, model, key in CASCADE_TARGETS:
            outcome = CollectionDeleteResult(collection=collection)
            result.collections[collection] = outcome

            try:
                ids = self._collect_ids(db, model, key, command_id)
            except SQLAlchemyError as e:
                db.rollback()
                outcome.error = f"query failed: {e}"
                result.errors.append(f"{collection}: {outcome.error}")
                logger.error(f"Cascade delete could not read {collection} for {command_id}: {e}")
                continue

            outcome.found = len(ids)
            self._delete_in_batches(db, model, ids, outcome, result)

        if self.config.CASCADE_VERIFY_AFTER_DELETE:
            self._verify(db, command_id, result)

        result.success = not result.errors and all(
            (c.remaining or 0) == 0 and c.failed == 0 for c in result.collections.values()
        )

        self._record(db, result)
        return result

    def _collect_ids(self, db: Session, model, key: str, command_id: str) -> List[Any]:
        rows = db.query(model.id).filter(getattr(model, key) == command_id).all()
        return [row[0] for row in rows]

    def _delete_in_batches(
        self,
        db: Session,
        model,
        ids: List[Any],
        outcome: CollectionDeleteResult,
        result: CascadeDeleteResult,
    ) -> None:
        batch_size = self.config.WRITE_BATCH_SIZE
        attempts = self.config.CASCADE_DELETE_MAX_RETRIES + 1

        for start in range(0, len(ids), batch_size):
            batch = ids[start:start + batch_size]
            last_error = None
            for attempt in range(attempts):
                try:
                    self._delete_batch(db, model, batch)
                    outcome.deleted += len(batch)
                    last_error = None
                    break
                except SQLAlchemyError as e:
                    db.rollback()
                    last_error = e
                    logger.warning(
                        f"Batch delete on {outcome.collection} failed "
                        f"(attempt {attempt + 1}/{attempts}): {e}"
                    )

            if last_error is not None:
                outcome.failed += len(batch)
                outcome.error = str(last_error)
                result.errors.append(f"{outcome.collection}: {last_error}")

    def _delete_batch(self, db: Session, model, batch: List[Any]) -> None:
        db.query(model).filter(model.id.in_(batch)).delete(synchronize_session=False)
        db.commit()

    def _verify(self, db: Session, command_id: str, result: CascadeDeleteResult) -> None:
        for collection, model, key in CASCADE_TARGETS:
            outcome = result.collections[collection]
            try:
                outcome.remaining = db.query(model).filter(
                    getattr(model, key) == command_id
                ).count()
            except SQLAlchemyError as e:
                db.rollback()
                outcome.error = outcome.error or f"verification failed: {e}"
                result.errors.append(f"{collection}: verification failed: {e}")

    def _record(self, db: Session, result: CascadeDeleteResult) -> None:
        per_collection = ", ".join(
            f"{name}={c.deleted}/{c.found}" for name, c in result.collections.items()
        )
        if result.success:
            logger.info(f"Cascade delete complete for {result.command_id}: {per_collection}")
        else:
            logger.error(
                f"Cascade delete incomplete for {result.command_id}: {per_collection}; "
                f"errors={result.errors}"
            )

        self.monitoring.increment_tracking(
            db,
            {
                "cascade_deletes": 1,
                "cascade_rows_deleted": result.total_deleted,
                "cascade_rows_failed": result.total_failed,
            },
            last_cascade_delete={
                "command_id": result.command_id,
                "executed_at": utcnow().isoformat(),
                "success": result.success,
                "total_deleted": result.total_deleted,
            },
        )

        if not result.success:
            self.monitoring.raise_alert(
                db,
                "cascade_delete_incomplete",
                f"Cascade delete for command {result.command_id} left rows behind",
                severity=models.AlertSeverity.WARNING,
                source="cascade_delete",
                details=result.to_dict(),
            )


cascade_delete_propagator = CascadeDeletePropagator()
