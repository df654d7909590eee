"""
Legacy Mirror Sync Service
Projects unified commands and events into the legacy read model
(medication_calendar_events, medication_schedules, medication_reminders)
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from tools.clock import utcnow


logger = logging.getLogger(__name__)

# Bumped whenever the projection shape changes
MIRROR_SYNC_VERSION = 1

STATUS_BY_EVENT_TYPE = {
    models.EventType.DOSE_TAKEN: "taken",
    models.EventType.DOSE_MISSED: "missed",
    models.EventType.DOSE_SKIPPED: "skipped",
    models.EventType.DOSE_SNOOZED: "snoozed",
}


class LegacyMirrorSync:
    """
    Idempotent projection step. Calendar rows are keyed by source event id,
    schedule and reminder rows by medication (command) id.
    """

    def sync_command(self, db: Session, command: models.MedicationCommand) -> bool:
        """Upsert the per-medication schedule and reminder rows"""
        try:
            now = utcnow()
            schedule = db.query(models.LegacySchedule).filter(
                models.LegacySchedule.medication_id == command.id
            ).first()
            if not schedule:
                schedule = models.LegacySchedule(medication_id=command.id)
                db.add(schedule)
            schedule.source_event_id = command.id
            schedule.patient_id = command.patient_id
            schedule.medication_name = command.medication_name
            schedule.frequency = command.frequency
            schedule.times = list(command.scheduled_times or [])
            schedule.is_active = command.is_active
            schedule.synced_from_unified_system = True
            schedule.sync_version = MIRROR_SYNC_VERSION
            schedule.synced_at = now

            reminder = db.query(models.LegacyReminder).filter(
                models.LegacyReminder.medication_id == command.id
            ).first()
            if not reminder:
                reminder = models.LegacyReminder(medication_id=command.id)
                db.add(reminder)
            reminder.source_event_id = command.id
            reminder.patient_id = command.patient_id
            reminder.medication_name = command.medication_name
            reminder.reminder_times = list(command.scheduled_times or [])
            reminder.minutes_before = list(command.reminder_minutes_before or [])
            reminder.is_active = bool(command.reminders_enabled) and command.is_active
            reminder.synced_from_unified_system = True
            reminder.sync_version = MIRROR_SYNC_VERSION
            reminder.synced_at = now

            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Legacy mirror sync failed for command {command.id}: {e}")
            return False

    def sync_event(self, db: Session, event: models.MedicationEvent) -> bool:
        """Project one event into the calendar mirror"""
        try:
            if event.event_type == models.EventType.DOSE_SCHEDULED:
                self._upsert_calendar_row(db, event)
            else:
                self._apply_status(db, event)
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Legacy mirror sync failed for event {event.id}: {e}")
            return False

    def sync_events(self, db: Session, events: Iterable[models.MedicationEvent]) -> int:
        synced = 0
        for event in events:
            if self.sync_event(db, event):
                synced += 1
        return synced

    def resync_command(self, db: Session, command_id: str) -> int:
        """Re-project every event of a command, scheduled events first"""
        command = db.query(models.MedicationCommand).filter(
            models.MedicationCommand.id == command_id
        ).first()
        if command:
            self.sync_command(db, command)

        events = db.query(models.MedicationEvent).filter(
            models.MedicationEvent.command_id == command_id
        ).all()
        events.sort(key=lambda e: (e.event_type != models.EventType.DOSE_SCHEDULED, e.event_timestamp))
        return self.sync_events(db, events)

    def _upsert_calendar_row(self, db: Session, event: models.MedicationEvent) -> None:
        row = db.query(models.LegacyCalendarEvent).filter(
            models.LegacyCalendarEvent.source_event_id == event.id
        ).first()
        if not row:
            row = models.LegacyCalendarEvent(source_event_id=event.id, status="scheduled")
            db.add(row)
        row.medication_id = event.command_id
        row.patient_id = event.patient_id
        row.medication_name = event.medication_name
        row.dosage_amount = event.dosage_amount
        row.scheduled_date_time = event.scheduled_for
        row.synced_from_unified_system = True
        row.sync_version = MIRROR_SYNC_VERSION
        row.synced_at = utcnow()

    def _apply_status(self, db: Session, event: models.MedicationEvent) -> None:
        status = STATUS_BY_EVENT_TYPE.get(event.event_type)
        if not status:
            return

        row = self._find_calendar_row(db, event)
        if not row:
            logger.debug(f"No calendar row for {event.event_type.value} event {event.id}")
            return

        row.status = status
        row.status_event_id = event.id
        row.sync_version = MIRROR_SYNC_VERSION
        row.synced_at = utcnow()

    def _find_calendar_row(
        self, db: Session, event: models.MedicationEvent
    ) -> Optional[models.LegacyCalendarEvent]:
        if event.source_event_id:
            row = db.query(models.LegacyCalendarEvent).filter(
                models.LegacyCalendarEvent.source_event_id == event.source_event_id
            ).first()
            if row:
                return row

        if event.scheduled_for is None:
            return None
        return db.query(models.LegacyCalendarEvent).filter(
            models.LegacyCalendarEvent.medication_id == event.command_id,
            models.LegacyCalendarEvent.scheduled_date_time == event.scheduled_for,
        ).first()


legacy_mirror_sync = LegacyMirrorSync()
