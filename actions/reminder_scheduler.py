"""
Reminder Scheduler
Periodic job that sends reminders ahead of scheduled doses, at most once per
event and countdown bucket
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from actions.job_runner import ScheduledJob, TickResult
from services.event_store import EventQuery, EventStore, event_store
from services.notification_dispatch import (
    NotificationDispatchService,
    NotificationRequest,
    notification_dispatch,
)
from tools.notification_channels import NotificationType, NotificationUrgency


logger = logging.getLogger(__name__)


def reminder_key(event_id: str, bucket: int) -> str:
    return f"{event_id}_{bucket}"


@dataclass
class ReminderTickResult(TickResult):
    """Outcome of one reminder tick"""
    reminders_sent: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    not_due: int = 0
    dispatch_attempts: int = 0
    dispatch_successes: int = 0
    reminder_details: List[Dict[str, Any]] = field(default_factory=list)


class ReminderScheduler(ScheduledJob):
    """
    Sends reminders for dose_scheduled events coming due within the
    look-ahead window.

    An offset m fires while minutes-until-due lies in [m - tolerance,
    m + tolerance]. The dedup bucket is the countdown rounded down to the
    bucket width. With the defaults (tolerance 2, 5-minute ticks) the band
    is exactly one tick wide, so every tick phase fires each offset once.
    """

    job_name = "medication_reminders"
    result_class = ReminderTickResult

    def __init__(
        self,
        clock=None,
        config=None,
        monitoring=None,
        store: Optional[EventStore] = None,
        dispatcher: Optional[NotificationDispatchService] = None,
    ):
        super().__init__(clock=clock, config=config, monitoring=monitoring)
        self.store = store or event_store
        self.dispatcher = dispatcher or notification_dispatch

        band = 2 * self.config.REMINDER_TOLERANCE_MINUTES + 1
        tick = self.config.REMINDER_TICK_MINUTES
        if band < tick:
            logger.warning(
                f"Reminder tolerance band ({band} min) is narrower than the tick interval "
                f"({tick} min); some tick phases will never send a reminder"
            )
        elif band > self.config.REMINDER_DEDUP_BUCKET_MINUTES:
            logger.warning(
                f"Reminder tolerance band ({band} min) is wider than the dedup bucket "
                f"({self.config.REMINDER_DEDUP_BUCKET_MINUTES} min); duplicate reminders are possible"
            )

    # ==================== TIMING RULES ====================

    @staticmethod
    def minutes_until_due(scheduled_for: datetime, now: datetime) -> int:
        return int((scheduled_for - now).total_seconds() // 60)

    def bucket_for(self, minutes_until_due: int) -> int:
        width = self.config.REMINDER_DEDUP_BUCKET_MINUTES
        return (minutes_until_due // width) * width

    def matching_offset(self, minutes_until_due: int, offsets: List[int]) -> Optional[int]:
        tolerance = self.config.REMINDER_TOLERANCE_MINUTES
        for offset in offsets:
            if abs(minutes_until_due - offset) <= tolerance:
                return offset
        return None

    def urgency_for(self, minutes_until_due: int) -> NotificationUrgency:
        if minutes_until_due <= self.config.REMINDER_HIGH_URGENCY_MINUTES:
            return NotificationUrgency.HIGH
        return NotificationUrgency.MEDIUM

    # ==================== TICK ====================

    async def execute(self, db: Session, result: ReminderTickResult) -> None:
        now = self.clock.now()
        events = await self.store.query_events(
            EventQuery(
                event_types=[models.EventType.DOSE_SCHEDULED],
                start=now,
                end=now + timedelta(minutes=self.config.REMINDER_LOOKAHEAD_MINUTES),
                exclude_archived=True,
                order_by="scheduled_for",
                limit=self.config.REMINDER_QUERY_LIMIT,
            ),
            db=db,
        )
        logger.info(f"Found {len(events)} scheduled doses in the reminder window")

        for event in events:
            result.processed += 1
            try:
                await self._process_event(db, event, now, result)
            except Exception as e:
                db.rollback()
                result.errors.append(f"{event.id}: {e}")
                logger.error(f"Error processing reminder for event {event.id}: {e}")

    async def _process_event(
        self,
        db: Session,
        event: models.MedicationEvent,
        now: datetime,
        result: ReminderTickResult,
    ) -> None:
        if not event.scheduled_for or not event.command_id:
            result.skipped += 1
            return

        minutes = self.minutes_until_due(event.scheduled_for, now)

        if await self.store.find_completion_events(event.command_id, event.scheduled_for, db=db):
            result.skipped += 1
            return

        command = db.get(models.MedicationCommand, event.command_id)
        if not command or not command.reminders_enabled or not command.is_active:
            result.skipped += 1
            return

        offsets = command.reminder_minutes_before or list(self.config.REMINDER_DEFAULT_OFFSETS)
        offset = self.matching_offset(minutes, offsets)
        if offset is None:
            result.not_due += 1
            return

        bucket = self.bucket_for(minutes)
        key = reminder_key(event.id, bucket)
        if db.get(models.ReminderSentRecord, key) is not None:
            result.skipped += 1
            return

        recipients = self.dispatcher.resolve_recipients(db, event.patient_id)
        if not recipients:
            result.skipped += 1
            return

        # Terminal state may have changed while resolving recipients
        if await self.store.find_completion_events(event.command_id, event.scheduled_for, db=db):
            result.skipped += 1
            return

        name = event.medication_name or command.medication_name
        request = NotificationRequest(
            patient_id=event.patient_id,
            command_id=event.command_id,
            medication_name=name,
            notification_type=NotificationType.REMINDER,
            urgency=self.urgency_for(minutes),
            title=f"Medication Reminder: {name}",
            message=f"It's almost time to take your {name}. Due in {minutes} minutes.",
            recipients=recipients,
            action_url=f"/medications?highlight={event.command_id}",
            expires_at=event.scheduled_for + timedelta(hours=1),
            context={"eventId": event.id, "minutesUntilDue": minutes, "offset": offset},
        )

        result.dispatch_attempts += 1
        delivery = await self.dispatcher.send_notification(request, db=db)
        result.notifications_sent += delivery.total_sent
        result.notifications_failed += delivery.total_failed

        if not delivery.success:
            result.errors.append(f"{event.id}: no notification delivered")
            return
        result.dispatch_successes += 1

        created, detail = self._record_sent(db, key, bucket, event, name, minutes, recipients, delivery, now)
        if created:
            result.reminders_sent += 1
            result.reminder_details.append(detail)

    def _record_sent(self, db, key, bucket, event, name, minutes, recipients, delivery, now) -> Tuple[bool, Dict[str, Any]]:
        record = models.ReminderSentRecord(
            id=key,
            event_id=event.id,
            command_id=event.command_id,
            patient_id=event.patient_id,
            medication_name=name,
            scheduled_for=event.scheduled_for,
            bucket=bucket,
            minutes_before_due=minutes,
            sent_at=now,
            recipient_count=len(recipients),
            notifications_sent=delivery.total_sent,
            notifications_failed=delivery.total_failed,
            delivery_details=[r.to_dict() for r in delivery.per_recipient],
        )
        try:
            db.add(record)
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Reminder {key} was recorded by a concurrent tick")
            return False, {}

        return True, {
            "event_id": event.id,
            "command_id": event.command_id,
            "medication_name": name,
            "minutes_until_due": minutes,
            "bucket": bucket,
            "recipients": len(recipients),
            "notifications_sent": delivery.total_sent,
        }

    def deliveries(self, result: ReminderTickResult) -> Tuple[int, int]:
        return result.dispatch_attempts, result.dispatch_successes


reminder_scheduler = ReminderScheduler()
