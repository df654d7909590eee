"""
Missed Dose Detector
Periodic job that emits dose_missed events for scheduled doses whose grace
period elapsed without a completion event
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

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
from tools.occurrence_planner import default_grace_minutes


logger = logging.getLogger(__name__)


def missed_event_id(scheduled_event_id: str) -> str:
    return f"{scheduled_event_id}_missed"


@dataclass
class MissedDoseTickResult(TickResult):
    """Outcome of one missed-dose detection tick"""
    missed_detected: int = 0
    already_resolved: int = 0
    within_grace: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    dispatch_attempts: int = 0
    dispatch_successes: int = 0
    missed_details: List[Dict[str, Any]] = field(default_factory=list)


class MissedDoseDetector(ScheduledJob):
    """
    Marks doses missed once their grace period has elapsed. The dose_missed
    id is derived from the scheduled event id so overlapping ticks cannot
    both create one.
    """

    job_name = "missed_dose_detection"
    result_class = MissedDoseTickResult

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

    async def execute(self, db: Session, result: MissedDoseTickResult) -> None:
        now = self.clock.now()
        events = await self.store.query_events(
            EventQuery(
                event_types=[models.EventType.DOSE_SCHEDULED],
                start=now - timedelta(hours=self.config.MISSED_LOOKBACK_HOURS),
                end=now,
                exclude_archived=True,
                grace_ended_by=now,
                unresolved_only=True,
                order_by="scheduled_for",
                limit=self.config.MISSED_QUERY_LIMIT,
            ),
            db=db,
        )
        logger.info(f"Checking {len(events)} scheduled doses for missed status")

        for event in events:
            result.processed += 1
            try:
                await self._process_event(db, event, now, result)
            except Exception as e:
                db.rollback()
                result.errors.append(f"{event.id}: {e}")
                logger.error(f"Error checking event {event.id} for missed dose: {e}")

    def grace_period_end(self, db: Session, event: models.MedicationEvent) -> datetime:
        if event.grace_period_end:
            return event.grace_period_end

        command = db.get(models.MedicationCommand, event.command_id)
        if command and command.grace_period_minutes is not None:
            minutes = command.grace_period_minutes
        else:
            minutes = default_grace_minutes(command.medication_type if command else None)
        return event.scheduled_for + timedelta(minutes=minutes)

    async def _process_event(
        self,
        db: Session,
        event: models.MedicationEvent,
        now: datetime,
        result: MissedDoseTickResult,
    ) -> None:
        if not event.scheduled_for or not event.command_id:
            result.skipped += 1
            return

        grace_end = self.grace_period_end(db, event)
        if now <= grace_end:
            result.within_grace += 1
            return

        if await self.store.find_completion_events(event.command_id, event.scheduled_for, db=db):
            result.already_resolved += 1
            return

        missed = models.MedicationEvent(
            id=missed_event_id(event.id),
            command_id=event.command_id,
            patient_id=event.patient_id,
            event_type=models.EventType.DOSE_MISSED,
            scheduled_for=event.scheduled_for,
            event_timestamp=now,
            grace_period_end=grace_end,
            medication_name=event.medication_name,
            dosage_amount=event.dosage_amount,
            context=dict(
                event.context or {},
                triggerSource="system_detection",
                originalScheduledEventId=event.id,
                gracePeriodEnd=grace_end.isoformat(),
            ),
            source_event_id=event.id,
            created_by="system",
            archived=False,
            created_at=now,
        )

        # Re-check immediately before writing; a dose may have been taken meanwhile
        if await self.store.find_completion_events(event.command_id, event.scheduled_for, db=db):
            result.already_resolved += 1
            return

        created = await self.store.append_event(missed, db=db)
        if not created:
            result.already_resolved += 1
            return

        result.missed_detected += 1
        result.missed_details.append({
            "event_id": missed.id,
            "scheduled_event_id": event.id,
            "command_id": event.command_id,
            "medication_name": event.medication_name,
            "scheduled_for": event.scheduled_for.isoformat(),
        })
        logger.info(f"Marked dose {event.id} ({event.medication_name}) as missed")

        if self.config.MISSED_DOSE_NOTIFICATIONS_ENABLED:
            await self._notify(db, event, result)

    async def _notify(self, db: Session, event: models.MedicationEvent, result: MissedDoseTickResult) -> None:
        """Missed-dose notification; failures never undo the missed event"""
        try:
            recipients = self.dispatcher.resolve_recipients(db, event.patient_id)
            if not recipients:
                return

            name = event.medication_name or "medication"
            wall_time = (event.context or {}).get("wallTime") or event.scheduled_for.strftime("%H:%M")
            request = NotificationRequest(
                patient_id=event.patient_id,
                command_id=event.command_id,
                medication_name=name,
                notification_type=NotificationType.MISSED_DOSE,
                urgency=NotificationUrgency.HIGH,
                title=f"Missed Dose: {name}",
                message=f"The {wall_time} dose of {name} has not been marked as taken.",
                recipients=recipients,
                action_url=f"/medications?highlight={event.command_id}",
                context={"eventId": event.id},
            )
            result.dispatch_attempts += 1
            delivery = await self.dispatcher.send_notification(request, db=db)
            result.notifications_sent += delivery.total_sent
            result.notifications_failed += delivery.total_failed
            if delivery.success:
                result.dispatch_successes += 1
        except Exception as e:
            db.rollback()
            logger.error(f"Missed-dose notification failed for {event.id}: {e}")

    def deliveries(self, result: MissedDoseTickResult) -> Tuple[int, int]:
        return result.dispatch_attempts, result.dispatch_successes


missed_dose_detector = MissedDoseDetector()
