"""
Event Store Service
Append-only log of medication commands and the dose events derived from them
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import exists, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

import models
from config import settings
from database import get_db_context
from services.cascade_delete import CascadeDeletePropagator, CascadeDeleteResult, cascade_delete_propagator
from services.legacy_mirror_sync import LegacyMirrorSync, legacy_mirror_sync
from tools.clock import system_clock, to_utc_naive
from tools.occurrence_planner import (
    default_grace_minutes,
    determine_medication_type,
    occurrence_planner,
    parse_wall_time,
)
from tools.timezone_utils import local_date_of, resolve_timezone


logger = logging.getLogger(__name__)

USER_ACTION_TYPES = (
    models.EventType.DOSE_TAKEN,
    models.EventType.DOSE_SKIPPED,
    models.EventType.DOSE_SNOOZED,
)


def scheduled_event_id(command_id: str, scheduled_for: datetime) -> str:
    """Deterministic id of the dose_scheduled event for one occurrence"""
    return f"{command_id}_{scheduled_for.strftime('%Y%m%d%H%M')}"


@dataclass
class EventQuery:
    """
    Filter for query_events. start/end apply to the order_by field.

    grace_ended_by keeps events whose stored grace end is at or before the
    given time, plus events with no stored grace end. unresolved_only drops
    events that already have a completion event pointing at them (by source
    event id or identical scheduled_for on the same command).
    """
    event_types: Optional[List[models.EventType]] = None
    command_id: Optional[str] = None
    patient_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    exclude_archived: bool = True
    grace_ended_by: Optional[datetime] = None
    unresolved_only: bool = False
    order_by: str = "scheduled_for"
    descending: bool = False
    limit: Optional[int] = None


class EventStore:
    """
    Service for medication commands and events
    """

    def __init__(
        self,
        clock=None,
        config=None,
        mirror: Optional[LegacyMirrorSync] = None,
        propagator: Optional[CascadeDeletePropagator] = None,
    ):
        self.clock = clock or system_clock
        self.config = config or settings
        self.mirror = mirror or legacy_mirror_sync
        self.propagator = propagator or cascade_delete_propagator

    # ==================== COMMANDS ====================

    async def append_command(
        self,
        patient_id: str,
        medication_name: str,
        frequency: str = models.MedicationFrequency.DAILY.value,
        scheduled_times: Optional[List[str]] = None,
        dosage_amount: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        instructions: Optional[str] = None,
        reminders_enabled: bool = True,
        reminder_minutes_before: Optional[List[int]] = None,
        grace_period_minutes: Optional[int] = None,
        medication_type: Optional[str] = None,
        command_type: models.CommandType = models.CommandType.CREATE_MEDICATION,
        command_id: Optional[str] = None,
        db: Optional[Session] = None,
    ) -> models.MedicationCommand:
        """
        Persist a new medication command.

        Raises:
            ValueError: on malformed times, offsets, grace period or dates
        """
        valid_frequencies = [f.value for f in models.MedicationFrequency]
        if frequency not in valid_frequencies:
            raise ValueError(f"Unsupported frequency '{frequency}'")
        for value in scheduled_times or []:
            parse_wall_time(value)
        if reminder_minutes_before is not None:
            if any(not isinstance(m, int) or m <= 0 for m in reminder_minutes_before):
                raise ValueError("Reminder offsets must be positive whole minutes")
        if grace_period_minutes is not None and grace_period_minutes < 0:
            raise ValueError("Grace period cannot be negative")
        if start_date and end_date and end_date < start_date:
            raise ValueError("end_date is before start_date")

        medication_type = medication_type or determine_medication_type(medication_name, frequency)
        if grace_period_minutes is None:
            grace_period_minutes = default_grace_minutes(medication_type)

        def _append(session: Session) -> models.MedicationCommand:
            now = self.clock.now()
            command = models.MedicationCommand(
                id=command_id or uuid.uuid4().hex,
                patient_id=patient_id,
                command_type=command_type,
                medication_name=medication_name,
                dosage_amount=dosage_amount,
                frequency=frequency,
                scheduled_times=sorted(set(scheduled_times or [])),
                start_date=start_date,
                end_date=end_date,
                instructions=instructions,
                medication_type=medication_type,
                reminders_enabled=reminders_enabled,
                reminder_minutes_before=(
                    sorted(set(reminder_minutes_before), reverse=True)
                    if reminder_minutes_before is not None else None
                ),
                grace_period_minutes=grace_period_minutes,
                status=models.CommandStatus.ACTIVE,
                created_at=now,
                updated_at=now,
            )
            session.add(command)
            session.commit()
            session.refresh(command)

            self.mirror.sync_command(session, command)
            logger.info(f"Appended command {command.id} ({medication_name}) for patient {patient_id}")
            return command

        if db:
            return _append(db)

        with get_db_context() as session:
            return _append(session)

    async def get_command(
        self,
        command_id: str,
        db: Optional[Session] = None
    ) -> Optional[models.MedicationCommand]:
        """Get command by ID"""
        def _get(session: Session) -> Optional[models.MedicationCommand]:
            return session.query(models.MedicationCommand).filter(
                models.MedicationCommand.id == command_id
            ).first()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def update_command_status(
        self,
        command_id: str,
        status: models.CommandStatus,
        db: Optional[Session] = None
    ) -> models.MedicationCommand:
        """Change the lifecycle status, the only mutable part of a command"""
        def _update(session: Session) -> models.MedicationCommand:
            command = session.query(models.MedicationCommand).filter(
                models.MedicationCommand.id == command_id
            ).first()
            if not command:
                raise ValueError(f"Command {command_id} not found")

            command.status = models.CommandStatus(status)
            command.updated_at = self.clock.now()
            session.commit()
            session.refresh(command)

            self.mirror.sync_command(session, command)
            logger.info(f"Command {command_id} status set to {command.status.value}")
            return command

        if db:
            return _update(db)

        with get_db_context() as session:
            return _update(session)

    async def delete_command(
        self,
        command_id: str,
        db: Optional[Session] = None
    ) -> CascadeDeleteResult:
        """
        Delete a command, then synchronously cascade to every derived row.

        Raises:
            ValueError: if the command does not exist
        """
        def _delete(session: Session) -> CascadeDeleteResult:
            command = session.query(models.MedicationCommand).filter(
                models.MedicationCommand.id == command_id
            ).first()
            if not command:
                raise ValueError(f"Command {command_id} not found")

            session.delete(command)
            session.commit()
            logger.info(f"Deleted command {command_id}, propagating")

            return self.propagator.propagate(session, command_id)

        if db:
            return _delete(db)

        with get_db_context() as session:
            return _delete(session)

    # ==================== MATERIALIZATION ====================

    async def materialize_scheduled_events(
        self,
        command_id: str,
        days_ahead: Optional[int] = None,
        db: Optional[Session] = None
    ) -> List[str]:
        """
        Create dose_scheduled events for future occurrences of a command.

        Idempotent: occurrences that already have an event are skipped.

        Returns:
            Ids of newly created events
        """
        days_ahead = days_ahead if days_ahead is not None else self.config.MATERIALIZE_DAYS_AHEAD

        def _materialize(session: Session) -> List[str]:
            command = session.query(models.MedicationCommand).filter(
                models.MedicationCommand.id == command_id
            ).first()
            if not command:
                raise ValueError(f"Command {command_id} not found")
            if not command.is_active:
                return []

            zone, fallback = self._patient_zone(session, command.patient_id)
            now = self.clock.now()
            anchor = command.start_date or local_date_of(command.created_at or now, zone)

            planned = occurrence_planner.plan(
                frequency=command.frequency,
                scheduled_times=command.scheduled_times,
                zone=zone,
                window_start=now,
                window_end=now + timedelta(days=days_ahead),
                start_date=anchor,
                end_date=command.end_date,
            )
            if not planned:
                return []

            ids = [scheduled_event_id(command.id, p.scheduled_for) for p in planned]
            existing = {
                row[0] for row in session.query(models.MedicationEvent.id).filter(
                    models.MedicationEvent.id.in_(ids)
                ).all()
            }

            grace = (
                command.grace_period_minutes
                if command.grace_period_minutes is not None
                else default_grace_minutes(command.medication_type)
            )

            created: List[models.MedicationEvent] = []
            for occurrence, event_id in zip(planned, ids):
                if event_id in existing:
                    continue
                event = models.MedicationEvent(
                    id=event_id,
                    command_id=command.id,
                    patient_id=command.patient_id,
                    event_type=models.EventType.DOSE_SCHEDULED,
                    scheduled_for=occurrence.scheduled_for,
                    event_timestamp=occurrence.scheduled_for,
                    grace_period_end=occurrence.scheduled_for + timedelta(minutes=grace),
                    medication_name=command.medication_name,
                    dosage_amount=command.dosage_amount,
                    context={
                        "medicationName": command.medication_name,
                        "dosageAmount": command.dosage_amount,
                        "instructions": command.instructions,
                        "medicationType": command.medication_type,
                        "gracePeriodMinutes": grace,
                        "wallTime": occurrence.wall_time,
                        "localDate": occurrence.local_date.isoformat(),
                        "timezone": zone.key,
                        "timezoneFallback": fallback,
                    },
                    created_by="system",
                    archived=False,
                    created_at=now,
                )
                if self._insert_if_absent(session, event):
                    created.append(event)

            self.mirror.sync_events(session, created)
            if created:
                logger.info(f"Materialized {len(created)} scheduled events for command {command.id}")
            return [event.id for event in created]

        if db:
            return _materialize(db)

        with get_db_context() as session:
            return _materialize(session)

    async def materialize_active_commands(
        self,
        days_ahead: Optional[int] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Roll the materialization horizon forward for every active command"""
        async def _run(session: Session) -> Dict[str, Any]:
            command_ids = [
                row[0] for row in session.query(models.MedicationCommand.id).filter(
                    models.MedicationCommand.status == models.CommandStatus.ACTIVE
                ).all()
            ]
            summary = {"commands": len(command_ids), "events_created": 0, "errors": []}
            for command_id in command_ids:
                try:
                    created = await self.materialize_scheduled_events(
                        command_id, days_ahead=days_ahead, db=session
                    )
                    summary["events_created"] += len(created)
                except Exception as e:
                    session.rollback()
                    logger.error(f"Materialization failed for command {command_id}: {e}")
                    summary["errors"].append(f"{command_id}: {e}")
            return summary

        if db:
            return await _run(db)

        with get_db_context() as session:
            return await _run(session)

    # ==================== EVENTS ====================

    async def append_event(
        self,
        event: models.MedicationEvent,
        db: Optional[Session] = None
    ) -> bool:
        """
        Conditionally create an event.

        Returns:
            True if created, False if an event with the same id already exists
        """
        def _append(session: Session) -> bool:
            event.event_type = models.EventType(event.event_type)
            if event.event_timestamp is None:
                event.event_timestamp = self.clock.now()
            if event.created_at is None:
                event.created_at = self.clock.now()
            if event.archived is None:
                event.archived = False
            if event.context is None:
                event.context = {}

            created = self._insert_if_absent(session, event)
            if created:
                self.mirror.sync_event(session, event)
            return created

        if db:
            return _append(db)

        with get_db_context() as session:
            return _append(session)

    async def record_dose_action(
        self,
        command_id: str,
        event_type: models.EventType,
        scheduled_for: Optional[datetime] = None,
        occurred_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        created_by: str = "user",
        db: Optional[Session] = None
    ) -> models.MedicationEvent:
        """
        Record a user action (taken, skipped, snoozed) on a dose.

        Taking or skipping the same scheduled occurrence twice is a no-op
        returning the first event.
        """
        event_type = models.EventType(event_type)
        if event_type not in USER_ACTION_TYPES:
            raise ValueError(f"{event_type.value} cannot be recorded as a user action")
        scheduled_for = to_utc_naive(scheduled_for)
        occurred_at = to_utc_naive(occurred_at)

        def _record(session: Session) -> models.MedicationEvent:
            command = session.query(models.MedicationCommand).filter(
                models.MedicationCommand.id == command_id
            ).first()
            if not command:
                raise ValueError(f"Command {command_id} not found")

            now = self.clock.now()
            source_id = None
            if scheduled_for is not None:
                source_id = scheduled_event_id(command_id, scheduled_for)
                if not session.get(models.MedicationEvent, source_id):
                    source_id = None

            if source_id and event_type != models.EventType.DOSE_SNOOZED:
                event_id = f"{source_id}_{event_type.value.replace('dose_', '')}"
            else:
                event_id = uuid.uuid4().hex

            existing = session.get(models.MedicationEvent, event_id)
            if existing:
                return existing

            event = models.MedicationEvent(
                id=event_id,
                command_id=command_id,
                patient_id=command.patient_id,
                event_type=event_type,
                scheduled_for=scheduled_for,
                event_timestamp=occurred_at or now,
                medication_name=command.medication_name,
                dosage_amount=command.dosage_amount,
                context={"notes": notes} if notes else {},
                source_event_id=source_id,
                created_by=created_by,
                archived=False,
                created_at=now,
            )
            if self._insert_if_absent(session, event):
                self.mirror.sync_event(session, event)
                logger.info(f"Recorded {event_type.value} for command {command_id}")
                return event
            return session.get(models.MedicationEvent, event_id)

        if db:
            return _record(db)

        with get_db_context() as session:
            return _record(session)

    async def query_events(
        self,
        query: EventQuery,
        db: Optional[Session] = None
    ) -> List[models.MedicationEvent]:
        """Query events by type, owner, time range and archive state"""
        def _query(session: Session) -> List[models.MedicationEvent]:
            field = (
                models.MedicationEvent.event_timestamp
                if query.order_by == "event_timestamp"
                else models.MedicationEvent.scheduled_for
            )
            q = session.query(models.MedicationEvent)

            if query.event_types:
                q = q.filter(models.MedicationEvent.event_type.in_(
                    [models.EventType(t) for t in query.event_types]
                ))
            if query.command_id:
                q = q.filter(models.MedicationEvent.command_id == query.command_id)
            if query.patient_id:
                q = q.filter(models.MedicationEvent.patient_id == query.patient_id)
            if query.start is not None:
                q = q.filter(field >= query.start)
            if query.end is not None:
                q = q.filter(field <= query.end)
            if query.exclude_archived:
                q = q.filter(models.MedicationEvent.archived == False)  # noqa: E712
            if query.grace_ended_by is not None:
                q = q.filter(or_(
                    models.MedicationEvent.grace_period_end.is_(None),
                    models.MedicationEvent.grace_period_end <= query.grace_ended_by,
                ))
            if query.unresolved_only:
                completion = aliased(models.MedicationEvent)
                q = q.filter(~exists().where(
                    completion.command_id == models.MedicationEvent.command_id,
                    completion.event_type.in_(models.COMPLETION_EVENT_TYPES),
                    or_(
                        completion.source_event_id == models.MedicationEvent.id,
                        completion.scheduled_for == models.MedicationEvent.scheduled_for,
                    ),
                ))

            q = q.order_by(field.desc() if query.descending else field.asc(), models.MedicationEvent.id)
            if query.limit:
                q = q.limit(query.limit)
            return q.all()

        if db:
            return _query(db)

        with get_db_context() as session:
            return _query(session)

    async def find_completion_events(
        self,
        command_id: str,
        scheduled_for: datetime,
        db: Optional[Session] = None
    ) -> List[models.MedicationEvent]:
        """
        Completion events (taken, missed, skipped) for the occurrence at
        scheduled_for, archived ones included.
        """
        window_start = scheduled_for - timedelta(minutes=self.config.COMPLETION_WINDOW_BEFORE_MINUTES)
        window_end = scheduled_for + timedelta(minutes=self.config.COMPLETION_WINDOW_AFTER_MINUTES)

        def _find(session: Session) -> List[models.MedicationEvent]:
            occurred = func.coalesce(
                models.MedicationEvent.scheduled_for,
                models.MedicationEvent.event_timestamp,
            )
            return session.query(models.MedicationEvent).filter(
                models.MedicationEvent.command_id == command_id,
                models.MedicationEvent.event_type.in_(models.COMPLETION_EVENT_TYPES),
                occurred >= window_start,
                occurred <= window_end,
            ).all()

        if db:
            return _find(db)

        with get_db_context() as session:
            return _find(session)

    # ==================== VIEWS ====================

    async def get_today_events(
        self,
        patient_id: str,
        db: Optional[Session] = None
    ) -> List[models.MedicationEvent]:
        """Live (non-archived) events for a patient"""
        return await self.query_events(
            EventQuery(patient_id=patient_id, exclude_archived=True, order_by="event_timestamp"),
            db=db,
        )

    async def get_history(
        self,
        patient_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Archived events and daily summaries between two local dates (inclusive).

        end_date defaults to the patient's local today, start_date to 30 days
        before end_date.

        Raises:
            ValueError: if start_date is after end_date
        """
        def _history(session: Session) -> Dict[str, Any]:
            last = end_date
            if last is None:
                zone, _ = self._patient_zone(session, patient_id)
                last = local_date_of(self.clock.now(), zone)
            first = start_date or last - timedelta(days=self.config.HISTORY_DEFAULT_DAYS)
            if first > last:
                raise ValueError("start_date must not be after end_date")
            start_key, end_key = first.isoformat(), last.isoformat()

            archived = session.query(models.ArchivedMedicationEvent).filter(
                models.ArchivedMedicationEvent.patient_id == patient_id,
                models.ArchivedMedicationEvent.summary_date >= start_key,
                models.ArchivedMedicationEvent.summary_date <= end_key,
            ).order_by(
                models.ArchivedMedicationEvent.summary_date,
                models.ArchivedMedicationEvent.event_timestamp,
            ).all()

            summaries = session.query(models.DailySummary).filter(
                models.DailySummary.patient_id == patient_id,
                models.DailySummary.summary_date >= start_key,
                models.DailySummary.summary_date <= end_key,
            ).order_by(models.DailySummary.summary_date).all()

            return {
                "patient_id": patient_id,
                "start_date": start_key,
                "end_date": end_key,
                "events": [dict(row.payload or {}, summary_date=row.summary_date) for row in archived],
                "summaries": [summary.to_dict() for summary in summaries],
            }

        if db:
            return _history(db)

        with get_db_context() as session:
            return _history(session)

    # ==================== HELPERS ====================

    def _insert_if_absent(self, session: Session, event: models.MedicationEvent) -> bool:
        if session.get(models.MedicationEvent, event.id) is not None:
            return False
        try:
            session.add(event)
            session.commit()
            return True
        except IntegrityError:
            session.rollback()
            logger.debug(f"Event {event.id} already exists")
            return False

    def _patient_zone(self, session: Session, patient_id: str):
        user = session.get(models.User, patient_id)
        return resolve_timezone(user.timezone if user else None)


event_store = EventStore()
