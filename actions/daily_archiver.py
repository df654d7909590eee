"""
Daily Archiver
Periodic job that rolls each patient's elapsed local days into history:
events are marked archived, copied to the archive collection, and an
adherence summary is upserted per local calendar date
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

import models
from actions.job_runner import ScheduledJob, TickResult
from tools.timezone_utils import local_date_of, local_midnight_utc, resolve_timezone


logger = logging.getLogger(__name__)


def summary_id(patient_id: str, summary_date: str) -> str:
    return f"{patient_id}_{summary_date}"


@dataclass
class ArchiveTickResult(TickResult):
    """Outcome of one archive tick"""
    patients_rolled_over: int = 0
    events_archived: int = 0
    summaries_upserted: int = 0
    patients_failed: int = 0
    timezone_fallbacks: List[str] = field(default_factory=list)


def build_summary_counts(events: List[models.MedicationEvent]) -> Dict:
    """Counts, adherence rate and per-medication breakdown for one day"""
    counters = {
        models.EventType.DOSE_SCHEDULED: "scheduled",
        models.EventType.DOSE_TAKEN: "taken",
        models.EventType.DOSE_MISSED: "missed",
        models.EventType.DOSE_SKIPPED: "skipped",
        models.EventType.DOSE_SNOOZED: "snoozed",
    }
    totals = {name: 0 for name in counters.values()}
    breakdown: Dict[str, Dict] = {}

    for event in events:
        name = counters.get(event.event_type)
        if not name:
            continue
        totals[name] += 1
        entry = breakdown.setdefault(event.command_id, {
            "medication_name": event.medication_name,
            **{n: 0 for n in counters.values()},
        })
        entry[name] += 1

    scheduled = totals["scheduled"]
    adherence = round(totals["taken"] / scheduled * 100, 2) if scheduled else 0.0

    return {
        "totals": totals,
        "adherence_rate": adherence,
        "medication_breakdown": {key: breakdown[key] for key in sorted(breakdown)},
    }


class DailyArchiver(ScheduledJob):
    """
    Per patient, archives events before the patient's local midnight once
    the local date has moved past the last rollover.
    """

    job_name = "daily_reset"
    result_class = ArchiveTickResult

    async def execute(self, db: Session, result: ArchiveTickResult) -> None:
        now = self.clock.now()

        patient_ids = sorted(
            {row[0] for row in db.query(models.MedicationCommand.patient_id).distinct().all()}
            | {
                row[0] for row in db.query(models.MedicationEvent.patient_id).filter(
                    models.MedicationEvent.archived == False  # noqa: E712
                ).distinct().all()
            }
        )

        for patient_id in patient_ids:
            result.processed += 1
            try:
                self.archive_patient(db, patient_id, now, result)
            except Exception as e:
                db.rollback()
                result.patients_failed += 1
                result.errors.append(f"{patient_id}: {e}")
                logger.error(f"Daily archive failed for patient {patient_id}: {e}")

    def archive_patient(self, db: Session, patient_id: str, now: datetime, result: ArchiveTickResult) -> None:
        user = db.get(models.User, patient_id)
        zone, fallback = resolve_timezone(user.timezone if user else None)
        if fallback:
            result.timezone_fallbacks.append(patient_id)
            logger.warning(f"Patient {patient_id} has no valid timezone, using {zone.key}")

        today = local_date_of(now, zone)
        watermark = db.get(models.ArchiveWatermark, patient_id)
        if watermark and watermark.last_rollover_date == today.isoformat():
            result.skipped += 1
            return

        cutoff = local_midnight_utc(today, zone)
        occurred = func.coalesce(models.MedicationEvent.scheduled_for, models.MedicationEvent.event_timestamp)
        events = db.query(models.MedicationEvent).filter(
            models.MedicationEvent.patient_id == patient_id,
            models.MedicationEvent.archived == False,  # noqa: E712
            occurred < cutoff,
        ).all()

        dates = set()
        batch_size = self.config.WRITE_BATCH_SIZE
        for index, event in enumerate(events, start=1):
            day = local_date_of(event.occurred_at, zone).isoformat()
            dates.add(day)
            event.archived = True
            event.archived_at = now
            event.archived_for_date = day
            db.merge(models.ArchivedMedicationEvent(
                id=event.id,
                command_id=event.command_id,
                patient_id=event.patient_id,
                event_type=event.event_type,
                scheduled_for=event.scheduled_for,
                event_timestamp=event.event_timestamp,
                medication_name=event.medication_name,
                summary_date=day,
                payload=event.to_dict(),
                archived_at=now,
            ))
            if index % batch_size == 0:
                db.commit()
        db.commit()

        for day in sorted(dates):
            self.upsert_summary(db, patient_id, day, zone.key)
            result.summaries_upserted += 1

        if not watermark:
            watermark = models.ArchiveWatermark(patient_id=patient_id)
            db.add(watermark)
        watermark.last_rollover_date = today.isoformat()
        watermark.timezone = zone.key
        watermark.timezone_fallback = fallback
        watermark.last_run_at = now
        db.commit()

        result.patients_rolled_over += 1
        result.events_archived += len(events)
        if events:
            logger.info(
                f"Archived {len(events)} events for patient {patient_id} "
                f"across {len(dates)} day(s) ({zone.key})"
            )

    def upsert_summary(self, db: Session, patient_id: str, day: str, timezone_name: str) -> models.DailySummary:
        """Recompute a day's summary from every archived event of that date"""
        events = db.query(models.MedicationEvent).filter(
            models.MedicationEvent.patient_id == patient_id,
            models.MedicationEvent.archived == True,  # noqa: E712
            models.MedicationEvent.archived_for_date == day,
        ).all()
        counts = build_summary_counts(events)

        summary = db.get(models.DailySummary, summary_id(patient_id, day))
        if not summary:
            summary = models.DailySummary(id=summary_id(patient_id, day), patient_id=patient_id, summary_date=day)
            db.add(summary)

        totals = counts["totals"]
        summary.timezone = timezone_name
        summary.scheduled_count = totals["scheduled"]
        summary.taken_count = totals["taken"]
        summary.missed_count = totals["missed"]
        summary.skipped_count = totals["skipped"]
        summary.snoozed_count = totals["snoozed"]
        summary.adherence_rate = counts["adherence_rate"]
        summary.medication_breakdown = counts["medication_breakdown"]
        summary.archived_event_count = len(events)
        db.commit()
        return summary


daily_archiver = DailyArchiver()
