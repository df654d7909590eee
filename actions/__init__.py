"""
Actions Module
Periodic jobs for reminders, missed-dose detection and daily archiving
"""

from .job_runner import (
    ScheduledJob,
    TickResult
)

from .reminder_scheduler import (
    ReminderScheduler,
    ReminderTickResult,
    reminder_scheduler,
    reminder_key
)

from .missed_dose_detector import (
    MissedDoseDetector,
    MissedDoseTickResult,
    missed_dose_detector,
    missed_event_id
)

from .daily_archiver import (
    DailyArchiver,
    ArchiveTickResult,
    daily_archiver,
    build_summary_counts,
    summary_id
)


__all__ = [
    # Job Runner
    "ScheduledJob",
    "TickResult",

    # Reminder Scheduler
    "ReminderScheduler",
    "ReminderTickResult",
    "reminder_scheduler",
    "reminder_key",

    # Missed Dose Detector
    "MissedDoseDetector",
    "MissedDoseTickResult",
    "missed_dose_detector",
    "missed_event_id",

    # Daily Archiver
    "DailyArchiver",
    "ArchiveTickResult",
    "daily_archiver",
    "build_summary_counts",
    "summary_id"
]
