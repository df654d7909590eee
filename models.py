"""
Database Models
SQLAlchemy ORM models for DoseLedger
"""

from sqlalchemy import Column, Integer, String, Boolean, Float, DateTime, Text, Date, Enum, Index, UniqueConstraint, JSON
from datetime import datetime
from enum import Enum as PyEnum

from config import TableNames
from database import Base


# ==================== ENUMS ====================

class CommandType(str, PyEnum):
    """Kind of medication-management intent"""
    CREATE_MEDICATION = "create_medication"
    UPDATE_MEDICATION = "update_medication"
    DELETE_MEDICATION = "delete_medication"
    PAUSE_MEDICATION = "pause_medication"


class CommandStatus(str, PyEnum):
    """Current lifecycle status of a command"""
    ACTIVE = "active"
    PAUSED = "paused"
    DISCONTINUED = "discontinued"


class MedicationFrequency(str, PyEnum):
    """Supported dosing frequencies"""
    DAILY = "daily"
    TWICE_DAILY = "twice_daily"
    THREE_TIMES_DAILY = "three_times_daily"
    FOUR_TIMES_DAILY = "four_times_daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    AS_NEEDED = "as_needed"
    CUSTOM = "custom"


class MedicationType(str, PyEnum):
    """Medication category, drives the default grace period"""
    CRITICAL = "critical"
    STANDARD = "standard"
    VITAMIN = "vitamin"
    PRN = "prn"


class EventType(str, PyEnum):
    """Type of a medication event"""
    DOSE_SCHEDULED = "dose_scheduled"
    DOSE_TAKEN = "dose_taken"
    DOSE_MISSED = "dose_missed"
    DOSE_SKIPPED = "dose_skipped"
    DOSE_SNOOZED = "dose_snoozed"


# Events that make a scheduled occurrence terminal
COMPLETION_EVENT_TYPES = (
    EventType.DOSE_TAKEN,
    EventType.DOSE_MISSED,
    EventType.DOSE_SKIPPED,
)


class AccessStatus(str, PyEnum):
    """Status of a family access grant"""
    ACTIVE = "active"
    PENDING = "pending"
    REVOKED = "revoked"


class AlertSeverity(str, PyEnum):
    """Severity of a system alert"""
    WARNING = "warning"
    CRITICAL = "critical"


# ==================== MODELS ====================

class User(Base):
    """Patient or family member with contact details and timezone"""
    __tablename__ = TableNames.USERS

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), index=True)
    phone = Column(String(20))

    # IANA zone name, e.g. "America/Chicago"
    timezone = Column(String(64))
    preferred_methods = Column(JSON, default=list)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class MedicationCommand(Base):
    """Authoritative record of a medication intent"""
    __tablename__ = TableNames.MEDICATION_COMMANDS

    id = Column(String(64), primary_key=True, index=True)
    patient_id = Column(String(64), nullable=False, index=True)
    command_type = Column(Enum(CommandType), nullable=False, default=CommandType.CREATE_MEDICATION)

    # Medication descriptor
    medication_name = Column(String(255), nullable=False)
    dosage_amount = Column(String(100))
    frequency = Column(String(30), nullable=False, default=MedicationFrequency.DAILY.value)
    scheduled_times = Column(JSON, default=list)  # ["08:00", "20:00"] local wall times
    start_date = Column(Date)
    end_date = Column(Date)
    instructions = Column(Text)
    medication_type = Column(String(20), default=MedicationType.STANDARD.value)

    # Reminder settings
    reminders_enabled = Column(Boolean, default=True)
    reminder_minutes_before = Column(JSON)  # ordered list of ints

    # Grace period
    grace_period_minutes = Column(Integer)

    status = Column(Enum(CommandStatus), nullable=False, default=CommandStatus.ACTIVE)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_commands_patient_status", "patient_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == CommandStatus.ACTIVE


class MedicationEvent(Base):
    """Append-only dose occurrence or state transition"""
    __tablename__ = TableNames.MEDICATION_EVENTS

    id = Column(String(128), primary_key=True, index=True)
    command_id = Column(String(64), nullable=False, index=True)
    patient_id = Column(String(64), nullable=False, index=True)
    event_type = Column(Enum(EventType), nullable=False)

    # Timing (naive UTC)
    scheduled_for = Column(DateTime, index=True)
    event_timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    grace_period_end = Column(DateTime)

    # Context
    medication_name = Column(String(255))
    dosage_amount = Column(String(100))
    context = Column(JSON, default=dict)
    source_event_id = Column(String(128), index=True)
    created_by = Column(String(50), default="system")  # "system", "user", "caregiver"

    # Archive state
    archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime)
    archived_for_date = Column(String(10))  # YYYY-MM-DD in patient local time

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_events_type_scheduled", "event_type", "scheduled_for"),
        Index("ix_events_command_type", "command_id", "event_type"),
        Index("ix_events_patient_archived", "patient_id", "archived"),
    )

    @property
    def occurred_at(self) -> datetime:
        """Instant used for day assignment and completion matching"""
        return self.scheduled_for or self.event_timestamp

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "command_id": self.command_id,
            "patient_id": self.patient_id,
            "event_type": self.event_type.value if self.event_type else None,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "event_timestamp": self.event_timestamp.isoformat() if self.event_timestamp else None,
            "grace_period_end": self.grace_period_end.isoformat() if self.grace_period_end else None,
            "medication_name": self.medication_name,
            "dosage_amount": self.dosage_amount,
            "context": self.context or {},
            "source_event_id": self.source_event_id,
            "created_by": self.created_by,
            "archived": bool(self.archived),
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
            "archived_for_date": self.archived_for_date,
        }


class ArchivedMedicationEvent(Base):
    """History copy of an archived event"""
    __tablename__ = TableNames.MEDICATION_EVENTS_ARCHIVE

    id = Column(String(128), primary_key=True, index=True)  # same id as the live event
    command_id = Column(String(64), nullable=False, index=True)
    patient_id = Column(String(64), nullable=False)
    event_type = Column(Enum(EventType), nullable=False)
    scheduled_for = Column(DateTime)
    event_timestamp = Column(DateTime)
    medication_name = Column(String(255))
    summary_date = Column(String(10), nullable=False)
    payload = Column(JSON, default=dict)
    archived_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_events_archive_patient_date", "patient_id", "summary_date"),
    )


class ReminderSentRecord(Base):
    """Dedup marker for a reminder sent for one event and countdown bucket"""
    __tablename__ = TableNames.REMINDER_SENT_LOG

    id = Column(String(160), primary_key=True)  # "<eventId>_<bucket>"
    event_id = Column(String(128), nullable=False, index=True)
    command_id = Column(String(64), nullable=False, index=True)
    patient_id = Column(String(64), nullable=False)
    medication_name = Column(String(255))
    scheduled_for = Column(DateTime)
    bucket = Column(Integer, nullable=False)
    minutes_before_due = Column(Integer)

    sent_at = Column(DateTime, nullable=False)
    recipient_count = Column(Integer, default=0)
    notifications_sent = Column(Integer, default=0)
    notifications_failed = Column(Integer, default=0)
    delivery_details = Column(JSON, default=list)


class DailySummary(Base):
    """Per patient, per local calendar date adherence summary"""
    __tablename__ = TableNames.DAILY_SUMMARIES

    id = Column(String(100), primary_key=True)  # "<patientId>_<YYYY-MM-DD>"
    patient_id = Column(String(64), nullable=False, index=True)
    summary_date = Column(String(10), nullable=False)
    timezone = Column(String(64))

    scheduled_count = Column(Integer, default=0)
    taken_count = Column(Integer, default=0)
    missed_count = Column(Integer, default=0)
    skipped_count = Column(Integer, default=0)
    snoozed_count = Column(Integer, default=0)
    adherence_rate = Column(Float, default=0.0)
    medication_breakdown = Column(JSON, default=dict)
    archived_event_count = Column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("patient_id", "summary_date", name="uq_daily_summary_patient_date"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "summary_date": self.summary_date,
            "timezone": self.timezone,
            "scheduled_count": self.scheduled_count,
            "taken_count": self.taken_count,
            "missed_count": self.missed_count,
            "skipped_count": self.skipped_count,
            "snoozed_count": self.snoozed_count,
            "adherence_rate": self.adherence_rate,
            "medication_breakdown": self.medication_breakdown or {},
            "archived_event_count": self.archived_event_count,
        }


# ==================== LEGACY READ MODEL ====================

class LegacyCalendarEvent(Base):
    """Legacy calendar row, one per scheduled dose"""
    __tablename__ = TableNames.LEGACY_CALENDAR_EVENTS

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_event_id = Column(String(128), unique=True, index=True, nullable=False)
    medication_id = Column(String(64), nullable=False, index=True)
    patient_id = Column(String(64), nullable=False)
    medication_name = Column(String(255))
    dosage_amount = Column(String(100))
    scheduled_date_time = Column(DateTime)
    status = Column(String(20), default="scheduled")  # scheduled, taken, missed, skipped, snoozed
    status_event_id = Column(String(128))

    synced_from_unified_system = Column(Boolean, default=True)
    sync_version = Column(Integer, default=1)
    synced_at = Column(DateTime)


class LegacySchedule(Base):
    """Legacy per-medication schedule row"""
    __tablename__ = TableNames.LEGACY_SCHEDULES

    id = Column(Integer, primary_key=True, autoincrement=True)
    medication_id = Column(String(64), unique=True, index=True, nullable=False)
    source_event_id = Column(String(128))
    patient_id = Column(String(64), nullable=False)
    medication_name = Column(String(255))
    frequency = Column(String(30))
    times = Column(JSON, default=list)
    is_active = Column(Boolean, default=True)

    synced_from_unified_system = Column(Boolean, default=True)
    sync_version = Column(Integer, default=1)
    synced_at = Column(DateTime)


class LegacyReminder(Base):
    """Legacy per-medication reminder settings row"""
    __tablename__ = TableNames.LEGACY_REMINDERS

    id = Column(Integer, primary_key=True, autoincrement=True)
    medication_id = Column(String(64), unique=True, index=True, nullable=False)
    source_event_id = Column(String(128))
    patient_id = Column(String(64), nullable=False)
    medication_name = Column(String(255))
    reminder_times = Column(JSON, default=list)
    minutes_before = Column(JSON, default=list)
    is_active = Column(Boolean, default=True)

    synced_from_unified_system = Column(Boolean, default=True)
    sync_version = Column(Integer, default=1)
    synced_at = Column(DateTime)


# ==================== ACCESS & OPERATIONS ====================

class FamilyAccessGrant(Base):
    """Family member access to a patient's medication calendar"""
    __tablename__ = TableNames.FAMILY_ACCESS

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(String(64), nullable=False, index=True)
    family_member_id = Column(String(64), nullable=False)
    family_member_name = Column(String(200))
    family_member_email = Column(String(255))
    permissions = Column(JSON, default=dict)  # {"canReceiveNotifications": true, ...}
    is_emergency_contact = Column(Boolean, default=False)
    status = Column(Enum(AccessStatus), default=AccessStatus.PENDING)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def can_receive_notifications(self) -> bool:
        return bool((self.permissions or {}).get("canReceiveNotifications"))


class JobExecutionLog(Base):
    """One row per periodic job tick"""
    __tablename__ = TableNames.JOB_LOGS

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_name = Column(String(50), nullable=False, index=True)
    execution_time = Column(DateTime, nullable=False)
    duration_ms = Column(Integer)
    success = Column(Boolean, default=True)
    timed_out = Column(Boolean, default=False)
    stats = Column(JSON, default=dict)
    errors = Column(JSON, default=list)


class NotificationDeliveryLog(Base):
    """Outcome of one notification dispatch"""
    __tablename__ = TableNames.NOTIFICATION_LOG

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(String(64), nullable=False, index=True)
    command_id = Column(String(64))
    notification_type = Column(String(30))
    urgency = Column(String(20))
    total_recipients = Column(Integer, default=0)
    total_sent = Column(Integer, default=0)
    total_failed = Column(Integer, default=0)
    delivery_details = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)


class ArchiveWatermark(Base):
    """Local calendar date on which a patient's last day rollover ran"""
    __tablename__ = TableNames.ARCHIVE_WATERMARKS

    patient_id = Column(String(64), primary_key=True)
    last_rollover_date = Column(String(10))
    timezone = Column(String(64))
    timezone_fallback = Column(Boolean, default=False)
    last_run_at = Column(DateTime)


class SystemAlert(Base):
    """Operational alert raised by jobs and cascade deletion"""
    __tablename__ = TableNames.SYSTEM_ALERTS

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_type = Column(String(50), nullable=False, index=True)
    severity = Column(Enum(AlertSeverity), default=AlertSeverity.WARNING)
    source = Column(String(50))
    message = Column(Text, nullable=False)
    details = Column(JSON, default=dict)
    is_resolved = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class MigrationTracking(Base):
    """Cumulative counters for cross-collection maintenance"""
    __tablename__ = TableNames.MIGRATION_TRACKING

    id = Column(String(64), primary_key=True)
    statistics = Column(JSON, default=dict)
    last_cascade_delete = Column(JSON)
    updated_at = Column(DateTime, default=datetime.utcnow)
