"""
Configuration management for DoseLedger
"""

from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "DoseLedger"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENV: str = "development"

    # API
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./doseledger.db"
    DATABASE_ECHO: bool = False

    # Notifications
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Time
    DEFAULT_TIMEZONE: str = "UTC"

    # Materialization
    MATERIALIZE_DAYS_AHEAD: int = 2

    # Read views
    HISTORY_DEFAULT_DAYS: int = 30

    # Reminder scheduler
    REMINDER_TICK_MINUTES: int = 5
    REMINDER_LOOKAHEAD_MINUTES: int = 60
    REMINDER_QUERY_LIMIT: int = 500
    REMINDER_DEFAULT_OFFSETS: list[int] = [15, 5]
    REMINDER_TOLERANCE_MINUTES: int = 2
    REMINDER_DEDUP_BUCKET_MINUTES: int = 5
    REMINDER_HIGH_URGENCY_MINUTES: int = 5

    # Completion window around a scheduled dose
    COMPLETION_WINDOW_BEFORE_MINUTES: int = 60
    COMPLETION_WINDOW_AFTER_MINUTES: int = 24 * 60

    # Missed-dose detector
    MISSED_TICK_MINUTES: int = 15
    MISSED_LOOKBACK_HOURS: int = 24
    MISSED_QUERY_LIMIT: int = 500
    MISSED_DOSE_NOTIFICATIONS_ENABLED: bool = True

    # Daily archiver
    ARCHIVE_TICK_MINUTES: int = 15

    # Job execution
    TICK_TIMEOUT_SECONDS: int = 300
    PERFORMANCE_ALERT_RATIO: float = 0.8
    WRITE_BATCH_SIZE: int = 500

    # Cascade delete
    CASCADE_DELETE_MAX_RETRIES: int = 1
    CASCADE_VERIFY_AFTER_DELETE: bool = True

    # Alert thresholds (percent)
    ERROR_RATE_ALERT_PERCENT: float = 10.0
    ERROR_RATE_CRITICAL_PERCENT: float = 25.0
    DELIVERY_RATE_ALERT_PERCENT: float = 80.0
    DELIVERY_RATE_CRITICAL_PERCENT: float = 50.0

    # Orphan cleanup
    ORPHAN_BACKUP_DIR: str = "./backups"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


class ScheduleDefaults:
    """Scheduling defaults that are not environment driven"""

    # Grace period in minutes per medication type
    GRACE_PERIODS: dict[str, int] = {
        "critical": 15,
        "standard": 30,
        "vitamin": 120,
        "prn": 0,
    }

    # Local wall-clock slots used when a command has no explicit times
    TIME_SLOTS: dict[str, str] = {
        "morning": "07:00",
        "lunch": "12:00",
        "evening": "18:00",
        "before_bed": "22:00",
    }

    FREQUENCY_SLOTS: dict[str, list[str]] = {
        "daily": ["morning"],
        "twice_daily": ["morning", "evening"],
        "three_times_daily": ["morning", "lunch", "evening"],
        "four_times_daily": ["morning", "lunch", "evening", "before_bed"],
        "weekly": ["morning"],
        "monthly": ["morning"],
        "custom": ["morning"],
        "as_needed": [],
    }

    CRITICAL_KEYWORDS: list[str] = [
        "insulin", "heart", "cardiac", "blood thinner", "warfarin", "anticoagulant"
    ]
    VITAMIN_KEYWORDS: list[str] = [
        "vitamin", "supplement", "multivitamin", "calcium", "iron", "omega"
    ]
    PRN_KEYWORDS: list[str] = ["as needed", "as_needed", "prn"]


# Logical collection (table) names
class TableNames:
    USERS = "users"
    MEDICATION_COMMANDS = "medication_commands"
    MEDICATION_EVENTS = "medication_events"
    MEDICATION_EVENTS_ARCHIVE = "medication_events_archive"
    REMINDER_SENT_LOG = "medication_reminder_sent_log"
    DAILY_SUMMARIES = "medication_daily_summaries"
    LEGACY_CALENDAR_EVENTS = "medication_calendar_events"
    LEGACY_SCHEDULES = "medication_schedules"
    LEGACY_REMINDERS = "medication_reminders"
    FAMILY_ACCESS = "family_calendar_access"
    JOB_LOGS = "medication_reminder_logs"
    NOTIFICATION_LOG = "medication_notification_log"
    ARCHIVE_WATERMARKS = "medication_archive_watermarks"
    SYSTEM_ALERTS = "system_alerts"
    MIGRATION_TRACKING = "migration_tracking"


settings = get_settings()
schedule_defaults = ScheduleDefaults()
