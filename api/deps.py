"""
API Dependencies
Common dependencies for FastAPI endpoints
"""

from typing import Generator
from sqlalchemy.orm import Session

from database import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency
    Yields a SQLAlchemy session and ensures cleanup
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class ServiceDependency:
    """
    Dependency injection for services and jobs
    """

    @staticmethod
    def get_event_store():
        from services.event_store import event_store
        return event_store

    @staticmethod
    def get_reminder_scheduler():
        from actions.reminder_scheduler import reminder_scheduler
        return reminder_scheduler

    @staticmethod
    def get_missed_dose_detector():
        from actions.missed_dose_detector import missed_dose_detector
        return missed_dose_detector

    @staticmethod
    def get_daily_archiver():
        from actions.daily_archiver import daily_archiver
        return daily_archiver


# Service dependency instances
services = ServiceDependency()
