"""
Pytest Configuration and Shared Fixtures
========================================

This module provides shared fixtures for all DoseLedger tests.
Fixtures include database sessions, test clients, a fixed clock, sample
patients, commands and scheduled events, and a recording notification channel.
"""

import os
import sys
from datetime import datetime, timedelta
from typing import Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base
from api.deps import get_db
from models import (
    User, MedicationCommand, MedicationEvent, FamilyAccessGrant,
    AccessStatus, CommandStatus, EventType,
)
from app import app
from config import settings
from services.cascade_delete import CascadeDeletePropagator
from services.event_store import EventStore, scheduled_event_id
from services.legacy_mirror_sync import LegacyMirrorSync
from services.monitoring import MonitoringService
from services.notification_dispatch import NotificationDispatchService
from tools.clock import FixedClock
from tools.notification_channels import ChannelResult, DeliveryMethod, NotificationChannel


# Wednesday, 2026-07-15 14:00 UTC (09:00 in America/Chicago)
BASE_TIME = datetime(2026, 7, 15, 14, 0)


# ==================== DATABASE FIXTURES ====================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Create all tables
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a test database session"""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_engine
    )

    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client with database override"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ==================== CLOCK & CONFIG FIXTURES ====================

@pytest.fixture
def fixed_clock() -> FixedClock:
    """Clock pinned to BASE_TIME"""
    return FixedClock(BASE_TIME)


@pytest.fixture
def job_settings():
    """Independent copy of settings that tests may modify"""
    return settings.model_copy()


# ==================== NOTIFICATION FIXTURES ====================

class RecordingChannel(NotificationChannel):
    """Channel that records sends instead of delivering"""

    method = DeliveryMethod.PUSH

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[dict] = []

    async def send(self, recipient, title, message, urgency, action_url=None) -> ChannelResult:
        self.sent.append({
            "user_id": recipient.user_id,
            "title": title,
            "message": message,
            "urgency": urgency,
            "action_url": action_url,
        })
        if self.fail:
            return self._failed("delivery refused")
        return self._delivered()


@pytest.fixture
def recording_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def dispatcher(recording_channel: RecordingChannel) -> NotificationDispatchService:
    """Dispatch service whose only channel is the recording push channel"""
    return NotificationDispatchService(channels={DeliveryMethod.PUSH.value: recording_channel})


# ==================== SERVICE FIXTURES ====================

@pytest.fixture
def monitoring(job_settings) -> MonitoringService:
    return MonitoringService(config=job_settings)


@pytest.fixture
def propagator(job_settings, monitoring) -> CascadeDeletePropagator:
    return CascadeDeletePropagator(config=job_settings, monitoring=monitoring)


@pytest.fixture
def store(fixed_clock, job_settings, propagator) -> EventStore:
    """Event store bound to the fixed clock"""
    return EventStore(
        clock=fixed_clock,
        config=job_settings,
        mirror=LegacyMirrorSync(),
        propagator=propagator,
    )


# ==================== SAMPLE DATA FIXTURES ====================

@pytest.fixture
def test_patient(db_session: Session) -> User:
    """Patient in America/Chicago who prefers push notifications"""
    patient = User(
        id="patient-1",
        name="Jordan Lee",
        email="jordan.lee@example.com",
        phone="+15550000001",
        timezone="America/Chicago",
        preferred_methods=["push"],
        is_active=True,
    )
    db_session.add(patient)
    db_session.commit()
    return patient


@pytest.fixture
def family_member(db_session: Session, test_patient: User) -> User:
    """Family member with an active grant that allows notifications"""
    member = User(
        id="family-1",
        name="Sam Lee",
        email="sam.lee@example.com",
        timezone="America/Chicago",
        preferred_methods=["push"],
        is_active=True,
    )
    db_session.add(member)
    db_session.add(FamilyAccessGrant(
        patient_id=test_patient.id,
        family_member_id=member.id,
        family_member_name=member.name,
        family_member_email=member.email,
        permissions={"canView": True, "canReceiveNotifications": True},
        is_emergency_contact=True,
        status=AccessStatus.ACTIVE,
    ))
    db_session.commit()
    return member


@pytest.fixture
def make_command(db_session: Session):
    """Factory creating a command row directly"""
    def _make(
        command_id: str = "cmd-1",
        patient_id: str = "patient-1",
        medication_name: str = "Lisinopril",
        grace_period_minutes: Optional[int] = 30,
        reminder_minutes_before: Optional[List[int]] = None,
        **overrides,
    ) -> MedicationCommand:
        command = MedicationCommand(
            id=command_id,
            patient_id=patient_id,
            medication_name=medication_name,
            dosage_amount="10mg",
            frequency=overrides.pop("frequency", "daily"),
            scheduled_times=overrides.pop("scheduled_times", ["09:00"]),
            medication_type=overrides.pop("medication_type", "standard"),
            reminders_enabled=overrides.pop("reminders_enabled", True),
            reminder_minutes_before=reminder_minutes_before,
            grace_period_minutes=grace_period_minutes,
            status=overrides.pop("status", CommandStatus.ACTIVE),
            created_at=BASE_TIME - timedelta(days=7),
            updated_at=BASE_TIME - timedelta(days=7),
            **overrides,
        )
        db_session.add(command)
        db_session.commit()
        return command
    return _make


@pytest.fixture
def make_event(db_session: Session):
    """Factory creating an event row directly"""
    def _make(
        command: MedicationCommand,
        scheduled_for: datetime,
        event_type: EventType = EventType.DOSE_SCHEDULED,
        event_id: Optional[str] = None,
        grace_minutes: Optional[int] = 30,
        **overrides,
    ) -> MedicationEvent:
        if event_id is None:
            if event_type == EventType.DOSE_SCHEDULED:
                event_id = scheduled_event_id(command.id, scheduled_for)
            else:
                event_id = f"{scheduled_event_id(command.id, scheduled_for)}_{event_type.value}"
        event_row = MedicationEvent(
            id=event_id,
            command_id=command.id,
            patient_id=command.patient_id,
            event_type=event_type,
            scheduled_for=scheduled_for,
            event_timestamp=overrides.pop("event_timestamp", scheduled_for),
            grace_period_end=(
                scheduled_for + timedelta(minutes=grace_minutes)
                if grace_minutes is not None and event_type == EventType.DOSE_SCHEDULED
                else None
            ),
            medication_name=command.medication_name,
            dosage_amount=command.dosage_amount,
            context=overrides.pop("context", {"medicationName": command.medication_name}),
            archived=overrides.pop("archived", False),
            created_by=overrides.pop("created_by", "system"),
            **overrides,
        )
        db_session.add(event_row)
        db_session.commit()
        return event_row
    return _make


# ==================== MARKERS ====================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "database: mark test as requiring database")
