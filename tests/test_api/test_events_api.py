"""
Tests for Events API
====================

Tests dose actions and the today/history views.
"""

import pytest
from datetime import datetime, timedelta
from fastapi import status
from fastapi.testclient import TestClient

from actions.missed_dose_detector import MissedDoseDetector
from models import ArchivedMedicationEvent, DailySummary, EventType


DUE = datetime(2026, 7, 15, 14, 0)


@pytest.fixture
def scheduled_dose(test_patient, make_command, make_event):
    return make_event(make_command(), DUE)


# ==================== DOSE ACTION TESTS ====================

class TestRecordDoseAction:
    """Tests for POST /events"""

    @pytest.mark.api
    def test_mark_taken(self, client: TestClient, scheduled_dose):
        response = client.post("/api/v1/events", json={
            "command_id": scheduled_dose.command_id,
            "event_type": "dose_taken",
            "scheduled_for": DUE.isoformat(),
            "notes": "with breakfast",
        })

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["id"] == f"{scheduled_dose.id}_taken"
        assert data["source_event_id"] == scheduled_dose.id
        assert data["context"] == {"notes": "with breakfast"}

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_offset_timestamps_stored_as_utc(self, client: TestClient, scheduled_dose, fixed_clock,
                                                   job_settings, monitoring, store, dispatcher, db_session):
        """A taken dose sent with a UTC offset resolves the 14:00 UTC occurrence"""
        response = client.post("/api/v1/events", json={
            "command_id": scheduled_dose.command_id,
            "event_type": "dose_taken",
            "scheduled_for": "2026-07-15T09:00:00-05:00",
            "occurred_at": "2026-07-15T14:05:00Z",
        })

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["source_event_id"] == scheduled_dose.id
        assert data["scheduled_for"] == "2026-07-15T14:00:00"
        assert data["event_timestamp"] == "2026-07-15T14:05:00"

        detector = MissedDoseDetector(
            clock=fixed_clock, config=job_settings, monitoring=monitoring, store=store, dispatcher=dispatcher,
        )
        fixed_clock.set(DUE + timedelta(minutes=31))
        result = await detector.run_tick(db=db_session)

        assert result.missed_detected == 0

    @pytest.mark.api
    def test_mark_taken_twice_returns_same_event(self, client: TestClient, scheduled_dose):
        payload = {
            "command_id": scheduled_dose.command_id,
            "event_type": "dose_skipped",
            "scheduled_for": DUE.isoformat(),
        }
        first = client.post("/api/v1/events", json=payload).json()
        second = client.post("/api/v1/events", json=payload).json()

        assert first["id"] == second["id"]

    @pytest.mark.api
    def test_missed_rejected(self, client: TestClient, scheduled_dose):
        response = client.post("/api/v1/events", json={
            "command_id": scheduled_dose.command_id,
            "event_type": "dose_missed",
        })
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.api
    def test_unknown_command(self, client: TestClient):
        response = client.post("/api/v1/events", json={"command_id": "missing", "event_type": "dose_taken"})
        assert response.status_code == status.HTTP_404_NOT_FOUND


# ==================== VIEW TESTS ====================

class TestViews:
    """Tests for today and history endpoints"""

    @pytest.mark.api
    def test_today(self, client: TestClient, scheduled_dose):
        response = client.get(f"/api/v1/patients/{scheduled_dose.patient_id}/today")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 1
        assert data["events"][0]["event_type"] == "dose_scheduled"

    @pytest.mark.api
    def test_history(self, client: TestClient, db_session):
        db_session.add(ArchivedMedicationEvent(
            id="cmd-1_202607141400",
            command_id="cmd-1",
            patient_id="patient-1",
            event_type=EventType.DOSE_SCHEDULED,
            summary_date="2026-07-14",
            payload={"id": "cmd-1_202607141400", "event_type": "dose_scheduled"},
            archived_at=DUE,
        ))
        db_session.add(DailySummary(
            id="patient-1_2026-07-14", patient_id="patient-1", summary_date="2026-07-14",
            scheduled_count=1, adherence_rate=0.0,
        ))
        db_session.commit()

        response = client.get(
            "/api/v1/patients/patient-1/history",
            params={"start_date": "2026-07-01", "end_date": "2026-07-15"},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["events"][0]["summary_date"] == "2026-07-14"
        assert data["summaries"][0]["scheduled_count"] == 1

    @pytest.mark.api
    def test_history_invalid_range(self, client: TestClient):
        response = client.get(
            "/api/v1/patients/patient-1/history",
            params={"start_date": "2026-07-15", "end_date": "2026-07-01"},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
