"""
Tests for Commands API
======================

Tests command intake, status changes, materialization and cascade deletion.
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from models import LegacySchedule, MedicationEvent


# ==================== FIXTURES ====================

@pytest.fixture
def command_create_data(test_patient):
    """Sample data for creating a command"""
    return {
        "patient_id": test_patient.id,
        "medication_name": "Lisinopril",
        "dosage_amount": "10mg",
        "frequency": "daily",
        "scheduled_times": ["09:00"],
        "reminder_minutes_before": [15, 5],
    }


@pytest.fixture
def created_command(client: TestClient, command_create_data):
    response = client.post("/api/v1/commands/", json=command_create_data)
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


# ==================== CREATE TESTS ====================

class TestCreateCommand:
    """Tests for command creation endpoint"""

    @pytest.mark.api
    def test_create_command_success(self, client: TestClient, command_create_data, db_session):
        """Command is stored, typed and materialized"""
        response = client.post("/api/v1/commands/", json=command_create_data)

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        command = data["command"]
        assert command["medication_name"] == "Lisinopril"
        assert command["medication_type"] == "standard"
        assert command["grace_period_minutes"] == 30
        assert command["status"] == "active"
        assert data["scheduled_event_ids"]
        assert all(event_id.startswith(command["id"]) for event_id in data["scheduled_event_ids"])
        assert db_session.query(LegacySchedule).filter_by(medication_id=command["id"]).count() == 1

    @pytest.mark.api
    def test_create_without_materialize(self, client: TestClient, command_create_data, db_session):
        command_create_data["materialize"] = False

        response = client.post("/api/v1/commands/", json=command_create_data)

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["scheduled_event_ids"] == []
        assert db_session.query(MedicationEvent).count() == 0

    @pytest.mark.api
    def test_create_invalid_time(self, client: TestClient, command_create_data):
        command_create_data["scheduled_times"] = ["9am"]

        response = client.post("/api/v1/commands/", json=command_create_data)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "Invalid time" in response.json()["message"]

    @pytest.mark.api
    def test_create_invalid_offsets(self, client: TestClient, command_create_data):
        command_create_data["reminder_minutes_before"] = [15, -5]

        response = client.post("/api/v1/commands/", json=command_create_data)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.api
    def test_create_unknown_frequency(self, client: TestClient, command_create_data):
        command_create_data["frequency"] = "hourly"

        response = client.post("/api/v1/commands/", json=command_create_data)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


# ==================== READ / UPDATE TESTS ====================

class TestGetAndUpdateCommand:
    """Tests for reading and pausing commands"""

    @pytest.mark.api
    def test_get_command(self, client: TestClient, created_command):
        command_id = created_command["command"]["id"]

        response = client.get(f"/api/v1/commands/{command_id}")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["reminder_minutes_before"] == [15, 5]

    @pytest.mark.api
    def test_get_command_not_found(self, client: TestClient):
        response = client.get("/api/v1/commands/missing")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.api
    def test_pause_command(self, client: TestClient, created_command):
        command_id = created_command["command"]["id"]

        response = client.patch(f"/api/v1/commands/{command_id}/status", json={"status": "paused"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "paused"

        materialized = client.post(f"/api/v1/commands/{command_id}/materialize")
        assert materialized.json()["scheduled_event_ids"] == []

    @pytest.mark.api
    def test_pause_unknown(self, client: TestClient):
        response = client.patch("/api/v1/commands/missing/status", json={"status": "paused"})
        assert response.status_code == status.HTTP_404_NOT_FOUND


# ==================== DELETE TESTS ====================

class TestDeleteCommand:
    """Tests for command deletion endpoint"""

    @pytest.mark.api
    def test_delete_cascades(self, client: TestClient, created_command, db_session):
        command_id = created_command["command"]["id"]

        response = client.delete(f"/api/v1/commands/{command_id}")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is True
        assert data["total_deleted"] >= 3
        assert data["collections"]["medication_events"]["remaining"] == 0
        assert db_session.query(MedicationEvent).count() == 0

    @pytest.mark.api
    def test_delete_twice(self, client: TestClient, created_command):
        command_id = created_command["command"]["id"]
        client.delete(f"/api/v1/commands/{command_id}")

        response = client.delete(f"/api/v1/commands/{command_id}")

        assert response.status_code == status.HTTP_404_NOT_FOUND
