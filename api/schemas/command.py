"""
Command Schemas
Pydantic models for medication command requests and responses
"""

from typing import Optional, List, Dict, Any
from datetime import datetime, date
from pydantic import BaseModel, Field, ConfigDict, field_validator

from models import CommandStatus, CommandType, MedicationFrequency, MedicationType


# ==================== REQUEST SCHEMAS ====================

class CommandCreate(BaseModel):
    """Schema for creating a medication command"""
    patient_id: str = Field(..., min_length=1, max_length=64)
    medication_name: str = Field(..., min_length=1, max_length=255)
    dosage_amount: Optional[str] = Field(None, max_length=100)
    frequency: MedicationFrequency = MedicationFrequency.DAILY
    scheduled_times: List[str] = Field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    instructions: Optional[str] = None
    medication_type: Optional[MedicationType] = None
    reminders_enabled: bool = True
    reminder_minutes_before: Optional[List[int]] = None
    grace_period_minutes: Optional[int] = Field(None, ge=0, le=24 * 60)
    materialize: bool = True

    @field_validator("reminder_minutes_before")
    @classmethod
    def offsets_positive(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is not None and any(m <= 0 for m in value):
            raise ValueError("reminder offsets must be positive")
        return value


class CommandStatusUpdate(BaseModel):
    """Schema for changing a command's status"""
    status: CommandStatus


# ==================== RESPONSE SCHEMAS ====================

class CommandResponse(BaseModel):
    """Schema for command response"""
    id: str
    patient_id: str
    command_type: CommandType
    medication_name: str
    dosage_amount: Optional[str] = None
    frequency: str
    scheduled_times: List[str] = []
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    instructions: Optional[str] = None
    medication_type: Optional[str] = None
    reminders_enabled: bool = True
    reminder_minutes_before: Optional[List[int]] = None
    grace_period_minutes: Optional[int] = None
    status: CommandStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CommandCreatedResponse(BaseModel):
    """Command plus the events materialized for it"""
    command: CommandResponse
    scheduled_event_ids: List[str] = []


class CascadeDeleteResponse(BaseModel):
    """Outcome of deleting a command"""
    command_id: str
    success: bool
    total_found: int
    total_deleted: int
    total_failed: int
    collections: Dict[str, Dict[str, Any]]
    errors: List[str] = []
