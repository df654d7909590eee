"""
Event Schemas
Pydantic models for dose actions, event views and job triggers
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict, field_validator

from models import EventType
from tools.clock import to_utc_naive


# ==================== REQUEST SCHEMAS ====================

class DoseActionCreate(BaseModel):
    """Schema for recording a dose action"""
    command_id: str = Field(..., min_length=1)
    event_type: EventType
    scheduled_for: Optional[datetime] = None
    occurred_at: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=1000)
    created_by: str = Field(default="user", max_length=50)

    @field_validator("scheduled_for", "occurred_at")
    @classmethod
    def normalize_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc_naive(value)


# ==================== RESPONSE SCHEMAS ====================

class EventResponse(BaseModel):
    """Schema for a medication event"""
    id: str
    command_id: str
    patient_id: str
    event_type: EventType
    scheduled_for: Optional[datetime] = None
    event_timestamp: Optional[datetime] = None
    grace_period_end: Optional[datetime] = None
    medication_name: Optional[str] = None
    dosage_amount: Optional[str] = None
    context: Dict[str, Any] = {}
    source_event_id: Optional[str] = None
    created_by: Optional[str] = None
    archived: bool = False
    archived_for_date: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TodayResponse(BaseModel):
    """Live events for a patient"""
    patient_id: str
    total: int
    events: List[EventResponse]


class HistoryResponse(BaseModel):
    """Archived events and daily summaries"""
    patient_id: str
    start_date: str
    end_date: str
    events: List[Dict[str, Any]]
    summaries: List[Dict[str, Any]]


class JobTickResponse(BaseModel):
    """Result of a job tick"""
    job_name: str
    success: bool
    result: Dict[str, Any]
