"""
Events API Router
Endpoints for dose actions and the patient today/history views
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from api.deps import get_db, services
from api.schemas.event import (
    DoseActionCreate,
    EventResponse,
    TodayResponse,
    HistoryResponse,
)


router = APIRouter(tags=["events"])


@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def record_dose_action(
    action: DoseActionCreate,
    db: Session = Depends(get_db)
):
    """
    Record that a dose was taken, skipped or snoozed
    """
    event_store = services.get_event_store()
    try:
        return await event_store.record_dose_action(
            command_id=action.command_id,
            event_type=action.event_type,
            scheduled_for=action.scheduled_for,
            occurred_at=action.occurred_at,
            notes=action.notes,
            created_by=action.created_by,
            db=db
        )
    except ValueError as e:
        code = status.HTTP_404_NOT_FOUND if "not found" in str(e) else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=str(e))


@router.get("/patients/{patient_id}/today", response_model=TodayResponse)
async def get_today(
    patient_id: str,
    db: Session = Depends(get_db)
):
    """
    Live (not yet archived) events for a patient
    """
    event_store = services.get_event_store()
    events = await event_store.get_today_events(patient_id, db=db)
    return TodayResponse(
        patient_id=patient_id,
        total=len(events),
        events=[EventResponse.model_validate(e) for e in events],
    )


@router.get("/patients/{patient_id}/history", response_model=HistoryResponse)
async def get_history(
    patient_id: str,
    start_date: Optional[date] = Query(None, description="First local date (default: 30 days ago)"),
    end_date: Optional[date] = Query(None, description="Last local date (default: patient's local today)"),
    db: Session = Depends(get_db)
):
    """
    Archived events and daily summaries in a local date range
    """
    event_store = services.get_event_store()
    try:
        return await event_store.get_history(patient_id, start_date, end_date, db=db)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
