"""
Commands API Router
Endpoints for medication command intake and deletion
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from api.deps import get_db, services
from api.schemas.command import (
    CommandCreate,
    CommandStatusUpdate,
    CommandResponse,
    CommandCreatedResponse,
    CascadeDeleteResponse,
)


router = APIRouter(prefix="/commands", tags=["commands"])


def _error_status(error: ValueError) -> int:
    if "not found" in str(error):
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_400_BAD_REQUEST


@router.post("/", response_model=CommandCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_command(
    command_data: CommandCreate,
    db: Session = Depends(get_db)
):
    """
    Record a medication intent and materialize its upcoming doses

    - **patient_id**: Patient ID
    - **medication_name**: Medication name
    - **frequency**: Dosing frequency
    - **scheduled_times**: Local HH:MM wall times
    """
    event_store = services.get_event_store()

    try:
        command = await event_store.append_command(
            patient_id=command_data.patient_id,
            medication_name=command_data.medication_name,
            frequency=command_data.frequency.value,
            scheduled_times=command_data.scheduled_times,
            dosage_amount=command_data.dosage_amount,
            start_date=command_data.start_date,
            end_date=command_data.end_date,
            instructions=command_data.instructions,
            reminders_enabled=command_data.reminders_enabled,
            reminder_minutes_before=command_data.reminder_minutes_before,
            grace_period_minutes=command_data.grace_period_minutes,
            medication_type=command_data.medication_type.value if command_data.medication_type else None,
            db=db
        )
        event_ids = []
        if command_data.materialize:
            event_ids = await event_store.materialize_scheduled_events(command.id, db=db)
    except ValueError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))

    return CommandCreatedResponse(
        command=CommandResponse.model_validate(command),
        scheduled_event_ids=event_ids,
    )


@router.get("/{command_id}", response_model=CommandResponse)
async def get_command(
    command_id: str,
    db: Session = Depends(get_db)
):
    """
    Get a medication command
    """
    event_store = services.get_event_store()
    command = await event_store.get_command(command_id, db=db)

    if not command:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Command {command_id} not found"
        )
    return command


@router.patch("/{command_id}/status", response_model=CommandResponse)
async def update_command_status(
    command_id: str,
    status_data: CommandStatusUpdate,
    db: Session = Depends(get_db)
):
    """
    Pause, resume or discontinue a medication
    """
    event_store = services.get_event_store()
    try:
        return await event_store.update_command_status(command_id, status_data.status, db=db)
    except ValueError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))


@router.post("/{command_id}/materialize")
async def materialize_command(
    command_id: str,
    db: Session = Depends(get_db)
):
    """
    Materialize upcoming scheduled doses for a command
    """
    event_store = services.get_event_store()
    try:
        event_ids = await event_store.materialize_scheduled_events(command_id, db=db)
    except ValueError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    return {"command_id": command_id, "scheduled_event_ids": event_ids}


@router.delete("/{command_id}", response_model=CascadeDeleteResponse)
async def delete_command(
    command_id: str,
    db: Session = Depends(get_db)
):
    """
    Delete a command and every event, archive copy, reminder marker and
    legacy mirror row derived from it
    """
    event_store = services.get_event_store()
    try:
        result = await event_store.delete_command(command_id, db=db)
    except ValueError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    return result.to_dict()
