"""
Jobs API Router
Trigger surface for external cron. Every tick is idempotent and safe to
repeat or skip.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.deps import get_db, services
from api.schemas.event import JobTickResponse


router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/reminders", response_model=JobTickResponse)
async def run_reminders(db: Session = Depends(get_db)):
    """Run one reminder scheduler tick"""
    result = await services.get_reminder_scheduler().run_tick(db=db)
    return JobTickResponse(job_name=result.job_name, success=result.success, result=result.to_dict())


@router.post("/missed-doses", response_model=JobTickResponse)
async def run_missed_doses(db: Session = Depends(get_db)):
    """Run one missed-dose detection tick"""
    result = await services.get_missed_dose_detector().run_tick(db=db)
    return JobTickResponse(job_name=result.job_name, success=result.success, result=result.to_dict())


@router.post("/daily-archive", response_model=JobTickResponse)
async def run_daily_archive(db: Session = Depends(get_db)):
    """Run one daily archive tick"""
    result = await services.get_daily_archiver().run_tick(db=db)
    return JobTickResponse(job_name=result.job_name, success=result.success, result=result.to_dict())


@router.post("/materialize", response_model=JobTickResponse)
async def run_materialize(db: Session = Depends(get_db)):
    """Roll the scheduled-dose horizon forward for all active commands"""
    summary = await services.get_event_store().materialize_active_commands(db=db)
    return JobTickResponse(job_name="materialize", success=not summary["errors"], result=summary)
