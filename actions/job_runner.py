"""
Job Runner
Shared tick lifecycle for the periodic medication jobs: session scope,
overall timeout, fatal-error containment, execution logging and alerting
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
from services.monitoring import MonitoringService, monitoring_service
from tools.clock import system_clock


logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Common tick outcome"""
    job_name: str = ""
    success: bool = True
    processed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    timed_out: bool = False
    execution_time_ms: int = 0
    executed_at: Optional[datetime] = None
    alerts: List[str] = field(default_factory=list)

    def stats(self) -> Dict[str, Any]:
        """Counters stored on the execution log"""
        excluded = {"job_name", "success", "errors", "timed_out", "executed_at", "alerts"}
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in excluded and isinstance(getattr(self, f.name), (int, float))
        }

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            data[f.name] = value
        return data


class ScheduledJob:
    """
    Base class for stateless periodic jobs. All coordination state lives in
    the database; a tick can be killed at any point and rerun.
    """

    job_name = "scheduled_job"
    result_class = TickResult

    def __init__(self, clock=None, config=None, monitoring: Optional[MonitoringService] = None):
        self.clock = clock or system_clock
        self.config = config or settings
        self.monitoring = monitoring or monitoring_service

    async def run_tick(self, db: Optional[Session] = None) -> TickResult:
        """Run one tick. Never raises."""
        if db is not None:
            return await self._run(db)

        with get_db_context() as session:
            return await self._run(session)

    async def execute(self, db: Session, result: TickResult) -> None:
        raise NotImplementedError

    def deliveries(self, result: TickResult) -> Tuple[int, int]:
        """(attempted, succeeded) notification dispatches for delivery-rate alerts"""
        return 0, 0

    async def _run(self, db: Session) -> TickResult:
        result = self.result_class(job_name=self.job_name)
        result.executed_at = self.clock.now()
        started = time.monotonic()
        logger.info(f"{self.job_name} tick started at {result.executed_at.isoformat()}")

        try:
            await asyncio.wait_for(
                self.execute(db, result),
                timeout=self.config.TICK_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            db.rollback()
            result.success = False
            result.timed_out = True
            result.errors.append(f"tick exceeded {self.config.TICK_TIMEOUT_SECONDS}s budget")
            logger.error(f"{self.job_name} tick timed out")
        except Exception as e:
            db.rollback()
            result.success = False
            result.errors.append(f"fatal: {e}")
            logger.exception(f"{self.job_name} tick failed: {e}")

        result.execution_time_ms = int((time.monotonic() - started) * 1000)

        self.monitoring.record_execution(
            db,
            job_name=self.job_name,
            executed_at=result.executed_at,
            duration_ms=result.execution_time_ms,
            success=result.success,
            timed_out=result.timed_out,
            stats=result.stats(),
            errors=result.errors,
        )
        attempted, succeeded = self.deliveries(result)
        result.alerts = self.monitoring.evaluate_tick(
            db,
            self.job_name,
            processed=result.processed,
            error_count=len(result.errors),
            duration_ms=result.execution_time_ms,
            deliveries_attempted=attempted,
            deliveries_succeeded=succeeded,
        )

        logger.info(
            f"{self.job_name} tick finished in {result.execution_time_ms}ms: "
            f"success={result.success} {result.stats()} errors={len(result.errors)}"
        )
        return result
