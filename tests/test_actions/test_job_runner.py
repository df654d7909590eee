"""
Tests for the shared job tick lifecycle
"""

import asyncio
import pytest
from dataclasses import dataclass

import models
from actions.job_runner import ScheduledJob, TickResult


@dataclass
class CountingResult(TickResult):
    widgets: int = 0


class CountingJob(ScheduledJob):
    job_name = "counting_job"
    result_class = CountingResult

    def __init__(self, delay: float = 0, fail: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.fail = fail

    async def execute(self, db, result):
        result.processed += 2
        result.widgets += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ValueError("bad widget")


@pytest.fixture
def make_job(fixed_clock, job_settings, monitoring):
    def _make(**kwargs):
        return CountingJob(clock=fixed_clock, config=job_settings, monitoring=monitoring, **kwargs)
    return _make


class TestTickLifecycle:
    """Tests for ScheduledJob.run_tick"""

    @pytest.mark.asyncio
    async def test_successful_tick(self, make_job, fixed_clock, db_session):
        result = await make_job().run_tick(db=db_session)

        assert result.success is True
        assert result.executed_at == fixed_clock.now()
        assert result.stats()["widgets"] == 1
        assert "errors" not in result.stats()
        assert result.to_dict()["executed_at"] == fixed_clock.now().isoformat()

        log = db_session.query(models.JobExecutionLog).one()
        assert log.job_name == "counting_job"
        assert log.stats["processed"] == 2

    @pytest.mark.asyncio
    async def test_exception_marks_failure(self, make_job, db_session):
        result = await make_job(fail=True).run_tick(db=db_session)

        assert result.success is False
        assert result.errors == ["fatal: bad widget"]
        assert "high_error_rate" in result.alerts

    @pytest.mark.asyncio
    async def test_timeout(self, make_job, job_settings, db_session):
        """A tick that exceeds its budget is cut off and logged as timed out"""
        job_settings.TICK_TIMEOUT_SECONDS = 0.05

        result = await make_job(delay=1).run_tick(db=db_session)

        assert result.success is False
        assert result.timed_out is True
        log = db_session.query(models.JobExecutionLog).one()
        assert log.timed_out is True
        assert "performance" in result.alerts
