"""
Tests for Reminder Scheduler
Tests countdown offsets, bucket deduplication and skip conditions
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import patch

import models
from actions.reminder_scheduler import ReminderScheduler, reminder_key
from tools.notification_channels import NotificationUrgency


DUE = datetime(2026, 7, 15, 15, 0)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def scheduler(fixed_clock, job_settings, monitoring, store, dispatcher):
    """Reminder scheduler on the fixed clock with a recording channel"""
    return ReminderScheduler(
        clock=fixed_clock,
        config=job_settings,
        monitoring=monitoring,
        store=store,
        dispatcher=dispatcher,
    )


@pytest.fixture
def due_dose(test_patient, make_command, make_event):
    """Lisinopril dose due at 15:00 UTC with default offsets"""
    command = make_command()
    return make_event(command, DUE)


def minutes_before(clock, minutes, seconds=0):
    clock.set(DUE - timedelta(minutes=minutes, seconds=seconds))


# =============================================================================
# Timing Rules
# =============================================================================

class TestTimingRules:
    """Tests for the offset and bucket arithmetic"""

    def test_minutes_until_due_floors(self, scheduler):
        assert scheduler.minutes_until_due(DUE, DUE - timedelta(minutes=14, seconds=59)) == 14
        assert scheduler.minutes_until_due(DUE, DUE - timedelta(minutes=15)) == 15

    @pytest.mark.parametrize("minutes,expected", [(18, None), (17, 15), (16, 15), (15, 15), (13, 15), (12, None),
                                                  (8, None), (7, 5), (5, 5), (3, 5), (2, None)])
    def test_matching_offset(self, scheduler, minutes, expected):
        assert scheduler.matching_offset(minutes, [15, 5]) == expected

    @pytest.mark.parametrize("minutes,bucket", [(17, 15), (15, 15), (14, 10), (10, 10), (5, 5), (4, 0)])
    def test_bucket_rounds_down(self, scheduler, minutes, bucket):
        assert scheduler.bucket_for(minutes) == bucket

    def test_urgency(self, scheduler):
        assert scheduler.urgency_for(5) == NotificationUrgency.HIGH
        assert scheduler.urgency_for(15) == NotificationUrgency.MEDIUM

    def test_wide_tolerance_warns(self, fixed_clock, job_settings, caplog):
        job_settings.REMINDER_TOLERANCE_MINUTES = 3
        ReminderScheduler(clock=fixed_clock, config=job_settings)
        assert "duplicate reminders are possible" in caplog.text

    def test_narrow_tolerance_warns(self, fixed_clock, job_settings, caplog):
        job_settings.REMINDER_TOLERANCE_MINUTES = 1
        ReminderScheduler(clock=fixed_clock, config=job_settings)
        assert "will never send a reminder" in caplog.text

    def test_default_tolerance_is_silent(self, fixed_clock, job_settings, caplog):
        ReminderScheduler(clock=fixed_clock, config=job_settings)
        assert "Reminder tolerance band" not in caplog.text


# =============================================================================
# Countdown Scenario
# =============================================================================

class TestCountdown:
    """A dose observed at successive ticks"""

    @pytest.mark.asyncio
    async def test_eighteen_minutes_is_not_due(self, scheduler, fixed_clock, due_dose, recording_channel, db_session):
        minutes_before(fixed_clock, 18)

        result = await scheduler.run_tick(db=db_session)

        assert result.success is True
        assert result.not_due == 1
        assert result.reminders_sent == 0
        assert recording_channel.sent == []

    @pytest.mark.asyncio
    async def test_full_countdown(self, scheduler, fixed_clock, due_dose, recording_channel, db_session):
        """T-16 fires, T-15 shares its bucket, T-5 fires under a new bucket"""
        minutes_before(fixed_clock, 16)
        first = await scheduler.run_tick(db=db_session)
        assert first.reminders_sent == 1
        assert db_session.get(models.ReminderSentRecord, reminder_key(due_dose.id, 15)) is not None

        minutes_before(fixed_clock, 15)
        second = await scheduler.run_tick(db=db_session)
        assert second.reminders_sent == 0
        assert second.skipped == 1

        minutes_before(fixed_clock, 5)
        third = await scheduler.run_tick(db=db_session)
        assert third.reminders_sent == 1
        assert third.reminder_details[0]["bucket"] == 5

        assert len(recording_channel.sent) == 2
        assert recording_channel.sent[0]["urgency"] == NotificationUrgency.MEDIUM
        assert recording_channel.sent[1]["urgency"] == NotificationUrgency.HIGH
        assert recording_channel.sent[0]["title"] == "Medication Reminder: Lisinopril"
        assert db_session.query(models.ReminderSentRecord).count() == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("phase", [0, 1, 2, 3, 4])
    async def test_five_minute_cadence_sends_each_offset_once(self, scheduler, fixed_clock, due_dose,
                                                              recording_channel, db_session, phase):
        """Ticks every 5 minutes at any alignment reach both offsets exactly once"""
        sent = 0
        for minutes in range(60 + phase, -1, -5):
            minutes_before(fixed_clock, minutes)
            result = await scheduler.run_tick(db=db_session)
            assert result.success is True
            sent += result.reminders_sent

        assert sent == 2
        assert len(recording_channel.sent) == 2
        assert all("Lisinopril" in s["message"] for s in recording_channel.sent)

    @pytest.mark.asyncio
    async def test_repeated_tick_same_instant(self, scheduler, fixed_clock, due_dose, recording_channel, db_session):
        minutes_before(fixed_clock, 15)
        await scheduler.run_tick(db=db_session)
        await scheduler.run_tick(db=db_session)

        assert len(recording_channel.sent) == 1

    @pytest.mark.asyncio
    async def test_custom_offsets(self, scheduler, fixed_clock, test_patient, make_command, make_event,
                                  recording_channel, db_session):
        command = make_command(reminder_minutes_before=[30])
        make_event(command, DUE)

        minutes_before(fixed_clock, 15)
        assert (await scheduler.run_tick(db=db_session)).reminders_sent == 0

        minutes_before(fixed_clock, 30)
        assert (await scheduler.run_tick(db=db_session)).reminders_sent == 1

    @pytest.mark.asyncio
    async def test_family_members_notified(self, scheduler, fixed_clock, due_dose, family_member,
                                           recording_channel, db_session):
        minutes_before(fixed_clock, 15)

        result = await scheduler.run_tick(db=db_session)

        assert result.notifications_sent == 2
        assert {s["user_id"] for s in recording_channel.sent} == {"patient-1", family_member.id}


# =============================================================================
# Skip Conditions
# =============================================================================

class TestSkipConditions:
    """Doses that must not be reminded"""

    @pytest.mark.asyncio
    async def test_already_taken(self, scheduler, fixed_clock, due_dose, make_event, recording_channel, db_session):
        command = db_session.get(models.MedicationCommand, due_dose.command_id)
        make_event(command, DUE, event_type=models.EventType.DOSE_TAKEN)
        minutes_before(fixed_clock, 15)

        result = await scheduler.run_tick(db=db_session)

        assert result.skipped == 1
        assert recording_channel.sent == []

    @pytest.mark.asyncio
    async def test_reminders_disabled(self, scheduler, fixed_clock, test_patient, make_command, make_event,
                                      recording_channel, db_session):
        make_event(make_command(reminders_enabled=False), DUE)
        minutes_before(fixed_clock, 15)

        result = await scheduler.run_tick(db=db_session)

        assert result.skipped == 1
        assert recording_channel.sent == []

    @pytest.mark.asyncio
    async def test_paused_command(self, scheduler, fixed_clock, test_patient, make_command, make_event,
                                  recording_channel, db_session):
        make_event(make_command(status=models.CommandStatus.PAUSED), DUE)
        minutes_before(fixed_clock, 15)

        assert (await scheduler.run_tick(db=db_session)).skipped == 1

    @pytest.mark.asyncio
    async def test_no_recipients(self, scheduler, fixed_clock, make_command, make_event, recording_channel, db_session):
        """A patient without a user record has nobody to notify"""
        make_event(make_command(patient_id="ghost"), DUE)
        minutes_before(fixed_clock, 15)

        result = await scheduler.run_tick(db=db_session)

        assert result.skipped == 1
        assert db_session.query(models.ReminderSentRecord).count() == 0

    @pytest.mark.asyncio
    async def test_outside_lookahead(self, scheduler, fixed_clock, due_dose, db_session):
        fixed_clock.set(DUE - timedelta(hours=2))
        assert (await scheduler.run_tick(db=db_session)).processed == 0


# =============================================================================
# Failures and Monitoring
# =============================================================================

class TestFailures:
    """Delivery failures and fatal errors"""

    @pytest.mark.asyncio
    async def test_failed_delivery_is_retried_next_tick(self, scheduler, fixed_clock, due_dose,
                                                        recording_channel, db_session):
        recording_channel.fail = True
        minutes_before(fixed_clock, 15)

        failed = await scheduler.run_tick(db=db_session)

        assert failed.reminders_sent == 0
        assert failed.notifications_failed == 1
        assert len(failed.errors) == 1
        assert "low_delivery_rate" in failed.alerts
        assert db_session.query(models.ReminderSentRecord).count() == 0

        recording_channel.fail = False
        minutes_before(fixed_clock, 14)
        retried = await scheduler.run_tick(db=db_session)
        assert retried.reminders_sent == 1

    @pytest.mark.asyncio
    async def test_execution_log_written(self, scheduler, fixed_clock, due_dose, db_session):
        minutes_before(fixed_clock, 15)
        await scheduler.run_tick(db=db_session)

        log = db_session.query(models.JobExecutionLog).one()
        assert log.job_name == "medication_reminders"
        assert log.success is True
        assert log.stats["reminders_sent"] == 1
        assert log.execution_time == fixed_clock.now()

    @pytest.mark.asyncio
    async def test_fatal_error_is_contained(self, scheduler, store, db_session):
        with patch.object(store, "query_events", side_effect=RuntimeError("database unavailable")):
            result = await scheduler.run_tick(db=db_session)

        assert result.success is False
        assert "database unavailable" in result.errors[0]
        assert db_session.query(models.JobExecutionLog).one().success is False
