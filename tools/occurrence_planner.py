"""
Occurrence Planner Tool
Turns a medication command's frequency and wall-clock times into concrete
UTC dose instants for a patient timezone
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from config import schedule_defaults
from models import MedicationFrequency, MedicationType
from tools.timezone_utils import local_date_of, local_to_utc


logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass
class PlannedOccurrence:
    """A single dose occurrence"""
    local_date: date
    wall_time: str
    scheduled_for: datetime  # naive UTC


def parse_wall_time(value: str) -> time:
    """Parse an HH:MM string, raising ValueError when malformed"""
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def determine_medication_type(name: str, frequency: Optional[str] = None) -> str:
    """Infer the medication category from its name and frequency"""
    lowered = (name or "").lower()
    freq = (frequency or "").lower()

    if any(keyword in freq for keyword in schedule_defaults.PRN_KEYWORDS):
        return MedicationType.PRN.value
    if any(keyword in lowered for keyword in schedule_defaults.CRITICAL_KEYWORDS):
        return MedicationType.CRITICAL.value
    if any(keyword in lowered for keyword in schedule_defaults.VITAMIN_KEYWORDS):
        return MedicationType.VITAMIN.value
    return MedicationType.STANDARD.value


def default_grace_minutes(medication_type: Optional[str]) -> int:
    return schedule_defaults.GRACE_PERIODS.get(
        medication_type or MedicationType.STANDARD.value,
        schedule_defaults.GRACE_PERIODS[MedicationType.STANDARD.value],
    )


def default_times_for(frequency: str) -> List[str]:
    slots = schedule_defaults.FREQUENCY_SLOTS.get(frequency, ["morning"])
    return [schedule_defaults.TIME_SLOTS[slot] for slot in slots]


class OccurrencePlanner:
    """Computes dose occurrences inside a UTC window"""

    def plan(
        self,
        frequency: str,
        scheduled_times: Optional[List[str]],
        zone: ZoneInfo,
        window_start: datetime,
        window_end: datetime,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[PlannedOccurrence]:
        """
        Plan occurrences with scheduled_for in [window_start, window_end).

        Args:
            frequency: MedicationFrequency value
            scheduled_times: Local HH:MM wall times, falls back to frequency slots
            zone: Patient timezone
            window_start: Naive UTC start
            window_end: Naive UTC end
            start_date: First local date the medication is taken
            end_date: Last local date the medication is taken
        """
        if frequency == MedicationFrequency.AS_NEEDED.value:
            return []

        times = sorted(set(scheduled_times or default_times_for(frequency)))
        wall_times = [(t, parse_wall_time(t)) for t in times]

        first_day = local_date_of(window_start, zone)
        last_day = local_date_of(window_end, zone)

        occurrences: List[PlannedOccurrence] = []
        day = first_day
        while day <= last_day:
            if self._is_dosing_day(frequency, day, start_date or first_day, end_date):
                for label, wall in wall_times:
                    scheduled_for = local_to_utc(day, wall, zone)
                    if window_start <= scheduled_for < window_end:
                        occurrences.append(PlannedOccurrence(
                            local_date=day,
                            wall_time=label,
                            scheduled_for=scheduled_for,
                        ))
            day += timedelta(days=1)

        occurrences.sort(key=lambda o: o.scheduled_for)
        return occurrences

    def _is_dosing_day(
        self,
        frequency: str,
        day: date,
        start_date: date,
        end_date: Optional[date],
    ) -> bool:
        if day < start_date:
            return False
        if end_date and day > end_date:
            return False

        if frequency == MedicationFrequency.WEEKLY.value:
            return day.weekday() == start_date.weekday()
        if frequency == MedicationFrequency.MONTHLY.value:
            return day.day == start_date.day
        return True


occurrence_planner = OccurrencePlanner()
