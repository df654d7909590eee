"""
Timezone Utilities
Resolution of patient IANA zones and local-day boundaries in UTC
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings


logger = logging.getLogger(__name__)


def is_valid_timezone(name: Optional[str]) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def resolve_timezone(name: Optional[str], default: Optional[str] = None) -> Tuple[ZoneInfo, bool]:
    """
    Resolve an IANA timezone name.

    Returns:
        (zone, fallback_used) where fallback_used is True when the name was
        missing or invalid and the default zone was used instead
    """
    default = default or settings.DEFAULT_TIMEZONE
    if is_valid_timezone(name):
        return ZoneInfo(name), False

    if name:
        logger.warning(f"Invalid timezone '{name}', falling back to {default}")
    return ZoneInfo(default), True


def to_local(utc_naive: datetime, zone: ZoneInfo) -> datetime:
    """Convert a naive UTC datetime to an aware local datetime"""
    return utc_naive.replace(tzinfo=timezone.utc).astimezone(zone)


def local_date_of(utc_naive: datetime, zone: ZoneInfo) -> date:
    return to_local(utc_naive, zone).date()


def local_to_utc(local_date: date, wall_time: time, zone: ZoneInfo) -> datetime:
    """Convert a local wall-clock time on a date to a naive UTC datetime"""
    local = datetime.combine(local_date, wall_time).replace(tzinfo=zone)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def local_midnight_utc(local_date: date, zone: ZoneInfo) -> datetime:
    """Start of the given local calendar day, as naive UTC"""
    return local_to_utc(local_date, time(0, 0), zone)


def local_day_bounds_utc(local_date: date, zone: ZoneInfo) -> Tuple[datetime, datetime]:
    """[start, end) of a local calendar day in naive UTC"""
    return (
        local_midnight_utc(local_date, zone),
        local_midnight_utc(local_date + timedelta(days=1), zone),
    )
