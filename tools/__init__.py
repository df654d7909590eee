"""
Tools Package
Time, timezone, occurrence planning and notification channel utilities
"""

from .clock import (
    SystemClock,
    FixedClock,
    system_clock,
    utcnow,
    to_utc_naive
)

from .timezone_utils import (
    is_valid_timezone,
    resolve_timezone,
    to_local,
    local_date_of,
    local_to_utc,
    local_midnight_utc,
    local_day_bounds_utc
)

from .occurrence_planner import (
    OccurrencePlanner,
    PlannedOccurrence,
    occurrence_planner,
    parse_wall_time,
    determine_medication_type,
    default_grace_minutes,
    default_times_for
)

from .notification_channels import (
    NotificationChannel,
    PushChannel,
    BrowserChannel,
    EmailChannel,
    SmsChannel,
    ChannelResult,
    DeliveryMethod,
    NotificationType,
    NotificationUrgency,
    Recipient,
    default_channels
)

__all__ = [
    # Clock
    "SystemClock",
    "FixedClock",
    "system_clock",
    "utcnow",
    "to_utc_naive",

    # Timezones
    "is_valid_timezone",
    "resolve_timezone",
    "to_local",
    "local_date_of",
    "local_to_utc",
    "local_midnight_utc",
    "local_day_bounds_utc",

    # Occurrence Planner
    "OccurrencePlanner",
    "PlannedOccurrence",
    "occurrence_planner",
    "parse_wall_time",
    "determine_medication_type",
    "default_grace_minutes",
    "default_times_for",

    # Notification Channels
    "NotificationChannel",
    "PushChannel",
    "BrowserChannel",
    "EmailChannel",
    "SmsChannel",
    "ChannelResult",
    "DeliveryMethod",
    "NotificationType",
    "NotificationUrgency",
    "Recipient",
    "default_channels"
]
