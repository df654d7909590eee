"""
Notification Channels Tool
Delivery channel abstraction (push, email, SMS) used by notification dispatch
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from config import settings
from tools.clock import utcnow


logger = logging.getLogger(__name__)


class DeliveryMethod(str, Enum):
    """Available delivery methods"""
    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"
    BROWSER = "browser"


class NotificationUrgency(str, Enum):
    """Notification urgency levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationType(str, Enum):
    """Types of medication notifications"""
    REMINDER = "reminder"
    MISSED_DOSE = "missed_dose"


@dataclass
class Recipient:
    """Resolved notification recipient"""
    user_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    preferred_methods: List[str] = field(default_factory=list)
    is_patient: bool = False
    is_family_member: bool = False
    is_emergency_contact: bool = False

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "preferred_methods": list(self.preferred_methods),
            "is_patient": self.is_patient,
            "is_family_member": self.is_family_member,
            "is_emergency_contact": self.is_emergency_contact,
        }


@dataclass
class ChannelResult:
    """Result of one send attempt on one channel"""
    delivered: bool
    method: str
    message_id: Optional[str] = None
    delivered_at: Optional[datetime] = None
    error: Optional[str] = None


class NotificationChannel(ABC):
    """A single outbound delivery channel"""

    method: DeliveryMethod

    @abstractmethod
    async def send(
        self,
        recipient: Recipient,
        title: str,
        message: str,
        urgency: NotificationUrgency,
        action_url: Optional[str] = None,
    ) -> ChannelResult:
        ...

    def _delivered(self) -> ChannelResult:
        return ChannelResult(
            delivered=True,
            method=self.method.value,
            message_id=f"{self.method.value}_{uuid.uuid4().hex[:12]}",
            delivered_at=utcnow(),
        )

    def _failed(self, error: str) -> ChannelResult:
        return ChannelResult(delivered=False, method=self.method.value, error=error)


class PushChannel(NotificationChannel):
    """Push notification channel"""

    method = DeliveryMethod.PUSH

    async def send(self, recipient, title, message, urgency, action_url=None) -> ChannelResult:
        # Transport (FCM/APNs) sits behind this boundary
        logger.info(f"[PUSH] To {recipient.user_id} ({urgency.value}): {title}")
        return self._delivered()


class BrowserChannel(PushChannel):
    """In-browser notification, delivered the same way as push"""

    method = DeliveryMethod.BROWSER


class EmailChannel(NotificationChannel):
    """Email channel"""

    method = DeliveryMethod.EMAIL

    async def send(self, recipient, title, message, urgency, action_url=None) -> ChannelResult:
        if not recipient.email:
            return self._failed("Recipient has no email address")

        logger.info(f"[EMAIL] To {recipient.email}: {title}")
        return self._delivered()


class SmsChannel(NotificationChannel):
    """SMS channel, requires Twilio credentials"""

    method = DeliveryMethod.SMS

    def __init__(self):
        self._enabled = bool(settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN)

    async def send(self, recipient, title, message, urgency, action_url=None) -> ChannelResult:
        if not self._enabled:
            return self._failed("SMS not configured")
        if not recipient.phone:
            return self._failed("Recipient has no phone number")

        logger.info(f"[SMS] To {recipient.phone}: {message[:50]}...")
        return self._delivered()


def default_channels() -> Dict[str, NotificationChannel]:
    """Channel registry keyed by delivery method value"""
    channels = [PushChannel(), BrowserChannel(), EmailChannel(), SmsChannel()]
    return {channel.method.value: channel for channel in channels}
