"""
Notification Dispatch Service
Resolves the patient and permitted family recipients and sends medication
notifications through the registered delivery channels
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from tools.clock import utcnow
from tools.notification_channels import (
    DeliveryMethod,
    NotificationChannel,
    NotificationType,
    NotificationUrgency,
    Recipient,
    default_channels,
)


logger = logging.getLogger(__name__)

PATIENT_DEFAULT_METHODS = [DeliveryMethod.BROWSER.value, DeliveryMethod.PUSH.value, DeliveryMethod.EMAIL.value]
FAMILY_DEFAULT_METHODS = [DeliveryMethod.EMAIL.value, DeliveryMethod.BROWSER.value]


@dataclass
class NotificationRequest:
    """Medication notification to dispatch"""
    patient_id: str
    command_id: str
    medication_name: str
    notification_type: NotificationType
    urgency: NotificationUrgency
    title: str
    message: str
    recipients: List[Recipient] = field(default_factory=list)
    action_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RecipientResult:
    """Delivery outcome for one recipient"""
    user_id: str
    sent: int = 0
    failed: int = 0
    methods: Dict[str, str] = field(default_factory=dict)  # method -> "delivered" | error

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "sent": self.sent, "failed": self.failed, "methods": dict(self.methods)}


@dataclass
class DeliveryResult:
    """Aggregate dispatch outcome"""
    total_sent: int = 0
    total_failed: int = 0
    per_recipient: List[RecipientResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.total_sent > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total_sent": self.total_sent,
            "total_failed": self.total_failed,
            "per_recipient": [r.to_dict() for r in self.per_recipient],
        }


class NotificationDispatchService:
    """
    One send attempt per recipient per preferred method. No retries here:
    the reminder dedup marker is only written after a successful dispatch,
    so a failed dispatch is retried by the next tick.
    """

    def __init__(self, channels: Optional[Dict[str, NotificationChannel]] = None):
        self.channels = channels if channels is not None else default_channels()

    def resolve_recipients(self, db: Session, patient_id: str) -> List[Recipient]:
        """Patient plus family members with an active grant allowing notifications"""
        recipients: List[Recipient] = []

        patient = db.get(models.User, patient_id)
        if patient and patient.is_active is not False:
            recipients.append(Recipient(
                user_id=patient.id,
                name=patient.name,
                email=patient.email,
                phone=patient.phone,
                preferred_methods=list(patient.preferred_methods or PATIENT_DEFAULT_METHODS),
                is_patient=True,
            ))

        grants = db.query(models.FamilyAccessGrant).filter(
            models.FamilyAccessGrant.patient_id == patient_id,
            models.FamilyAccessGrant.status == models.AccessStatus.ACTIVE,
        ).all()

        for grant in grants:
            if not grant.can_receive_notifications:
                continue
            member = db.get(models.User, grant.family_member_id)
            recipients.append(Recipient(
                user_id=grant.family_member_id,
                name=(member.name if member else None) or grant.family_member_name or grant.family_member_id,
                email=(member.email if member else None) or grant.family_member_email,
                phone=member.phone if member else None,
                preferred_methods=list(
                    (member.preferred_methods if member else None) or FAMILY_DEFAULT_METHODS
                ),
                is_family_member=True,
                is_emergency_contact=bool(grant.is_emergency_contact),
            ))

        return recipients

    async def send_notification(
        self,
        request: NotificationRequest,
        db: Optional[Session] = None
    ) -> DeliveryResult:
        """Send to every recipient through each of their preferred methods"""
        result = DeliveryResult()

        for recipient in request.recipients:
            outcome = RecipientResult(user_id=recipient.user_id)
            for method in recipient.preferred_methods:
                channel = self.channels.get(method)
                if channel is None:
                    continue
                try:
                    sent = await channel.send(
                        recipient,
                        request.title,
                        request.message,
                        request.urgency,
                        request.action_url,
                    )
                    if sent.delivered:
                        outcome.sent += 1
                        outcome.methods[method] = "delivered"
                    else:
                        outcome.failed += 1
                        outcome.methods[method] = sent.error or "failed"
                except Exception as e:
                    logger.error(f"Error sending {method} notification to {recipient.user_id}: {e}")
                    outcome.failed += 1
                    outcome.methods[method] = str(e)

            result.total_sent += outcome.sent
            result.total_failed += outcome.failed
            result.per_recipient.append(outcome)

        logger.info(
            f"{request.notification_type.value} for {request.medication_name} "
            f"(patient {request.patient_id}): sent={result.total_sent} failed={result.total_failed}"
        )

        if db is not None:
            self._log_delivery(db, request, result)
        return result

    def _log_delivery(self, db: Session, request: NotificationRequest, result: DeliveryResult) -> None:
        try:
            db.add(models.NotificationDeliveryLog(
                patient_id=request.patient_id,
                command_id=request.command_id,
                notification_type=request.notification_type.value,
                urgency=request.urgency.value,
                total_recipients=len(request.recipients),
                total_sent=result.total_sent,
                total_failed=result.total_failed,
                delivery_details=[r.to_dict() for r in result.per_recipient],
                created_at=utcnow(),
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Failed to log notification delivery: {e}")


notification_dispatch = NotificationDispatchService()
