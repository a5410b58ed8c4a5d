import logging
import uuid
from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_promotions.core.observability import log_event
from crm_promotions.models.communication import (
    CommunicationPreferenceViolation,
    CustomerCommunicationPreference,
)

logger = logging.getLogger("crm_promotions.preferences")

CommunicationChannel = Literal["email", "sms", "phone", "portal"]
MessageType = Literal["marketing", "appointment", "service", "promotional", "billing", "survey"]

_CHANNEL_FLAGS: dict[str, tuple[str, str]] = {
    "email": ("email_enabled", "Customer has disabled email communications"),
    "sms": ("sms_enabled", "Customer has disabled SMS communications"),
    "phone": ("phone_calls_enabled", "Customer has disabled phone calls"),
    "portal": ("portal_notifications_enabled", "Customer has disabled portal notifications"),
}

_MESSAGE_TYPE_FLAGS: dict[str, tuple[str, str]] = {
    "marketing": ("marketing_emails", "Customer has opted out of marketing messages"),
    "promotional": ("promotional_messages", "Customer has opted out of promotional messages"),
    "survey": ("survey_requests", "Customer has opted out of survey requests"),
}

_VIOLATION_TYPES: list[tuple[str, str]] = [
    ("opted out of all", "do_not_contact"),
    ("disabled email", "email_disabled"),
    ("disabled SMS", "sms_disabled"),
    ("disabled phone", "phone_disabled"),
    ("disabled portal", "portal_disabled"),
    ("marketing", "marketing_opt_out"),
    ("promotional", "promotional_opt_out"),
    ("survey", "survey_opt_out"),
]


@dataclass(frozen=True)
class CommunicationCheckResult:
    allowed: bool
    reason: str


def violation_type_for(reason: str) -> str:
    for needle, violation_type in _VIOLATION_TYPES:
        if needle in reason:
            return violation_type
    return "unknown"


class PreferenceChecker:
    """Answers whether a customer may be contacted on a channel.

    Preference rows are read, never written. Denials are appended to the
    violation log. Any database failure while reading preferences denies the
    send.
    """

    def __init__(self, db: Session):
        self.db = db

    def check_communication_allowed(
        self,
        customer_id: str,
        channel: CommunicationChannel,
        message_type: MessageType | None = None,
    ) -> CommunicationCheckResult:
        try:
            prefs = self.db.execute(
                select(CustomerCommunicationPreference).where(
                    CustomerCommunicationPreference.customer_id == customer_id
                )
            ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            log_event(
                logger,
                logging.ERROR,
                "preference_check_failed",
                customer_id=customer_id,
                channel=channel,
                error=str(exc),
            )
            return CommunicationCheckResult(allowed=False, reason="Unable to verify communication preferences")

        result = _evaluate_preferences(prefs, channel=channel, message_type=message_type)
        if not result.allowed:
            self.log_violation(
                customer_id=customer_id,
                violation_type=violation_type_for(result.reason),
                attempted_channel=channel,
                attempted_message_type=message_type,
            )
        return result

    def can_send_email(self, customer_id: str, message_type: MessageType | None = None) -> CommunicationCheckResult:
        return self.check_communication_allowed(customer_id, "email", message_type)

    def can_send_sms(self, customer_id: str, message_type: MessageType | None = None) -> CommunicationCheckResult:
        return self.check_communication_allowed(customer_id, "sms", message_type)

    def log_violation(
        self,
        *,
        customer_id: str,
        violation_type: str,
        attempted_channel: str,
        attempted_message_type: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> CommunicationPreferenceViolation:
        violation = CommunicationPreferenceViolation(
            id=str(uuid.uuid4()),
            customer_id=customer_id,
            violation_type=violation_type,
            attempted_channel=attempted_channel,
            attempted_message_type=attempted_message_type,
            blocked=True,
            details_json=details,
        )
        self.db.add(violation)
        return violation


def _evaluate_preferences(
    prefs: CustomerCommunicationPreference | None,
    *,
    channel: str,
    message_type: str | None,
) -> CommunicationCheckResult:
    # No stored preferences means the customer never opted out of anything.
    if prefs is None:
        return CommunicationCheckResult(allowed=True, reason="Communication allowed")

    if prefs.do_not_contact:
        return CommunicationCheckResult(allowed=False, reason="Customer has opted out of all communications")

    channel_flag = _CHANNEL_FLAGS.get(channel)
    if channel_flag and not getattr(prefs, channel_flag[0]):
        return CommunicationCheckResult(allowed=False, reason=channel_flag[1])

    type_flag = _MESSAGE_TYPE_FLAGS.get(message_type or "")
    if type_flag and not getattr(prefs, type_flag[0]):
        return CommunicationCheckResult(allowed=False, reason=type_flag[1])

    return CommunicationCheckResult(allowed=True, reason="Communication allowed")
