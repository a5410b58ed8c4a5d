import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from crm_promotions.core.config import settings
from crm_promotions.core.observability import log_event

logger = logging.getLogger("crm_promotions.sms")

E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")


@dataclass(frozen=True)
class SmsSendRequest:
    to: str
    message: str
    customer_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SmsSendResult:
    success: bool
    provider: str
    message_id: str | None = None
    error: str | None = None


class SmsProvider(Protocol):
    name: str

    def send(self, request: SmsSendRequest) -> SmsSendResult:
        ...


def normalize_phone_number(value: str) -> str:
    """Strip formatting characters, keeping a leading ``+``."""
    raw = (value or "").strip()
    digits = re.sub(r"[^\d]", "", raw)
    if raw.startswith("+"):
        return f"+{digits}"
    # Ten bare digits are treated as a North American number.
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}" if digits else ""


class StubSmsProvider:
    name = "stub"

    def send(self, request: SmsSendRequest) -> SmsSendResult:
        return SmsSendResult(
            success=True,
            provider=self.name,
            message_id=f"sms-{uuid.uuid4().hex[:14]}",
        )


class TwilioSmsProvider:
    name = "twilio"

    def _configured(self) -> bool:
        return bool(
            settings.twilio_account_sid
            and settings.twilio_auth_token
            and (settings.twilio_messaging_service_sid or settings.twilio_from_number)
        )

    def send(self, request: SmsSendRequest) -> SmsSendResult:
        if not self._configured():
            return SmsSendResult(success=False, provider=self.name, error="Twilio is not configured")

        to_number = normalize_phone_number(request.to)
        if not E164_RE.match(to_number):
            return SmsSendResult(
                success=False,
                provider=self.name,
                error=f"Invalid phone number format: {request.to}",
            )

        account_sid = settings.twilio_account_sid
        data = {"To": to_number, "Body": request.message}
        if settings.twilio_messaging_service_sid:
            data["MessagingServiceSid"] = settings.twilio_messaging_service_sid
        else:
            data["From"] = settings.twilio_from_number

        try:
            response = requests.post(
                f"{settings.twilio_api_base_url}/Accounts/{account_sid}/Messages.json",
                auth=(account_sid, settings.twilio_auth_token),
                data=data,
                timeout=settings.sms_timeout_seconds,
            )
        except requests.RequestException as exc:
            return SmsSendResult(success=False, provider=self.name, error=str(exc))

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code in (200, 201):
            return SmsSendResult(success=True, provider=self.name, message_id=payload.get("sid"))

        error_message = payload.get("message") or f"Twilio returned HTTP {response.status_code}"
        error_code = payload.get("code")
        return SmsSendResult(
            success=False,
            provider=self.name,
            error=f"[{error_code}] {error_message}" if error_code else error_message,
        )


_SMS_PROVIDERS: dict[str, SmsProvider] = {
    "stub": StubSmsProvider(),
    "twilio": TwilioSmsProvider(),
}


def get_sms_provider(name: str) -> SmsProvider:
    normalized = (name or "").strip().lower()
    provider = _SMS_PROVIDERS.get(normalized)
    if not provider:
        available = ", ".join(sorted(_SMS_PROVIDERS))
        raise ValueError(f"Unknown SMS provider '{name}'. Available: {available}")
    return provider


def send_sms(request: SmsSendRequest, provider_name: str | None = None) -> SmsSendResult:
    name = provider_name or settings.sms_provider_default
    try:
        provider = get_sms_provider(name)
    except ValueError as exc:
        return SmsSendResult(success=False, provider=name, error=str(exc))

    result = provider.send(request)
    if not result.success:
        log_event(
            logger,
            logging.WARNING,
            "sms_send_failed",
            provider=result.provider,
            customer_id=request.customer_id,
            error=result.error,
        )
    return result
