import smtplib

import pytest
import requests

from crm_promotions.core.config import settings
from crm_promotions.services import email_service, sms_provider
from crm_promotions.services.email_service import send_custom_email
from crm_promotions.services.sms_provider import (
    SmsSendRequest,
    get_sms_provider,
    normalize_phone_number,
    send_sms,
)


class _FakeResponse:
    def __init__(self, status_code: int, payload: dict):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload


@pytest.fixture()
def twilio_settings(monkeypatch):
    monkeypatch.setattr(settings, "twilio_account_sid", "AC123")
    monkeypatch.setattr(settings, "twilio_auth_token", "token")
    monkeypatch.setattr(settings, "twilio_from_number", "+15550001111")
    monkeypatch.setattr(settings, "twilio_messaging_service_sid", None)


def test_log_transport_reports_sent(monkeypatch):
    monkeypatch.setattr(settings, "email_transport", "log")

    result = send_custom_email("jordan@example.com", "Special Offer: Test", "<p>hi</p>")

    assert result.success is True
    assert result.detail == "logged"


def test_smtp_not_configured(monkeypatch):
    monkeypatch.setattr(settings, "email_transport", "smtp")
    monkeypatch.setattr(settings, "smtp_host", None)

    result = send_custom_email("jordan@example.com", "Subject", "<p>hi</p>")

    assert result.success is False
    assert result.status == "not_configured"


def test_smtp_failure_is_returned_not_raised(monkeypatch):
    monkeypatch.setattr(settings, "email_transport", "smtp")
    monkeypatch.setattr(settings, "smtp_host", "smtp.example.com")
    monkeypatch.setattr(settings, "smtp_sender_email", "offers@example.com")
    monkeypatch.setattr(settings, "smtp_use_ssl", False)

    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, b"service not available")

    monkeypatch.setattr(email_service.smtplib, "SMTP", refuse)

    result = send_custom_email("jordan@example.com", "Subject", "<p>hi</p>")

    assert result.status == "failed"
    assert "service not available" in result.detail


def test_stub_sms_provider():
    result = send_sms(SmsSendRequest(to="+15555550100", message="hello"), provider_name="stub")

    assert result.success is True
    assert result.provider == "stub"
    assert result.message_id.startswith("sms-")


def test_unknown_sms_provider():
    with pytest.raises(ValueError):
        get_sms_provider("carrier-pigeon")

    result = send_sms(SmsSendRequest(to="+15555550100", message="hello"), provider_name="carrier-pigeon")
    assert result.success is False
    assert "Unknown SMS provider" in result.error


def test_twilio_not_configured(monkeypatch):
    monkeypatch.setattr(settings, "twilio_account_sid", None)

    result = send_sms(SmsSendRequest(to="+15555550100", message="hello"), provider_name="twilio")

    assert result.success is False
    assert result.error == "Twilio is not configured"


def test_twilio_success(monkeypatch, twilio_settings):
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return _FakeResponse(201, {"sid": "SM42"})

    monkeypatch.setattr(sms_provider.requests, "post", fake_post)

    result = send_sms(SmsSendRequest(to="(555) 555-0100", message="hello"), provider_name="twilio")

    assert result.success is True
    assert result.message_id == "SM42"
    url, kwargs = calls[0]
    assert url == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
    assert kwargs["auth"] == ("AC123", "token")
    assert kwargs["data"] == {"To": "+15555550100", "Body": "hello", "From": "+15550001111"}


def test_twilio_api_error(monkeypatch, twilio_settings):
    monkeypatch.setattr(
        sms_provider.requests,
        "post",
        lambda url, **kwargs: _FakeResponse(400, {"code": 21211, "message": "Invalid 'To' Phone Number"}),
    )

    result = send_sms(SmsSendRequest(to="+15555550100", message="hello"), provider_name="twilio")

    assert result.success is False
    assert result.error == "[21211] Invalid 'To' Phone Number"


def test_twilio_network_error(monkeypatch, twilio_settings):
    def timeout(url, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(sms_provider.requests, "post", timeout)

    result = send_sms(SmsSendRequest(to="+15555550100", message="hello"), provider_name="twilio")

    assert result.success is False
    assert result.error == "read timed out"


def test_twilio_rejects_invalid_numbers(twilio_settings):
    result = send_sms(SmsSendRequest(to="call me", message="hello"), provider_name="twilio")

    assert result.success is False
    assert result.error.startswith("Invalid phone number format")


def test_normalize_phone_number():
    assert normalize_phone_number("+44 20 7946 0958") == "+442079460958"
    assert normalize_phone_number("555-555-0100") == "+15555550100"
    assert normalize_phone_number("") == ""
