import os
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("EMAIL_TRANSPORT", "log")
os.environ.setdefault("SMS_PROVIDER_DEFAULT", "stub")

import crm_promotions.models  # noqa: F401
from crm_promotions.core.config import settings
from crm_promotions.core.deps import get_db
from crm_promotions.db.base import Base
from crm_promotions.main import app
from crm_promotions.models.communication import CustomerCommunicationPreference
from crm_promotions.models.customer import Customer
from crm_promotions.models.promotion import Promotion
from crm_promotions.models.trigger import PromotionTrigger
from crm_promotions.services import promotion_delivery
from crm_promotions.services.email_service import EmailDeliveryResult
from crm_promotions.services.sms_provider import SmsSendRequest, SmsSendResult

CRON_HEADERS = {"X-Cron-Secret": "test-cron-secret"}


@pytest.fixture()
def session_local():
    original_secret = settings.cron_secret
    settings.cron_secret = "test-cron-secret"

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    yield factory

    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    settings.cron_secret = original_secret


@pytest.fixture()
def db(session_local):
    session = session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def test_context(session_local):
    def override_get_db():
        session = session_local()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()


@dataclass
class TransportRecorder:
    emails: list[dict] = field(default_factory=list)
    sms: list[SmsSendRequest] = field(default_factory=list)
    email_result: EmailDeliveryResult = field(default_factory=lambda: EmailDeliveryResult(status="sent"))
    sms_result: SmsSendResult = field(
        default_factory=lambda: SmsSendResult(success=True, provider="fake", message_id="sms-fake")
    )


@pytest.fixture()
def transports(monkeypatch):
    recorder = TransportRecorder()

    def fake_send_custom_email(to_address: str, subject: str, html: str) -> EmailDeliveryResult:
        recorder.emails.append({"to": to_address, "subject": subject, "html": html})
        return recorder.email_result

    def fake_send_sms(request: SmsSendRequest, provider_name: str | None = None) -> SmsSendResult:
        recorder.sms.append(request)
        return recorder.sms_result

    monkeypatch.setattr(promotion_delivery, "send_custom_email", fake_send_custom_email)
    monkeypatch.setattr(promotion_delivery, "send_sms", fake_send_sms)
    return recorder


def _today() -> date:
    return datetime.now(timezone.utc).date()


@pytest.fixture()
def make_customer():
    def _make(db, **overrides) -> Customer:
        values = {
            "id": str(uuid.uuid4()),
            "full_name": "Jordan Rivera",
            "email": f"customer-{uuid.uuid4().hex[:8]}@example.com",
            "phone": "+15555550100",
        }
        values.update(overrides)
        customer = Customer(**values)
        db.add(customer)
        db.commit()
        return customer

    return _make


@pytest.fixture()
def make_promotion():
    def _make(db, **overrides) -> Promotion:
        today = _today()
        values = {
            "id": str(uuid.uuid4()),
            "title": "Spring Carpet Refresh",
            "description": "Fresh carpets for the new season.",
            "promotion_type": "percentage_off",
            "discount_percentage": Decimal("15"),
            "start_date": today,
            "end_date": today + timedelta(days=30),
            "status": "active",
            "promo_code": f"SPRING{uuid.uuid4().hex[:6].upper()}",
        }
        values.update(overrides)
        promotion = Promotion(**values)
        db.add(promotion)
        db.commit()
        return promotion

    return _make


@pytest.fixture()
def make_preferences():
    def _make(db, customer_id: str, **flags) -> CustomerCommunicationPreference:
        prefs = CustomerCommunicationPreference(id=str(uuid.uuid4()), customer_id=customer_id, **flags)
        db.add(prefs)
        db.commit()
        return prefs

    return _make


@pytest.fixture()
def make_trigger():
    def _make(db, **overrides) -> PromotionTrigger:
        values = {
            "id": str(uuid.uuid4()),
            "trigger_name": f"trigger_{uuid.uuid4().hex[:8]}",
            "trigger_type": "inactive_customer",
            "trigger_conditions": {"days_inactive": 180},
            "promotion_template": {
                "title": "We Miss You! Come Back Special",
                "description": "It's been a while since your last service.",
                "promotion_type": "percentage_off",
                "discount_percentage": 15,
                "target_audience": "inactive",
                "valid_days": 30,
            },
            "delivery_channels": ["email"],
            "active": True,
        }
        values.update(overrides)
        trigger = PromotionTrigger(**values)
        db.add(trigger)
        db.commit()
        return trigger

    return _make
