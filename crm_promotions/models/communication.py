from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from crm_promotions.db.base import Base


class CustomerCommunicationPreference(Base):
    __tablename__ = "customer_communication_preferences"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(36), ForeignKey("customers.id"), nullable=False, unique=True)
    email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    sms_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    portal_notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    phone_calls_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    marketing_emails: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    promotional_messages: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    survey_requests: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    do_not_contact: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    opted_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    opt_out_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class CommunicationPreferenceViolation(Base):
    __tablename__ = "communication_preference_violations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    violation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    attempted_channel: Mapped[str] = mapped_column(String(20), nullable=False)
    attempted_message_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    details_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_preference_violations_customer_created_at", "customer_id", "created_at"),
    )
