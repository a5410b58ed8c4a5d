from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from crm_promotions.db.base import Base


class PromotionTrigger(Base):
    __tablename__ = "promotion_triggers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    trigger_name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    trigger_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    trigger_conditions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    promotion_template: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    delivery_channels: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    auto_deliver: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    execution_frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="daily", server_default="daily")
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    total_executions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_deliveries: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_promotion_triggers_active_type", "active", "trigger_type"),
    )


class AutomatedPromotionDelivery(Base):
    __tablename__ = "automated_promotion_deliveries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    promotion_trigger_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("promotion_triggers.id"),
        nullable=False,
        index=True,
    )
    customer_id: Mapped[str] = mapped_column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    promotion_id: Mapped[str] = mapped_column(String(36), ForeignKey("promotions.id"), nullable=False, index=True)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "promotion_trigger_id",
            "customer_id",
            "promotion_id",
            name="uq_automated_promotion_deliveries_trigger_customer_promotion",
        ),
        Index("ix_automated_promotion_deliveries_trigger_triggered_at", "promotion_trigger_id", "triggered_at"),
    )
