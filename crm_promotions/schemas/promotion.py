from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DeliveryChannel = Literal["portal", "email", "sms"]
PromotionType = Literal["percentage_off", "dollar_off", "free_addon", "bogo", "seasonal", "referral", "loyalty"]
TargetAudience = Literal["all_customers", "zone_specific", "service_specific", "inactive", "vip", "new_customers"]


class PromotionTemplate(BaseModel):
    """Fields a trigger uses to instantiate a promotion."""

    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    promotion_type: PromotionType
    discount_value: Decimal | None = Field(default=None, ge=0)
    discount_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    free_addon_service: str | None = Field(default=None, max_length=100)
    target_audience: TargetAudience = "all_customers"
    valid_days: int = Field(default=30, ge=1, le=3650)
    terms_and_conditions: str | None = None

    @field_validator("valid_days", mode="before")
    @classmethod
    def default_valid_days(cls, value):
        # A zero or missing window means the standard 30 days.
        return value or 30


class DeliverPromotionIn(BaseModel):
    customer_id: str = Field(min_length=1, max_length=36)
    channels: list[DeliveryChannel] = Field(min_length=1)


class QueuePromotionIn(BaseModel):
    customer_ids: list[str] = Field(min_length=1, max_length=5000)
    channels: list[str] = Field(min_length=1)


class DeliveryResultOut(BaseModel):
    success: bool
    channel: str
    delivery_id: str | None = None
    claim_code: str | None = None
    error: str | None = None


class DeliverPromotionOut(BaseModel):
    promotion_id: str
    customer_id: str
    results: list[DeliveryResultOut]


class QueuePromotionOut(BaseModel):
    success: bool
    queued_count: int
    skipped_count: int
    errors: list[str]


class QueueProcessingOut(BaseModel):
    processed: int
    delivered: int
    retried: int
    failed: int


class MethodStatisticsOut(BaseModel):
    total: int
    delivered: int
    failed: int


class DeliveryStatisticsOut(BaseModel):
    promotion_id: str
    total_queued: int
    pending: int
    processing: int
    delivered: int
    failed: int
    by_method: dict[str, MethodStatisticsOut]


class TriggerResultOut(BaseModel):
    success: bool
    trigger_name: str
    customers_found: int
    promotions_created: int
    deliveries_queued: int
    errors: list[str]


class TriggerRunOut(BaseModel):
    total_processed: int
    results: list[TriggerResultOut]


class ClaimValidationOut(BaseModel):
    valid: bool
    code: str | None = None
    reason: str | None = None
    delivery_id: str | None = None
    promotion_id: str | None = None
    customer_id: str | None = None
