import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_promotions.core.config import settings
from crm_promotions.core.observability import log_event
from crm_promotions.models.promotion import Promotion
from crm_promotions.models.trigger import AutomatedPromotionDelivery, PromotionTrigger
from crm_promotions.schemas.promotion import PromotionTemplate
from crm_promotions.services.claim_codes import generate_promo_code
from crm_promotions.services.cohorts import (
    CohortCustomer,
    get_anniversary_customers,
    get_birthday_customers,
    get_high_value_customers,
    get_inactive_customers,
)
from crm_promotions.services.promotion_delivery import (
    insert_ignoring_conflict,
    queue_promotion_deliveries,
)

logger = logging.getLogger("crm_promotions.triggers")

DEFAULT_TRIGGERS: list[dict[str, Any]] = [
    {
        "trigger_name": "inactive_customer_180d",
        "trigger_type": "inactive_customer",
        "description": "Re-engage customers who haven't booked in 180 days",
        "trigger_conditions": {"days_inactive": 180},
        "promotion_template": {
            "title": "We Miss You! Come Back Special",
            "description": "It's been a while since your last service. We'd love to see you again!",
            "promotion_type": "percentage_off",
            "discount_percentage": 15,
            "target_audience": "inactive",
            "valid_days": 30,
        },
        "delivery_channels": ["email"],
    },
    {
        "trigger_name": "birthday_special",
        "trigger_type": "birthday",
        "description": "Send birthday promotion 1 week before customer birthday",
        "trigger_conditions": {"days_before": 7},
        "promotion_template": {
            "title": "Happy Birthday! Special Gift Inside",
            "description": "Celebrate your birthday with a special discount on your next service!",
            "promotion_type": "dollar_off",
            "discount_value": 20,
            "target_audience": "all_customers",
            "valid_days": 30,
        },
        "delivery_channels": ["email", "sms"],
    },
    {
        "trigger_name": "anniversary_reward",
        "trigger_type": "anniversary",
        "description": "Thank customers on their service anniversary",
        "trigger_conditions": {"years": 1},
        "promotion_template": {
            "title": "Thank You for {years} Year(s) with Us!",
            "description": "We appreciate your loyalty! Enjoy this special anniversary discount.",
            "promotion_type": "percentage_off",
            "discount_percentage": 10,
            "target_audience": "all_customers",
            "valid_days": 60,
        },
        "delivery_channels": ["email"],
    },
    {
        "trigger_name": "vip_exclusive",
        "trigger_type": "high_value",
        "description": "Monthly VIP offers for high-value customers",
        "trigger_conditions": {"min_lifetime_value": 1000},
        "promotion_template": {
            "title": "VIP Exclusive: Thank You for Your Business",
            "description": "As a valued VIP customer, enjoy this exclusive offer!",
            "promotion_type": "percentage_off",
            "discount_percentage": 15,
            "target_audience": "vip",
            "valid_days": 30,
        },
        "delivery_channels": ["email"],
    },
]


@dataclass(frozen=True)
class TriggerDefinition:
    id: str
    trigger_name: str
    trigger_type: str
    trigger_conditions: dict[str, Any] = field(default_factory=dict)
    promotion_template: dict[str, Any] = field(default_factory=dict)
    delivery_channels: list[str] | None = None

    @classmethod
    def from_model(cls, trigger: PromotionTrigger) -> "TriggerDefinition":
        return cls(
            id=trigger.id,
            trigger_name=trigger.trigger_name,
            trigger_type=trigger.trigger_type,
            trigger_conditions=dict(trigger.trigger_conditions or {}),
            promotion_template=dict(trigger.promotion_template or {}),
            delivery_channels=list(trigger.delivery_channels) if trigger.delivery_channels else None,
        )


@dataclass
class TriggerResult:
    success: bool
    trigger_name: str
    customers_found: int = 0
    promotions_created: int = 0
    deliveries_queued: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TriggerRunSummary:
    total_processed: int
    results: list[TriggerResult]


def _short_error(value: Exception | str) -> str:
    text = str(value).strip() or "Trigger execution failed"
    return text[:255]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fail(db: Session, result: TriggerResult, message: str) -> TriggerResult:
    """Abort the trigger's unit of work; nothing it wrote survives."""
    db.rollback()
    result.success = False
    result.promotions_created = 0
    result.deliveries_queued = 0
    result.errors.append(_short_error(message))
    return result


def _ensure_unique_promo_code(db: Session, *, code: str) -> str:
    candidate = code
    index = 2
    while db.execute(select(Promotion.id).where(Promotion.promo_code == candidate)).scalar_one_or_none():
        candidate = f"{code}_{index}"
        index += 1
    return candidate


def create_promotion_from_template(
    db: Session,
    *,
    template: dict[str, Any],
    seed: str,
    delivery_channels: list[str],
    title_values: dict[str, Any] | None = None,
) -> Promotion:
    parsed = PromotionTemplate.model_validate(template)
    title = parsed.title
    for key, value in (title_values or {}).items():
        title = title.replace(f"{{{key}}}", str(value))

    start_date = _utcnow().date()
    promotion = Promotion(
        id=str(uuid.uuid4()),
        title=title,
        description=parsed.description,
        promotion_type=parsed.promotion_type,
        discount_value=parsed.discount_value,
        discount_percentage=parsed.discount_percentage,
        free_addon_service=parsed.free_addon_service,
        target_audience=parsed.target_audience,
        start_date=start_date,
        end_date=start_date + timedelta(days=parsed.valid_days),
        promo_code=_ensure_unique_promo_code(db, code=generate_promo_code(seed)),
        status="active",
        auto_deliver=True,
        delivery_channels=list(delivery_channels),
        terms_and_conditions=parsed.terms_and_conditions,
        current_redemptions=0,
    )
    db.add(promotion)
    db.flush()
    return promotion


def log_automated_deliveries(
    db: Session,
    *,
    trigger_id: str,
    customer_ids: list[str],
    promotion_id: str,
) -> int:
    logged = 0
    triggered_at = _utcnow()
    for customer_id in dict.fromkeys(customer_ids):
        inserted = insert_ignoring_conflict(
            db,
            AutomatedPromotionDelivery,
            values={
                "id": str(uuid.uuid4()),
                "promotion_trigger_id": trigger_id,
                "customer_id": customer_id,
                "promotion_id": promotion_id,
                "triggered_at": triggered_at,
                "created_at": triggered_at,
            },
            conflict_columns=("promotion_trigger_id", "customer_id", "promotion_id"),
        )
        if inserted:
            logged += 1
    return logged


def _run_cohort_trigger(
    db: Session,
    trigger: TriggerDefinition,
    *,
    label: str,
    fetch: Callable[[], list[CohortCustomer]],
    default_channels: list[str],
    exclude_recent_days: int | None = None,
    title_values: dict[str, Any] | None = None,
) -> TriggerResult:
    result = TriggerResult(success=False, trigger_name=trigger.trigger_name)

    try:
        customers = fetch()
    except SQLAlchemyError as exc:
        return _fail(db, result, f"Failed to fetch {label} customers: {exc}")

    if not customers:
        result.success = True
        return result

    result.customers_found = len(customers)
    customer_ids = [customer.customer_id for customer in customers]

    if exclude_recent_days is not None:
        since = _utcnow() - timedelta(days=exclude_recent_days)
        try:
            recent = set(
                db.execute(
                    select(AutomatedPromotionDelivery.customer_id).where(
                        AutomatedPromotionDelivery.promotion_trigger_id == trigger.id,
                        AutomatedPromotionDelivery.triggered_at >= since,
                        AutomatedPromotionDelivery.customer_id.in_(customer_ids),
                    )
                ).scalars()
            )
        except SQLAlchemyError as exc:
            return _fail(db, result, f"Failed to fetch recent deliveries: {exc}")
        customer_ids = [customer_id for customer_id in customer_ids if customer_id not in recent]
        if not customer_ids:
            result.success = True
            return result

    channels = trigger.delivery_channels or default_channels
    seed = f"{trigger.trigger_name}_{int(time.time() * 1000)}"
    try:
        promotion = create_promotion_from_template(
            db,
            template=trigger.promotion_template,
            seed=seed,
            delivery_channels=channels,
            title_values=title_values,
        )
    except (ValidationError, SQLAlchemyError) as exc:
        return _fail(db, result, f"Failed to create promotion: {exc}")
    result.promotions_created = 1

    queued = queue_promotion_deliveries(
        db,
        promotion_id=promotion.id,
        customer_ids=customer_ids,
        channels=channels,
    )
    if not queued.success:
        return _fail(db, result, "; ".join(queued.errors) or "Failed to queue deliveries")
    result.deliveries_queued = queued.queued_count

    try:
        log_automated_deliveries(
            db,
            trigger_id=trigger.id,
            customer_ids=customer_ids,
            promotion_id=promotion.id,
        )
        db.flush()
    except SQLAlchemyError as exc:
        return _fail(db, result, f"Failed to log automated deliveries: {exc}")

    result.success = True
    return result


class InvalidTriggerConditions(ValueError):
    pass


def _int_condition(trigger: TriggerDefinition, key: str, *, default: int, minimum: int) -> int:
    value = trigger.trigger_conditions.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise InvalidTriggerConditions(f"{key} must be a whole number, got {value!r}")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise InvalidTriggerConditions(f"{key} must be a whole number, got {value!r}") from exc
    if not number.is_finite() or number != number.to_integral_value():
        raise InvalidTriggerConditions(f"{key} must be a whole number, got {value!r}")
    if number < minimum:
        raise InvalidTriggerConditions(f"{key} must be at least {minimum}, got {value!r}")
    return int(number)


def _decimal_condition(trigger: TriggerDefinition, key: str, *, default: Decimal) -> Decimal:
    value = trigger.trigger_conditions.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise InvalidTriggerConditions(f"{key} must be a number, got {value!r}")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise InvalidTriggerConditions(f"{key} must be a number, got {value!r}") from exc
    if not number.is_finite() or number < 0:
        raise InvalidTriggerConditions(f"{key} must be a non-negative number, got {value!r}")
    return number


def _invalid_conditions(db: Session, trigger: TriggerDefinition, exc: InvalidTriggerConditions) -> TriggerResult:
    result = TriggerResult(success=False, trigger_name=trigger.trigger_name)
    return _fail(db, result, f"Invalid trigger conditions: {exc}")


def process_inactive_customer_trigger(db: Session, trigger: TriggerDefinition) -> TriggerResult:
    try:
        days_inactive = _int_condition(trigger, "days_inactive", default=180, minimum=1)
    except InvalidTriggerConditions as exc:
        return _invalid_conditions(db, trigger, exc)
    return _run_cohort_trigger(
        db,
        trigger,
        label="inactive",
        fetch=lambda: get_inactive_customers(db, days_inactive=days_inactive),
        default_channels=["email"],
    )


def process_birthday_trigger(db: Session, trigger: TriggerDefinition) -> TriggerResult:
    try:
        days_before = _int_condition(trigger, "days_before", default=7, minimum=0)
    except InvalidTriggerConditions as exc:
        return _invalid_conditions(db, trigger, exc)
    return _run_cohort_trigger(
        db,
        trigger,
        label="birthday",
        fetch=lambda: get_birthday_customers(db, days_ahead=days_before),
        default_channels=["email", "sms"],
    )


def process_anniversary_trigger(db: Session, trigger: TriggerDefinition) -> TriggerResult:
    try:
        years = _int_condition(trigger, "years", default=1, minimum=1)
        days_before = _int_condition(trigger, "days_before", default=7, minimum=0)
    except InvalidTriggerConditions as exc:
        return _invalid_conditions(db, trigger, exc)
    return _run_cohort_trigger(
        db,
        trigger,
        label="anniversary",
        fetch=lambda: get_anniversary_customers(db, days_ahead=days_before, min_years=years),
        default_channels=["email"],
        title_values={"years": years},
    )


def process_high_value_trigger(db: Session, trigger: TriggerDefinition) -> TriggerResult:
    try:
        min_lifetime_value = _decimal_condition(trigger, "min_lifetime_value", default=Decimal("1000"))
    except InvalidTriggerConditions as exc:
        return _invalid_conditions(db, trigger, exc)
    return _run_cohort_trigger(
        db,
        trigger,
        label="high value",
        fetch=lambda: get_high_value_customers(db, min_lifetime_value=min_lifetime_value),
        default_channels=["email"],
        exclude_recent_days=settings.high_value_cooldown_days,
    )


def process_referral_trigger(db: Session, trigger: TriggerDefinition) -> TriggerResult:
    # Referral rewards are issued by the referral event flow, not on a schedule.
    return TriggerResult(success=True, trigger_name=trigger.trigger_name)


TRIGGER_EVALUATORS: dict[str, Callable[[Session, TriggerDefinition], TriggerResult]] = {
    "inactive_customer": process_inactive_customer_trigger,
    "birthday": process_birthday_trigger,
    "anniversary": process_anniversary_trigger,
    "high_value": process_high_value_trigger,
    "referral": process_referral_trigger,
}


def log_trigger_execution(
    db: Session,
    *,
    trigger_id: str,
    customers_found: int,
    deliveries_queued: int,
) -> None:
    now = _utcnow()
    db.execute(
        update(PromotionTrigger)
        .where(PromotionTrigger.id == trigger_id)
        .values(
            last_run_at=now,
            total_executions=PromotionTrigger.total_executions + 1,
            total_deliveries=PromotionTrigger.total_deliveries + deliveries_queued,
            updated_at=now,
        )
    )


def process_all_triggers(db: Session) -> TriggerRunSummary:
    """Evaluate every active trigger once, committing after each one.

    A failing trigger is reported in its result and never stops the run.
    """
    try:
        rows = db.execute(
            select(PromotionTrigger)
            .where(PromotionTrigger.active.is_(True))
            .order_by(PromotionTrigger.trigger_type.asc(), PromotionTrigger.trigger_name.asc())
        ).scalars().all()
        triggers = [TriggerDefinition.from_model(row) for row in rows]
    except SQLAlchemyError as exc:
        db.rollback()
        log_event(logger, logging.ERROR, "trigger_load_failed", error=str(exc))
        return TriggerRunSummary(total_processed=0, results=[])

    results: list[TriggerResult] = []
    for trigger in triggers:
        evaluator = TRIGGER_EVALUATORS.get(trigger.trigger_type)
        if evaluator is None:
            result = TriggerResult(
                success=False,
                trigger_name=trigger.trigger_name,
                errors=[f"Unknown trigger type: {trigger.trigger_type}"],
            )
        else:
            try:
                result = evaluator(db, trigger)
            except Exception as exc:  # noqa: BLE001
                db.rollback()
                result = TriggerResult(
                    success=False,
                    trigger_name=trigger.trigger_name,
                    errors=[_short_error(exc)],
                )

        try:
            log_trigger_execution(
                db,
                trigger_id=trigger.id,
                customers_found=result.customers_found,
                deliveries_queued=result.deliveries_queued,
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            result.success = False
            result.promotions_created = 0
            result.deliveries_queued = 0
            result.errors.append(_short_error(f"Failed to record trigger execution: {exc}"))

        log_event(
            logger,
            logging.INFO if result.success else logging.WARNING,
            "trigger_executed",
            trigger_name=result.trigger_name,
            trigger_type=trigger.trigger_type,
            success=result.success,
            customers_found=result.customers_found,
            promotions_created=result.promotions_created,
            deliveries_queued=result.deliveries_queued,
            errors=result.errors,
        )
        results.append(result)

    return TriggerRunSummary(total_processed=len(results), results=results)


def seed_default_triggers(db: Session) -> int:
    """Insert the stock trigger set, leaving existing names untouched."""
    existing = set(db.execute(select(PromotionTrigger.trigger_name)).scalars())
    created = 0
    for definition in DEFAULT_TRIGGERS:
        if definition["trigger_name"] in existing:
            continue
        db.add(PromotionTrigger(id=str(uuid.uuid4()), active=True, execution_frequency="daily", **definition))
        created += 1
    db.flush()
    return created
