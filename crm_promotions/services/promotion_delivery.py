import logging
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from crm_promotions.core.config import settings
from crm_promotions.core.observability import log_event
from crm_promotions.models.customer import Customer
from crm_promotions.models.promotion import (
    Promotion,
    PromotionDelivery,
    PromotionDeliveryQueueItem,
)
from crm_promotions.services.claim_codes import generate_claim_code
from crm_promotions.services.email_service import send_custom_email
from crm_promotions.services.preference_checker import PreferenceChecker
from crm_promotions.services.promotion_messages import (
    EMAIL_DEFAULT_NAME,
    SMS_DEFAULT_NAME,
    email_subject,
    render_promotion_email,
    render_promotion_sms,
)
from crm_promotions.services.sms_provider import SmsSendRequest, send_sms

logger = logging.getLogger("crm_promotions.promotions")

VALID_CHANNELS = ("portal", "email", "sms")
PROMOTIONAL_MESSAGE_TYPE = "promotional"


@dataclass(frozen=True)
class PromotionDeliveryData:
    promotion_id: str
    title: str
    promotion_type: str
    start_date: date
    end_date: date
    description: str | None = None
    discount_value: Decimal | None = None
    discount_percentage: Decimal | None = None
    promo_code: str | None = None
    terms_and_conditions: str | None = None

    @classmethod
    def from_model(cls, promotion: Promotion) -> "PromotionDeliveryData":
        return cls(
            promotion_id=promotion.id,
            title=promotion.title,
            promotion_type=promotion.promotion_type,
            start_date=promotion.start_date,
            end_date=promotion.end_date,
            description=promotion.description,
            discount_value=promotion.discount_value,
            discount_percentage=promotion.discount_percentage,
            promo_code=promotion.promo_code,
            terms_and_conditions=promotion.terms_and_conditions,
        )


@dataclass(frozen=True)
class CustomerDeliveryData:
    customer_id: str
    full_name: str | None = None
    preferred_name: str | None = None
    email: str | None = None
    phone: str | None = None

    @classmethod
    def from_model(cls, customer: Customer) -> "CustomerDeliveryData":
        return cls(
            customer_id=customer.id,
            full_name=customer.full_name,
            preferred_name=customer.preferred_name,
            email=customer.email,
            phone=customer.phone,
        )

    def display_name(self, default: str) -> str:
        return self.preferred_name or self.full_name or default


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    channel: str
    delivery_id: str | None = None
    claim_code: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class QueueDeliveriesResult:
    success: bool
    queued_count: int
    skipped_count: int
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class QueueProcessingSummary:
    processed: int
    delivered: int
    retried: int
    failed: int


@dataclass(frozen=True)
class DeliveryStatistics:
    total_queued: int
    pending: int
    processing: int
    delivered: int
    failed: int
    by_method: dict[str, dict[str, int]]


def _short_error(value: Exception | str) -> str:
    text = str(value).strip() or "Promotion delivery failed"
    return text[:255]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def insert_ignoring_conflict(
    db: Session,
    model: type,
    *,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
) -> bool:
    """Insert one row unless the unique key already exists.

    Returns True when this call wrote the row.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql_insert(model).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
        return db.execute(stmt).rowcount == 1
    if dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
        return db.execute(stmt).rowcount == 1

    try:
        with db.begin_nested():
            db.add(model(**values))
    except IntegrityError:
        return False
    return True


def _find_delivery(db: Session, *, promotion_id: str, customer_id: str, channel: str) -> PromotionDelivery | None:
    return db.execute(
        select(PromotionDelivery).where(
            PromotionDelivery.promotion_id == promotion_id,
            PromotionDelivery.customer_id == customer_id,
            PromotionDelivery.delivery_channel == channel,
        )
    ).scalar_one_or_none()


def _existing_claim_code(db: Session, *, promotion_id: str, customer_id: str) -> str | None:
    return db.execute(
        select(PromotionDelivery.claim_code)
        .where(
            PromotionDelivery.promotion_id == promotion_id,
            PromotionDelivery.customer_id == customer_id,
        )
        .order_by(PromotionDelivery.delivered_at.asc())
        .limit(1)
    ).scalar_one_or_none()


def _record_delivery(
    db: Session,
    *,
    promotion_id: str,
    customer_id: str,
    channel: str,
    claim_code: str,
) -> DeliveryResult:
    delivery_id = str(uuid.uuid4())
    inserted = insert_ignoring_conflict(
        db,
        PromotionDelivery,
        values={
            "id": delivery_id,
            "promotion_id": promotion_id,
            "customer_id": customer_id,
            "delivery_channel": channel,
            "claim_code": claim_code,
            "delivered_at": _utcnow(),
        },
        conflict_columns=("promotion_id", "customer_id", "delivery_channel"),
    )
    if inserted:
        return DeliveryResult(success=True, channel=channel, delivery_id=delivery_id, claim_code=claim_code)

    # A concurrent writer recorded this channel first; report its row.
    winner = _find_delivery(db, promotion_id=promotion_id, customer_id=customer_id, channel=channel)
    if winner is None:
        return DeliveryResult(success=False, channel=channel, error="Delivery record could not be written")
    return DeliveryResult(success=True, channel=channel, delivery_id=winner.id, claim_code=winner.claim_code)


def _already_delivered(
    db: Session,
    *,
    promotion: PromotionDeliveryData,
    customer: CustomerDeliveryData,
    channel: str,
) -> DeliveryResult | None:
    existing = _find_delivery(
        db,
        promotion_id=promotion.promotion_id,
        customer_id=customer.customer_id,
        channel=channel,
    )
    if existing is None:
        return None
    return DeliveryResult(success=True, channel=channel, delivery_id=existing.id, claim_code=existing.claim_code)


def _adapter_failure(channel: str, promotion: PromotionDeliveryData, customer: CustomerDeliveryData, exc: Exception) -> DeliveryResult:
    log_event(
        logger,
        logging.ERROR,
        "promotion_delivery_exception",
        channel=channel,
        promotion_id=promotion.promotion_id,
        customer_id=customer.customer_id,
        error=str(exc),
    )
    return DeliveryResult(success=False, channel=channel, error=_short_error(exc))


def _run_adapter(
    db: Session,
    channel: str,
    send: "ChannelAdapter",
    promotion: PromotionDeliveryData,
    customer: CustomerDeliveryData,
    claim_code: str,
) -> DeliveryResult:
    # Each channel writes inside its own savepoint; a failure rolls back only that channel.
    try:
        with db.begin_nested():
            return send(db, promotion, customer, claim_code)
    except Exception as exc:  # noqa: BLE001
        return _adapter_failure(channel, promotion, customer, exc)


def _send_portal(
    db: Session,
    promotion: PromotionDeliveryData,
    customer: CustomerDeliveryData,
    claim_code: str,
) -> DeliveryResult:
    existing = _already_delivered(db, promotion=promotion, customer=customer, channel="portal")
    if existing is not None:
        return existing

    code = _existing_claim_code(db, promotion_id=promotion.promotion_id, customer_id=customer.customer_id) or claim_code
    return _record_delivery(
        db,
        promotion_id=promotion.promotion_id,
        customer_id=customer.customer_id,
        channel="portal",
        claim_code=code,
    )


def _send_email(
    db: Session,
    promotion: PromotionDeliveryData,
    customer: CustomerDeliveryData,
    claim_code: str,
) -> DeliveryResult:
    existing = _already_delivered(db, promotion=promotion, customer=customer, channel="email")
    if existing is not None:
        return existing

    check = PreferenceChecker(db).can_send_email(customer.customer_id, PROMOTIONAL_MESSAGE_TYPE)
    if not check.allowed:
        return DeliveryResult(success=False, channel="email", error=f"Cannot send email: {check.reason}")

    if not customer.email:
        return DeliveryResult(success=False, channel="email", error="Customer email not available")

    code = _existing_claim_code(db, promotion_id=promotion.promotion_id, customer_id=customer.customer_id) or claim_code
    html = render_promotion_email(customer.display_name(EMAIL_DEFAULT_NAME), promotion, code)
    sent = send_custom_email(customer.email, email_subject(promotion), html)
    if not sent.success:
        log_event(
            logger,
            logging.WARNING,
            "promotion_email_failed",
            promotion_id=promotion.promotion_id,
            customer_id=customer.customer_id,
            status=sent.status,
            detail=sent.detail,
        )
        return DeliveryResult(success=False, channel="email", error=sent.detail or "Email send failed")

    return _record_delivery(
        db,
        promotion_id=promotion.promotion_id,
        customer_id=customer.customer_id,
        channel="email",
        claim_code=code,
    )


def _send_sms(
    db: Session,
    promotion: PromotionDeliveryData,
    customer: CustomerDeliveryData,
    claim_code: str,
) -> DeliveryResult:
    existing = _already_delivered(db, promotion=promotion, customer=customer, channel="sms")
    if existing is not None:
        return existing

    check = PreferenceChecker(db).can_send_sms(customer.customer_id, PROMOTIONAL_MESSAGE_TYPE)
    if not check.allowed:
        return DeliveryResult(success=False, channel="sms", error=f"Cannot send SMS: {check.reason}")

    if not customer.phone:
        return DeliveryResult(success=False, channel="sms", error="Customer phone not available")

    code = _existing_claim_code(db, promotion_id=promotion.promotion_id, customer_id=customer.customer_id) or claim_code
    text = render_promotion_sms(customer.display_name(SMS_DEFAULT_NAME), promotion, code)
    sent = send_sms(
        SmsSendRequest(
            to=customer.phone,
            message=text,
            customer_id=customer.customer_id,
            metadata={"promotion_id": promotion.promotion_id, "claim_code": code},
        )
    )
    if not sent.success:
        return DeliveryResult(success=False, channel="sms", error=sent.error or "SMS send failed")

    return _record_delivery(
        db,
        promotion_id=promotion.promotion_id,
        customer_id=customer.customer_id,
        channel="sms",
        claim_code=code,
    )


def deliver_via_portal(
    db: Session,
    promotion: PromotionDeliveryData,
    customer: CustomerDeliveryData,
    claim_code: str,
) -> DeliveryResult:
    return _run_adapter(db, "portal", _send_portal, promotion, customer, claim_code)


def deliver_via_email(
    db: Session,
    promotion: PromotionDeliveryData,
    customer: CustomerDeliveryData,
    claim_code: str,
) -> DeliveryResult:
    return _run_adapter(db, "email", _send_email, promotion, customer, claim_code)


def deliver_via_sms(
    db: Session,
    promotion: PromotionDeliveryData,
    customer: CustomerDeliveryData,
    claim_code: str,
) -> DeliveryResult:
    return _run_adapter(db, "sms", _send_sms, promotion, customer, claim_code)


ChannelAdapter = Callable[[Session, PromotionDeliveryData, CustomerDeliveryData, str], DeliveryResult]

_CHANNEL_ADAPTERS: dict[str, ChannelAdapter] = {
    "portal": deliver_via_portal,
    "email": deliver_via_email,
    "sms": deliver_via_sms,
}


def deliver_promotion(
    db: Session,
    promotion: PromotionDeliveryData,
    customer: CustomerDeliveryData,
    channels: Iterable[str],
) -> list[DeliveryResult]:
    """Deliver one promotion to one customer on each requested channel.

    Channels run in the order given and are independent of each other. The
    candidate claim code is only stored when the customer has no earlier
    delivery of this promotion.
    """
    candidate_code = generate_claim_code(promotion.promotion_id, customer.customer_id)
    results: list[DeliveryResult] = []
    for channel in channels:
        adapter = _CHANNEL_ADAPTERS.get(channel)
        if adapter is None:
            results.append(DeliveryResult(success=False, channel=channel, error=f"Unknown channel: {channel}"))
            continue
        results.append(adapter(db, promotion, customer, candidate_code))

    failed = [result for result in results if not result.success]
    if failed:
        log_event(
            logger,
            logging.WARNING,
            "promotion_delivery_partial",
            promotion_id=promotion.promotion_id,
            customer_id=customer.customer_id,
            failed_channels=[result.channel for result in failed],
            errors=[result.error for result in failed],
        )
    return results


def deliver_promotion_by_ids(
    db: Session,
    *,
    promotion_id: str,
    customer_id: str,
    channels: Iterable[str],
) -> list[DeliveryResult]:
    promotion = db.get(Promotion, promotion_id)
    if promotion is None:
        raise LookupError("Promotion not found")
    customer = db.get(Customer, customer_id)
    if customer is None or customer.deleted_at is not None:
        raise LookupError("Customer not found")
    return deliver_promotion(
        db,
        PromotionDeliveryData.from_model(promotion),
        CustomerDeliveryData.from_model(customer),
        channels,
    )


def queue_promotion_deliveries(
    db: Session,
    *,
    promotion_id: str,
    customer_ids: Sequence[str],
    channels: Sequence[str],
) -> QueueDeliveriesResult:
    unique_customers = list(dict.fromkeys(customer_ids))
    unique_channels = list(dict.fromkeys(channels))
    total = len(unique_customers) * len(unique_channels)

    unknown = [channel for channel in unique_channels if channel not in VALID_CHANNELS]
    if unknown:
        return QueueDeliveriesResult(
            success=False,
            queued_count=0,
            skipped_count=total,
            errors=[f"Unknown channel: {channel}" for channel in unknown],
        )
    if total == 0:
        return QueueDeliveriesResult(success=True, queued_count=0, skipped_count=0)

    try:
        delivered_pairs = set(
            db.execute(
                select(PromotionDelivery.customer_id, PromotionDelivery.delivery_channel).where(
                    PromotionDelivery.promotion_id == promotion_id,
                    PromotionDelivery.customer_id.in_(unique_customers),
                )
            ).all()
        )
        queued_pairs = set(
            db.execute(
                select(PromotionDeliveryQueueItem.customer_id, PromotionDeliveryQueueItem.delivery_method).where(
                    PromotionDeliveryQueueItem.promotion_id == promotion_id,
                    PromotionDeliveryQueueItem.customer_id.in_(unique_customers),
                )
            ).all()
        )

        queued = 0
        for customer_id in unique_customers:
            for channel in unique_channels:
                pair = (customer_id, channel)
                if pair in delivered_pairs or pair in queued_pairs:
                    continue
                inserted = insert_ignoring_conflict(
                    db,
                    PromotionDeliveryQueueItem,
                    values={
                        "id": str(uuid.uuid4()),
                        "promotion_id": promotion_id,
                        "customer_id": customer_id,
                        "delivery_method": channel,
                        "status": "pending",
                        "attempts": 0,
                        "max_attempts": settings.delivery_max_attempts,
                        "created_at": _utcnow(),
                    },
                    conflict_columns=("promotion_id", "customer_id", "delivery_method"),
                )
                if inserted:
                    queued += 1
        db.flush()
    except SQLAlchemyError as exc:
        db.rollback()
        log_event(
            logger,
            logging.ERROR,
            "promotion_queue_failed",
            promotion_id=promotion_id,
            customers=len(unique_customers),
            channels=unique_channels,
            error=str(exc),
        )
        return QueueDeliveriesResult(success=False, queued_count=0, skipped_count=total, errors=[_short_error(exc)])

    return QueueDeliveriesResult(success=True, queued_count=queued, skipped_count=total - queued)


def _due_queue_items(db: Session, *, batch_size: int, now: datetime) -> list[PromotionDeliveryQueueItem]:
    retry_cutoff = now - timedelta(seconds=settings.delivery_retry_seconds)
    stmt = (
        select(PromotionDeliveryQueueItem)
        .join(Promotion, Promotion.id == PromotionDeliveryQueueItem.promotion_id)
        .join(Customer, Customer.id == PromotionDeliveryQueueItem.customer_id)
        .where(
            PromotionDeliveryQueueItem.status == "pending",
            PromotionDeliveryQueueItem.attempts < PromotionDeliveryQueueItem.max_attempts,
            Promotion.status == "active",
            (PromotionDeliveryQueueItem.last_attempt_at.is_(None))
            | (PromotionDeliveryQueueItem.last_attempt_at < retry_cutoff),
        )
        .order_by(PromotionDeliveryQueueItem.created_at.asc(), PromotionDeliveryQueueItem.id.asc())
        .limit(batch_size)
        .with_for_update(skip_locked=True, of=PromotionDeliveryQueueItem)
    )
    return list(db.execute(stmt).scalars().all())


def process_pending_deliveries(db: Session, *, batch_size: int | None = None) -> QueueProcessingSummary:
    """Work through one batch of pending queue rows.

    Each row is its own unit of work and is committed once its outcome is
    recorded, so a send is never repeated because a later row failed.
    """
    limit = settings.delivery_queue_batch_size if batch_size is None else batch_size
    if limit <= 0:
        return QueueProcessingSummary(processed=0, delivered=0, retried=0, failed=0)
    now = _utcnow()
    items = _due_queue_items(db, batch_size=limit, now=now)

    processed = 0
    delivered = 0
    retried = 0
    failed = 0

    for item in items:
        processed += 1
        item.status = "processing"
        item.attempts += 1
        item.last_attempt_at = _utcnow()
        db.flush()

        promotion = db.get(Promotion, item.promotion_id)
        customer = db.get(Customer, item.customer_id)
        adapter = _CHANNEL_ADAPTERS.get(item.delivery_method)
        if promotion is None or customer is None or customer.deleted_at is not None:
            result = DeliveryResult(
                success=False,
                channel=item.delivery_method,
                error="Promotion not found" if promotion is None else "Customer not found",
            )
        elif adapter is None:
            result = DeliveryResult(
                success=False,
                channel=item.delivery_method,
                error=f"Unknown channel: {item.delivery_method}",
            )
        else:
            result = adapter(
                db,
                PromotionDeliveryData.from_model(promotion),
                CustomerDeliveryData.from_model(customer),
                generate_claim_code(item.promotion_id, item.customer_id),
            )

        if result.success:
            item.status = "delivered"
            item.error_message = None
            delivered += 1
        else:
            item.error_message = _short_error(result.error or "Promotion delivery failed")
            if item.attempts >= item.max_attempts:
                item.status = "failed"
                failed += 1
            else:
                item.status = "pending"
                retried += 1
        db.commit()

    summary = QueueProcessingSummary(processed=processed, delivered=delivered, retried=retried, failed=failed)
    if processed:
        log_event(
            logger,
            logging.INFO,
            "promotion_queue_batch_processed",
            processed=summary.processed,
            delivered=summary.delivered,
            retried=summary.retried,
            failed=summary.failed,
        )
    return summary


def get_delivery_statistics(db: Session, *, promotion_id: str) -> DeliveryStatistics | None:
    rows = db.execute(
        select(
            PromotionDeliveryQueueItem.delivery_method,
            PromotionDeliveryQueueItem.status,
            func.count(PromotionDeliveryQueueItem.id),
        )
        .where(PromotionDeliveryQueueItem.promotion_id == promotion_id)
        .group_by(PromotionDeliveryQueueItem.delivery_method, PromotionDeliveryQueueItem.status)
    ).all()
    if not rows:
        return None

    by_status = {"pending": 0, "processing": 0, "delivered": 0, "failed": 0}
    by_method: dict[str, dict[str, int]] = {}
    for method, status, count in rows:
        count = int(count or 0)
        by_status[status] = by_status.get(status, 0) + count
        bucket = by_method.setdefault(method, {"total": 0, "delivered": 0, "failed": 0})
        bucket["total"] += count
        if status in ("delivered", "failed"):
            bucket[status] += count

    return DeliveryStatistics(
        total_queued=sum(by_status.values()),
        pending=by_status["pending"],
        processing=by_status["processing"],
        delivered=by_status["delivered"],
        failed=by_status["failed"],
        by_method=by_method,
    )
