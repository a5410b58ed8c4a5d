import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_promotions.core.observability import log_event
from crm_promotions.models.promotion import Promotion, PromotionDelivery
from crm_promotions.services.claim_codes import is_claim_code

logger = logging.getLogger("crm_promotions.claims")


@dataclass(frozen=True)
class ClaimValidationResult:
    valid: bool
    code: str | None = None
    reason: str | None = None
    delivery_id: str | None = None
    promotion_id: str | None = None
    customer_id: str | None = None


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _invalid(code: str, reason: str, **ids: str | None) -> ClaimValidationResult:
    return ClaimValidationResult(valid=False, code=code, reason=reason, **ids)


def check_promotion_active(promotion: Promotion | None, *, today: date) -> ClaimValidationResult | None:
    """Return the rejection for a promotion that cannot be claimed today, else None."""
    if promotion is None:
        return _invalid("PROMOTION_NOT_FOUND", "Promotion not found")
    if promotion.status != "active":
        return _invalid("PROMOTION_NOT_ACTIVE", "Promotion is not active", promotion_id=promotion.id)
    if promotion.start_date > today:
        return _invalid("PROMOTION_NOT_STARTED", "Promotion has not started yet", promotion_id=promotion.id)
    if promotion.end_date < today:
        return _invalid("PROMOTION_EXPIRED", "Promotion has expired", promotion_id=promotion.id)
    return None


def validate_claim_code(db: Session, claim_code: str, *, today: date | None = None) -> ClaimValidationResult:
    """Check whether a personal claim code can still be redeemed.

    A customer's code is shared by every channel the promotion reached them
    on, so the code is spent once any of those deliveries is redeemed. The
    promotion must be active and ``today`` must fall inside its date range,
    both ends inclusive.
    """
    normalized = (claim_code or "").strip().upper()
    if not is_claim_code(normalized):
        return _invalid("INVALID_CLAIM_CODE", "Invalid claim code")

    today = today or _today()
    try:
        deliveries = list(
            db.execute(
                select(PromotionDelivery)
                .where(PromotionDelivery.claim_code == normalized)
                .order_by(PromotionDelivery.delivered_at.asc(), PromotionDelivery.id.asc())
            ).scalars()
        )
        if not deliveries:
            return _invalid("INVALID_CLAIM_CODE", "Invalid claim code")

        first = deliveries[0]
        ids = {
            "delivery_id": first.id,
            "promotion_id": first.promotion_id,
            "customer_id": first.customer_id,
        }
        if any(delivery.redeemed_at is not None for delivery in deliveries):
            return _invalid("ALREADY_REDEEMED", "This promotion has already been redeemed", **ids)

        rejection = check_promotion_active(db.get(Promotion, first.promotion_id), today=today)
    except SQLAlchemyError as exc:
        log_event(logger, logging.ERROR, "claim_validation_failed", claim_code=normalized, error=str(exc))
        return _invalid("VALIDATION_ERROR", "Failed to validate claim code")

    if rejection is not None:
        return _invalid(rejection.code, rejection.reason, **ids)
    return ClaimValidationResult(valid=True, **ids)
