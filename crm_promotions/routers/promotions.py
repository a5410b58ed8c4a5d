from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from crm_promotions.core.api_docs import error_responses
from crm_promotions.core.deps import get_db, require_cron_secret
from crm_promotions.schemas.promotion import (
    ClaimValidationOut,
    DeliverPromotionIn,
    DeliverPromotionOut,
    DeliveryResultOut,
    DeliveryStatisticsOut,
    MethodStatisticsOut,
    QueuePromotionIn,
    QueuePromotionOut,
    QueueProcessingOut,
    TriggerResultOut,
    TriggerRunOut,
)
from crm_promotions.services.promotion_claims import validate_claim_code
from crm_promotions.services.promotion_delivery import (
    deliver_promotion_by_ids,
    get_delivery_statistics,
    process_pending_deliveries,
    queue_promotion_deliveries,
)
from crm_promotions.services.promotion_triggers import process_all_triggers

router = APIRouter(
    prefix="/promotions",
    tags=["promotions"],
    dependencies=[Depends(require_cron_secret)],
)


@router.post(
    "/triggers/run",
    response_model=TriggerRunOut,
    summary="Run all active promotion triggers",
    responses=error_responses(401, 500, path="/promotions/triggers/run"),
)
def run_triggers(db: Session = Depends(get_db)):
    summary = process_all_triggers(db)
    return TriggerRunOut(
        total_processed=summary.total_processed,
        results=[
            TriggerResultOut(
                success=result.success,
                trigger_name=result.trigger_name,
                customers_found=result.customers_found,
                promotions_created=result.promotions_created,
                deliveries_queued=result.deliveries_queued,
                errors=list(result.errors),
            )
            for result in summary.results
        ],
    )


@router.post(
    "/deliveries/process",
    response_model=QueueProcessingOut,
    summary="Process one batch of queued deliveries",
    responses=error_responses(401, 422, 500, path="/promotions/deliveries/process"),
)
def process_deliveries(
    batch_size: int | None = Query(default=None, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    summary = process_pending_deliveries(db, batch_size=batch_size)
    return QueueProcessingOut(
        processed=summary.processed,
        delivered=summary.delivered,
        retried=summary.retried,
        failed=summary.failed,
    )


@router.get(
    "/claims/{claim_code}",
    response_model=ClaimValidationOut,
    summary="Check whether a claim code can be redeemed",
    responses=error_responses(401, 500, path="/promotions/claims/{claim_code}"),
)
def validate_claim(claim_code: str, db: Session = Depends(get_db)):
    result = validate_claim_code(db, claim_code)
    return ClaimValidationOut(
        valid=result.valid,
        code=result.code,
        reason=result.reason,
        delivery_id=result.delivery_id,
        promotion_id=result.promotion_id,
        customer_id=result.customer_id,
    )


@router.post(
    "/{promotion_id}/deliver",
    response_model=DeliverPromotionOut,
    summary="Deliver a promotion to one customer",
    responses=error_responses(401, 404, 422, 500, path="/promotions/{promotion_id}/deliver"),
)
def deliver(
    promotion_id: str,
    payload: DeliverPromotionIn,
    db: Session = Depends(get_db),
):
    try:
        results = deliver_promotion_by_ids(
            db,
            promotion_id=promotion_id,
            customer_id=payload.customer_id,
            channels=payload.channels,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    db.commit()
    return DeliverPromotionOut(
        promotion_id=promotion_id,
        customer_id=payload.customer_id,
        results=[
            DeliveryResultOut(
                success=result.success,
                channel=result.channel,
                delivery_id=result.delivery_id,
                claim_code=result.claim_code,
                error=result.error,
            )
            for result in results
        ],
    )


@router.post(
    "/{promotion_id}/queue",
    response_model=QueuePromotionOut,
    summary="Queue a promotion for a list of customers",
    responses=error_responses(401, 422, 500, path="/promotions/{promotion_id}/queue"),
)
def queue(
    promotion_id: str,
    payload: QueuePromotionIn,
    db: Session = Depends(get_db),
):
    result = queue_promotion_deliveries(
        db,
        promotion_id=promotion_id,
        customer_ids=payload.customer_ids,
        channels=payload.channels,
    )
    if result.success:
        db.commit()
    return QueuePromotionOut(
        success=result.success,
        queued_count=result.queued_count,
        skipped_count=result.skipped_count,
        errors=list(result.errors),
    )


@router.get(
    "/{promotion_id}/delivery-stats",
    response_model=DeliveryStatisticsOut,
    summary="Delivery queue statistics for a promotion",
    responses=error_responses(401, 404, 500, path="/promotions/{promotion_id}/delivery-stats"),
)
def delivery_stats(promotion_id: str, db: Session = Depends(get_db)):
    stats = get_delivery_statistics(db, promotion_id=promotion_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="No deliveries queued for promotion")
    return DeliveryStatisticsOut(
        promotion_id=promotion_id,
        total_queued=stats.total_queued,
        pending=stats.pending,
        processing=stats.processing,
        delivered=stats.delivered,
        failed=stats.failed,
        by_method={method: MethodStatisticsOut(**counts) for method, counts in stats.by_method.items()},
    )
