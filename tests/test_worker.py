from decimal import Decimal

import pytest
from sqlalchemy import func, select

from crm_promotions import worker
from crm_promotions.models.promotion import PromotionDeliveryQueueItem
from crm_promotions.models.trigger import PromotionTrigger


@pytest.fixture()
def worker_sessions(monkeypatch, session_local):
    monkeypatch.setattr(worker, "SessionLocal", session_local)
    return session_local


def test_seed_triggers_is_idempotent(worker_sessions):
    assert worker.run(["seed-triggers"]) == {"created": 4}
    assert worker.run(["seed-triggers"]) == {"created": 0}

    db = worker_sessions()
    try:
        names = set(db.execute(select(PromotionTrigger.trigger_name)).scalars())
    finally:
        db.close()
    assert names == {"inactive_customer_180d", "birthday_special", "anniversary_reward", "vip_exclusive"}


def test_run_triggers_then_process_queue(worker_sessions, transports, make_customer, make_trigger):
    db = worker_sessions()
    try:
        make_customer(db, lifetime_value=Decimal("2500.00"))
        make_trigger(db, trigger_name="vip_exclusive", trigger_type="high_value", trigger_conditions={})
    finally:
        db.close()

    summary = worker.run(["run-triggers"])
    assert summary["total_processed"] == 1
    assert summary["results"][0]["deliveries_queued"] == 1

    processed = worker.run(["process-queue", "--batch-size", "5"])
    assert processed == {"processed": 1, "delivered": 1, "retried": 0, "failed": 0}
    assert len(transports.emails) == 1

    db = worker_sessions()
    try:
        statuses = db.execute(
            select(PromotionDeliveryQueueItem.status, func.count()).group_by(PromotionDeliveryQueueItem.status)
        ).all()
    finally:
        db.close()
    assert dict(statuses) == {"delivered": 1}


def test_unknown_command_exits():
    with pytest.raises(SystemExit):
        worker.build_parser().parse_args(["launch-rockets"])
