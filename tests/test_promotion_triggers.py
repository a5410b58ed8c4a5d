from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select

from crm_promotions.models.promotion import Promotion, PromotionDeliveryQueueItem
from crm_promotions.models.trigger import AutomatedPromotionDelivery, PromotionTrigger
from crm_promotions.services import promotion_triggers
from crm_promotions.services.cohorts import (
    get_anniversary_customers,
    get_birthday_customers,
    get_high_value_customers,
    get_inactive_customers,
    next_occurrence,
)
from crm_promotions.services.promotion_triggers import (
    TriggerDefinition,
    log_trigger_execution,
    process_all_triggers,
    process_anniversary_trigger,
    process_birthday_trigger,
    process_high_value_trigger,
    process_inactive_customer_trigger,
    seed_default_triggers,
)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _same_day_years_ago(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year - years)
    except ValueError:
        return value.replace(year=value.year - years, day=28)


def _definition(trigger: PromotionTrigger) -> TriggerDefinition:
    return TriggerDefinition.from_model(trigger)


def test_next_occurrence_wraps_year_and_handles_leap_day():
    assert next_occurrence(date(1990, 1, 2), date(2026, 12, 30)) == date(2027, 1, 2)
    assert next_occurrence(date(1992, 2, 29), date(2027, 2, 1)) == date(2027, 2, 28)
    assert next_occurrence(date(1992, 2, 29), date(2028, 2, 1)) == date(2028, 2, 29)
    assert next_occurrence(date(1990, 6, 1), date(2026, 6, 1)) == date(2026, 6, 1)


def test_inactive_cohort(db, make_customer):
    today = date(2026, 10, 18)
    stale = make_customer(db, last_service_date=today - timedelta(days=400))
    recent_stale = make_customer(db, last_service_date=today - timedelta(days=200))
    make_customer(db, last_service_date=today - timedelta(days=30))
    make_customer(db, last_service_date=None)
    make_customer(db, last_service_date=today - timedelta(days=500), deleted_at=datetime(2026, 1, 1, tzinfo=timezone.utc))

    cohort = get_inactive_customers(db, days_inactive=180, today=today)

    assert [item.customer_id for item in cohort] == [stale.id, recent_stale.id]
    assert cohort[0].days_since_service == 400


def test_birthday_cohort_across_year_end(db, make_customer):
    today = date(2026, 12, 29)
    new_year = make_customer(db, birthday=date(1985, 1, 2))
    tomorrow = make_customer(db, birthday=date(1990, 12, 30))
    make_customer(db, birthday=date(1990, 1, 10))
    make_customer(db, birthday=None)

    cohort = get_birthday_customers(db, days_ahead=7, today=today)

    assert [(item.customer_id, item.days_until_birthday) for item in cohort] == [(tomorrow.id, 1), (new_year.id, 4)]


def test_anniversary_cohort_requires_full_years(db, make_customer):
    today = date(2026, 10, 18)
    veteran = make_customer(db, created_at=datetime(2023, 10, 20, 9, 0, tzinfo=timezone.utc))
    make_customer(db, created_at=datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc))
    make_customer(db, created_at=datetime(2025, 11, 30, 9, 0, tzinfo=timezone.utc))

    cohort = get_anniversary_customers(db, days_ahead=7, min_years=1, today=today)

    assert [item.customer_id for item in cohort] == [veteran.id]
    assert cohort[0].years_as_customer == 3
    assert cohort[0].days_until_anniversary == 2
    assert get_anniversary_customers(db, days_ahead=7, min_years=4, today=today) == []


def test_high_value_cohort(db, make_customer):
    top = make_customer(db, lifetime_value=Decimal("5000.00"), total_jobs=12)
    edge = make_customer(db, lifetime_value=Decimal("1000.00"))
    make_customer(db, lifetime_value=Decimal("999.99"))
    make_customer(db, lifetime_value=None)

    cohort = get_high_value_customers(db, min_lifetime_value=1000)

    assert [item.customer_id for item in cohort] == [top.id, edge.id]
    assert cohort[0].total_jobs == 12
    assert cohort[1].total_jobs == 0


def test_empty_cohort_is_success_with_zero_counts(db, make_trigger):
    trigger = make_trigger(db)

    result = process_inactive_customer_trigger(db, _definition(trigger))

    assert result.success is True
    assert result.customers_found == 0
    assert result.promotions_created == 0
    assert result.deliveries_queued == 0
    assert result.errors == []
    assert db.execute(select(func.count(Promotion.id))).scalar_one() == 0


def test_inactive_trigger_creates_promotion_queue_and_log(db, make_customer, make_trigger):
    first = make_customer(db, last_service_date=_today() - timedelta(days=365))
    second = make_customer(db, last_service_date=_today() - timedelta(days=200))
    trigger = make_trigger(db, delivery_channels=["email", "portal"])

    result = process_inactive_customer_trigger(db, _definition(trigger))
    db.commit()

    assert result.success is True
    assert result.customers_found == 2
    assert result.promotions_created == 1
    assert result.deliveries_queued == 4

    promotion = db.execute(select(Promotion)).scalar_one()
    assert promotion.status == "active"
    assert promotion.title == "We Miss You! Come Back Special"
    assert promotion.promo_code.startswith("AUTO_TRIGGER_")
    assert promotion.start_date == _today()
    assert promotion.end_date == _today() + timedelta(days=30)
    assert promotion.delivery_channels == ["email", "portal"]

    queued = db.execute(select(PromotionDeliveryQueueItem.customer_id, PromotionDeliveryQueueItem.delivery_method)).all()
    assert sorted(queued) == sorted(
        [(first.id, "email"), (first.id, "portal"), (second.id, "email"), (second.id, "portal")]
    )
    logged = db.execute(select(AutomatedPromotionDelivery.customer_id)).scalars().all()
    assert sorted(logged) == sorted([first.id, second.id])


def test_birthday_trigger_defaults_to_email_and_sms(db, make_customer, make_trigger):
    upcoming = _today() + timedelta(days=3)
    make_customer(db, birthday=_same_day_years_ago(upcoming, 32))
    trigger = make_trigger(
        db,
        trigger_type="birthday",
        trigger_conditions={"days_before": 7},
        delivery_channels=None,
        promotion_template={
            "title": "Happy Birthday! Special Gift Inside",
            "promotion_type": "dollar_off",
            "discount_value": 20,
        },
    )

    result = process_birthday_trigger(db, _definition(trigger))

    assert result.success is True
    assert result.customers_found == 1
    assert result.deliveries_queued == 2
    methods = db.execute(select(PromotionDeliveryQueueItem.delivery_method)).scalars().all()
    assert sorted(methods) == ["email", "sms"]


def test_anniversary_trigger_fills_years_in_title(db, make_customer, make_trigger):
    upcoming = _today() + timedelta(days=2)
    joined = _same_day_years_ago(upcoming, 2)
    make_customer(db, created_at=datetime(joined.year, joined.month, joined.day, 12, 0, tzinfo=timezone.utc))
    trigger = make_trigger(
        db,
        trigger_type="anniversary",
        trigger_conditions={"years": 1},
        promotion_template={
            "title": "Thank You for {years} Year(s) with Us!",
            "promotion_type": "percentage_off",
            "discount_percentage": 10,
            "valid_days": 60,
        },
    )

    result = process_anniversary_trigger(db, _definition(trigger))

    assert result.success is True
    assert result.customers_found == 1
    promotion = db.execute(select(Promotion)).scalar_one()
    assert promotion.title == "Thank You for 1 Year(s) with Us!"
    assert promotion.end_date == _today() + timedelta(days=60)


def test_high_value_cooldown(db, make_customer, make_trigger):
    make_customer(db, lifetime_value=Decimal("2500.00"))
    trigger = make_trigger(
        db,
        trigger_type="high_value",
        trigger_conditions={"min_lifetime_value": 1000},
    )

    first = process_high_value_trigger(db, _definition(trigger))
    db.commit()
    second = process_high_value_trigger(db, _definition(trigger))
    db.commit()

    assert first.promotions_created == 1
    assert first.deliveries_queued == 1
    assert second.success is True
    assert second.customers_found == 1
    assert second.promotions_created == 0
    assert second.deliveries_queued == 0
    assert db.execute(select(func.count(Promotion.id))).scalar_one() == 1


def test_high_value_cooldown_expires(db, make_customer, make_trigger):
    customer = make_customer(db, lifetime_value=Decimal("2500.00"))
    trigger = make_trigger(db, trigger_type="high_value", trigger_conditions={"min_lifetime_value": 1000})
    process_high_value_trigger(db, _definition(trigger))
    db.commit()

    log_row = db.execute(select(AutomatedPromotionDelivery)).scalar_one()
    log_row.triggered_at = datetime.now(timezone.utc) - timedelta(days=31)
    db.commit()

    result = process_high_value_trigger(db, _definition(trigger))

    assert result.promotions_created == 1
    assert result.customers_found == 1
    assert customer.id in db.execute(
        select(PromotionDeliveryQueueItem.customer_id).where(
            PromotionDeliveryQueueItem.promotion_id != log_row.promotion_id
        )
    ).scalars().all()


def test_invalid_template_rolls_back(db, make_customer, make_trigger):
    make_customer(db, last_service_date=_today() - timedelta(days=365))
    trigger = make_trigger(db, promotion_template={"title": "", "promotion_type": "mystery"})

    result = process_inactive_customer_trigger(db, _definition(trigger))

    assert result.success is False
    assert result.customers_found == 1
    assert result.promotions_created == 0
    assert result.errors[0].startswith("Failed to create promotion:")
    assert db.execute(select(func.count(Promotion.id))).scalar_one() == 0


def test_queue_failure_rolls_back_promotion(db, make_customer, make_trigger):
    make_customer(db, last_service_date=_today() - timedelta(days=365))
    trigger = make_trigger(db, delivery_channels=["email", "fax"])

    result = process_inactive_customer_trigger(db, _definition(trigger))

    assert result.success is False
    assert result.promotions_created == 0
    assert result.deliveries_queued == 0
    assert result.errors == ["Unknown channel: fax"]
    assert db.execute(select(func.count(Promotion.id))).scalar_one() == 0


def test_malformed_conditions_fail_without_raising(db, make_customer, make_trigger):
    make_customer(db, last_service_date=_today() - timedelta(days=365))
    inactive = make_trigger(db, trigger_conditions={"days_inactive": "abc"})
    anniversary = make_trigger(db, trigger_type="anniversary", trigger_conditions={"years": 1.5})
    high_value = make_trigger(db, trigger_type="high_value", trigger_conditions={"min_lifetime_value": "lots"})
    birthday = make_trigger(db, trigger_type="birthday", trigger_conditions={"days_before": -3})

    results = [
        process_inactive_customer_trigger(db, _definition(inactive)),
        process_anniversary_trigger(db, _definition(anniversary)),
        process_high_value_trigger(db, _definition(high_value)),
        process_birthday_trigger(db, _definition(birthday)),
    ]

    for result in results:
        assert result.success is False
        assert result.customers_found == 0
        assert result.errors[0].startswith("Invalid trigger conditions:")
    assert "days_inactive" in results[0].errors[0]
    assert db.execute(select(func.count(Promotion.id))).scalar_one() == 0


def test_numeric_strings_in_conditions_are_accepted(db, make_customer, make_trigger):
    make_customer(db, last_service_date=_today() - timedelta(days=365))
    trigger = make_trigger(db, trigger_conditions={"days_inactive": "300"})

    result = process_inactive_customer_trigger(db, _definition(trigger))

    assert result.success is True
    assert result.customers_found == 1


def test_runner_reports_malformed_conditions(db, make_trigger):
    make_trigger(db, trigger_name="broken_inactive", trigger_conditions={"days_inactive": "abc"})
    make_trigger(db, trigger_name="ok_inactive")

    summary = process_all_triggers(db)

    by_name = {result.trigger_name: result for result in summary.results}
    assert by_name["broken_inactive"].success is False
    assert by_name["broken_inactive"].errors[0].startswith("Invalid trigger conditions:")
    assert by_name["ok_inactive"].success is True
    executions = dict(db.execute(select(PromotionTrigger.trigger_name, PromotionTrigger.total_executions)).all())
    assert executions == {"broken_inactive": 1, "ok_inactive": 1}


def test_log_trigger_execution_updates_counters(db, make_trigger):
    trigger = make_trigger(db)

    log_trigger_execution(db, trigger_id=trigger.id, customers_found=3, deliveries_queued=5)
    log_trigger_execution(db, trigger_id=trigger.id, customers_found=0, deliveries_queued=0)
    db.commit()
    db.refresh(trigger)

    assert trigger.total_executions == 2
    assert trigger.total_deliveries == 5
    assert trigger.last_run_at is not None


def test_runner_isolates_failing_triggers(db, monkeypatch, make_customer, make_trigger):
    make_customer(db, last_service_date=_today() - timedelta(days=365))
    make_customer(db, lifetime_value=Decimal("4000.00"))
    make_trigger(db, trigger_name="birthday_broken", trigger_type="birthday")
    make_trigger(db, trigger_name="custom_rule", trigger_type="custom")
    make_trigger(db, trigger_name="vip_exclusive", trigger_type="high_value")
    make_trigger(db, trigger_name="inactive_customer_180d", trigger_type="inactive_customer")
    make_trigger(db, trigger_name="referral_bonus", trigger_type="referral")
    make_trigger(db, trigger_name="paused_rule", trigger_type="inactive_customer", active=False)

    def explode(db, trigger):
        raise RuntimeError("cohort service unavailable")

    monkeypatch.setitem(promotion_triggers.TRIGGER_EVALUATORS, "birthday", explode)

    summary = process_all_triggers(db)

    assert summary.total_processed == 5
    by_name = {result.trigger_name: result for result in summary.results}
    assert [result.trigger_name for result in summary.results] == [
        "birthday_broken",
        "custom_rule",
        "vip_exclusive",
        "inactive_customer_180d",
        "referral_bonus",
    ]
    assert by_name["birthday_broken"].success is False
    assert by_name["birthday_broken"].errors == ["cohort service unavailable"]
    assert by_name["custom_rule"].errors == ["Unknown trigger type: custom"]
    assert by_name["vip_exclusive"].success is True
    assert by_name["vip_exclusive"].deliveries_queued == 1
    assert by_name["inactive_customer_180d"].success is True
    assert by_name["inactive_customer_180d"].deliveries_queued == 1
    assert by_name["referral_bonus"].success is True
    assert by_name["referral_bonus"].customers_found == 0

    executions = dict(db.execute(select(PromotionTrigger.trigger_name, PromotionTrigger.total_executions)).all())
    assert executions == {
        "birthday_broken": 1,
        "custom_rule": 1,
        "vip_exclusive": 1,
        "inactive_customer_180d": 1,
        "referral_bonus": 1,
        "paused_rule": 0,
    }
    deliveries = db.execute(
        select(PromotionTrigger.total_deliveries).where(PromotionTrigger.trigger_name == "vip_exclusive")
    ).scalar_one()
    assert deliveries == 1


def test_seed_default_triggers_is_idempotent(db):
    assert seed_default_triggers(db) == 4
    db.commit()
    assert seed_default_triggers(db) == 0

    names = db.execute(select(PromotionTrigger.trigger_name).order_by(PromotionTrigger.trigger_name)).scalars().all()
    assert names == ["anniversary_reward", "birthday_special", "inactive_customer_180d", "vip_exclusive"]
