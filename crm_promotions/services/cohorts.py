import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crm_promotions.models.customer import Customer


@dataclass(frozen=True)
class CohortCustomer:
    customer_id: str
    last_service_date: date | None = None
    days_since_service: int | None = None
    birthday: date | None = None
    days_until_birthday: int | None = None
    first_service_date: date | None = None
    years_as_customer: int | None = None
    days_until_anniversary: int | None = None
    lifetime_value: Decimal | None = None
    total_jobs: int | None = None


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _month_day_in_year(year: int, month: int, day: int) -> date:
    # Feb 29 falls back to Feb 28 outside leap years.
    if month == 2 and day == 29 and not calendar.isleap(year):
        return date(year, 2, 28)
    return date(year, month, day)


def next_occurrence(anchor: date, today: date) -> date:
    """First date on or after ``today`` sharing ``anchor``'s month and day."""
    candidate = _month_day_in_year(today.year, anchor.month, anchor.day)
    if candidate < today:
        candidate = _month_day_in_year(today.year + 1, anchor.month, anchor.day)
    return candidate


def get_inactive_customers(db: Session, *, days_inactive: int = 180, today: date | None = None) -> list[CohortCustomer]:
    current = today or _today()
    cutoff = current - timedelta(days=days_inactive)
    rows = db.execute(
        select(Customer.id, Customer.last_service_date)
        .where(
            Customer.deleted_at.is_(None),
            Customer.last_service_date.is_not(None),
            Customer.last_service_date < cutoff,
        )
        .order_by(Customer.last_service_date.asc(), Customer.id.asc())
    ).all()
    return [
        CohortCustomer(
            customer_id=customer_id,
            last_service_date=last_service_date,
            days_since_service=(current - last_service_date).days,
        )
        for customer_id, last_service_date in rows
    ]


def get_birthday_customers(db: Session, *, days_ahead: int = 7, today: date | None = None) -> list[CohortCustomer]:
    current = today or _today()
    rows = db.execute(
        select(Customer.id, Customer.birthday).where(
            Customer.deleted_at.is_(None),
            Customer.birthday.is_not(None),
        )
    ).all()

    cohort: list[CohortCustomer] = []
    for customer_id, birthday in rows:
        days_until = (next_occurrence(birthday, current) - current).days
        if days_until <= days_ahead:
            cohort.append(
                CohortCustomer(customer_id=customer_id, birthday=birthday, days_until_birthday=days_until)
            )
    cohort.sort(key=lambda item: (item.days_until_birthday, item.customer_id))
    return cohort


def get_anniversary_customers(
    db: Session,
    *,
    days_ahead: int = 7,
    min_years: int = 1,
    today: date | None = None,
) -> list[CohortCustomer]:
    """Customers whose first-year anniversary (or later) lands within the window.

    Tenure is measured on the anniversary itself, so a customer who joined
    one year ago next Tuesday qualifies for ``min_years=1`` today.
    """
    current = today or _today()
    rows = db.execute(
        select(Customer.id, Customer.created_at).where(
            Customer.deleted_at.is_(None),
            Customer.created_at.is_not(None),
        )
    ).all()

    cohort: list[CohortCustomer] = []
    for customer_id, created_at in rows:
        first_service_date = created_at.date() if isinstance(created_at, datetime) else created_at
        anniversary = next_occurrence(first_service_date, current)
        days_until = (anniversary - current).days
        years = anniversary.year - first_service_date.year
        if days_until <= days_ahead and years >= max(min_years, 1):
            cohort.append(
                CohortCustomer(
                    customer_id=customer_id,
                    first_service_date=first_service_date,
                    years_as_customer=years,
                    days_until_anniversary=days_until,
                )
            )
    cohort.sort(key=lambda item: (item.days_until_anniversary, item.customer_id))
    return cohort


def get_high_value_customers(db: Session, *, min_lifetime_value: Decimal | float = 1000) -> list[CohortCustomer]:
    lifetime_value = func.coalesce(Customer.lifetime_value, 0)
    rows = db.execute(
        select(Customer.id, lifetime_value, func.coalesce(Customer.total_jobs, 0))
        .where(
            Customer.deleted_at.is_(None),
            lifetime_value >= Decimal(str(min_lifetime_value)),
        )
        .order_by(lifetime_value.desc(), Customer.id.asc())
    ).all()
    return [
        CohortCustomer(
            customer_id=customer_id,
            lifetime_value=Decimal(str(value)),
            total_jobs=int(total_jobs),
        )
        for customer_id, value, total_jobs in rows
    ]
