import hmac
from collections.abc import Generator

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from crm_promotions.core.config import settings
from crm_promotions.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def require_cron_secret(x_cron_secret: str | None = Header(default=None)) -> None:
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, settings.cron_secret):
        raise HTTPException(status_code=401, detail="Invalid or missing cron secret")
