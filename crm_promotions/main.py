from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_promotions.core.config import settings
from crm_promotions.core.deps import get_db
from crm_promotions.core.observability import install_observability
from crm_promotions.routers import promotions

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Promotion delivery and automated trigger engine.\n\n"
        "Scheduled jobs call `POST /promotions/triggers/run` and "
        "`POST /promotions/deliveries/process` with the `X-Cron-Secret` header."
    ),
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "promotions", "description": "Promotion delivery, delivery queue, and trigger runs."},
    ],
)

install_observability(app)

app.include_router(promotions.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return {"ok": False}
    return {"ok": True}
