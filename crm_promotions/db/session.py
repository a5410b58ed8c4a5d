from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import sessionmaker

from crm_promotions.core.config import settings


def build_engine(database_url: str) -> Engine:
    if database_url.lower().startswith("sqlite"):
        # The queue worker and API threads share one file database in local runs.
        return create_engine(database_url, connect_args={"check_same_thread": False})

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout_seconds,
        pool_recycle=settings.db_pool_recycle_seconds,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
