from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Enum
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from cover.config import settings

# SQLite (tests, local tooling) runs without a sized connection pool.
_pool_args = {} if settings.database_url.startswith("sqlite") else {
    "pool_size": settings.db_pool_size,
    "max_overflow": settings.db_max_overflow,
    "pool_pre_ping": True,
    "pool_recycle": 3600,
}

engine = create_async_engine(settings.database_url, echo=False, **_pool_args)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_column(enum_cls: type[PyEnum]) -> Enum:
    """Store a str-Enum by value in a plain VARCHAR column."""
    return Enum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )
