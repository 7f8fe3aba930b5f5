from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from spa_coupons.core.config import settings


class Base(DeclarativeBase):
    pass


def _engine_kwargs(url: str) -> dict:
    if url.startswith("postgresql"):
        return {
            "pool_size": 10,
            "max_overflow": 20,
            "pool_recycle": 3600,
            "pool_pre_ping": True,
            "connect_args": {"server_settings": {"timezone": "UTC"}},
        }
    return {}


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    **_engine_kwargs(settings.DATABASE_URL),
)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as db:
        yield db


async def check_db_connection(session_factory: async_sessionmaker | None = None) -> bool:
    factory = session_factory or AsyncSessionLocal
    try:
        async with factory() as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def insert_if_absent(db: AsyncSession, model, *, index_elements: list[str], values: dict) -> None:
    """
    INSERT ... ON CONFLICT DO NOTHING for the dialects we run on.
    Concurrent callers racing on the same key both end up with one row.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"insert_if_absent is not supported on {dialect}")

    stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    await db.execute(stmt)
