from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from core.config import settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    # Naive UTC, stored with microseconds so point-in-time sums are exact
    return datetime.now(timezone.utc).replace(tzinfo=None)


engine = create_async_engine(settings.database_url, echo=settings.database_echo)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables():
    # Import models so every table is registered on Base.metadata
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


@asynccontextmanager
async def transaction(db: AsyncSession):
    """
    One all-or-nothing unit on an existing session.

    The session may already have autobegun (FastAPI dependencies share it),
    so this commits/rolls back the current transaction instead of calling
    `db.begin()`.
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
