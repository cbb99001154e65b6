"""SQLAlchemy async engine + session factory for SQLite."""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from skillshub.config import settings

engine = create_async_engine(settings.database_url, echo=settings.echo_sql)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:  # type: ignore[misc]
    async with async_session() as session:
        yield session


async def init_db() -> None:
    """Create all tables (dev convenience — use Alembic in production)."""
    import skillshub.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo on round trip)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
