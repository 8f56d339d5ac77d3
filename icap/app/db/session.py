"""
Database engine and session management.

PostgreSQL through asyncpg in deployment; any SQLAlchemy async URL works,
SQLite included for local runs and tests.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from icap.app.core.config import settings


def _engine_options(database_url: str) -> dict:
    # SQLite does not accept pool sizing arguments
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
    }


engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    **_engine_options(settings.database_url),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def init_models() -> None:
    """Create missing tables. Existing tables are left untouched."""
    # Registers the mapped classes on Base.metadata
    from icap.app.models import order, tracking_point  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping(db: AsyncSession) -> None:
    """Round-trip to the database; raises when it is unreachable."""
    await db.execute(text("SELECT 1"))


async def get_db():
    """
    FastAPI dependency for database sessions.

    Uncommitted work is rolled back when the request fails.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
