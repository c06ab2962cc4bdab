"""
Database engine and session factory.

Provides the async SQLAlchemy engine used by the stores. The schema is
managed by the Alembic migrations under alembic/versions.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from xmrpay.models.base import Base


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create async engine.

    Args:
        database_url: SQLAlchemy async URL (postgresql+asyncpg://, sqlite+aiosqlite://)
        echo: Log SQL statements

    Returns:
        AsyncEngine instance
    """
    kwargs = {"echo": echo}
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=5)
    return create_async_engine(database_url, **kwargs)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create session factory.

    Sessions keep loaded attributes after commit so that returned entities
    stay usable once the session is closed.
    """
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet, bypassing migrations."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
