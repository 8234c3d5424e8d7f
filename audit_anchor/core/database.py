"""
Async database setup using SQLModel with aiosqlite.
"""

from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker

from audit_anchor.models import *

from audit_anchor.core.config import get_settings

settings = get_settings()

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
)


AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    class_=AsyncSession
)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Build a session factory with the same options as the default one."""
    return async_sessionmaker(bind=bind, expire_on_commit=False, class_=AsyncSession)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Initialize database tables."""
    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db(bind: AsyncEngine = engine) -> None:
    """Close database connections."""
    await bind.dispose()
