"""Database session management."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from ..core.config import settings

DATABASE_URL = settings.database_url or "sqlite+aiosqlite:///./sync_engine.db"

engine = create_async_engine(
    DATABASE_URL,
    echo=settings.debug,
    future=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(db_engine: AsyncEngine = engine) -> None:
    """Initialize database tables."""
    async with db_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
