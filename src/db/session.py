"""SQLAlchemy async session setup for the expertise engine.

Provides:
- Base: DeclarativeBase for all ORM models
- engine: async engine configured from settings
- async_session_factory: session maker bound to engine
- get_async_session: Unit-of-Work session (commit on success, rollback on error)
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.config.settings import Environment, get_settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


_settings = get_settings()

engine = create_async_engine(
    _settings.DATABASE_URL,
    echo=(_settings.ENVIRONMENT == Environment.DEV),
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session with Unit-of-Work semantics.

    Repositories only call add()/flush()/refresh(). Publish and rollback
    run inside one of these sessions: commit happens once when the caller's
    unit of work succeeds, and any exception rolls every write back.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
