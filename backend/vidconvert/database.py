"""Async database engine and session factory."""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from vidconvert.config import settings


class Base(DeclarativeBase):
    """Declarative base for all tables."""


engine = create_async_engine(settings.DATABASE_URL, echo=False)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(bind: Optional[AsyncEngine] = None):
    """
    Create all tables.

    Args:
        bind: Engine to create tables on (defaults to the configured engine)
    """
    # Register tables on Base.metadata
    from vidconvert.models import job, video  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
