"""
Database connection

Async SQLAlchemy engine and session factory backing the ``sql`` registry backend.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from src.core.config import settings


Base = declarative_base()

engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(database_url: str) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url)
    return create_async_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
    )


def init_database(database_url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    global engine, AsyncSessionLocal
    if AsyncSessionLocal is None:
        engine = build_engine(database_url or settings.database_url)
        AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)
    return AsyncSessionLocal


async def create_all(target: Optional[AsyncEngine] = None) -> None:
    """Create registry tables (development and tests)."""
    # register the ORM models on Base.metadata
    from src.domains.rescuers import models as _rescuer_models  # noqa: F401
    from src.domains.tickets import models as _ticket_models  # noqa: F401

    if target is None:
        init_database()
        target = engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
