from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from splitsmart.config import settings
from splitsmart.db.models import Base


def create_engine(database_url: Optional[str] = None, *, echo: Optional[bool] = None) -> AsyncEngine:
    return create_async_engine(
        database_url or settings.database_url,
        echo=settings.sql_echo if echo is None else echo,
        pool_pre_ping=True,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
