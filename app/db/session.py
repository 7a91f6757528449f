"""Async engine, session factory and declarative base for the finance ledger."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

# pool_pre_ping: drop connections the server closed while they sat idle in the pool.
# pool_recycle: replace pooled connections older than this many seconds.
engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    future=True,
    pool_pre_ping=True,
    pool_recycle=settings.database_pool_recycle,
)

# Ledger reads keep using ORM objects after commit (transactions, discounts)
LedgerSession = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with LedgerSession() as session:
        yield session
