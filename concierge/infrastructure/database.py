"""
Async SQLAlchemy engine and session factory.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O.  Every
storage call is bounded: the pool waits at most ``db_pool_timeout_seconds``
for a connection and asyncpg cancels statements after
``db_command_timeout_seconds``.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from concierge.config import settings


def _connect_args(url: str) -> dict:
    if url.startswith("postgresql+asyncpg"):
        return {"command_timeout": settings.db_command_timeout_seconds}
    return {}


engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_timeout=settings.db_pool_timeout_seconds,
    connect_args=_connect_args(settings.database_url),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""
