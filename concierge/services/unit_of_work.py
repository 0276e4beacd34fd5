"""
Transaction scaffolding shared by the workflow services.

``booking_transaction`` is the only way a service mutates a booking or
anything hanging off it:

    lock "booking:<id>"  ->  session + BEGIN  ->  (caller reads FOR UPDATE,
    validates, mutates)  ->  COMMIT  ->  release lock

Any exception inside the block rolls the transaction back, so a rejected
request leaves no partial write.  A stale optimistic-version write becomes
``ConcurrentModification``; an unreachable or slow database becomes
``ExternalDependencyFailure``.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from concierge.domain.errors import ConcurrentModification, ExternalDependencyFailure
from concierge.infrastructure.locks import booking_lock_key


class LockProvider(Protocol):
    def hold(self, key: str): ...


@asynccontextmanager
async def storage_errors() -> AsyncIterator[None]:
    try:
        yield
    except StaleDataError as exc:
        raise ConcurrentModification(
            "booking was modified concurrently; re-read and retry"
        ) from exc
    except (OperationalError, PoolTimeoutError, asyncio.TimeoutError) as exc:
        raise ExternalDependencyFailure(f"storage unavailable: {exc}") from exc


@asynccontextmanager
async def booking_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    locks: LockProvider,
    booking_id: int,
) -> AsyncIterator[AsyncSession]:
    async with locks.hold(booking_lock_key(booking_id)):
        async with storage_errors():
            async with session_factory() as session:
                async with session.begin():
                    yield session


@asynccontextmanager
async def read_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Plain read: no lock, no explicit transaction."""
    async with storage_errors():
        async with session_factory() as session:
            yield session
