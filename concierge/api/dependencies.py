"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.domain.entities import Actor
from concierge.domain.enums import ActorRole
from concierge.infrastructure.database import async_session_factory
from concierge.services.container import Services


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    """
    The caller as asserted by the upstream gateway.  Authentication itself
    happens there; a request without a usable identity is rejected.
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor identity")
    try:
        return Actor(id=int(x_actor_id), role=ActorRole(x_actor_role.lower()))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid actor identity") from None


def get_services(request: Request) -> Services:
    return request.app.state.services
