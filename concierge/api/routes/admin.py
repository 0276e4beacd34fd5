"""
Admin / observability endpoints
===============================

GET /api/v1/admin/outstanding-captures -- approved extensions not yet paid
GET /api/v1/admin/health               -- simple health check
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from concierge.api.dependencies import get_actor, get_services
from concierge.api.middleware import limiter
from concierge.api.schemas import ExtensionResponse, HealthResponse
from concierge.config import settings
from concierge.domain.entities import Actor
from concierge.domain.enums import ActorRole
from concierge.services.container import Services

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/outstanding-captures",
    response_model=list[ExtensionResponse],
    summary="List approved extensions whose payment is not captured",
)
@limiter.limit(settings.rate_limit)
async def outstanding_captures(
    request: Request,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    if actor.role not in (ActorRole.ADMIN, ActorRole.WORKSHOP, ActorRole.SYSTEM):
        raise HTTPException(status_code=403, detail="Staff only")
    return await services.extensions.outstanding_captures()


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
