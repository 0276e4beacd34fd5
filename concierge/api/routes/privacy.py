"""
Privacy (GDPR) endpoints
========================

GET  /api/v1/privacy/users/{id}/export   -- Art. 15 / 20 data export
GET  /api/v1/privacy/users/{id}/summary  -- retention / compliance overview
POST /api/v1/privacy/users/{id}/erasure  -- Art. 17 erasure
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from concierge.api.dependencies import get_actor, get_services
from concierge.api.middleware import limiter
from concierge.api.schemas import ErasureRequest, ErasureResponse, ErrorResponse
from concierge.config import settings
from concierge.domain.entities import Actor
from concierge.services.container import Services

router = APIRouter(prefix="/privacy", tags=["privacy"])


@router.get("/users/{user_id}/export", summary="Export personal data")
@limiter.limit(settings.rate_limit)
async def export_user_data(
    request: Request,
    user_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.export_user_data(user_id, actor)


@router.get("/users/{user_id}/summary", summary="Compliance summary")
@limiter.limit(settings.rate_limit)
async def compliance_summary(
    request: Request,
    user_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.compliance_summary(user_id, actor)


@router.post(
    "/users/{user_id}/erasure",
    response_model=ErasureResponse,
    summary="Erase personal data",
    description=(
        "Anonymizes bookings older than the retention period, deletes the "
        "newer ones and deactivates the account. Rejected while a vehicle "
        "is in custody."
    ),
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def request_erasure(
    request: Request,
    user_id: int,
    body: Optional[ErasureRequest] = None,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.request_erasure(
        user_id, actor, reason=body.reason if body else None
    )
