"""
Extension endpoints
===================

POST /api/v1/bookings/{id}/extensions  -- workshop proposes extra work
GET  /api/v1/bookings/{id}/extensions  -- list a booking's extensions
POST /api/v1/extensions/{id}/resolve   -- customer approves / declines
POST /api/v1/extensions/{id}/capture   -- capture an approved extension
"""

from fastapi import APIRouter, Depends, Request

from concierge.api.dependencies import get_actor, get_services
from concierge.api.middleware import limiter
from concierge.api.schemas import (
    ErrorResponse,
    ExtensionCreateRequest,
    ExtensionResolveRequest,
    ExtensionResponse,
)
from concierge.config import settings
from concierge.domain.entities import Actor, ExtensionItem
from concierge.services.container import Services

router = APIRouter(tags=["extensions"])


@router.post(
    "/bookings/{booking_id}/extensions",
    status_code=201,
    response_model=ExtensionResponse,
    summary="Propose additional work",
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def create_extension(
    request: Request,
    booking_id: int,
    body: ExtensionCreateRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    items = [ExtensionItem(i.name, i.price_cents, i.quantity) for i in body.items]
    return await services.extensions.create_extension(
        booking_id, body.description, items, body.evidence, actor
    )


@router.get("/bookings/{booking_id}/extensions", response_model=list[ExtensionResponse])
@limiter.limit(settings.rate_limit)
async def list_extensions(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.extensions.list_extensions(booking_id, actor)


@router.post(
    "/extensions/{extension_id}/resolve",
    response_model=ExtensionResponse,
    summary="Approve or decline an extension",
    description=(
        "Approval authorizes the extension total with the payment processor; "
        "a declined authorization leaves the extension PENDING."
    ),
    responses={402: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def resolve_extension(
    request: Request,
    extension_id: int,
    body: ExtensionResolveRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.extensions.resolve_extension(
        extension_id, body.decision, actor, reason=body.reason
    )


@router.post(
    "/extensions/{extension_id}/capture",
    response_model=ExtensionResponse,
    summary="Capture an approved extension",
    description=(
        "A processor failure is recorded on the extension (CAPTURE_FAILED) "
        "and returned; it does not undo the approval."
    ),
)
@limiter.limit(settings.rate_limit)
async def capture_extension(
    request: Request,
    extension_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.extensions.capture_extension(extension_id, actor)
