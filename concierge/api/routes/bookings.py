"""
Booking endpoints
=================

POST /api/v1/bookings                            -- create (customer)
GET  /api/v1/bookings/{id}                       -- read
GET  /api/v1/bookings/{id}/history               -- applied transitions
POST /api/v1/bookings/{id}/payment-confirmation  -- payment processor callback
POST /api/v1/bookings/{id}/status                -- workshop step
POST /api/v1/bookings/{id}/complete              -- close after return
POST /api/v1/bookings/{id}/cancel                -- cancel before custody
POST /api/v1/bookings/{id}/dispatch              -- retry jockey dispatch
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from concierge.api.dependencies import get_actor, get_services
from concierge.api.middleware import limiter
from concierge.api.schemas import (
    BookingCreateRequest,
    BookingResponse,
    CancelRequest,
    DispatchRequest,
    ErrorResponse,
    PaymentConfirmationRequest,
    StatusAdvanceRequest,
    StatusEventResponse,
)
from concierge.config import settings
from concierge.domain.entities import Actor, PaymentConfirmation
from concierge.services.booking_intake import BookingRequest
from concierge.services.container import Services

router = APIRouter(prefix="/bookings", tags=["bookings"])

_ERRORS = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Create a booking",
    description=(
        "Prices each service from the customer's vehicle and stores the "
        "booking in PENDING_PAYMENT."
    ),
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.intake.create_booking(
        BookingRequest(**body.model_dump()), actor
    )


@router.get("/{booking_id}", response_model=BookingResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.bookings.get_booking(booking_id, actor)


@router.get(
    "/{booking_id}/history",
    response_model=list[StatusEventResponse],
    summary="Status history",
)
@limiter.limit(settings.rate_limit)
async def get_history(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.bookings.status_history(booking_id, actor)


@router.post(
    "/{booking_id}/payment-confirmation",
    response_model=BookingResponse,
    summary="Payment processor callback",
    description=(
        "Confirms the booking when the payment succeeded and matches the "
        "total, then dispatches the pickup jockey. Redelivery of an already "
        "applied callback is acknowledged without changes."
    ),
    responses={402: {"model": ErrorResponse}, **_ERRORS},
)
@limiter.limit(settings.rate_limit)
async def confirm_payment(
    request: Request,
    booking_id: int,
    body: PaymentConfirmationRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.bookings.confirm_payment(
        booking_id, PaymentConfirmation(**body.model_dump()), actor
    )


@router.post(
    "/{booking_id}/status",
    response_model=BookingResponse,
    summary="Advance workshop status",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def advance_status(
    request: Request,
    booking_id: int,
    body: StatusAdvanceRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.bookings.advance_status(booking_id, body.status, actor)


@router.post("/{booking_id}/complete", response_model=BookingResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit)
async def complete_booking(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.bookings.complete_booking(booking_id, actor)


@router.post("/{booking_id}/cancel", response_model=BookingResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit)
async def cancel_booking(
    request: Request,
    booking_id: int,
    body: Optional[CancelRequest] = None,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.bookings.cancel_booking(
        booking_id, actor, body.reason if body else None
    )


@router.post("/{booking_id}/dispatch", response_model=BookingResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit)
async def dispatch_pending(
    request: Request,
    booking_id: int,
    body: Optional[DispatchRequest] = None,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.bookings.dispatch_pending(
        booking_id, actor, body.jockey_id if body else None
    )
