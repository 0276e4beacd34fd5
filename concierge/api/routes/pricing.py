"""
Pricing endpoint
================

POST /api/v1/pricing/quote -- price one or more services for a vehicle
"""

from fastapi import APIRouter, Depends, Request

from concierge.api.dependencies import get_services
from concierge.api.middleware import limiter
from concierge.api.schemas import ErrorResponse, QuoteRequest, QuoteResponse
from concierge.config import settings
from concierge.domain.pricing import VehicleDescriptor
from concierge.services.container import Services

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.post(
    "/quote",
    response_model=QuoteResponse,
    summary="Quote service prices",
    description=(
        "Looks up the price matrix (exact model, then brand average, then "
        "defaults) and applies the vehicle-age multiplier. Amounts in cents."
    ),
    responses={400: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def quote(
    request: Request,
    body: QuoteRequest,
    services: Services = Depends(get_services),
):
    vehicle = VehicleDescriptor(
        brand=body.brand, model=body.model, year=body.year, mileage_km=body.mileage_km
    )
    quotes = await services.intake.quote(vehicle, body.services)
    return QuoteResponse(
        items=[q.as_dict() for q in quotes],
        total_cents=sum(q.final_price_cents for q in quotes),
    )
