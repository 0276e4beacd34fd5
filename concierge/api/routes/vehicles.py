"""
Vehicle endpoints
=================

POST /api/v1/vehicles  -- register a vehicle (customer)
GET  /api/v1/vehicles  -- list own vehicles
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.dependencies import get_actor, get_db
from concierge.api.middleware import limiter
from concierge.api.schemas import VehicleCreateRequest, VehicleResponse
from concierge.config import settings
from concierge.domain.entities import Actor
from concierge.domain.enums import ActorRole
from concierge.infrastructure.models import VehicleModel
from concierge.infrastructure.repositories import VehicleRepository

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


def _require_customer(actor: Actor) -> None:
    if actor.role != ActorRole.CUSTOMER:
        raise HTTPException(status_code=403, detail="Only customers manage vehicles")


@router.post("", status_code=201, response_model=VehicleResponse, summary="Register a vehicle")
@limiter.limit(settings.rate_limit)
async def create_vehicle(
    request: Request,
    body: VehicleCreateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    _require_customer(actor)
    return await VehicleRepository(db).create(
        VehicleModel(
            customer_id=actor.id,
            brand=body.brand.strip(),
            model=body.model.strip(),
            year=body.year,
            mileage=body.mileage,
            license_plate=body.license_plate,
        )
    )


@router.get("", response_model=list[VehicleResponse])
@limiter.limit(settings.rate_limit)
async def list_vehicles(
    request: Request,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    _require_customer(actor)
    return await VehicleRepository(db).list_for_customer(actor.id)
