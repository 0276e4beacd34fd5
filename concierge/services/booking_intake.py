"""
Booking intake: price quotes and new bookings.

A booking copies the vehicle's brand, model, year and mileage at creation
time and stores the per-service price breakdown, so later edits to the
vehicle or the price matrix never change what the customer agreed to pay.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .transitions import require_role
from .unit_of_work import read_session, storage_errors
from concierge.domain.entities import Actor
from concierge.domain.enums import ActorRole, BookingStatus, RetentionState, ServiceKind
from concierge.domain.errors import (
    ConcurrentModification,
    NotFound,
    PreconditionFailed,
    ValidationFailed,
)
from concierge.domain.pricing import PriceQuote, PricingEngine, VehicleDescriptor
from concierge.infrastructure.models import BookingModel, VehicleModel, utcnow
from concierge.infrastructure.repositories import (
    BookingRepository,
    PriceMatrixRepository,
    VehicleRepository,
)

logger = logging.getLogger(__name__)

_NUMBER_ATTEMPTS = 3


@dataclass
class BookingRequest:
    vehicle_id: int
    services: list[ServiceKind]
    pickup_window_start: datetime
    pickup_address: str
    pickup_city: str
    pickup_postal_code: str
    pickup_window_end: Optional[datetime] = None
    delivery_window_start: Optional[datetime] = None
    delivery_window_end: Optional[datetime] = None
    customer_notes: Optional[str] = None
    mileage_km: Optional[int] = None


def booking_number_prefix(at: datetime) -> str:
    return f"BK{at:%y%m}"


def next_booking_number(prefix: str, last: Optional[str]) -> str:
    """``BK`` + YYMM + a 4-digit sequence that restarts every month."""
    sequence = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{sequence:04d}"


class BookingIntake:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pricing: Optional[PricingEngine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.pricing = pricing or PricingEngine()
        self.clock = clock

    async def quote(
        self, vehicle: VehicleDescriptor, services: list[ServiceKind]
    ) -> list[PriceQuote]:
        if not services:
            raise ValidationFailed("at least one service is required")
        async with read_session(self.session_factory) as session:
            return await self._quote(session, vehicle, services)

    async def _quote(
        self, session: AsyncSession, vehicle: VehicleDescriptor, services: list[ServiceKind]
    ) -> list[PriceQuote]:
        entries = await PriceMatrixRepository(session).entries_for_brand(vehicle.brand)
        current_year = self.clock().year
        return [
            self.pricing.quote(entries, vehicle, ServiceKind(service), current_year)
            for service in services
        ]

    def _validate(self, request: BookingRequest, now: datetime) -> None:
        if not request.services:
            raise ValidationFailed("at least one service is required")
        if len(set(request.services)) != len(request.services):
            raise ValidationFailed("each service may be booked only once")
        for name in ("pickup_address", "pickup_city", "pickup_postal_code"):
            value = getattr(request, name)
            if not value or not value.strip():
                raise ValidationFailed(f"{name} must not be empty")
        if request.pickup_window_start <= now:
            raise PreconditionFailed("pickup window must start in the future")
        if request.pickup_window_end and request.pickup_window_end <= request.pickup_window_start:
            raise ValidationFailed("pickup window must end after it starts")
        if (
            request.delivery_window_start
            and request.delivery_window_start < request.pickup_window_start
        ):
            raise ValidationFailed("delivery window cannot start before pickup")
        if (
            request.delivery_window_start
            and request.delivery_window_end
            and request.delivery_window_end <= request.delivery_window_start
        ):
            raise ValidationFailed("delivery window must end after it starts")

    async def create_booking(self, request: BookingRequest, actor: Actor) -> BookingModel:
        require_role(actor, {ActorRole.CUSTOMER}, "create a booking")
        now = self.clock()
        self._validate(request, now)

        for attempt in range(1, _NUMBER_ATTEMPTS + 1):
            try:
                return await self._insert(request, actor, now)
            except IntegrityError:
                logger.info("Booking number collision, retrying (attempt %d)", attempt)
        raise ConcurrentModification("could not allocate a booking number; retry")

    async def _insert(
        self, request: BookingRequest, actor: Actor, now: datetime
    ) -> BookingModel:
        async with storage_errors():
            async with self.session_factory() as session:
                async with session.begin():
                    vehicle = await self._owned_vehicle(session, request.vehicle_id, actor)
                    mileage = request.mileage_km if request.mileage_km is not None else vehicle.mileage
                    descriptor = VehicleDescriptor(
                        brand=vehicle.brand,
                        model=vehicle.model,
                        year=vehicle.year,
                        mileage_km=mileage,
                    )
                    quotes = await self._quote(session, descriptor, request.services)

                    repo = BookingRepository(session)
                    prefix = booking_number_prefix(now)
                    number = next_booking_number(
                        prefix, await repo.last_number_with_prefix(prefix)
                    )
                    booking = await repo.create(
                        BookingModel(
                            booking_number=number,
                            customer_id=actor.id,
                            vehicle_id=vehicle.id,
                            vehicle_brand=vehicle.brand,
                            vehicle_model=vehicle.model,
                            vehicle_year=vehicle.year,
                            mileage_at_booking=mileage,
                            services=[q.as_dict() for q in quotes],
                            total_price_cents=sum(q.final_price_cents for q in quotes),
                            status=BookingStatus.PENDING_PAYMENT,
                            pickup_window_start=request.pickup_window_start,
                            pickup_window_end=request.pickup_window_end,
                            delivery_window_start=request.delivery_window_start,
                            delivery_window_end=request.delivery_window_end,
                            pickup_address=request.pickup_address.strip(),
                            pickup_city=request.pickup_city.strip(),
                            pickup_postal_code=request.pickup_postal_code.strip(),
                            customer_notes=request.customer_notes,
                            retention_state=RetentionState.ACTIVE,
                        )
                    )
        logger.info(
            "Booking %d (%s) created for customer %d: %d cents",
            booking.id, booking.booking_number, actor.id, booking.total_price_cents,
        )
        return booking

    @staticmethod
    async def _owned_vehicle(
        session: AsyncSession, vehicle_id: int, actor: Actor
    ) -> VehicleModel:
        vehicle = await VehicleRepository(session).get_by_id(vehicle_id)
        if vehicle is None or vehicle.customer_id != actor.id:
            raise NotFound(f"vehicle {vehicle_id} not found")
        return vehicle
