"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) in a temporary directory
so tests run without Docker / PostgreSQL / Redis, while still letting
several sessions work concurrently the way the workflow services do.
Locks come from the in-process registry and the payment processor is an
``AsyncMock``.  The clock is pinned so prices and booking numbers are
deterministic.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from concierge.api.middleware import limiter
from concierge.config import Settings
from concierge.domain.entities import Actor, HandoverEvidence, PaymentConfirmation, PaymentResult
from concierge.domain.enums import ActorRole, AssignmentKind, BookingStatus, ServiceKind, UserRole
from concierge.infrastructure.database import Base
from concierge.infrastructure.locks import LocalLockRegistry
from concierge.infrastructure.models import (
    BookingModel,
    JockeyAssignmentModel,
    PriceMatrixModel,
    UserModel,
    VehicleModel,
)
from concierge.infrastructure.repositories import AssignmentRepository
from concierge.services.booking_intake import BookingRequest
from concierge.services.container import Services, build_services


NOW = datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


EVIDENCE = HandoverEvidence(
    photos=("photo://front.jpg", "photo://odometer.jpg"),
    signature="sig:lena-schmidt",
    odometer_km=60_150,
    notes="Small scratch on rear bumper",
)

# All prices in cents.
PRICE_MATRIX = [
    {"brand": "VW", "model": "Golf", "year_from": 2012, "year_to": 2019,
     "inspection_30k": 18_900, "inspection_60k": 21_900, "inspection_90k": 28_900, "inspection_120k": 34_900,
     "oil_service": 15_900, "brake_service_front": 34_900, "brake_service_rear": 29_900,
     "tuv": 12_000, "climate_service": 14_000},
    {"brand": "VW", "model": "Golf", "year_from": 2020, "year_to": 2026,
     "inspection_30k": 19_900, "inspection_60k": 23_900, "inspection_90k": 30_900, "inspection_120k": 36_900,
     "oil_service": 16_900, "brake_service_front": 36_900, "brake_service_rear": 31_900,
     "tuv": 12_000, "climate_service": 14_500},
    {"brand": "VW", "model": "Passat", "year_from": 2015, "year_to": 2023,
     "inspection_30k": 21_900, "inspection_60k": 25_900, "inspection_90k": 32_900, "inspection_120k": 39_900,
     "oil_service": 17_900, "brake_service_front": 38_900, "brake_service_rear": 32_900,
     "tuv": 12_000, "climate_service": 15_000},
    {"brand": "BMW", "model": "3er", "year_from": 2012, "year_to": 2026,
     "inspection_30k": 24_900, "inspection_60k": 29_900, "inspection_90k": 36_900, "inspection_120k": 44_900,
     "oil_service": 19_900, "brake_service_front": 42_900, "brake_service_rear": 37_900,
     "tuv": 12_500, "climate_service": 16_000},
]


def booking_request(vehicle_id: int, **overrides) -> BookingRequest:
    fields = dict(
        vehicle_id=vehicle_id,
        services=[ServiceKind.INSPECTION],
        pickup_window_start=NOW + timedelta(days=1),
        pickup_window_end=NOW + timedelta(days=1, hours=2),
        delivery_window_start=NOW + timedelta(days=3),
        pickup_address="Hauptstraße 12",
        pickup_city="Bielefeld",
        pickup_postal_code="33602",
        customer_notes="Key is with the neighbour",
    )
    fields.update(overrides)
    return BookingRequest(**fields)


# ── Infrastructure ────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _rate_limit_off():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables in a fresh database file, then dispose."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concierge.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def config() -> Settings:
    return Settings(
        lock_backend="local",
        lock_wait_seconds=5.0,
        extension_capture_mode="immediate",
        max_capture_attempts=3,
        payment_timeout_seconds=2.0,
        reconciliation_enabled=False,
    )


@pytest.fixture
def payments():
    """Payment processor double: authorizes and captures everything."""
    gateway = AsyncMock()
    gateway.authorize = AsyncMock(
        return_value=PaymentResult(success=True, authorization_id="auth_test_1")
    )
    gateway.capture = AsyncMock(
        return_value=PaymentResult(success=True, authorization_id="auth_test_1")
    )
    return gateway


@pytest.fixture
def locks() -> LocalLockRegistry:
    return LocalLockRegistry(wait_seconds=5.0)


@pytest.fixture
def services(session_factory, locks, payments, config) -> Services:
    return build_services(session_factory, locks, payments, config=config, clock=fixed_clock)


# ── Data ──────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def world(session_factory) -> SimpleNamespace:
    """Two customers, two jockeys, a workshop, an admin, one VW Golf, prices."""
    async with session_factory() as session:
        customer = UserModel(
            role=UserRole.CUSTOMER, email="lena.schmidt@example.com",
            first_name="Lena", last_name="Schmidt", phone="+49 521 1234567",
            street="Hauptstraße 12", city="Bielefeld", postal_code="33602",
        )
        other = UserModel(
            role=UserRole.CUSTOMER, email="jonas.weber@example.com",
            first_name="Jonas", last_name="Weber",
        )
        jockey_1 = UserModel(role=UserRole.JOCKEY, email="jockey1@example.com", first_name="Tim")
        jockey_2 = UserModel(role=UserRole.JOCKEY, email="jockey2@example.com", first_name="Sara")
        workshop = UserModel(role=UserRole.WORKSHOP, email="werkstatt@example.com")
        admin = UserModel(role=UserRole.ADMIN, email="admin@example.com")
        session.add_all([customer, other, jockey_1, jockey_2, workshop, admin])
        await session.flush()

        vehicle = VehicleModel(
            customer_id=customer.id, brand="VW", model="Golf", year=2015,
            mileage=60_000, license_plate="BI-LS 215",
        )
        session.add(vehicle)
        session.add_all(PriceMatrixModel(**row) for row in PRICE_MATRIX)
        await session.commit()

    return SimpleNamespace(
        customer=Actor(customer.id, ActorRole.CUSTOMER),
        other_customer=Actor(other.id, ActorRole.CUSTOMER),
        jockeys=[Actor(jockey_1.id, ActorRole.JOCKEY), Actor(jockey_2.id, ActorRole.JOCKEY)],
        workshop=Actor(workshop.id, ActorRole.WORKSHOP),
        admin=Actor(admin.id, ActorRole.ADMIN),
        system=Actor.system(),
        vehicle_id=vehicle.id,
    )


@pytest.fixture
def assignment_of(session_factory):
    async def _assignment_of(booking_id: int, kind: AssignmentKind) -> JockeyAssignmentModel:
        async with session_factory() as session:
            return await AssignmentRepository(session).get_for_booking(booking_id, kind)

    return _assignment_of


@pytest.fixture
def booking_at(services, world, assignment_of):
    """Create a booking and drive it along the happy path up to *target*."""

    async def _step(booking: BookingModel) -> BookingModel:
        status = booking.status
        if status == BookingStatus.PENDING_PAYMENT:
            return await services.bookings.confirm_payment(
                booking.id,
                PaymentConfirmation(f"pay-{booking.id}", booking.total_price_cents),
                world.system,
            )
        if status in (BookingStatus.JOCKEY_ASSIGNED, BookingStatus.RETURN_ASSIGNED):
            kind = (
                AssignmentKind.PICKUP
                if status == BookingStatus.JOCKEY_ASSIGNED
                else AssignmentKind.RETURN
            )
            assignment = await assignment_of(booking.id, kind)
            _, booking = await services.bookings.complete_handover(
                assignment.id, EVIDENCE, Actor(assignment.jockey_id, ActorRole.JOCKEY)
            )
            return booking
        following = {
            BookingStatus.PICKED_UP: BookingStatus.AT_WORKSHOP,
            BookingStatus.AT_WORKSHOP: BookingStatus.IN_SERVICE,
            BookingStatus.IN_SERVICE: BookingStatus.READY_FOR_RETURN,
        }
        if status in following:
            return await services.bookings.advance_status(
                booking.id, following[status], world.workshop
            )
        if status == BookingStatus.RETURNED:
            return await services.bookings.complete_booking(booking.id, world.workshop)
        raise AssertionError(f"no way forward from {status.value}")

    async def _booking_at(target: BookingStatus, **overrides) -> BookingModel:
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id, **overrides), world.customer
        )
        while booking.status != target:
            booking = await _step(booking)
        return booking

    return _booking_at
