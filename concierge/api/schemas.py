"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AwareDatetime, BaseModel, Field

from concierge.domain.enums import (
    ActorRole,
    AssignmentKind,
    AssignmentStatus,
    BookingAction,
    BookingStatus,
    ExtensionDecision,
    ExtensionPaymentStatus,
    ExtensionStatus,
    MileageTier,
    PriceSource,
    RetentionState,
    ServiceKind,
)


# ── Requests ──────────────────────────────────────────────────────────


class VehicleCreateRequest(BaseModel):
    brand: str = Field(..., min_length=1, max_length=80)
    model: str = Field(..., min_length=1, max_length=80)
    year: int = Field(..., ge=1900, le=2100)
    mileage: int = Field(..., ge=0)
    license_plate: Optional[str] = Field(None, max_length=20)


class BookingCreateRequest(BaseModel):
    vehicle_id: int
    services: list[ServiceKind] = Field(..., min_length=1)
    mileage_km: Optional[int] = Field(
        None, ge=0, description="Current odometer; defaults to the vehicle's recorded mileage."
    )
    pickup_window_start: AwareDatetime
    pickup_window_end: Optional[AwareDatetime] = None
    delivery_window_start: Optional[AwareDatetime] = None
    delivery_window_end: Optional[AwareDatetime] = None
    pickup_address: str = Field(..., min_length=1, max_length=255)
    pickup_city: str = Field(..., min_length=1, max_length=120)
    pickup_postal_code: str = Field(..., min_length=1, max_length=20)
    customer_notes: Optional[str] = Field(None, max_length=2000)


class PaymentConfirmationRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=128)
    amount_cents: int
    succeeded: bool = True
    failure_reason: Optional[str] = None


class StatusAdvanceRequest(BaseModel):
    status: BookingStatus


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class DispatchRequest(BaseModel):
    jockey_id: Optional[int] = None


class ExtensionItemSchema(BaseModel):
    name: str
    price_cents: int
    quantity: int = 1


class ExtensionCreateRequest(BaseModel):
    description: str
    items: list[ExtensionItemSchema]
    evidence: list[str] = Field(
        default_factory=list, description="Image / video references shown to the customer."
    )


class ExtensionResolveRequest(BaseModel):
    decision: ExtensionDecision
    reason: Optional[str] = Field(None, max_length=500)


class ProgressRequest(BaseModel):
    status: AssignmentStatus


class HandoverRequest(BaseModel):
    photos: list[str] = Field(default_factory=list)
    signature: Optional[str] = None
    odometer_km: Optional[int] = None
    notes: Optional[str] = None


class FailureRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)


class ReassignRequest(BaseModel):
    jockey_id: int


class QuoteRequest(BaseModel):
    brand: str
    model: str
    year: int
    mileage_km: int
    services: list[ServiceKind] = Field(..., min_length=1)


class ErasureRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


# ── Responses ─────────────────────────────────────────────────────────


class VehicleResponse(BaseModel):
    id: int
    customer_id: int
    brand: str
    model: str
    year: int
    mileage: int
    license_plate: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    booking_number: str
    customer_id: int
    vehicle_id: Optional[int] = None
    vehicle_brand: str
    vehicle_model: str
    vehicle_year: int
    mileage_at_booking: int
    services: list[dict]
    total_price_cents: int
    status: BookingStatus
    pickup_window_start: datetime
    pickup_window_end: Optional[datetime] = None
    delivery_window_start: Optional[datetime] = None
    delivery_window_end: Optional[datetime] = None
    pickup_address: str
    pickup_city: str
    pickup_postal_code: str
    customer_notes: Optional[str] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    retention_state: RetentionState
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class StatusEventResponse(BaseModel):
    from_status: BookingStatus
    to_status: BookingStatus
    action: BookingAction
    actor_role: ActorRole
    actor_id: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ExtensionResponse(BaseModel):
    id: int
    booking_id: int
    description: str
    items: list[dict]
    total_cents: int
    evidence: list[str] = []
    status: ExtensionStatus
    payment_status: ExtensionPaymentStatus
    capture_attempts: int
    last_payment_error: Optional[str] = None
    decline_reason: Optional[str] = None
    approved_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AssignmentResponse(BaseModel):
    id: int
    booking_id: int
    kind: AssignmentKind
    jockey_id: Optional[int] = None
    scheduled_at: datetime
    status: AssignmentStatus
    photos: Optional[list[str]] = None
    signature: Optional[str] = None
    odometer_km: Optional[int] = None
    notes: Optional[str] = None
    failure_reason: Optional[str] = None
    arrived_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class HandoverResponse(BaseModel):
    assignment: AssignmentResponse
    booking: BookingResponse


class PriceQuoteResponse(BaseModel):
    kind: ServiceKind
    base_price_cents: int
    age_multiplier: str
    price_cents: int
    price_source: PriceSource
    mileage_tier: MileageTier
    vehicle_age_years: int


class QuoteResponse(BaseModel):
    items: list[PriceQuoteResponse]
    total_cents: int


class ErasureResponse(BaseModel):
    deleted_at: datetime
    anonymized_bookings: int
    deleted_bookings: int
    deleted_extensions: int
    deleted_assignments: int
    vehicles: int
    sessions: int
    notifications: int
    retention_reason: str

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
    retryable: bool = False
