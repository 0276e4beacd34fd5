"""
Jockey assignment endpoints
===========================

GET  /api/v1/assignments                  -- own tasks (jockey) or all (staff)
GET  /api/v1/assignments/{id}
POST /api/v1/assignments/{id}/progress    -- EN_ROUTE / AT_LOCATION
POST /api/v1/assignments/{id}/handover    -- complete with evidence
POST /api/v1/assignments/{id}/failure     -- report a failed task
POST /api/v1/assignments/{id}/reassign    -- hand to another jockey
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from concierge.api.dependencies import get_actor, get_services
from concierge.api.middleware import limiter
from concierge.api.schemas import (
    AssignmentResponse,
    BookingResponse,
    FailureRequest,
    HandoverRequest,
    HandoverResponse,
    ProgressRequest,
    ReassignRequest,
)
from concierge.config import settings
from concierge.domain.entities import Actor, HandoverEvidence
from concierge.domain.enums import AssignmentStatus
from concierge.services.container import Services

router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.get("", response_model=list[AssignmentResponse])
@limiter.limit(settings.rate_limit)
async def list_assignments(
    request: Request,
    status: Optional[AssignmentStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.assignments.list_assignments(actor, status=status, limit=limit)


@router.get("/{assignment_id}", response_model=AssignmentResponse)
@limiter.limit(settings.rate_limit)
async def get_assignment(
    request: Request,
    assignment_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.assignments.get_assignment(assignment_id, actor)


@router.post("/{assignment_id}/progress", response_model=AssignmentResponse)
@limiter.limit(settings.rate_limit)
async def mark_progress(
    request: Request,
    assignment_id: int,
    body: ProgressRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.assignments.mark_progress(assignment_id, body.status, actor)


@router.post(
    "/{assignment_id}/handover",
    response_model=HandoverResponse,
    summary="Complete a pickup or return handover",
    description=(
        "Requires at least one photo, a signature and an odometer reading. "
        "Incomplete evidence is rejected without any change."
    ),
)
@limiter.limit(settings.rate_limit)
async def complete_handover(
    request: Request,
    assignment_id: int,
    body: HandoverRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    evidence = HandoverEvidence(
        photos=tuple(body.photos),
        signature=body.signature,
        odometer_km=body.odometer_km,
        notes=body.notes,
    )
    assignment, booking = await services.bookings.complete_handover(
        assignment_id, evidence, actor
    )
    return HandoverResponse(
        assignment=AssignmentResponse.model_validate(assignment),
        booking=BookingResponse.model_validate(booking),
    )


@router.post("/{assignment_id}/failure", response_model=AssignmentResponse)
@limiter.limit(settings.rate_limit)
async def report_failure(
    request: Request,
    assignment_id: int,
    body: FailureRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.assignments.report_failure(assignment_id, body.reason, actor)


@router.post("/{assignment_id}/reassign", response_model=AssignmentResponse)
@limiter.limit(settings.rate_limit)
async def reassign(
    request: Request,
    assignment_id: int,
    body: ReassignRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return await services.assignments.reassign(assignment_id, body.jockey_id, actor)
