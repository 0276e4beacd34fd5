"""
FastAPI application factory.

* Registers routes for vehicles, bookings, extensions, assignments,
  pricing, privacy and admin.
* Builds the workflow services and starts / stops the capture
  reconciliation worker via lifespan events.
* Applies rate-limiting middleware and renders workflow errors.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from concierge.api.errors import workflow_error_handler
from concierge.api.middleware import limiter
from concierge.api.routes import (
    admin,
    assignments,
    bookings,
    extensions,
    pricing,
    privacy,
    vehicles,
)
from concierge.domain.errors import WorkflowError
from concierge.infrastructure.database import async_session_factory
from concierge.infrastructure.payments import get_payment_gateway
from concierge.infrastructure.redis_client import close_redis
from concierge.services.container import build_lock_provider, build_services
from concierge.workers import reconciler as _reconciler

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire services and start the reconciler on startup; stop on shutdown."""
    locks = await build_lock_provider()
    app.state.services = build_services(async_session_factory, locks, get_payment_gateway())
    await _reconciler.start_reconciliation_loop(app.state.services.extensions)
    yield
    await _reconciler.stop_reconciliation_loop()
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Vehicle Concierge Service API",
        description=(
            "Door-to-door vehicle maintenance: bookings with a payment gate, "
            "jockey pickup and return, workshop extensions approved by the "
            "customer, deterministic pricing and GDPR data lifecycle."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Workflow rejections -> {"detail", "code", "retryable"}
    app.add_exception_handler(WorkflowError, workflow_error_handler)

    # Routers
    for module in (vehicles, bookings, extensions, assignments, pricing, privacy, admin):
        app.include_router(module.router, prefix="/api/v1")

    return app
