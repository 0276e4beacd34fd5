"""Wires the workflow services to their infrastructure."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .assignments import AssignmentWorkflow
from .booking_intake import BookingIntake
from .booking_workflow import BookingWorkflow
from .data_lifecycle import DataLifecycleManager
from .dispatcher import AssignmentDispatcher
from .extensions import ExtensionWorkflow
from .unit_of_work import LockProvider
from concierge.config import Settings, settings as default_settings
from concierge.infrastructure.locks import LocalLockRegistry, RedisLockProvider
from concierge.infrastructure.models import utcnow
from concierge.infrastructure.notifications import NotificationDispatcher
from concierge.infrastructure.payments import PaymentGateway
from concierge.infrastructure.redis_client import get_redis


@dataclass
class Services:
    bookings: BookingWorkflow
    intake: BookingIntake
    extensions: ExtensionWorkflow
    assignments: AssignmentWorkflow
    lifecycle: DataLifecycleManager


async def build_lock_provider(config: Settings = default_settings) -> LockProvider:
    if config.lock_backend == "local":
        return LocalLockRegistry(wait_seconds=config.lock_wait_seconds)
    return RedisLockProvider(
        await get_redis(),
        ttl_seconds=config.lock_ttl_seconds,
        wait_seconds=config.lock_wait_seconds,
    )


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    locks: LockProvider,
    payments: PaymentGateway,
    config: Settings = default_settings,
    notifier: Optional[NotificationDispatcher] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    notifier = notifier or NotificationDispatcher(session_factory)
    dispatcher = AssignmentDispatcher(clock=clock)
    return Services(
        bookings=BookingWorkflow(session_factory, locks, dispatcher, notifier, clock=clock),
        intake=BookingIntake(session_factory, clock=clock),
        extensions=ExtensionWorkflow(
            session_factory,
            locks,
            payments,
            notifier,
            capture_mode=config.extension_capture_mode,
            payment_timeout_seconds=config.payment_timeout_seconds,
            max_capture_attempts=config.max_capture_attempts,
            clock=clock,
        ),
        assignments=AssignmentWorkflow(session_factory, locks, notifier, clock=clock),
        lifecycle=DataLifecycleManager(
            session_factory, retention_years=config.retention_years, clock=clock
        ),
    )
