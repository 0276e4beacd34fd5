"""
Background Capture Reconciler
=============================

Runs every ``reconciliation_interval_seconds`` (default 60 s).

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs a cycle at a
  time across multiple API processes (skipped with the local lock backend,
  which implies a single process).
* Each capture then runs under its own booking lock with
  ``SELECT ... FOR UPDATE``, exactly like an API-triggered capture.

Cycle
-----
1. Collect APPROVED extensions whose payment is CAPTURE_FAILED, or
   AUTHORIZED and due (immediately, or once the booking is ready for return
   in deferred mode).
2. Retry each capture.  Failures count an attempt; at
   ``max_capture_attempts`` the extension is ESCALATED and the customer is
   notified for manual follow-up.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from concierge.config import settings
from concierge.infrastructure.locks import DistributedLock
from concierge.infrastructure.redis_client import get_redis
from concierge.services.extensions import ExtensionWorkflow

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_reconciliation_loop(extensions: ExtensionWorkflow) -> None:
    global _task, _stop_event
    if not settings.reconciliation_enabled:
        logger.info("Capture reconciler disabled")
        return
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(extensions))
    logger.info(
        "Capture reconciler started (interval=%ds)", settings.reconciliation_interval_seconds
    )


async def stop_reconciliation_loop() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = None
    _stop_event = None
    logger.info("Capture reconciler stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(extensions: ExtensionWorkflow) -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_reconciliation_cycle(extensions)
        except Exception:
            logger.exception("Unhandled error in reconciliation cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.reconciliation_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_reconciliation_cycle(
    extensions: ExtensionWorkflow, use_lock: Optional[bool] = None
) -> dict[str, int]:
    """Execute one cycle.  Returns counts of captured / failed / escalated."""
    if use_lock is None:
        use_lock = settings.lock_backend == "redis"
    if not use_lock:
        return await _reconcile(extensions)

    redis = await get_redis()
    lock = DistributedLock(redis, "capture_reconciler", ttl_seconds=120)
    if not await lock.acquire():
        logger.debug("Lock held by another worker - skipping cycle")
        return {"captured": 0, "failed": 0, "escalated": 0}
    try:
        return await _reconcile(extensions)
    finally:
        await lock.release()


async def _reconcile(extensions: ExtensionWorkflow) -> dict[str, int]:
    counts = await extensions.reconcile_captures()
    if any(counts.values()):
        logger.info(
            "Reconciliation cycle: %d captured, %d failed, %d escalated",
            counts["captured"], counts["failed"], counts["escalated"],
        )
    return counts
