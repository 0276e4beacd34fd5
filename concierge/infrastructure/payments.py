"""
Payment processor adapters.

Contract used by the workflow:

* ``authorize(amount_cents, reference) -> PaymentResult``
* ``capture(authorization_id) -> PaymentResult``

A processor that answers "no" returns ``PaymentResult(success=False,
reason=...)``.  A processor that cannot be reached, times out or answers
with a 5xx raises ``ExternalDependencyFailure`` -- the caller may retry that,
never a decline.  The workflow wraps every call in ``call_with_timeout`` so
no request blocks indefinitely.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Awaitable, Protocol

import httpx

from concierge.config import settings
from concierge.domain.entities import PaymentResult
from concierge.domain.errors import ExternalDependencyFailure

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    async def authorize(self, amount_cents: int, reference: str) -> PaymentResult: ...

    async def capture(self, authorization_id: str) -> PaymentResult: ...


async def call_with_timeout(
    call: Awaitable[PaymentResult], timeout_seconds: float
) -> PaymentResult:
    """Bound a processor call; a timeout is retryable, never a success."""
    try:
        return await asyncio.wait_for(call, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise ExternalDependencyFailure(
            f"payment processor did not answer within {timeout_seconds:g}s"
        ) from exc


class HttpPaymentGateway:
    """REST client for the hosted payment processor."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        currency: str = "EUR",
        timeout_seconds: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.currency = currency
        self.timeout = timeout_seconds

    def _headers(self, idempotency_key: str) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Idempotency-Key": idempotency_key,
        }

    async def _post(self, path: str, payload: dict, idempotency_key: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers=self._headers(idempotency_key),
                )
        except httpx.HTTPError as exc:
            raise ExternalDependencyFailure(f"payment processor unreachable: {exc}") from exc
        if response.status_code >= 500:
            raise ExternalDependencyFailure(
                f"payment processor error {response.status_code}"
            )
        return response

    @staticmethod
    def _reason(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        return body.get("reason") or body.get("message") or f"HTTP {response.status_code}"

    async def authorize(self, amount_cents: int, reference: str) -> PaymentResult:
        response = await self._post(
            "/authorizations",
            {"amount": amount_cents, "currency": self.currency, "reference": reference},
            idempotency_key=f"authorize-{reference}",
        )
        if response.is_success:
            return PaymentResult(success=True, authorization_id=response.json()["id"])
        return PaymentResult(success=False, reason=self._reason(response))

    async def capture(self, authorization_id: str) -> PaymentResult:
        response = await self._post(
            f"/authorizations/{authorization_id}/capture",
            {},
            idempotency_key=f"capture-{authorization_id}",
        )
        if response.is_success:
            return PaymentResult(success=True, authorization_id=authorization_id)
        return PaymentResult(success=False, reason=self._reason(response))


class DemoPaymentGateway:
    """
    In-process processor for development and demos.  Authorizes any
    positive amount; captures any authorization it issued.
    """

    def __init__(self):
        self._authorizations: dict[str, int] = {}
        self._captured: set[str] = set()

    async def authorize(self, amount_cents: int, reference: str) -> PaymentResult:
        if amount_cents <= 0:
            return PaymentResult(success=False, reason="amount must be positive")
        authorization_id = f"demo_auth_{uuid.uuid4().hex[:16]}"
        self._authorizations[authorization_id] = amount_cents
        logger.info(
            "Demo authorization %s for %s (%d cents)", authorization_id, reference, amount_cents
        )
        return PaymentResult(success=True, authorization_id=authorization_id)

    async def capture(self, authorization_id: str) -> PaymentResult:
        if authorization_id not in self._authorizations:
            return PaymentResult(success=False, reason="unknown authorization")
        self._captured.add(authorization_id)
        return PaymentResult(success=True, authorization_id=authorization_id)


_demo_gateway = DemoPaymentGateway()


def get_payment_gateway() -> PaymentGateway:
    if settings.payment_gateway == "http":
        return HttpPaymentGateway(
            settings.payment_api_url,
            settings.payment_api_key,
            currency=settings.currency,
            timeout_seconds=settings.payment_timeout_seconds,
        )
    return _demo_gateway
