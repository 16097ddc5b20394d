"""
Payment gateway contract and an in-process fake.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Mapping
from dataclasses import replace
from typing import Protocol

from tableside._types import Minor
from tableside.payments._types import GatewayIntent, GatewayPayment, GatewayStatus

logger = logging.getLogger(__name__)


class Gateway(Protocol):
    """
    Hosted card gateway. Amounts are integers in minor units.

    Implementations raise on transport failure; the reconciler turns that,
    and any timeout, into `GatewayUnavailable`.
    """

    async def create_payment_intent(
        self, amount: Minor, currency: str, metadata: Mapping[str, str]
    ) -> GatewayIntent:
        ...

    async def retrieve(self, reference: str) -> GatewayPayment:
        ...


class FakeGateway:
    """
    Gateway double for tests, the demo and local runs.

    Example:
        gateway = FakeGateway()
        handle = (await reconciler.begin_payment(...)).value
        gateway.settle(handle.reference, GatewayStatus.SUCCEEDED)
        await reconciler.confirm(handle.reference)

    `latency` delays every call; `fail_with` makes every call raise.
    """

    def __init__(self, *, latency: float = 0.0, fail_with: Exception | None = None) -> None:
        self.latency = latency
        self.fail_with = fail_with
        self.call_count = 0
        self._payments: dict[str, GatewayPayment] = {}

    async def create_payment_intent(
        self, amount: Minor, currency: str, metadata: Mapping[str, str]
    ) -> GatewayIntent:
        await self._call()
        reference = f"pi_{uuid.uuid4().hex[:24]}"
        self._payments[reference] = GatewayPayment(
            reference=reference,
            status=GatewayStatus.PROCESSING,
            amount=amount,
            currency=currency.lower(),
            metadata=dict(metadata),
        )
        logger.debug("fake gateway: intent %s for %d %s", reference, amount, currency)
        return GatewayIntent(reference, f"{reference}_secret_{uuid.uuid4().hex[:12]}")

    async def retrieve(self, reference: str) -> GatewayPayment:
        await self._call()
        try:
            return self._payments[reference]
        except KeyError:
            raise LookupError(f"no such payment intent: {reference}") from None

    def settle(self, reference: str, status: GatewayStatus, *, amount: Minor | None = None) -> None:
        """Play the payer: finish (or fail) a payment. `amount` overrides what was charged."""
        payment = self._payments[reference]
        self._payments[reference] = replace(
            payment,
            status=status,
            amount=payment.amount if amount is None else amount,
        )

    async def _call(self) -> None:
        self.call_count += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.fail_with is not None:
            raise self.fail_with


__all__ = (
    "Gateway",
    "FakeGateway",
)
