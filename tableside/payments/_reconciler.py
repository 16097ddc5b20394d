"""
Payment reconciliation — one gateway outcome, exactly one subject update.

The same outcome can arrive three ways: the payer's browser reporting
success, the return redirect polling the gateway (`confirm`), and the
gateway's own webhook (`handle_callback`). All of them end in
`apply_result`, which is keyed on the gateway reference and idempotent.

    reconciler = PaymentReconciler(ledger, orders, bookings, gateway, config)

    match await reconciler.begin_payment(order.id, SubjectType.ORDER, order.total, email):
        case Ok(handle):
            handle.client_secret   # to the browser
        case Error(GatewayUnavailable()):
            ...                    # retry later, order still unpaid
"""

from __future__ import annotations

import asyncio
import logging
from weakref import WeakValueDictionary

from combinators import flow, lift as L
from kungfu import Error, Ok, Result

from tableside._types import Clock, Minor, utcnow
from tableside.bookings import BookingLifecycle
from tableside.config import Config
from tableside.domain import (
    Booking,
    BookingStatus,
    Order,
    Outcome,
    PaymentAttempt,
    SubjectType,
)
from tableside.errors import (
    ConcurrentModification,
    GatewayUnavailable,
    InvalidStateTransition,
    NotFound,
    PaymentMismatch,
)
from tableside.orders import OrderLifecycle
from tableside.payments._gateway import Gateway
from tableside.payments._types import GatewayPayment, PaymentHandle
from tableside.store import Ledger, StoreError

logger = logging.getLogger(__name__)


type BeginError = (
    NotFound | InvalidStateTransition | PaymentMismatch | GatewayUnavailable | StoreError
)
type ApplyError = NotFound | PaymentMismatch | ConcurrentModification | StoreError


def _unavailable(e: object) -> GatewayUnavailable:
    if isinstance(e, GatewayUnavailable):
        return e
    if isinstance(e, TimeoutError):
        return GatewayUnavailable("timed out")
    return GatewayUnavailable(f"{type(e).__name__}: {e}")


class PaymentReconciler:
    def __init__(
        self,
        ledger: Ledger,
        orders: OrderLifecycle,
        bookings: BookingLifecycle,
        gateway: Gateway,
        config: Config | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._ledger = ledger
        self._orders = orders
        self._bookings = bookings
        self._gateway = gateway
        self._config = config or Config()
        self._clock = clock
        self._opening: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    # ═══════════════════════════════════════════════════════════════════════════
    # Begin
    # ═══════════════════════════════════════════════════════════════════════════

    async def begin_payment(
        self,
        subject_id: str,
        subject_type: SubjectType,
        amount: Minor,
        payer_email: str,
    ) -> Result[PaymentHandle, BeginError]:
        """
        Open a gateway intent for exactly what the subject owes.

        The subject itself is not touched; it stays unpaid until a result
        is applied.
        """
        match await self._subject(subject_id, subject_type):
            case Error(e):
                return Error(e)
            case Ok(subject):
                pass

        match _payable(subject):
            case Error(e):
                return Error(e)

        if amount != subject.payment.amount:
            return Error(
                PaymentMismatch(
                    subject_id,
                    f"asked to charge {amount}, {subject_type.value} owes {subject.payment.amount}",
                )
            )

        key = f"{subject_type.value}:{subject_id}"
        lock = self._opening.get(key)
        if lock is None:
            lock = self._opening[key] = asyncio.Lock()

        async with lock:
            match await self._ledger.open_for(subject_id, subject_type):
                case Error(e):
                    return Error(e)
                case Ok(PaymentAttempt() as pending) if pending.amount == amount:
                    logger.info(
                        "payment %s still open for %s, handing it back", pending.reference, key
                    )
                    return Ok(PaymentHandle.of(pending))

            return await self._open(subject_id, subject_type, amount, payer_email)

    async def _open(
        self,
        subject_id: str,
        subject_type: SubjectType,
        amount: Minor,
        payer_email: str,
    ) -> Result[PaymentHandle, BeginError]:
        currency = self._config.currency
        metadata = {"subject_id": subject_id, "subject_type": subject_type.value}
        timeout = self._config.gateway_timeout.total_seconds()

        opened: Result[PaymentHandle, object] = await (
            flow(
                L.catching_async(
                    lambda: self._gateway.create_payment_intent(amount, currency, metadata),
                    on_error=_unavailable,
                )
            )
            .timeout(seconds=timeout)
            .map(
                lambda intent: PaymentHandle(
                    reference=intent.reference,
                    client_secret=intent.client_secret,
                    subject_id=subject_id,
                    subject_type=subject_type,
                    amount=amount,
                    currency=currency,
                )
            )
            .compile()
        )
        match opened:
            case Error(e):
                logger.warning("begin_payment %s:%s failed: %s", subject_type.value, subject_id, e)
                return Error(_unavailable(e))
            case Ok(handle):
                pass

        attempt = PaymentAttempt(
            reference=handle.reference,
            subject_id=subject_id,
            subject_type=subject_type,
            amount=amount,
            currency=currency,
            payer_email=payer_email,
            created_at=self._clock(),
            client_secret=handle.client_secret,
        )
        match await self._ledger.record(attempt):
            case Error(e):
                return Error(e)

        logger.info(
            "payment %s opened for %s:%s, %d %s",
            handle.reference,
            subject_type.value,
            subject_id,
            amount,
            currency,
        )
        return Ok(handle)

    # ═══════════════════════════════════════════════════════════════════════════
    # Apply
    # ═══════════════════════════════════════════════════════════════════════════

    async def apply_result(
        self,
        reference: str,
        subject_id: str,
        subject_type: SubjectType,
        outcome: Outcome,
        amount: Minor | None = None,
    ) -> Result[Order | Booking, ApplyError]:
        """
        Fold a terminal outcome into its subject.

        Repeats are no-ops, paid is sticky, and a success after a failure
        wins. The reference must belong to this subject and, when the
        gateway reports an amount, it must equal what was begun.
        """
        match await self._ledger.get(reference):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(NotFound("payment", reference))
            case Ok(attempt):
                pass

        if attempt.subject_id != subject_id or attempt.subject_type is not subject_type:
            return Error(
                PaymentMismatch(
                    reference,
                    f"belongs to {attempt.subject_type.value}:{attempt.subject_id}, "
                    f"not {subject_type.value}:{subject_id}",
                )
            )
        if amount is not None and amount != attempt.amount:
            logger.warning(
                "payment %s reported %d, begun for %d; refusing", reference, amount, attempt.amount
            )
            return Error(PaymentMismatch(reference, f"reported {amount}, begun for {attempt.amount}"))

        match subject_type:
            case SubjectType.ORDER:
                applied = await self._orders.apply_payment(subject_id, reference, outcome)
            case SubjectType.BOOKING:
                applied = await self._bookings.apply_payment(subject_id, reference, outcome)

        match applied:
            case Error(e):
                return Error(e)
            case Ok(subject):
                pass

        match await self._ledger.settle(reference, outcome):
            case Error(e):
                logger.error("payment %s applied but ledger not settled: %s", reference, e)
                return Error(e)

        return Ok(subject)

    async def confirm(
        self, reference: str
    ) -> Result[Order | Booking, ApplyError | GatewayUnavailable]:
        """
        Poll path: ask the gateway how the payment went and apply it.

        A payment still processing changes nothing and returns the subject
        as it is.
        """
        match await self._ledger.get(reference):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(NotFound("payment", reference))
            case Ok(attempt):
                pass

        timeout = self._config.gateway_timeout.total_seconds()
        retrieved: Result[GatewayPayment, object] = await (
            flow(L.catching_async(lambda: self._gateway.retrieve(reference), on_error=_unavailable))
            .timeout(seconds=timeout)
            .compile()
        )
        match retrieved:
            case Error(e):
                return Error(_unavailable(e))
            case Ok(payment):
                pass

        if payment.metadata.get("subject_id", attempt.subject_id) != attempt.subject_id:
            return Error(PaymentMismatch(reference, "gateway metadata names another subject"))

        outcome = payment.status.outcome
        if outcome is None:
            logger.debug("payment %s still processing", reference)
            return await self._subject(attempt.subject_id, attempt.subject_type)

        return await self.apply_result(
            reference, attempt.subject_id, attempt.subject_type, outcome, amount=payment.amount
        )

    async def handle_callback(
        self, reference: str, outcome: Outcome, amount: Minor | None = None
    ) -> Result[Order | Booking, ApplyError]:
        """Webhook path: the subject is whatever the ledger says the reference was for."""
        match await self._ledger.get(reference):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(NotFound("payment", reference))
            case Ok(attempt):
                return await self.apply_result(
                    reference, attempt.subject_id, attempt.subject_type, outcome, amount=amount
                )

    async def _subject(
        self, subject_id: str, subject_type: SubjectType
    ) -> Result[Order | Booking, NotFound | StoreError]:
        match subject_type:
            case SubjectType.ORDER:
                return await self._orders.get(subject_id)
            case SubjectType.BOOKING:
                return await self._bookings.get(subject_id)


def _payable(subject: Order | Booking) -> Result[None, InvalidStateTransition]:
    if subject.payment.is_paid:
        return Error(InvalidStateTransition(subject.id, "paid", "paid"))

    match subject:
        case Order(status=status) if status.is_terminal:
            return Error(InvalidStateTransition(subject.id, status.value, "paid"))
        case Booking(status=status) if status is not BookingStatus.UNPAID:
            return Error(InvalidStateTransition(subject.id, status.value, BookingStatus.PAID.value))
        case _:
            return Ok(None)


__all__ = (
    "BeginError",
    "ApplyError",
    "PaymentReconciler",
)
