"""
Booking lifecycle — requests, staff review, fee payment and the past sweep.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time

from combinators import batch, lift as L
from kungfu import Error, Ok, Result

from tableside._types import Clock, utcnow
from tableside.bookings._machine import SWEEPABLE, settle_payment, sweep, transition
from tableside.config import Config
from tableside.domain import Actor, Booking, BookingStatus, Outcome, Payment
from tableside.errors import (
    ConcurrentModification,
    InvalidBooking,
    InvalidStateTransition,
    NotFound,
    Unauthorized,
)
from tableside.events import EventBus, SubjectChanged
from tableside.identity import require_staff
from tableside.store import Documents, Mutation, StoreError, Versioned, mutate

logger = logging.getLogger(__name__)


type TransitionError = (
    InvalidStateTransition | Unauthorized | NotFound | ConcurrentModification | StoreError
)


class BookingLifecycle:
    def __init__(
        self,
        bookings: Documents[Booking],
        events: EventBus,
        config: Config | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._bookings = bookings
        self._events = events
        self._config = config or Config()
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════════════════
    # Requests
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_booking(
        self,
        user_id: str,
        customer_name: str,
        day: date,
        at: time,
        party_size: int,
        special_requests: str | None = None,
    ) -> Result[Booking, InvalidBooking | StoreError]:
        """
        Request a table. Nothing is written unless every field is valid.

        A naive `at` is read in the restaurant's time zone.
        """
        name = customer_name.strip()
        if not name:
            return Error(InvalidBooking("customer_name", "must not be blank"))
        if not 1 <= party_size <= self._config.max_party_size:
            return Error(
                InvalidBooking(
                    "party_size", f"must be between 1 and {self._config.max_party_size}"
                )
            )

        starts_at = datetime.combine(day, at.replace(tzinfo=at.tzinfo or self._config.tz))
        now = self._clock()
        if starts_at <= now:
            return Error(InvalidBooking("starts_at", "must be in the future"))

        fee = self._config.reservation_fee
        booking = Booking(
            id=f"bkg_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            customer_name=name,
            starts_at=starts_at,
            party_size=party_size,
            special_requests=(special_requests or "").strip() or None,
            status=BookingStatus.PENDING,
            reservation_fee=fee,
            payment=Payment(amount=fee),
            created_at=now,
            updated_at=now,
        )

        match await self._bookings.insert(booking):
            case Error(e):
                return Error(e)
            case Ok(stored):
                logger.info(
                    "booking %s requested by %s for %s, party of %d",
                    booking.id,
                    user_id,
                    starts_at.isoformat(),
                    party_size,
                )
                await self._events.publish(SubjectChanged.of(stored.value, stored.version))
                return Ok(stored.value)

    # ═══════════════════════════════════════════════════════════════════════════
    # Transitions
    # ═══════════════════════════════════════════════════════════════════════════

    async def approve(self, booking_id: str, actor: Actor) -> Result[Booking, TransitionError]:
        return await self._move(booking_id, BookingStatus.UNPAID, actor)

    async def decline(self, booking_id: str, actor: Actor) -> Result[Booking, TransitionError]:
        return await self._move(booking_id, BookingStatus.DECLINED, actor)

    async def cancel(self, booking_id: str, actor: Actor) -> Result[Booking, TransitionError]:
        """No fee reversal: a paid booking stays paid when cancelled."""
        return await self._move(booking_id, BookingStatus.CANCELLED, actor)

    async def _move(
        self, booking_id: str, target: BookingStatus, actor: Actor
    ) -> Result[Booking, TransitionError]:
        result = await mutate(
            self._bookings,
            booking_id,
            lambda booking: transition(booking, target, actor, self._clock()),
            entity="booking",
            attempts=self._config.update_attempts,
        )
        match result:
            case Error(e):
                logger.info("booking %s -> %s refused for %s: %s", booking_id, target.value, actor.user_id, e)
                return Error(e)
            case Ok(mutation):
                logger.info(
                    "booking %s %s -> %s by %s",
                    booking_id,
                    mutation.before.status.value,
                    mutation.after.status.value,
                    actor.user_id,
                )
                await self._committed(mutation)
                return Ok(mutation.after)

    async def apply_payment(
        self, booking_id: str, reference: str, outcome: Outcome
    ) -> Result[Booking, NotFound | ConcurrentModification | StoreError]:
        result = await mutate(
            self._bookings,
            booking_id,
            lambda booking: Ok(settle_payment(booking, reference, outcome, self._clock())),
            entity="booking",
            attempts=self._config.update_attempts,
        )
        match result:
            case Error(e):
                return Error(e)
            case Ok(mutation):
                pass

        before, after = mutation.before, mutation.after
        if not mutation.changed:
            if (
                outcome is Outcome.SUCCEEDED
                and before.payment.is_paid
                and before.payment.gateway_reference != reference
            ):
                logger.warning(
                    "booking %s fee already paid via %s, second success %s ignored",
                    booking_id,
                    before.payment.gateway_reference,
                    reference,
                )
            return Ok(after)

        logger.info(
            "booking %s payment %s -> %s (%s), status %s",
            booking_id,
            before.payment.status.value,
            after.payment.status.value,
            reference,
            after.status.value,
        )
        await self._committed(mutation)
        return Ok(after)

    async def _committed(self, mutation: Mutation[Booking]) -> None:
        if mutation.changed:
            await self._events.publish(SubjectChanged.of(mutation.after, mutation.version))

    # ═══════════════════════════════════════════════════════════════════════════
    # Sweep
    # ═══════════════════════════════════════════════════════════════════════════

    async def sweep_past_bookings(
        self, now: datetime | None = None
    ) -> Result[list[Booking], StoreError]:
        """
        Move paid and cancelled bookings whose start has passed to `past`.

        Idempotent and safe to run concurrently with itself: each booking is
        re-checked inside its own compare-and-set, so a booking another sweep
        already retired is skipped. Returns the bookings this run moved.
        """
        now = now or self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=self._config.tz)

        match await self._bookings.find(statuses=[s.value for s in SWEEPABLE]):
            case Error(e):
                return Error(e)
            case Ok(candidates):
                due = [doc for doc in candidates if doc.value.starts_at <= now]

        moved: list[Booking] = []

        async def retire(doc: Versioned[Booking]) -> None:
            result = await mutate(
                self._bookings,
                doc.value.id,
                lambda booking: Ok(sweep(booking, now)),
                entity="booking",
                attempts=self._config.update_attempts,
            )
            match result:
                case Error(e):
                    logger.warning("sweep skipped booking %s: %s", doc.value.id, e)
                case Ok(mutation) if mutation.changed:
                    moved.append(mutation.after)
                    await self._committed(mutation)

        await batch(
            due,
            handler=lambda doc: L.catching_async(
                lambda: retire(doc),
                on_error=_sweep_failed,
            ),
            concurrency=self._config.sweep_concurrency,
        )

        logger.info("sweep at %s retired %d of %d due bookings", now.isoformat(), len(moved), len(due))
        return Ok(moved)

    # ═══════════════════════════════════════════════════════════════════════════
    # Cleanup
    # ═══════════════════════════════════════════════════════════════════════════

    async def purge_declined(self, actor: Actor) -> Result[int, Unauthorized | StoreError]:
        """Staff removes every declined booking."""
        match require_staff(actor, "purge declined bookings"):
            case Error(e):
                return Error(e)

        return await self._delete_where(statuses=[BookingStatus.DECLINED.value])

    async def clear_cancelled(self, actor: Actor) -> Result[int, StoreError]:
        """A customer removes their own cancelled bookings."""
        return await self._delete_where(
            owner=actor.user_id, statuses=[BookingStatus.CANCELLED.value]
        )

    async def _delete_where(
        self, *, owner: str | None = None, statuses: list[str]
    ) -> Result[int, StoreError]:
        match await self._bookings.find(owner=owner, statuses=statuses):
            case Error(e):
                return Error(e)
            case Ok(docs):
                pass

        deleted = 0
        for doc in docs:
            match await self._bookings.delete(doc.value.id, doc.version):
                case Error(e):
                    return Error(e)
                case Ok(True):
                    deleted += 1
                case Ok(False):
                    logger.debug("booking %s changed before delete, kept", doc.value.id)

        logger.info("deleted %d bookings (%s)", deleted, ", ".join(statuses))
        return Ok(deleted)

    # ═══════════════════════════════════════════════════════════════════════════
    # Reads
    # ═══════════════════════════════════════════════════════════════════════════

    async def get(self, booking_id: str) -> Result[Booking, NotFound | StoreError]:
        match await self._bookings.get(booking_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(NotFound("booking", booking_id))
            case Ok(stored):
                return Ok(stored.value)

    async def for_user(self, user_id: str) -> Result[list[Booking], StoreError]:
        match await self._bookings.find(owner=user_id):
            case Error(e):
                return Error(e)
            case Ok(docs):
                return Ok([d.value for d in docs])

    async def list(self, status: BookingStatus | None = None) -> Result[list[Booking], StoreError]:
        statuses = None if status is None else [status.value]
        match await self._bookings.find(statuses=statuses):
            case Error(e):
                return Error(e)
            case Ok(docs):
                return Ok([d.value for d in docs])


def _sweep_failed(e: Exception) -> StoreError:
    logger.error("sweep step crashed: %s", e)
    return StoreError(f"sweep step crashed: {e}", e)


__all__ = (
    "TransitionError",
    "BookingLifecycle",
)
