"""
Booking transition matrix.

    pending ──approve──▶ unpaid ──pay──▶ paid ──┐
       │                   │              │      ├──sweep──▶ past
       ├──decline──▶ declined             │      │
       └──────────cancel───┴──────────────┴──▶ cancelled

`paid` is reached only through a payment result and `past` only through
the sweep. Cancelling keeps the payment as it is: a paid fee is forfeit.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from kungfu import Error, Ok, Result

from tableside._types import touched
from tableside.domain import Actor, Booking, BookingStatus, Outcome
from tableside.errors import InvalidStateTransition, Unauthorized


STAFF_EDGES: frozenset[tuple[BookingStatus, BookingStatus]] = frozenset(
    {
        (BookingStatus.PENDING, BookingStatus.UNPAID),
        (BookingStatus.PENDING, BookingStatus.DECLINED),
    }
)

CANCELLABLE = frozenset({BookingStatus.PENDING, BookingStatus.UNPAID, BookingStatus.PAID})

SWEEPABLE = frozenset({BookingStatus.PAID, BookingStatus.CANCELLED})


def check_transition(
    booking: Booking, target: BookingStatus, actor: Actor
) -> Result[None, InvalidStateTransition | Unauthorized]:
    current = booking.status
    illegal = InvalidStateTransition(booking.id, current.value, target.value)

    if target is BookingStatus.CANCELLED:
        if current not in CANCELLABLE:
            return Error(illegal)
        if not (actor.is_staff or actor.owns(booking.user_id)):
            return Error(Unauthorized(actor.user_id, f"cancel booking {booking.id}"))
        return Ok(None)

    if (current, target) not in STAFF_EDGES:
        return Error(illegal)
    if not actor.is_staff:
        return Error(Unauthorized(actor.user_id, f"move booking {booking.id} to {target.value}"))
    return Ok(None)


def transition(
    booking: Booking, target: BookingStatus, actor: Actor, now: datetime
) -> Result[Booking, InvalidStateTransition | Unauthorized]:
    match check_transition(booking, target, actor):
        case Error(e):
            return Error(e)
        case Ok(_):
            return Ok(replace(booking, status=target, updated_at=touched(booking.updated_at, now)))


def settle_payment(booking: Booking, reference: str, outcome: Outcome, now: datetime) -> Booking:
    """First genuine success moves unpaid -> paid; failures leave status alone."""
    payment = booking.payment.settle(reference, outcome, now)
    if payment is booking.payment:
        return booking

    status = booking.status
    if payment.is_paid and status is BookingStatus.UNPAID:
        status = BookingStatus.PAID

    return replace(
        booking, payment=payment, status=status, updated_at=touched(booking.updated_at, now)
    )


def sweep(booking: Booking, now: datetime) -> Booking:
    """Retire a paid or cancelled booking whose start has passed. Otherwise unchanged."""
    if booking.status in SWEEPABLE and booking.starts_at <= now:
        return replace(booking, status=BookingStatus.PAST, updated_at=touched(booking.updated_at, now))
    return booking


__all__ = (
    "STAFF_EDGES",
    "CANCELLABLE",
    "SWEEPABLE",
    "check_transition",
    "transition",
    "settle_payment",
    "sweep",
)
