"""
Bookings — table reservations with a fixed, forfeitable fee.

    from tableside import bookings as B

    lifecycle = B.BookingLifecycle(booking_docs, events, config)

    match await lifecycle.create_booking(
        user.user_id, "Ana Reyes", date(2026, 12, 24), time(19, 30), party_size=4
    ):
        case Ok(booking):
            ...
        case Error(InvalidBooking() as e):
            ...

    await lifecycle.approve(booking.id, staff)      # -> unpaid_reservation
    # ... fee paid through tableside.payments      # -> paid_reservation
    await lifecycle.sweep_past_bookings()           # -> past_reservation
"""

from tableside.bookings._machine import (
    STAFF_EDGES,
    CANCELLABLE,
    SWEEPABLE,
    check_transition,
    transition,
    settle_payment,
    sweep,
)
from tableside.bookings._lifecycle import (
    TransitionError,
    BookingLifecycle,
)


__all__ = (
    # Matrix
    "STAFF_EDGES",
    "CANCELLABLE",
    "SWEEPABLE",
    "check_transition",
    "transition",
    "settle_payment",
    "sweep",
    # Lifecycle
    "TransitionError",
    "BookingLifecycle",
)
