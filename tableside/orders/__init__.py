"""
Orders — checkout, the status matrix and payment-driven progress.

    from tableside import orders as O

    lifecycle = O.OrderLifecycle(order_docs, catalog, guard, events, config)

    match await lifecycle.create_order(cart.snapshot(), user.user_id, user.email):
        case Ok(order):
            order.status        # OrderStatus.PENDING
            order.pickup_code   # "RW-7QX2"
        case Error(InsufficientStock() as e):
            ...

    await lifecycle.update_status(order.id, OrderStatus.PREPARING, staff)
"""

from tableside.orders._machine import (
    FORWARD,
    check_transition,
    transition,
    settle_payment,
)
from tableside.orders._pickup import (
    ALPHABET,
    pickup_code,
    unique_pickup_code,
)
from tableside.orders._lifecycle import (
    CheckoutError,
    TransitionError,
    OrderLifecycle,
)


__all__ = (
    # Matrix
    "FORWARD",
    "check_transition",
    "transition",
    "settle_payment",
    # Pickup codes
    "ALPHABET",
    "pickup_code",
    "unique_pickup_code",
    # Lifecycle
    "CheckoutError",
    "TransitionError",
    "OrderLifecycle",
)
