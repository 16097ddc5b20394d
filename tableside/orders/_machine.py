"""
Order transition matrix.

    pending ──▶ preparing ──▶ ready ──▶ completed
       │            │           │
       └────────────┴───────────┴──▶ cancelled

Staff drive every forward edge and may cancel from any non-terminal state.
A customer may only cancel their own order, and only while it is pending.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from kungfu import Error, Ok, Result

from tableside._types import touched
from tableside.domain import Actor, Order, OrderStatus, Outcome
from tableside.errors import InvalidStateTransition, Unauthorized


FORWARD: dict[OrderStatus, OrderStatus] = {
    OrderStatus.PENDING: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.COMPLETED,
}


def check_transition(
    order: Order, target: OrderStatus, actor: Actor
) -> Result[None, InvalidStateTransition | Unauthorized]:
    current = order.status
    illegal = InvalidStateTransition(order.id, current.value, target.value)

    if current.is_terminal or target is current:
        return Error(illegal)

    if target is OrderStatus.CANCELLED:
        if actor.is_staff:
            return Ok(None)
        if not actor.owns(order.user_id):
            return Error(Unauthorized(actor.user_id, f"cancel order {order.id}"))
        if current is OrderStatus.PENDING:
            return Ok(None)
        return Error(illegal)

    if FORWARD.get(current) is not target:
        return Error(illegal)
    if not actor.is_staff:
        return Error(Unauthorized(actor.user_id, f"move order {order.id} to {target.value}"))
    return Ok(None)


def transition(
    order: Order, target: OrderStatus, actor: Actor, now: datetime
) -> Result[Order, InvalidStateTransition | Unauthorized]:
    match check_transition(order, target, actor):
        case Error(e):
            return Error(e)
        case Ok(_):
            return Ok(replace(order, status=target, updated_at=touched(order.updated_at, now)))


def settle_payment(order: Order, reference: str, outcome: Outcome, now: datetime) -> Order:
    """
    Fold one gateway outcome into the order.

    The first genuine success also starts kitchen work (pending -> preparing).
    Status is never touched on failure, and a cancelled order stays cancelled.
    """
    payment = order.payment.settle(reference, outcome, now)
    if payment is order.payment:
        return order

    status = order.status
    if payment.is_paid and status is OrderStatus.PENDING:
        status = OrderStatus.PREPARING

    return replace(order, payment=payment, status=status, updated_at=touched(order.updated_at, now))


__all__ = (
    "FORWARD",
    "check_transition",
    "transition",
    "settle_payment",
)
