"""
Pickup codes — short, human-readable, `RW-7QX2`.

Not cryptographically unique. New codes are checked against orders still
waiting to be collected; after a bounded number of clashes the last draw
is accepted and logged.
"""

from __future__ import annotations

import logging
import secrets
import string

from kungfu import Error, Ok, Result

from tableside.domain import Order, OrderStatus
from tableside.store import Documents, StoreError

logger = logging.getLogger(__name__)


ALPHABET = string.ascii_uppercase + string.digits

ACTIVE = (OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY)


def pickup_code(prefix: str = "RW", length: int = 4) -> str:
    return f"{prefix}-{''.join(secrets.choice(ALPHABET) for _ in range(length))}"


async def unique_pickup_code(
    orders: Documents[Order],
    *,
    prefix: str = "RW",
    length: int = 4,
    attempts: int = 5,
) -> Result[str, StoreError]:
    match await orders.find(statuses=[s.value for s in ACTIVE]):
        case Error(e):
            return Error(e)
        case Ok(active):
            taken = {doc.value.pickup_code for doc in active}

    code = pickup_code(prefix, length)
    for _ in range(attempts - 1):
        if code not in taken:
            return Ok(code)
        code = pickup_code(prefix, length)

    if code in taken:
        logger.warning("pickup code %s reused after %d draws", code, attempts)
    return Ok(code)


__all__ = (
    "ALPHABET",
    "pickup_code",
    "unique_pickup_code",
)
