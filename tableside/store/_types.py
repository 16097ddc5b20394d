"""
Store types — errors, versioned values and document collections.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from tableside.domain import Booking, Order


# ═══════════════════════════════════════════════════════════════════════════════
# Store Error
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class StoreError:
    """Storage operation error."""

    message: str
    cause: Exception | None = None

    def __str__(self) -> str:
        return self.message


# ═══════════════════════════════════════════════════════════════════════════════
# Versioned — value + compare-and-set token
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Versioned[T]:
    value: T
    version: int


@dataclass(frozen=True, slots=True)
class Shortfall:
    """First line a stock take could not cover."""

    menu_item_id: str
    requested: int
    available: int


# ═══════════════════════════════════════════════════════════════════════════════
# Collection — how a document type is keyed and indexed
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Collection[T]:
    """
    Describes one document type to a store backend.

    Note: backends index `owner_of` and `status_of` for range queries
    and order `find` results by `created_of`, newest first.
    """

    name: str
    model: type[T]
    key_of: Callable[[T], str]
    owner_of: Callable[[T], str]
    status_of: Callable[[T], str]
    created_of: Callable[[T], datetime]


ORDERS: Collection[Order] = Collection(
    name="orders",
    model=Order,
    key_of=lambda o: o.id,
    owner_of=lambda o: o.user_id,
    status_of=lambda o: o.status.value,
    created_of=lambda o: o.created_at,
)

BOOKINGS: Collection[Booking] = Collection(
    name="bookings",
    model=Booking,
    key_of=lambda b: b.id,
    owner_of=lambda b: b.user_id,
    status_of=lambda b: b.status.value,
    created_of=lambda b: b.created_at,
)


__all__ = (
    "StoreError",
    "Versioned",
    "Shortfall",
    "Collection",
    "ORDERS",
    "BOOKINGS",
)
