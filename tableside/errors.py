"""
Error taxonomy.

Every error is a frozen dataclass so it can travel inside `kungfu.Error`
as a value and still be raised where an exception is the right tool.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class InvalidQuantity(Exception):
    quantity: int
    reason: str = "quantity must not be negative"

    def __str__(self) -> str:
        return f"invalid quantity {self.quantity}: {self.reason}"


@dataclass(frozen=True, slots=True)
class InsufficientStock(Exception):
    """Names the offending menu item."""

    menu_item_id: str
    name: str
    requested: int
    available: int

    def __str__(self) -> str:
        return (
            f"{self.name} ({self.menu_item_id}): requested {self.requested}, "
            f"only {max(self.available, 0)} available"
        )


@dataclass(frozen=True, slots=True)
class InvalidStateTransition(Exception):
    subject_id: str
    current: str
    attempted: str

    def __str__(self) -> str:
        return f"{self.subject_id}: cannot move from {self.current} to {self.attempted}"


@dataclass(frozen=True, slots=True)
class NotFound(Exception):
    entity: str
    id: str

    def __str__(self) -> str:
        return f"{self.entity}:{self.id} not found"


@dataclass(frozen=True, slots=True)
class PaymentMismatch(Exception):
    reference: str
    reason: str

    def __str__(self) -> str:
        return f"payment {self.reference}: {self.reason}"


@dataclass(frozen=True, slots=True)
class GatewayUnavailable(Exception):
    reason: str

    @property
    def retryable(self) -> bool:
        return True

    def __str__(self) -> str:
        return f"payment gateway unavailable: {self.reason}"


@dataclass(frozen=True, slots=True)
class Unauthorized(Exception):
    actor_id: str
    action: str

    def __str__(self) -> str:
        return f"{self.actor_id} may not {self.action}"


@dataclass(frozen=True, slots=True)
class InvalidBooking(Exception):
    field: str
    reason: str

    def __str__(self) -> str:
        return f"{self.field}: {self.reason}"


@dataclass(frozen=True, slots=True)
class EmptyCart(Exception):
    user_id: str

    def __str__(self) -> str:
        return f"cart of {self.user_id} is empty"


@dataclass(frozen=True, slots=True)
class DuplicateName(Exception):
    entity: str
    name: str

    def __str__(self) -> str:
        return f"{self.entity} named {self.name!r} already exists"


@dataclass(frozen=True, slots=True)
class ConcurrentModification(Exception):
    """Compare-and-set kept losing; the caller may retry."""

    entity: str
    id: str
    attempts: int

    def __str__(self) -> str:
        return f"{self.entity}:{self.id} changed concurrently {self.attempts} times"


__all__ = (
    "InvalidQuantity",
    "InsufficientStock",
    "InvalidStateTransition",
    "NotFound",
    "PaymentMismatch",
    "GatewayUnavailable",
    "Unauthorized",
    "InvalidBooking",
    "EmptyCart",
    "DuplicateName",
    "ConcurrentModification",
)
