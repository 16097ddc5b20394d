"""
Domain — menu, cart, orders, bookings and the payment sub-record they share.

All entities are immutable. Lifecycle managers produce new values and write
them back through compare-and-set; nothing here touches storage.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, time
from enum import Enum

from tableside._types import Minor


# ═══════════════════════════════════════════════════════════════════════════════
# Identity
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Actor:
    """Whoever is asking. `is_staff` is the claim read from the identity provider."""

    user_id: str
    email: str = ""
    is_staff: bool = False

    def owns(self, user_id: str) -> bool:
        return self.user_id == user_id


# ═══════════════════════════════════════════════════════════════════════════════
# Menu
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class MenuItem:
    id: str
    name: str
    price: Minor
    category: str
    stock: int = 0
    available: bool = True
    description: str = ""
    flavors: tuple[str, ...] = ()
    featured: bool = False

    @property
    def sellable(self) -> int:
        """Units a shopper can currently get."""
        return self.stock if self.available else 0


@dataclass(frozen=True, slots=True)
class Category:
    """A menu section. Menu items name their section by `name`."""

    id: str
    name: str
    description: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Cart
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CartLine:
    menu_item_id: str
    quantity: int
    notes: str = ""
    flavor: str | None = None

    @property
    def line_id(self) -> str:
        return line_id_for(self.menu_item_id, self.flavor)


def line_id_for(menu_item_id: str, flavor: str | None) -> str:
    return f"{menu_item_id}_{flavor}" if flavor else menu_item_id


# ═══════════════════════════════════════════════════════════════════════════════
# Payment — shared by orders and bookings
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentStatus(Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"


class Outcome(Enum):
    """Terminal result reported by the gateway for one payment attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SubjectType(Enum):
    ORDER = "order"
    BOOKING = "booking"


@dataclass(frozen=True, slots=True)
class Payment:
    amount: Minor
    status: PaymentStatus = PaymentStatus.UNPAID
    gateway_reference: str | None = None
    paid_at: datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.status is PaymentStatus.PAID

    def settle(self, reference: str, outcome: Outcome, now: datetime) -> Payment:
        """
        Apply one gateway outcome.

        Returns `self` when the outcome changes nothing:
        - paid is sticky, neither a repeat success nor a late failure moves it
        - a repeated failure for the same reference is a no-op
        A success always wins over an earlier failure.
        """
        if self.is_paid:
            return self

        match outcome:
            case Outcome.SUCCEEDED:
                return replace(
                    self,
                    status=PaymentStatus.PAID,
                    gateway_reference=reference,
                    paid_at=now,
                )
            case Outcome.FAILED:
                if self.status is PaymentStatus.FAILED and self.gateway_reference == reference:
                    return self
                return replace(
                    self,
                    status=PaymentStatus.FAILED,
                    gateway_reference=reference,
                    paid_at=None,
                )


class AttemptState(Enum):
    OPEN = "open"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PaymentAttempt:
    """Ledger row written when a gateway intent is created."""

    reference: str
    subject_id: str
    subject_type: SubjectType
    amount: Minor
    currency: str
    payer_email: str
    created_at: datetime
    state: AttemptState = AttemptState.OPEN
    settled_at: datetime | None = None
    client_secret: str = ""

    def settle(self, outcome: Outcome, now: datetime) -> PaymentAttempt:
        """Success is sticky here too."""
        if self.state is AttemptState.SUCCEEDED:
            return self
        state = AttemptState(outcome.value)
        if state is self.state:
            return self
        return replace(self, state=state, settled_at=now)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStatus(Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


@dataclass(frozen=True, slots=True)
class OrderItem:
    """Menu fields copied at checkout; later menu edits leave it alone."""

    menu_item_id: str
    name: str
    category: str
    unit_price: Minor
    quantity: int
    description: str = ""
    notes: str = ""
    flavor: str | None = None

    @property
    def line_total(self) -> Minor:
        return self.unit_price * self.quantity


@dataclass(frozen=True, slots=True)
class Order:
    id: str
    user_id: str
    user_email: str
    items: tuple[OrderItem, ...]
    subtotal: Minor
    tax: Minor
    total: Minor
    pickup_code: str
    status: OrderStatus
    payment: Payment
    created_at: datetime
    updated_at: datetime
    notes: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Bookings
# ═══════════════════════════════════════════════════════════════════════════════


class BookingStatus(Enum):
    PENDING = "pending_reservation"
    UNPAID = "unpaid_reservation"
    PAID = "paid_reservation"
    PAST = "past_reservation"
    DECLINED = "declined_reservation"
    CANCELLED = "cancelled_reservation"


@dataclass(frozen=True, slots=True)
class Booking:
    id: str
    user_id: str
    customer_name: str
    starts_at: datetime
    party_size: int
    status: BookingStatus
    reservation_fee: Minor
    payment: Payment
    created_at: datetime
    updated_at: datetime
    special_requests: str | None = None

    @property
    def date(self) -> date:
        return self.starts_at.date()

    @property
    def time(self) -> time:
        return self.starts_at.timetz()


type Subject = Order | Booking


__all__ = (
    "Actor",
    "MenuItem",
    "Category",
    "CartLine",
    "line_id_for",
    "PaymentStatus",
    "Outcome",
    "SubjectType",
    "Payment",
    "AttemptState",
    "PaymentAttempt",
    "OrderStatus",
    "OrderItem",
    "Order",
    "BookingStatus",
    "Booking",
    "Subject",
)
