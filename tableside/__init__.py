"""
tableside — ordering, table booking and payments for one restaurant.

    from tableside import in_memory, Config
    from tableside import cart as C        # Per-session cart
    from tableside import orders as O      # Order lifecycle
    from tableside import bookings as B    # Booking lifecycle
    from tableside import payments as P    # Gateway reconciliation
    from tableside import store as S       # Persistence
"""

from tableside import store
from tableside import cart
from tableside import orders
from tableside import bookings
from tableside import payments
from tableside.config import Config
from tableside.domain import (
    Actor,
    MenuItem,
    Category,
    CartLine,
    Order,
    OrderStatus,
    Booking,
    BookingStatus,
    Payment,
    PaymentStatus,
    Outcome,
    SubjectType,
)
from tableside.pricing import Totals, price_lines
from tableside.service import Restaurant, in_memory, with_database

__version__ = "0.1.0"

__all__ = (
    "store",
    "cart",
    "orders",
    "bookings",
    "payments",
    "Config",
    "Actor",
    "MenuItem",
    "Category",
    "CartLine",
    "Order",
    "OrderStatus",
    "Booking",
    "BookingStatus",
    "Payment",
    "PaymentStatus",
    "Outcome",
    "SubjectType",
    "Totals",
    "price_lines",
    "Restaurant",
    "in_memory",
    "with_database",
)
