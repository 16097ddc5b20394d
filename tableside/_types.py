"""
Core types for tableside.

Re-exports from kungfu + custom type aliases.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

# Re-export from kungfu
from kungfu import Result, Ok, Error

# ═══════════════════════════════════════════════════════════════════════════════
# Money
# ═══════════════════════════════════════════════════════════════════════════════

type Minor = int
"""Amount in currency minor units (centavos for PHP)."""


def format_money(amount: Minor, currency: str = "PHP") -> str:
    """15000 -> 'PHP 150.00'"""
    sign = "-" if amount < 0 else ""
    whole, cents = divmod(abs(amount), 100)
    return f"{sign}{currency} {whole:,}.{cents:02d}"


# ═══════════════════════════════════════════════════════════════════════════════
# Time
# ═══════════════════════════════════════════════════════════════════════════════

type Clock = Callable[[], datetime]
"""Source of the current aware datetime."""


def utcnow() -> datetime:
    return datetime.now(UTC)


def touched(previous: datetime, now: datetime) -> datetime:
    """
    Next `updated_at` value.

    Strictly after `previous`, even if the clock stepped backwards.
    """
    if now > previous:
        return now
    return previous + timedelta(microseconds=1)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    # Type aliases
    "Minor",
    "Clock",
    # Helpers
    "format_money",
    "utcnow",
    "touched",
)
