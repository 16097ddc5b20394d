"""
Pricing — subtotal, tax and total from live unit prices.

    from tableside.pricing import PricedLine, price_lines

    match price_lines([PricedLine(15000, 2)], Decimal("0.12")):
        case Ok(totals):
            totals.total  # 33600
        case Error(e):
            ...
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from tableside._types import Error, Minor, Ok, Result
from tableside.config import TAX_RATE
from tableside.errors import InvalidQuantity


@dataclass(frozen=True, slots=True)
class PricedLine:
    unit_price: Minor
    quantity: int


@dataclass(frozen=True, slots=True)
class Totals:
    subtotal: Minor
    tax: Minor
    total: Minor

    @staticmethod
    def zero() -> Totals:
        return Totals(0, 0, 0)


def compute_tax(subtotal: Minor, tax_rate: Decimal = TAX_RATE) -> Minor:
    """Half-up to the minor unit."""
    return int((Decimal(subtotal) * tax_rate).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def price_lines(
    lines: Iterable[PricedLine],
    tax_rate: Decimal = TAX_RATE,
) -> Result[Totals, InvalidQuantity]:
    subtotal = 0
    for line in lines:
        if line.quantity < 0:
            return Error(InvalidQuantity(line.quantity))
        subtotal += line.unit_price * line.quantity

    tax = compute_tax(subtotal, tax_rate)
    return Ok(Totals(subtotal=subtotal, tax=tax, total=subtotal + tax))


__all__ = (
    "PricedLine",
    "Totals",
    "compute_tax",
    "price_lines",
)
