"""
Cart aggregate — a per-session staging area in front of checkout.

The cart holds no prices and takes no stock. Every mutation asks the
inventory guard first and reprices from the live catalog afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace
from decimal import Decimal

from kungfu import Error, Ok, Result

from tableside.config import TAX_RATE
from tableside.domain import CartLine, MenuItem, line_id_for
from tableside.errors import InsufficientStock, InvalidQuantity, NotFound
from tableside.inventory import InventoryGuard
from tableside.pricing import PricedLine, Totals, price_lines
from tableside.store import Catalog, CartStore, StoreError

logger = logging.getLogger(__name__)


type CartError = InsufficientStock | InvalidQuantity | NotFound | StoreError


class Cart:
    """
    Lines keyed by (menu_item_id, flavor), in insertion order.

    Example:
        cart = Cart("usr_1", catalog, guard)
        match await cart.add_item(wings, 2, flavor="buffalo"):
            case Ok(totals):
                ...
            case Error(InsufficientStock() as e):
                ...  # cart unchanged
    """

    def __init__(
        self,
        user_id: str,
        catalog: Catalog,
        guard: InventoryGuard,
        *,
        tax_rate: Decimal = TAX_RATE,
    ) -> None:
        self.user_id = user_id
        self._catalog = catalog
        self._guard = guard
        self._tax_rate = tax_rate
        self._lines: list[CartLine] = []
        self._totals = Totals.zero()

    # ─────────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def lines(self) -> tuple[CartLine, ...]:
        return tuple(self._lines)

    @property
    def totals(self) -> Totals:
        return self._totals

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def line(self, line_id: str) -> CartLine | None:
        return next((l for l in self._lines if l.line_id == line_id), None)

    def held(self, menu_item_id: str) -> int:
        """Units of one menu item across all its flavor lines."""
        return sum(l.quantity for l in self._lines if l.menu_item_id == menu_item_id)

    def snapshot(self) -> tuple[CartLine, ...]:
        """What checkout receives."""
        return self.lines

    # ─────────────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────────────

    async def add_item(
        self,
        menu_item: MenuItem,
        quantity: int = 1,
        notes: str = "",
        flavor: str | None = None,
    ) -> Result[Totals, CartError]:
        """Merge into the matching line or append. Rejected adds change nothing."""
        if quantity <= 0:
            return Error(InvalidQuantity(quantity, "quantity must be positive"))

        held = self.held(menu_item.id)
        match await self._guard.reserve(menu_item.id, held + quantity, held):
            case Error(e):
                logger.info("cart %s: add %s x%d rejected: %s", self.user_id, menu_item.id, quantity, e)
                return Error(e)

        key = line_id_for(menu_item.id, flavor)
        lines = list(self._lines)
        for i, existing in enumerate(lines):
            if existing.line_id == key:
                lines[i] = replace(existing, quantity=existing.quantity + quantity)
                break
        else:
            lines.append(CartLine(menu_item.id, quantity, notes, flavor))

        return await self._apply(lines)

    async def set_quantity(self, line_id: str, quantity: int) -> Result[Totals, CartError]:
        """`quantity <= 0` removes the line; a rejected change keeps the old quantity."""
        line = self.line(line_id)
        if line is None:
            return Error(NotFound("cart_line", line_id))
        if quantity <= 0:
            return await self.remove_line(line_id)

        held = self.held(line.menu_item_id)
        wanted = held - line.quantity + quantity
        match await self._guard.reserve(line.menu_item_id, wanted, held):
            case Error(e):
                return Error(e)

        return await self._apply(self._replaced(replace(line, quantity=quantity)))

    async def update_notes(self, line_id: str, text: str) -> Result[Totals, CartError]:
        if line := self.line(line_id):
            return await self._apply(self._replaced(replace(line, notes=text)))
        return await self.reprice()

    async def remove_line(self, line_id: str) -> Result[Totals, CartError]:
        return await self._apply([l for l in self._lines if l.line_id != line_id])

    async def clear(self) -> Result[Totals, CartError]:
        return await self._apply([])

    async def reprice(self) -> Result[Totals, CartError]:
        """
        Recompute totals with current catalog prices.

        Lines whose menu item was deleted are dropped.
        """
        return await self._apply(self._lines)

    async def _apply(self, lines: Sequence[CartLine]) -> Result[Totals, CartError]:
        """Price `lines` and make them the cart's lines; on error the cart is untouched."""
        priced: list[PricedLine] = []
        kept: list[CartLine] = []
        for line in lines:
            match await self._catalog.get(line.menu_item_id):
                case Error(e):
                    return Error(e)
                case Ok(None):
                    logger.warning(
                        "cart %s: dropping %s, no longer on the menu", self.user_id, line.line_id
                    )
                case Ok(item):
                    kept.append(line)
                    priced.append(PricedLine(item.price, line.quantity))

        match price_lines(priced, self._tax_rate):
            case Error(e):
                return Error(e)
            case Ok(totals):
                self._lines = kept
                self._totals = totals
                return Ok(totals)

    def _replaced(self, line: CartLine) -> list[CartLine]:
        return [line if l.line_id == line.line_id else l for l in self._lines]

    # ─────────────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────────────

    async def save(self, store: CartStore) -> Result[None, StoreError]:
        return await store.save(self.user_id, self._lines)

    @classmethod
    async def resume(
        cls,
        user_id: str,
        catalog: Catalog,
        guard: InventoryGuard,
        store: CartStore,
        *,
        tax_rate: Decimal = TAX_RATE,
    ) -> Result[Cart, StoreError]:
        """
        Rebuild a saved cart by replaying its lines through the guard.

        Lines that no longer fit current stock, or whose item is gone, are
        dropped.
        """
        cart = cls(user_id, catalog, guard, tax_rate=tax_rate)

        match await store.load(user_id):
            case Error(e):
                return Error(e)
            case Ok(saved):
                pass

        match await cart._replay(saved):
            case Error(e):
                return Error(e)
            case Ok(_):
                return Ok(cart)

    async def _replay(self, saved: Sequence[CartLine]) -> Result[None, StoreError]:
        for line in saved:
            match await self._catalog.get(line.menu_item_id):
                case Error(e):
                    return Error(e)
                case Ok(None):
                    logger.info("cart %s: %s left the menu", self.user_id, line.menu_item_id)
                    continue
                case Ok(item):
                    pass

            match await self.add_item(item, line.quantity, line.notes, line.flavor):
                case Error(StoreError() as e):
                    return Error(e)
                case Error(e):
                    logger.info("cart %s: dropped %s on resume: %s", self.user_id, line.line_id, e)

        return Ok(None)


__all__ = (
    "CartError",
    "Cart",
)
