"""
Inventory guard — advisory cart-time checks and authoritative checkout takes.

Cart holds never touch the shared counter: `reserve` only answers whether
the cart may hold that many. Two shoppers can both hear "yes" for the last
unit; `commit` at checkout is the atomic check that decides.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable

from kungfu import Error, Ok, Result

from tableside.domain import MenuItem
from tableside.errors import InsufficientStock, InvalidQuantity, NotFound
from tableside.store import Catalog, Shortfall, StoreError

logger = logging.getLogger(__name__)


type ReserveError = InsufficientStock | InvalidQuantity | NotFound | StoreError


class InventoryGuard:
    def __init__(self, catalog: Catalog) -> None:
        self._catalog = catalog

    async def reserve(
        self,
        menu_item_id: str,
        wanted: int,
        already_held: int = 0,
    ) -> Result[MenuItem, ReserveError]:
        """
        Check that the cart may hold `wanted` units in total.

        The marginal ask `wanted - already_held` is compared against what is
        left after the cart's current hold, using the stock as it is now.
        Returns the item as read, so callers price with the same snapshot.
        """
        if wanted < 0:
            return Error(InvalidQuantity(wanted))

        match await self._catalog.get(menu_item_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(NotFound("menu_item", menu_item_id))
            case Ok(item):
                pass

        marginal = wanted - already_held
        if marginal > item.sellable - already_held:
            return Error(InsufficientStock(item.id, item.name, wanted, item.sellable))
        return Ok(item)

    async def commit(
        self, quantities: Iterable[tuple[str, int]]
    ) -> Result[dict[str, int], InsufficientStock | InvalidQuantity | StoreError]:
        """
        Decrement stock for every line, or for none.

        Lines for the same item (different flavors) are summed first.
        Returns the per-item quantities taken, which is what `release`
        expects back.
        """
        totals: Counter[str] = Counter()
        for menu_item_id, quantity in quantities:
            if quantity <= 0:
                return Error(InvalidQuantity(quantity, "quantity must be positive"))
            totals[menu_item_id] += quantity

        taken = dict(totals)
        match await self._catalog.take_stock(taken):
            case Error(e):
                return Error(e)
            case Ok(None):
                logger.debug("took stock %s", taken)
                return Ok(taken)
            case Ok(Shortfall() as short):
                return Error(await self._named(short))

    async def release(self, taken: dict[str, int]) -> Result[None, StoreError]:
        """Put back what `commit` took."""
        result = await self._catalog.return_stock(taken)
        match result:
            case Ok(_):
                logger.info("released stock %s", taken)
            case Error(e):
                logger.error("failed to release stock %s: %s", taken, e)
        return result

    async def _named(self, short: Shortfall) -> InsufficientStock:
        name = short.menu_item_id
        match await self._catalog.get(short.menu_item_id):
            case Ok(MenuItem() as item):
                name = item.name
            case _:
                pass
        return InsufficientStock(short.menu_item_id, name, short.requested, short.available)


__all__ = (
    "ReserveError",
    "InventoryGuard",
)
