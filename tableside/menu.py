"""
Menu — catalog reads for everyone, edits for staff.

Edits never reach orders already placed: orders carry their own item
snapshots. Edits write only the fields they name, so a staff price change
racing a checkout never puts sold units back on the shelf.

Categories are the menu's sections. Items name their section by its
`name`; once any section exists, an item must name one of them.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from kungfu import Error, Ok, Result

from tableside.domain import Actor, Category, MenuItem
from tableside.errors import DuplicateName, InvalidQuantity, NotFound, Unauthorized
from tableside.identity import require_staff
from tableside.store import Catalog, Categories, MemoryCategories, StoreError

logger = logging.getLogger(__name__)


type MenuError = Unauthorized | InvalidQuantity | NotFound | DuplicateName | StoreError

_EDITABLE = frozenset(
    {"name", "description", "price", "category", "stock", "available", "flavors", "featured"}
)


def _validate(changes: dict[str, Any]) -> Result[None, InvalidQuantity]:
    if changes.get("price", 0) < 0:
        return Error(InvalidQuantity(changes["price"], "price must not be negative"))
    if changes.get("stock", 0) < 0:
        return Error(InvalidQuantity(changes["stock"], "stock must not be negative"))
    return Ok(None)


class MenuService:
    def __init__(self, catalog: Catalog, categories: Categories | None = None) -> None:
        self._catalog = catalog
        self._categories = categories if categories is not None else MemoryCategories()

    # ═══════════════════════════════════════════════════════════════════════════
    # Items
    # ═══════════════════════════════════════════════════════════════════════════

    async def get(self, menu_item_id: str) -> Result[MenuItem, NotFound | StoreError]:
        match await self._catalog.get(menu_item_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(NotFound("menu_item", menu_item_id))
            case Ok(item):
                return Ok(item)

    async def list(self, category: str | None = None) -> Result[list[MenuItem], StoreError]:
        return await self._catalog.list(category)

    async def featured(self) -> Result[list[MenuItem], StoreError]:
        match await self._catalog.list():
            case Error(e):
                return Error(e)
            case Ok(items):
                return Ok([i for i in items if i.featured and i.available])

    async def add_item(
        self,
        actor: Actor,
        *,
        name: str,
        price: int,
        category: str,
        stock: int = 0,
        description: str = "",
        flavors: tuple[str, ...] = (),
        featured: bool = False,
        available: bool = True,
    ) -> Result[MenuItem, MenuError]:
        match require_staff(actor, "add menu items"):
            case Error(e):
                return Error(e)

        match _validate({"price": price, "stock": stock}):
            case Error(e):
                return Error(e)

        match await self._known_section(category):
            case Error(e):
                return Error(e)

        item = MenuItem(
            id=f"itm_{uuid.uuid4().hex[:12]}",
            name=name,
            description=description,
            price=price,
            category=category,
            stock=stock,
            available=available,
            flavors=tuple(flavors),
            featured=featured,
        )
        match await self._catalog.put(item):
            case Error(e):
                return Error(e)
            case Ok(_):
                logger.info("menu item %s added to %s", item.id, category)
                return Ok(item)

    async def update_item(
        self, actor: Actor, menu_item_id: str, **changes: Any
    ) -> Result[MenuItem, MenuError]:
        """Partial update; unknown field names are a ValueError."""
        if unknown := set(changes) - _EDITABLE:
            raise ValueError(f"not editable: {', '.join(sorted(unknown))}")
        if "flavors" in changes:
            changes["flavors"] = tuple(changes["flavors"])

        match require_staff(actor, "edit menu items"):
            case Error(e):
                return Error(e)

        match _validate(changes):
            case Error(e):
                return Error(e)

        if "category" in changes:
            match await self._known_section(changes["category"]):
                case Error(e):
                    return Error(e)

        match await self._catalog.update(menu_item_id, changes):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(NotFound("menu_item", menu_item_id))
            case Ok(item):
                logger.info("menu item %s updated: %s", menu_item_id, ", ".join(sorted(changes)))
                return Ok(item)

    async def set_available(
        self, actor: Actor, menu_item_id: str, available: bool
    ) -> Result[MenuItem, MenuError]:
        return await self.update_item(actor, menu_item_id, available=available)

    async def set_stock(
        self, actor: Actor, menu_item_id: str, stock: int
    ) -> Result[MenuItem, MenuError]:
        return await self.update_item(actor, menu_item_id, stock=stock)

    async def delete_item(self, actor: Actor, menu_item_id: str) -> Result[None, MenuError]:
        match require_staff(actor, "delete menu items"):
            case Error(e):
                return Error(e)

        match await self._catalog.delete(menu_item_id):
            case Error(e):
                return Error(e)
            case Ok(False):
                return Error(NotFound("menu_item", menu_item_id))
            case Ok(_):
                logger.info("menu item %s deleted", menu_item_id)
                return Ok(None)

    # ═══════════════════════════════════════════════════════════════════════════
    # Categories
    # ═══════════════════════════════════════════════════════════════════════════

    async def categories(self) -> Result[list[Category], StoreError]:
        return await self._categories.list()

    async def add_category(
        self, actor: Actor, name: str, description: str = ""
    ) -> Result[Category, MenuError]:
        match require_staff(actor, "add categories"):
            case Error(e):
                return Error(e)

        match await self._named(name):
            case Error(e):
                return Error(e)
            case Ok(Category()):
                return Error(DuplicateName("category", name))

        category = Category(f"cat_{uuid.uuid4().hex[:12]}", name.strip(), description)
        match await self._categories.put(category):
            case Error(e):
                return Error(e)
            case Ok(_):
                logger.info("category %s (%s) added", category.id, category.name)
                return Ok(category)

    async def update_category(
        self,
        actor: Actor,
        category_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> Result[Category, MenuError]:
        """
        Rename or redescribe a section.

        A rename moves every item filed under the old name along with it.
        """
        match require_staff(actor, "edit categories"):
            case Error(e):
                return Error(e)

        match await self._categories.get(category_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(NotFound("category", category_id))
            case Ok(current):
                pass

        renamed = name is not None and name.strip() != current.name
        if renamed:
            match await self._named(name):
                case Error(e):
                    return Error(e)
                case Ok(Category()):
                    return Error(DuplicateName("category", name))

        updated = Category(
            current.id,
            name.strip() if renamed else current.name,
            current.description if description is None else description,
        )
        match await self._categories.put(updated):
            case Error(e):
                return Error(e)

        if renamed:
            match await self._refile(current.name, updated.name):
                case Error(e):
                    return Error(e)

        logger.info("category %s updated", category_id)
        return Ok(updated)

    async def delete_category(self, actor: Actor, category_id: str) -> Result[None, MenuError]:
        """Items keep their section name; it simply no longer has a record."""
        match require_staff(actor, "delete categories"):
            case Error(e):
                return Error(e)

        match await self._categories.delete(category_id):
            case Error(e):
                return Error(e)
            case Ok(False):
                return Error(NotFound("category", category_id))
            case Ok(_):
                logger.info("category %s deleted", category_id)
                return Ok(None)

    async def _named(self, name: str) -> Result[Category | None, StoreError]:
        wanted = name.strip().lower()
        match await self._categories.list():
            case Error(e):
                return Error(e)
            case Ok(all_):
                return Ok(next((c for c in all_ if c.name.lower() == wanted), None))

    async def _known_section(self, name: str) -> Result[None, NotFound | StoreError]:
        match await self._categories.list():
            case Error(e):
                return Error(e)
            case Ok([]):
                return Ok(None)
            case Ok(all_) if any(c.name == name for c in all_):
                return Ok(None)
            case Ok(_):
                return Error(NotFound("category", name))

    async def _refile(self, old: str, new: str) -> Result[None, StoreError]:
        match await self._catalog.list(old):
            case Error(e):
                return Error(e)
            case Ok(items):
                pass

        for item in items:
            match await self._catalog.update(item.id, {"category": new}):
                case Error(e):
                    return Error(e)
        return Ok(None)


__all__ = (
    "MenuError",
    "MenuService",
)
