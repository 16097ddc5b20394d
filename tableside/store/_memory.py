"""
Memory stores — in-process backends for tests and the demo.

Note: single-instance only. Every store serialises on its own asyncio.Lock,
which is what makes `take_stock` and `compare_and_set` atomic here.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any

from kungfu import Error, Ok, Result

from tableside._types import Clock, utcnow
from tableside.domain import (
    Actor,
    AttemptState,
    CartLine,
    Category,
    MenuItem,
    Outcome,
    PaymentAttempt,
    SubjectType,
)
from tableside.store._types import Collection, Shortfall, StoreError, Versioned


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryCatalog:
    def __init__(self, items: Sequence[MenuItem] = ()) -> None:
        self._items: dict[str, MenuItem] = {item.id: item for item in items}
        self._lock = asyncio.Lock()

    async def get(self, menu_item_id: str) -> Result[MenuItem | None, StoreError]:
        async with self._lock:
            return Ok(self._items.get(menu_item_id))

    async def list(self, category: str | None = None) -> Result[list[MenuItem], StoreError]:
        async with self._lock:
            items = [
                item
                for item in self._items.values()
                if category is None or item.category == category
            ]
            return Ok(sorted(items, key=lambda i: (i.category, i.name)))

    async def put(self, item: MenuItem) -> Result[None, StoreError]:
        if item.stock < 0:
            return Error(StoreError(f"Negative stock for {item.id}"))
        async with self._lock:
            self._items[item.id] = item
            return Ok(None)

    async def update(
        self, menu_item_id: str, changes: Mapping[str, Any]
    ) -> Result[MenuItem | None, StoreError]:
        if changes.get("stock", 0) < 0:
            return Error(StoreError(f"Negative stock for {menu_item_id}"))
        async with self._lock:
            item = self._items.get(menu_item_id)
            if item is None:
                return Ok(None)
            updated = replace(item, **changes)
            self._items[menu_item_id] = updated
            return Ok(updated)

    async def delete(self, menu_item_id: str) -> Result[bool, StoreError]:
        async with self._lock:
            return Ok(self._items.pop(menu_item_id, None) is not None)

    async def take_stock(
        self, quantities: Mapping[str, int]
    ) -> Result[Shortfall | None, StoreError]:
        async with self._lock:
            for menu_item_id, quantity in quantities.items():
                item = self._items.get(menu_item_id)
                available = item.sellable if item else 0
                if quantity > available:
                    return Ok(Shortfall(menu_item_id, quantity, available))

            for menu_item_id, quantity in quantities.items():
                item = self._items[menu_item_id]
                self._items[menu_item_id] = replace(item, stock=item.stock - quantity)
            return Ok(None)

    async def return_stock(self, quantities: Mapping[str, int]) -> Result[None, StoreError]:
        async with self._lock:
            for menu_item_id, quantity in quantities.items():
                if item := self._items.get(menu_item_id):
                    self._items[menu_item_id] = replace(item, stock=item.stock + quantity)
            return Ok(None)


# ═══════════════════════════════════════════════════════════════════════════════
# Categories
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryCategories:
    def __init__(self, categories: Sequence[Category] = ()) -> None:
        self._categories: dict[str, Category] = {c.id: c for c in categories}
        self._lock = asyncio.Lock()

    async def get(self, category_id: str) -> Result[Category | None, StoreError]:
        async with self._lock:
            return Ok(self._categories.get(category_id))

    async def list(self) -> Result[list[Category], StoreError]:
        async with self._lock:
            return Ok(sorted(self._categories.values(), key=lambda c: c.name))

    async def put(self, category: Category) -> Result[None, StoreError]:
        async with self._lock:
            self._categories[category.id] = category
            return Ok(None)

    async def delete(self, category_id: str) -> Result[bool, StoreError]:
        async with self._lock:
            return Ok(self._categories.pop(category_id, None) is not None)


# ═══════════════════════════════════════════════════════════════════════════════
# Documents
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryDocuments[T]:
    def __init__(self, collection: Collection[T]) -> None:
        self._collection = collection
        self._docs: dict[str, Versioned[T]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Result[Versioned[T] | None, StoreError]:
        async with self._lock:
            return Ok(self._docs.get(key))

    async def insert(self, value: T) -> Result[Versioned[T], StoreError]:
        key = self._collection.key_of(value)
        async with self._lock:
            if key in self._docs:
                return Error(StoreError(f"{self._collection.name}:{key} already exists"))
            stored = Versioned(value, 1)
            self._docs[key] = stored
            return Ok(stored)

    async def compare_and_set(
        self, value: T, expected_version: int
    ) -> Result[Versioned[T] | None, StoreError]:
        key = self._collection.key_of(value)
        async with self._lock:
            current = self._docs.get(key)
            if current is None:
                return Error(StoreError(f"{self._collection.name}:{key} vanished"))
            if current.version != expected_version:
                return Ok(None)
            stored = Versioned(value, expected_version + 1)
            self._docs[key] = stored
            return Ok(stored)

    async def find(
        self,
        *,
        owner: str | None = None,
        statuses: Sequence[str] | None = None,
    ) -> Result[list[Versioned[T]], StoreError]:
        c = self._collection
        async with self._lock:
            found = [
                doc
                for doc in self._docs.values()
                if (owner is None or c.owner_of(doc.value) == owner)
                and (statuses is None or c.status_of(doc.value) in statuses)
            ]
        found.sort(key=lambda d: c.created_of(d.value), reverse=True)
        return Ok(found)

    async def delete(self, key: str, expected_version: int) -> Result[bool, StoreError]:
        async with self._lock:
            current = self._docs.get(key)
            if current is None or current.version != expected_version:
                return Ok(False)
            del self._docs[key]
            return Ok(True)


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryLedger:
    def __init__(self, clock: Clock = utcnow) -> None:
        self._attempts: dict[str, PaymentAttempt] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    async def record(self, attempt: PaymentAttempt) -> Result[None, StoreError]:
        async with self._lock:
            if attempt.reference in self._attempts:
                return Error(StoreError(f"Attempt {attempt.reference} already recorded"))
            self._attempts[attempt.reference] = attempt
            return Ok(None)

    async def get(self, reference: str) -> Result[PaymentAttempt | None, StoreError]:
        async with self._lock:
            return Ok(self._attempts.get(reference))

    async def settle(
        self, reference: str, outcome: Outcome
    ) -> Result[PaymentAttempt | None, StoreError]:
        async with self._lock:
            attempt = self._attempts.get(reference)
            if attempt is None:
                return Ok(None)
            settled = attempt.settle(outcome, self._clock())
            self._attempts[reference] = settled
            return Ok(settled)

    async def open_for(
        self, subject_id: str, subject_type: SubjectType
    ) -> Result[PaymentAttempt | None, StoreError]:
        async with self._lock:
            open_ = [
                a
                for a in self._attempts.values()
                if a.subject_id == subject_id
                and a.subject_type is subject_type
                and a.state is AttemptState.OPEN
            ]
        return Ok(max(open_, key=lambda a: a.created_at, default=None))


# ═══════════════════════════════════════════════════════════════════════════════
# Identities
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryIdentities:
    def __init__(self, actors: Sequence[Actor] = ()) -> None:
        self._actors: dict[str, Actor] = {a.user_id: a for a in actors}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> Result[Actor | None, StoreError]:
        async with self._lock:
            return Ok(self._actors.get(user_id))

    async def by_email(self, email: str) -> Result[Actor | None, StoreError]:
        wanted = email.strip().lower()
        async with self._lock:
            for actor in self._actors.values():
                if actor.email.lower() == wanted:
                    return Ok(actor)
            return Ok(None)

    async def put(self, actor: Actor) -> Result[None, StoreError]:
        async with self._lock:
            self._actors[actor.user_id] = actor
            return Ok(None)


# ═══════════════════════════════════════════════════════════════════════════════
# Carts
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryCartStore:
    def __init__(self) -> None:
        self._carts: dict[str, tuple[CartLine, ...]] = {}
        self._lock = asyncio.Lock()

    async def load(self, user_id: str) -> Result[list[CartLine], StoreError]:
        async with self._lock:
            return Ok(list(self._carts.get(user_id, ())))

    async def save(self, user_id: str, lines: Sequence[CartLine]) -> Result[None, StoreError]:
        async with self._lock:
            self._carts[user_id] = tuple(lines)
            return Ok(None)

    async def clear(self, user_id: str) -> Result[None, StoreError]:
        async with self._lock:
            self._carts.pop(user_id, None)
            return Ok(None)


__all__ = (
    "MemoryCatalog",
    "MemoryCategories",
    "MemoryDocuments",
    "MemoryLedger",
    "MemoryIdentities",
    "MemoryCartStore",
)
