"""
Store protocols — the authoritative record the lifecycle managers consume.

All methods return Result for explicit error handling. Every write that
races with another writer is conditional: documents carry a version and
`compare_and_set` only lands if the caller saw the latest one.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from kungfu import Result

from tableside.domain import (
    Actor,
    CartLine,
    Category,
    MenuItem,
    Outcome,
    PaymentAttempt,
    SubjectType,
)
from tableside.store._types import Shortfall, StoreError, Versioned


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog — menu items and stock
# ═══════════════════════════════════════════════════════════════════════════════


class Catalog(Protocol):
    """
    Menu items with an atomic multi-item stock take.

    Example:
        match await catalog.take_stock({"wings": 2, "fries": 1}):
            case Ok(None):
                ...  # all decremented
            case Ok(Shortfall(menu_item_id=item)):
                ...  # nothing decremented
            case Error(e):
                ...
    """

    async def get(self, menu_item_id: str) -> Result[MenuItem | None, StoreError]:
        """Ok(None) if not found."""
        ...

    async def list(self, category: str | None = None) -> Result[list[MenuItem], StoreError]:
        ...

    async def put(self, item: MenuItem) -> Result[None, StoreError]:
        """Insert or replace."""
        ...

    async def update(
        self, menu_item_id: str, changes: Mapping[str, Any]
    ) -> Result[MenuItem | None, StoreError]:
        """
        Write only the named fields, in one atomic step.

        Fields not named (stock in particular) keep whatever value they
        hold at write time. Ok(None) if not found.
        """
        ...

    async def delete(self, menu_item_id: str) -> Result[bool, StoreError]:
        """Ok(True) if existed."""
        ...

    async def take_stock(
        self, quantities: Mapping[str, int]
    ) -> Result[Shortfall | None, StoreError]:
        """
        Decrement every item by its quantity, or none of them.

        Returns Ok(None) on success, Ok(Shortfall) naming the first item
        that could not be covered. Must be atomic per call.
        """
        ...

    async def return_stock(self, quantities: Mapping[str, int]) -> Result[None, StoreError]:
        """Add quantities back. Unknown items are skipped."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Categories — menu sections
# ═══════════════════════════════════════════════════════════════════════════════


class Categories(Protocol):
    async def get(self, category_id: str) -> Result[Category | None, StoreError]:
        ...

    async def list(self) -> Result[list[Category], StoreError]:
        """Sorted by name."""
        ...

    async def put(self, category: Category) -> Result[None, StoreError]:
        """Insert or replace."""
        ...

    async def delete(self, category_id: str) -> Result[bool, StoreError]:
        """Ok(True) if existed."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Documents — versioned orders / bookings
# ═══════════════════════════════════════════════════════════════════════════════


class Documents[T](Protocol):
    async def get(self, key: str) -> Result[Versioned[T] | None, StoreError]:
        """Ok(None) if not found."""
        ...

    async def insert(self, value: T) -> Result[Versioned[T], StoreError]:
        """Fails if the key already exists."""
        ...

    async def compare_and_set(
        self, value: T, expected_version: int
    ) -> Result[Versioned[T] | None, StoreError]:
        """
        Replace the document if its version still equals `expected_version`.

        Returns Ok(Versioned) with the bumped version if written,
        Ok(None) if another writer got there first.
        """
        ...

    async def find(
        self,
        *,
        owner: str | None = None,
        statuses: Sequence[str] | None = None,
    ) -> Result[list[Versioned[T]], StoreError]:
        """Range query by owner and/or status, newest first."""
        ...

    async def delete(self, key: str, expected_version: int) -> Result[bool, StoreError]:
        """Ok(True) if deleted, Ok(False) if missing or changed meanwhile."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger — payment attempts keyed by gateway reference
# ═══════════════════════════════════════════════════════════════════════════════


class Ledger(Protocol):
    async def record(self, attempt: PaymentAttempt) -> Result[None, StoreError]:
        ...

    async def get(self, reference: str) -> Result[PaymentAttempt | None, StoreError]:
        ...

    async def settle(
        self, reference: str, outcome: Outcome
    ) -> Result[PaymentAttempt | None, StoreError]:
        """Mark the attempt with its outcome. Success is sticky."""
        ...

    async def open_for(
        self, subject_id: str, subject_type: SubjectType
    ) -> Result[PaymentAttempt | None, StoreError]:
        """The newest attempt for the subject still waiting on an outcome."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Identities — the staff claim
# ═══════════════════════════════════════════════════════════════════════════════


class Identities(Protocol):
    async def get(self, user_id: str) -> Result[Actor | None, StoreError]:
        ...

    async def by_email(self, email: str) -> Result[Actor | None, StoreError]:
        ...

    async def put(self, actor: Actor) -> Result[None, StoreError]:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# CartStore — per-user blob
# ═══════════════════════════════════════════════════════════════════════════════


class CartStore(Protocol):
    async def load(self, user_id: str) -> Result[list[CartLine], StoreError]:
        """Empty list when nothing saved."""
        ...

    async def save(self, user_id: str, lines: Sequence[CartLine]) -> Result[None, StoreError]:
        ...

    async def clear(self, user_id: str) -> Result[None, StoreError]:
        ...


__all__ = (
    "Catalog",
    "Categories",
    "Documents",
    "Ledger",
    "Identities",
    "CartStore",
)
