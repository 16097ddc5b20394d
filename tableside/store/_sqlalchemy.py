"""
SQLAlchemy stores — async ORM backends for every store protocol.

Usage:
    db = await create_database("sqlite+aiosqlite:///tableside.db")

    catalog = SQLCatalog(db)
    orders = SQLDocuments(db, ORDERS)

    match await orders.compare_and_set(order, expected_version=3):
        case Ok(None):
            ...  # lost the race, re-read
        case Ok(stored):
            ...
        case Error(e):
            ...

Orders and bookings live in one `documents` table as JSON bodies encoded
with a pydantic TypeAdapter; owner, status and created_at are lifted into
columns so range queries stay in SQL.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, cast

from pydantic import TypeAdapter
from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, delete, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

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
# Tables
# ═══════════════════════════════════════════════════════════════════════════════


class Base(DeclarativeBase):
    pass


class MenuItemTable(Base):
    __tablename__ = "menu_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    flavors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_domain(self) -> MenuItem:
        return MenuItem(
            id=self.id,
            name=self.name,
            description=self.description,
            price=self.price,
            category=self.category,
            available=self.available,
            stock=self.stock,
            flavors=tuple(self.flavors),
            featured=self.featured,
        )


class CategoryTable(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    def to_domain(self) -> Category:
        return Category(id=self.id, name=self.name, description=self.description)


class DocumentTable(Base):
    """Orders and bookings. `version` is the compare-and-set token."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(32), primary_key=True)
    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)


class PaymentAttemptTable(Base):
    __tablename__ = "payment_attempts"

    reference: Mapped[str] = mapped_column(String(100), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    subject_type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    client_secret: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    def to_domain(self) -> PaymentAttempt:
        return PaymentAttempt(
            reference=self.reference,
            subject_id=self.subject_id,
            subject_type=SubjectType(self.subject_type),
            amount=self.amount,
            currency=self.currency,
            payer_email=self.payer_email,
            state=AttemptState(self.state),
            created_at=_aware(self.created_at),
            settled_at=_aware(self.settled_at) if self.settled_at else None,
            client_secret=self.client_secret,
        )


class UserTable(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    is_staff: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class CartTable(Base):
    __tablename__ = "carts"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    lines: Mapped[str] = mapped_column(Text, nullable=False)


def _naive_utc(value: datetime) -> datetime:
    return value.astimezone(UTC).replace(tzinfo=None)


def _aware(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


# ═══════════════════════════════════════════════════════════════════════════════
# Database
# ═══════════════════════════════════════════════════════════════════════════════


class Database:
    """
    Engine + session factory shared by the SQL stores.

    Note: SQLite allows one writer. Sessions are handed out one at a time
    so concurrent requests queue here instead of failing on a locked file.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.sessions = async_sessionmaker(engine, expire_on_commit=False)
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self._lock:
            async with self.sessions() as session:
                yield session

    async def dispose(self) -> None:
        await self.engine.dispose()


async def create_database(url: str = "sqlite+aiosqlite:///:memory:") -> Database:
    """Create engine and tables."""
    if ":memory:" in url:
        engine = create_async_engine(url, echo=False, poolclass=StaticPool)
    else:
        engine = create_async_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return Database(engine)


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════


class SQLCatalog:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, menu_item_id: str) -> Result[MenuItem | None, StoreError]:
        try:
            async with self._db.session() as session:
                row = await session.get(MenuItemTable, menu_item_id)
                return Ok(row.to_domain() if row else None)
        except Exception as e:
            return Error(StoreError(f"Failed to get menu item: {e}", e))

    async def list(self, category: str | None = None) -> Result[list[MenuItem], StoreError]:
        try:
            async with self._db.session() as session:
                stmt = select(MenuItemTable).order_by(MenuItemTable.category, MenuItemTable.name)
                if category is not None:
                    stmt = stmt.where(MenuItemTable.category == category)
                rows = (await session.execute(stmt)).scalars().all()
                return Ok([row.to_domain() for row in rows])
        except Exception as e:
            return Error(StoreError(f"Failed to list menu: {e}", e))

    async def put(self, item: MenuItem) -> Result[None, StoreError]:
        if item.stock < 0:
            return Error(StoreError(f"Negative stock for {item.id}"))
        try:
            async with self._db.session() as session:
                await session.merge(
                    MenuItemTable(
                        id=item.id,
                        name=item.name,
                        description=item.description,
                        price=item.price,
                        category=item.category,
                        available=item.available,
                        stock=item.stock,
                        flavors=list(item.flavors),
                        featured=item.featured,
                    )
                )
                await session.commit()
                return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to put menu item: {e}", e))

    async def update(
        self, menu_item_id: str, changes: Mapping[str, Any]
    ) -> Result[MenuItem | None, StoreError]:
        if changes.get("stock", 0) < 0:
            return Error(StoreError(f"Negative stock for {menu_item_id}"))
        values = dict(changes)
        if "flavors" in values:
            values["flavors"] = list(values["flavors"])
        try:
            async with self._db.session() as session:
                stmt = update(MenuItemTable).where(MenuItemTable.id == menu_item_id).values(**values)
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                if cursor.rowcount == 0:
                    await session.rollback()
                    return Ok(None)
                await session.commit()
                row = await session.get(MenuItemTable, menu_item_id, populate_existing=True)
                return Ok(row.to_domain() if row else None)
        except Exception as e:
            return Error(StoreError(f"Failed to update menu item: {e}", e))

    async def delete(self, menu_item_id: str) -> Result[bool, StoreError]:
        try:
            async with self._db.session() as session:
                stmt = delete(MenuItemTable).where(MenuItemTable.id == menu_item_id)
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                await session.commit()
                return Ok(cursor.rowcount > 0)
        except Exception as e:
            return Error(StoreError(f"Failed to delete menu item: {e}", e))

    async def take_stock(
        self, quantities: Mapping[str, int]
    ) -> Result[Shortfall | None, StoreError]:
        try:
            async with self._db.session() as session:
                for menu_item_id, quantity in quantities.items():
                    stmt = (
                        update(MenuItemTable)
                        .where(
                            MenuItemTable.id == menu_item_id,
                            MenuItemTable.available.is_(True),
                            MenuItemTable.stock >= quantity,
                        )
                        .values(stock=MenuItemTable.stock - quantity)
                    )
                    cursor = cast(CursorResult[Any], await session.execute(stmt))
                    if cursor.rowcount == 0:
                        await session.rollback()
                        row = await session.get(MenuItemTable, menu_item_id)
                        available = row.to_domain().sellable if row else 0
                        return Ok(Shortfall(menu_item_id, quantity, available))

                await session.commit()
                return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to take stock: {e}", e))

    async def return_stock(self, quantities: Mapping[str, int]) -> Result[None, StoreError]:
        try:
            async with self._db.session() as session:
                for menu_item_id, quantity in quantities.items():
                    await session.execute(
                        update(MenuItemTable)
                        .where(MenuItemTable.id == menu_item_id)
                        .values(stock=MenuItemTable.stock + quantity)
                    )
                await session.commit()
                return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to return stock: {e}", e))


# ═══════════════════════════════════════════════════════════════════════════════
# Categories
# ═══════════════════════════════════════════════════════════════════════════════


class SQLCategories:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, category_id: str) -> Result[Category | None, StoreError]:
        try:
            async with self._db.session() as session:
                row = await session.get(CategoryTable, category_id)
                return Ok(row.to_domain() if row else None)
        except Exception as e:
            return Error(StoreError(f"Failed to get category: {e}", e))

    async def list(self) -> Result[list[Category], StoreError]:
        try:
            async with self._db.session() as session:
                stmt = select(CategoryTable).order_by(CategoryTable.name)
                rows = (await session.execute(stmt)).scalars().all()
                return Ok([row.to_domain() for row in rows])
        except Exception as e:
            return Error(StoreError(f"Failed to list categories: {e}", e))

    async def put(self, category: Category) -> Result[None, StoreError]:
        try:
            async with self._db.session() as session:
                await session.merge(
                    CategoryTable(
                        id=category.id,
                        name=category.name,
                        description=category.description,
                    )
                )
                await session.commit()
                return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to put category: {e}", e))

    async def delete(self, category_id: str) -> Result[bool, StoreError]:
        try:
            async with self._db.session() as session:
                stmt = delete(CategoryTable).where(CategoryTable.id == category_id)
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                await session.commit()
                return Ok(cursor.rowcount > 0)
        except Exception as e:
            return Error(StoreError(f"Failed to delete category: {e}", e))


# ═══════════════════════════════════════════════════════════════════════════════
# Documents
# ═══════════════════════════════════════════════════════════════════════════════


class SQLDocuments[T]:
    def __init__(self, db: Database, collection: Collection[T]) -> None:
        self._db = db
        self._collection = collection
        self._adapter: TypeAdapter[T] = TypeAdapter(collection.model)

    def _decode(self, row: DocumentTable) -> Versioned[T]:
        return Versioned(self._adapter.validate_json(row.body), row.version)

    def _columns(self, value: T) -> dict[str, Any]:
        c = self._collection
        return {
            "owner_id": c.owner_of(value),
            "status": c.status_of(value),
            "body": self._adapter.dump_json(value).decode(),
        }

    def _where_key(self, key: str) -> tuple[Any, ...]:
        return (
            DocumentTable.collection == self._collection.name,
            DocumentTable.key == key,
        )

    async def get(self, key: str) -> Result[Versioned[T] | None, StoreError]:
        try:
            async with self._db.session() as session:
                row = await session.get(DocumentTable, (self._collection.name, key))
                return Ok(self._decode(row) if row else None)
        except Exception as e:
            return Error(StoreError(f"Failed to get {self._collection.name}:{key}: {e}", e))

    async def insert(self, value: T) -> Result[Versioned[T], StoreError]:
        c = self._collection
        key = c.key_of(value)
        try:
            async with self._db.session() as session:
                session.add(
                    DocumentTable(
                        collection=c.name,
                        key=key,
                        version=1,
                        created_at=_naive_utc(c.created_of(value)),
                        **self._columns(value),
                    )
                )
                await session.commit()
                return Ok(Versioned(value, 1))
        except Exception as e:
            return Error(StoreError(f"Failed to insert {c.name}:{key}: {e}", e))

    async def compare_and_set(
        self, value: T, expected_version: int
    ) -> Result[Versioned[T] | None, StoreError]:
        key = self._collection.key_of(value)
        try:
            async with self._db.session() as session:
                stmt = (
                    update(DocumentTable)
                    .where(*self._where_key(key), DocumentTable.version == expected_version)
                    .values(version=expected_version + 1, **self._columns(value))
                )
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                await session.commit()

                if cursor.rowcount > 0:
                    return Ok(Versioned(value, expected_version + 1))

                exists = await session.get(DocumentTable, (self._collection.name, key))
                if exists is None:
                    return Error(StoreError(f"{self._collection.name}:{key} vanished"))
                return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to update {self._collection.name}:{key}: {e}", e))

    async def find(
        self,
        *,
        owner: str | None = None,
        statuses: Sequence[str] | None = None,
    ) -> Result[list[Versioned[T]], StoreError]:
        try:
            async with self._db.session() as session:
                stmt = (
                    select(DocumentTable)
                    .where(DocumentTable.collection == self._collection.name)
                    .order_by(DocumentTable.created_at.desc())
                )
                if owner is not None:
                    stmt = stmt.where(DocumentTable.owner_id == owner)
                if statuses is not None:
                    stmt = stmt.where(DocumentTable.status.in_(list(statuses)))
                rows = (await session.execute(stmt)).scalars().all()
                return Ok([self._decode(row) for row in rows])
        except Exception as e:
            return Error(StoreError(f"Failed to query {self._collection.name}: {e}", e))

    async def delete(self, key: str, expected_version: int) -> Result[bool, StoreError]:
        try:
            async with self._db.session() as session:
                stmt = delete(DocumentTable).where(
                    *self._where_key(key), DocumentTable.version == expected_version
                )
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                await session.commit()
                return Ok(cursor.rowcount > 0)
        except Exception as e:
            return Error(StoreError(f"Failed to delete {self._collection.name}:{key}: {e}", e))


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger
# ═══════════════════════════════════════════════════════════════════════════════


class SQLLedger:
    def __init__(self, db: Database, clock: Clock = utcnow) -> None:
        self._db = db
        self._clock = clock

    async def record(self, attempt: PaymentAttempt) -> Result[None, StoreError]:
        try:
            async with self._db.session() as session:
                session.add(
                    PaymentAttemptTable(
                        reference=attempt.reference,
                        subject_id=attempt.subject_id,
                        subject_type=attempt.subject_type.value,
                        amount=attempt.amount,
                        currency=attempt.currency,
                        payer_email=attempt.payer_email,
                        state=attempt.state.value,
                        created_at=_naive_utc(attempt.created_at),
                        settled_at=None,
                        client_secret=attempt.client_secret,
                    )
                )
                await session.commit()
                return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to record attempt {attempt.reference}: {e}", e))

    async def get(self, reference: str) -> Result[PaymentAttempt | None, StoreError]:
        try:
            async with self._db.session() as session:
                row = await session.get(PaymentAttemptTable, reference)
                return Ok(row.to_domain() if row else None)
        except Exception as e:
            return Error(StoreError(f"Failed to get attempt {reference}: {e}", e))

    async def settle(
        self, reference: str, outcome: Outcome
    ) -> Result[PaymentAttempt | None, StoreError]:
        try:
            async with self._db.session() as session:
                row = await session.get(PaymentAttemptTable, reference)
                if row is None:
                    return Ok(None)

                current = row.to_domain()
                settled = current.settle(outcome, self._clock())
                if settled is not current:
                    row.state = settled.state.value
                    row.settled_at = _naive_utc(settled.settled_at) if settled.settled_at else None
                    await session.commit()
                return Ok(settled)
        except Exception as e:
            return Error(StoreError(f"Failed to settle attempt {reference}: {e}", e))

    async def open_for(
        self, subject_id: str, subject_type: SubjectType
    ) -> Result[PaymentAttempt | None, StoreError]:
        try:
            async with self._db.session() as session:
                stmt = (
                    select(PaymentAttemptTable)
                    .where(
                        PaymentAttemptTable.subject_id == subject_id,
                        PaymentAttemptTable.subject_type == subject_type.value,
                        PaymentAttemptTable.state == AttemptState.OPEN.value,
                    )
                    .order_by(PaymentAttemptTable.created_at.desc())
                )
                row = (await session.execute(stmt)).scalars().first()
                return Ok(row.to_domain() if row else None)
        except Exception as e:
            return Error(StoreError(f"Failed to find open attempt for {subject_id}: {e}", e))


# ═══════════════════════════════════════════════════════════════════════════════
# Identities
# ═══════════════════════════════════════════════════════════════════════════════


class SQLIdentities:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, user_id: str) -> Result[Actor | None, StoreError]:
        try:
            async with self._db.session() as session:
                row = await session.get(UserTable, user_id)
                return Ok(Actor(row.user_id, row.email, row.is_staff) if row else None)
        except Exception as e:
            return Error(StoreError(f"Failed to get user {user_id}: {e}", e))

    async def by_email(self, email: str) -> Result[Actor | None, StoreError]:
        try:
            async with self._db.session() as session:
                stmt = select(UserTable).where(UserTable.email == email.strip().lower())
                row = (await session.execute(stmt)).scalars().first()
                return Ok(Actor(row.user_id, row.email, row.is_staff) if row else None)
        except Exception as e:
            return Error(StoreError(f"Failed to find user {email}: {e}", e))

    async def put(self, actor: Actor) -> Result[None, StoreError]:
        try:
            async with self._db.session() as session:
                await session.merge(
                    UserTable(
                        user_id=actor.user_id,
                        email=actor.email.strip().lower(),
                        is_staff=actor.is_staff,
                    )
                )
                await session.commit()
                return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to put user {actor.user_id}: {e}", e))


# ═══════════════════════════════════════════════════════════════════════════════
# Carts
# ═══════════════════════════════════════════════════════════════════════════════

_CART_LINES: TypeAdapter[list[CartLine]] = TypeAdapter(list[CartLine])


class SQLCartStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def load(self, user_id: str) -> Result[list[CartLine], StoreError]:
        try:
            async with self._db.session() as session:
                row = await session.get(CartTable, user_id)
                return Ok(_CART_LINES.validate_json(row.lines) if row else [])
        except Exception as e:
            return Error(StoreError(f"Failed to load cart {user_id}: {e}", e))

    async def save(self, user_id: str, lines: Sequence[CartLine]) -> Result[None, StoreError]:
        try:
            async with self._db.session() as session:
                blob = _CART_LINES.dump_json(list(lines)).decode()
                await session.merge(CartTable(user_id=user_id, lines=blob))
                await session.commit()
                return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to save cart {user_id}: {e}", e))

    async def clear(self, user_id: str) -> Result[None, StoreError]:
        try:
            async with self._db.session() as session:
                await session.execute(delete(CartTable).where(CartTable.user_id == user_id))
                await session.commit()
                return Ok(None)
        except Exception as e:
            return Error(StoreError(f"Failed to clear cart {user_id}: {e}", e))


__all__ = (
    "Base",
    "MenuItemTable",
    "CategoryTable",
    "DocumentTable",
    "PaymentAttemptTable",
    "UserTable",
    "CartTable",
    "Database",
    "create_database",
    "SQLCatalog",
    "SQLCategories",
    "SQLDocuments",
    "SQLLedger",
    "SQLIdentities",
    "SQLCartStore",
)
