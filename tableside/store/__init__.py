"""
Store — authoritative storage behind the lifecycle managers.

    from tableside import store as S

    # In-memory
    catalog = S.MemoryCatalog([wings, fries])
    orders = S.MemoryDocuments(S.ORDERS)

    # SQLAlchemy
    db = await S.create_database("sqlite+aiosqlite:///tableside.db")
    orders = S.SQLDocuments(db, S.ORDERS)

    # Atomic read-modify-write
    result = await S.mutate(orders, order_id, change, entity="order")
"""

from tableside.store._types import (
    StoreError,
    Versioned,
    Shortfall,
    Collection,
    ORDERS,
    BOOKINGS,
)
from tableside.store._store import (
    Catalog,
    Categories,
    Documents,
    Ledger,
    Identities,
    CartStore,
)
from tableside.store._memory import (
    MemoryCatalog,
    MemoryCategories,
    MemoryDocuments,
    MemoryLedger,
    MemoryIdentities,
    MemoryCartStore,
)
from tableside.store._sqlalchemy import (
    Database,
    create_database,
    SQLCatalog,
    SQLCategories,
    SQLDocuments,
    SQLLedger,
    SQLIdentities,
    SQLCartStore,
)
from tableside.store._update import (
    Mutation,
    mutate,
)


__all__ = (
    # Types
    "StoreError",
    "Versioned",
    "Shortfall",
    "Collection",
    "ORDERS",
    "BOOKINGS",
    # Protocols
    "Catalog",
    "Categories",
    "Documents",
    "Ledger",
    "Identities",
    "CartStore",
    # Memory
    "MemoryCatalog",
    "MemoryCategories",
    "MemoryDocuments",
    "MemoryLedger",
    "MemoryIdentities",
    "MemoryCartStore",
    # SQLAlchemy
    "Database",
    "create_database",
    "SQLCatalog",
    "SQLCategories",
    "SQLDocuments",
    "SQLLedger",
    "SQLIdentities",
    "SQLCartStore",
    # Updates
    "Mutation",
    "mutate",
)
