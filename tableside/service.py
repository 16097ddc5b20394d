"""
Wiring — one restaurant, its stores and its lifecycle managers.

    restaurant = in_memory(Config(), menu=[wings, fries])
    cart = restaurant.cart(user.user_id)
    await cart.add_item(wings, 2)

    match await restaurant.checkout(cart, user.email):
        case Ok(order):
            ...

    restaurant = await with_database(Config.from_env())
    ...
    await restaurant.close()
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from kungfu import Error, Ok, Result

from tableside._types import Clock, utcnow
from tableside.bookings import BookingLifecycle
from tableside.cart import Cart
from tableside.config import Config
from tableside.domain import Booking, MenuItem, Order
from tableside.events import EventBus
from tableside.inventory import InventoryGuard
from tableside.menu import MenuService
from tableside.orders import CheckoutError, OrderLifecycle
from tableside.payments import FakeGateway, Gateway, PaymentReconciler
from tableside.store import (
    BOOKINGS,
    ORDERS,
    CartStore,
    Catalog,
    Categories,
    Database,
    Documents,
    Identities,
    Ledger,
    MemoryCartStore,
    MemoryCatalog,
    MemoryCategories,
    MemoryDocuments,
    MemoryIdentities,
    MemoryLedger,
    SQLCartStore,
    SQLCatalog,
    SQLCategories,
    SQLDocuments,
    SQLIdentities,
    SQLLedger,
    StoreError,
    create_database,
)

logger = logging.getLogger(__name__)


@dataclass
class Restaurant:
    config: Config
    catalog: Catalog
    carts: CartStore
    identities: Identities
    events: EventBus
    guard: InventoryGuard
    menu: MenuService
    orders: OrderLifecycle
    bookings: BookingLifecycle
    payments: PaymentReconciler
    gateway: Gateway
    database: Database | None = None

    def cart(self, user_id: str) -> Cart:
        """Empty cart for a new session."""
        return Cart(user_id, self.catalog, self.guard, tax_rate=self.config.tax_rate)

    async def open_cart(self, user_id: str) -> Result[Cart, StoreError]:
        """The user's saved cart, replayed against current stock."""
        return await Cart.resume(
            user_id, self.catalog, self.guard, self.carts, tax_rate=self.config.tax_rate
        )

    async def checkout(
        self, cart: Cart, user_email: str, notes: str = ""
    ) -> Result[Order, CheckoutError]:
        """Create the order, then empty the cart."""
        match await self.orders.create_order(cart.snapshot(), cart.user_id, user_email, notes):
            case Error(e):
                return Error(e)
            case Ok(order):
                pass

        await cart.clear()
        match await self.carts.clear(cart.user_id):
            case Error(e):
                logger.warning("order %s placed but saved cart not cleared: %s", order.id, e)
        return Ok(order)

    async def close(self) -> None:
        if self.database is not None:
            await self.database.dispose()


def _assemble(
    config: Config,
    gateway: Gateway,
    clock: Clock,
    *,
    catalog: Catalog,
    categories: Categories,
    orders: Documents[Order],
    bookings: Documents[Booking],
    ledger: Ledger,
    identities: Identities,
    carts: CartStore,
    database: Database | None = None,
) -> Restaurant:
    events = EventBus()
    guard = InventoryGuard(catalog)
    order_lifecycle = OrderLifecycle(orders, catalog, guard, events, config, clock)
    booking_lifecycle = BookingLifecycle(bookings, events, config, clock)

    return Restaurant(
        config=config,
        catalog=catalog,
        carts=carts,
        identities=identities,
        events=events,
        guard=guard,
        menu=MenuService(catalog, categories),
        orders=order_lifecycle,
        bookings=booking_lifecycle,
        payments=PaymentReconciler(
            ledger, order_lifecycle, booking_lifecycle, gateway, config, clock
        ),
        gateway=gateway,
        database=database,
    )


def in_memory(
    config: Config | None = None,
    gateway: Gateway | None = None,
    *,
    menu: Sequence[MenuItem] = (),
    clock: Clock = utcnow,
) -> Restaurant:
    return _assemble(
        config or Config(),
        gateway or FakeGateway(),
        clock,
        catalog=MemoryCatalog(menu),
        categories=MemoryCategories(),
        orders=MemoryDocuments(ORDERS),
        bookings=MemoryDocuments(BOOKINGS),
        ledger=MemoryLedger(clock),
        identities=MemoryIdentities(),
        carts=MemoryCartStore(),
    )


async def with_database(
    config: Config | None = None,
    gateway: Gateway | None = None,
    *,
    clock: Clock = utcnow,
) -> Restaurant:
    config = config or Config()
    db = await create_database(config.database_url)
    logger.info("database ready at %s", db.engine.url.render_as_string(hide_password=True))

    return _assemble(
        config,
        gateway or FakeGateway(),
        clock,
        catalog=SQLCatalog(db),
        categories=SQLCategories(db),
        orders=SQLDocuments(db, ORDERS),
        bookings=SQLDocuments(db, BOOKINGS),
        ledger=SQLLedger(db, clock),
        identities=SQLIdentities(db),
        carts=SQLCartStore(db),
        database=db,
    )


__all__ = (
    "Restaurant",
    "in_memory",
    "with_database",
)
