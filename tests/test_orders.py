from dataclasses import replace

import pytest

from tableside import Actor, Config, OrderStatus, Restaurant
from tableside.domain import CartLine, Outcome, PaymentStatus
from tableside.errors import (
    ConcurrentModification,
    EmptyCart,
    InsufficientStock,
    InvalidQuantity,
    InvalidStateTransition,
    NotFound,
    Unauthorized,
)
from tableside.events import EventBus
from tableside.inventory import InventoryGuard
from tableside.orders import ALPHABET, OrderLifecycle
from tableside.store import ORDERS, MemoryCatalog, MemoryDocuments
from tests.conftest import FRIES, WINGS, FrozenClock, err, ok


async def place(restaurant: Restaurant, customer: Actor, *lines: CartLine):
    return ok(await restaurant.orders.create_order(list(lines), customer.user_id, customer.email))


async def test_create_order_snapshots_menu_and_takes_stock(
    restaurant: Restaurant, customer: Actor, clock: FrozenClock
) -> None:
    order = await place(
        restaurant,
        customer,
        CartLine(WINGS.id, 2, notes="extra dip", flavor="buffalo"),
        CartLine(FRIES.id, 1),
    )

    assert order.status is OrderStatus.PENDING
    assert order.payment.status is PaymentStatus.UNPAID
    assert order.payment.amount == order.total
    assert (order.subtotal, order.tax, order.total) == (38_000, 4_560, 42_560)
    assert order.created_at == clock.now
    assert [(i.name, i.unit_price, i.quantity, i.flavor) for i in order.items] == [
        ("Wings", 15_000, 2, "buffalo"),
        ("Fries", 8_000, 1, None),
    ]
    assert ok(await restaurant.menu.get(WINGS.id)).stock == 8
    assert ok(await restaurant.menu.get(FRIES.id)).stock == 4


async def test_pickup_code_shape(restaurant: Restaurant, customer: Actor) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))

    prefix, code = order.pickup_code.split("-")
    assert prefix == "RW"
    assert len(code) == 4
    assert set(code) <= set(ALPHABET)


async def test_menu_edits_never_reach_placed_orders(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 2))

    ok(await restaurant.menu.update_item(staff, WINGS.id, price=99_000, name="Mega Wings"))

    stored = ok(await restaurant.orders.get(order.id))
    assert stored.items[0].name == "Wings"
    assert stored.total == 33_600


async def test_checkout_validation(restaurant: Restaurant, customer: Actor) -> None:
    orders = restaurant.orders

    assert isinstance(err(await orders.create_order([], customer.user_id, customer.email)), EmptyCart)
    assert isinstance(
        err(await orders.create_order([CartLine(WINGS.id, 0)], customer.user_id, customer.email)),
        InvalidQuantity,
    )
    assert isinstance(
        err(await orders.create_order([CartLine("itm_nope", 1)], customer.user_id, customer.email)),
        NotFound,
    )
    e = err(
        await orders.create_order(
            [CartLine(WINGS.id, 1), CartLine(FRIES.id, 9)], customer.user_id, customer.email
        )
    )
    assert isinstance(e, InsufficientStock)
    assert ok(await restaurant.menu.get(WINGS.id)).stock == 10
    assert ok(await orders.list()) == []


async def test_staff_walks_order_forward(
    restaurant: Restaurant, customer: Actor, staff: Actor, clock: FrozenClock
) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))

    previous = order.updated_at
    for target in (OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED):
        clock.advance(minutes=5)
        order = ok(await restaurant.orders.update_status(order.id, target, staff))
        assert order.status is target
        assert order.updated_at > previous
        previous = order.updated_at


async def test_completed_order_cannot_go_back(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))
    for target in (OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED):
        ok(await restaurant.orders.update_status(order.id, target, staff))

    e = err(await restaurant.orders.update_status(order.id, OrderStatus.PREPARING, staff))

    assert isinstance(e, InvalidStateTransition)
    assert (e.current, e.attempted) == ("completed", "preparing")
    assert ok(await restaurant.orders.get(order.id)).status is OrderStatus.COMPLETED


@pytest.mark.parametrize(
    "target",
    [OrderStatus.READY, OrderStatus.COMPLETED, OrderStatus.PENDING],
)
async def test_no_skipping_or_repeating(
    restaurant: Restaurant, customer: Actor, staff: Actor, target: OrderStatus
) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))
    assert isinstance(
        err(await restaurant.orders.update_status(order.id, target, staff)),
        InvalidStateTransition,
    )


async def test_customer_cannot_drive_kitchen(restaurant: Restaurant, customer: Actor) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))
    e = err(await restaurant.orders.update_status(order.id, OrderStatus.PREPARING, customer))
    assert isinstance(e, Unauthorized)


async def test_owner_cancels_only_while_pending(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    first = await place(restaurant, customer, CartLine(WINGS.id, 1))
    second = await place(restaurant, customer, CartLine(WINGS.id, 1))

    assert ok(await restaurant.orders.cancel(first.id, customer)).status is OrderStatus.CANCELLED

    ok(await restaurant.orders.update_status(second.id, OrderStatus.PREPARING, staff))
    assert isinstance(err(await restaurant.orders.cancel(second.id, customer)), InvalidStateTransition)
    assert ok(await restaurant.orders.cancel(second.id, staff)).status is OrderStatus.CANCELLED


async def test_stranger_cannot_cancel(
    restaurant: Restaurant, customer: Actor, stranger: Actor
) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))
    assert isinstance(err(await restaurant.orders.cancel(order.id, stranger)), Unauthorized)


async def test_cancelled_is_terminal(restaurant: Restaurant, customer: Actor, staff: Actor) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))
    ok(await restaurant.orders.cancel(order.id, staff))

    for target in (OrderStatus.PREPARING, OrderStatus.CANCELLED):
        assert isinstance(
            err(await restaurant.orders.update_status(order.id, target, staff)),
            InvalidStateTransition,
        )


async def test_unknown_order(restaurant: Restaurant, staff: Actor) -> None:
    assert isinstance(err(await restaurant.orders.get("ord_nope")), NotFound)
    assert isinstance(err(await restaurant.orders.cancel("ord_nope", staff)), NotFound)


async def test_success_moves_pending_to_preparing(
    restaurant: Restaurant, customer: Actor, clock: FrozenClock
) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))

    paid = ok(await restaurant.orders.apply_payment(order.id, "pi_1", Outcome.SUCCEEDED))

    assert paid.status is OrderStatus.PREPARING
    assert paid.payment.status is PaymentStatus.PAID
    assert paid.payment.gateway_reference == "pi_1"
    assert paid.payment.paid_at == clock.now


async def test_applying_twice_is_a_no_op(restaurant: Restaurant, customer: Actor) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))

    first = ok(await restaurant.orders.apply_payment(order.id, "pi_1", Outcome.SUCCEEDED))
    second = ok(await restaurant.orders.apply_payment(order.id, "pi_1", Outcome.SUCCEEDED))

    assert second == first


async def test_paid_is_sticky(restaurant: Restaurant, customer: Actor) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))
    ok(await restaurant.orders.apply_payment(order.id, "pi_1", Outcome.SUCCEEDED))

    late = ok(await restaurant.orders.apply_payment(order.id, "pi_1", Outcome.FAILED))
    other = ok(await restaurant.orders.apply_payment(order.id, "pi_2", Outcome.SUCCEEDED))

    for o in (late, other):
        assert o.payment.status is PaymentStatus.PAID
        assert o.payment.gateway_reference == "pi_1"


async def test_failure_keeps_status_and_success_after_failure_wins(
    restaurant: Restaurant, customer: Actor
) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))

    failed = ok(await restaurant.orders.apply_payment(order.id, "pi_1", Outcome.FAILED))
    assert failed.status is OrderStatus.PENDING
    assert failed.payment.status is PaymentStatus.FAILED

    paid = ok(await restaurant.orders.apply_payment(order.id, "pi_2", Outcome.SUCCEEDED))
    assert paid.status is OrderStatus.PREPARING
    assert paid.payment.gateway_reference == "pi_2"


async def test_late_success_on_cancelled_order_stays_cancelled(
    restaurant: Restaurant, customer: Actor
) -> None:
    order = await place(restaurant, customer, CartLine(WINGS.id, 1))
    ok(await restaurant.orders.cancel(order.id, customer))

    paid = ok(await restaurant.orders.apply_payment(order.id, "pi_1", Outcome.SUCCEEDED))

    assert paid.status is OrderStatus.CANCELLED
    assert paid.payment.status is PaymentStatus.PAID


async def test_listing(
    restaurant: Restaurant, customer: Actor, stranger: Actor, staff: Actor, clock: FrozenClock
) -> None:
    first = await place(restaurant, customer, CartLine(WINGS.id, 1))
    clock.advance(minutes=1)
    second = await place(restaurant, customer, CartLine(FRIES.id, 1))
    clock.advance(minutes=1)
    theirs = await place(restaurant, stranger, CartLine(FRIES.id, 1))
    ok(await restaurant.orders.cancel(first.id, staff))

    mine = ok(await restaurant.orders.for_user(customer.user_id))
    assert [o.id for o in mine] == [second.id, first.id]
    assert [o.id for o in ok(await restaurant.orders.list())] == [theirs.id, second.id, first.id]
    assert [o.id for o in ok(await restaurant.orders.list(OrderStatus.CANCELLED))] == [first.id]


class RivalWrites:
    """Runs another writer right after each read, before the caller can write."""

    def __init__(self, inner: MemoryDocuments, rival=None) -> None:
        self._inner = inner
        self.rival = rival
        self.reads = 0

    async def get(self, key: str):
        read = await self._inner.get(key)
        self.reads += 1
        if self.rival is not None:
            await self.rival()
        return read

    def __getattr__(self, name: str):
        return getattr(self._inner, name)


def lifecycles(clock: FrozenClock, config: Config | None = None):
    """Two lifecycles over one order table; the first one always reads stale."""
    docs = MemoryDocuments(ORDERS)
    catalog = MemoryCatalog([WINGS])
    raced = RivalWrites(docs)

    def build(documents) -> OrderLifecycle:
        return OrderLifecycle(
            documents, catalog, InventoryGuard(catalog), EventBus(), config, clock
        )

    return build(raced), build(docs), raced, docs


async def test_payment_losing_to_staff_cancel_keeps_both(
    customer: Actor, staff: Actor, clock: FrozenClock
) -> None:
    slow, fast, raced, _ = lifecycles(clock)
    order = ok(await fast.create_order([CartLine(WINGS.id, 1)], customer.user_id, ""))

    async def cancel_first() -> None:
        raced.rival = None
        ok(await fast.update_status(order.id, OrderStatus.CANCELLED, staff))

    raced.rival = cancel_first
    paid = ok(await slow.apply_payment(order.id, "pi_1", Outcome.SUCCEEDED))

    assert raced.reads == 2
    assert paid.status is OrderStatus.CANCELLED
    assert paid.payment.status is PaymentStatus.PAID
    assert ok(await fast.get(order.id)) == paid


async def test_cancel_losing_to_payment_is_checked_again(
    customer: Actor, clock: FrozenClock
) -> None:
    slow, fast, raced, _ = lifecycles(clock)
    order = ok(await fast.create_order([CartLine(WINGS.id, 1)], customer.user_id, ""))

    async def pay_first() -> None:
        raced.rival = None
        ok(await fast.apply_payment(order.id, "pi_1", Outcome.SUCCEEDED))

    raced.rival = pay_first
    e = err(await slow.cancel(order.id, customer))

    assert isinstance(e, InvalidStateTransition)
    assert ok(await fast.get(order.id)).status is OrderStatus.PREPARING


async def test_endless_rivals_give_up_after_configured_attempts(
    customer: Actor, staff: Actor, clock: FrozenClock
) -> None:
    config = Config().with_update_attempts(3)
    slow, fast, raced, docs = lifecycles(clock, config)
    order = ok(await fast.create_order([CartLine(WINGS.id, 1)], customer.user_id, ""))

    async def scribble() -> None:
        current = ok(await docs.get(order.id))
        ok(await docs.compare_and_set(replace(current.value, notes="rush"), current.version))

    raced.rival = scribble
    e = err(await slow.update_status(order.id, OrderStatus.PREPARING, staff))

    assert isinstance(e, ConcurrentModification)
    assert e.attempts == 3
    assert raced.reads == 3
    assert ok(await fast.get(order.id)).status is OrderStatus.PENDING


class RepricedAtTake:
    """A price edit lands while the checkout is reading the menu."""

    def __init__(self, inner: MemoryCatalog, price: int) -> None:
        self._inner = inner
        self._price = price

    async def take_stock(self, quantities):
        ok(await self._inner.update(WINGS.id, {"price": self._price}))
        return await self._inner.take_stock(quantities)

    def __getattr__(self, name: str):
        return getattr(self._inner, name)


async def test_order_prices_match_the_stock_take(customer: Actor, clock: FrozenClock) -> None:
    catalog = RepricedAtTake(MemoryCatalog([WINGS]), 16_000)
    orders = OrderLifecycle(
        MemoryDocuments(ORDERS), catalog, InventoryGuard(catalog), EventBus(), clock=clock
    )

    order = ok(await orders.create_order([CartLine(WINGS.id, 2)], customer.user_id, ""))

    assert order.items[0].unit_price == 16_000
    assert ok(await catalog.get(WINGS.id)).stock == 8
