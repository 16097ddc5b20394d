import asyncio
from dataclasses import replace
from datetime import date, time

import pytest
from kungfu import Error, Ok

from tableside import Actor, BookingStatus, Config, OrderStatus, Restaurant, with_database
from tableside.domain import AttemptState, CartLine, Outcome, PaymentStatus, SubjectType
from tableside.errors import InsufficientStock, NotFound
from tableside.identity import grant_staff
from tableside.payments import FakeGateway, GatewayStatus
from tableside.store import ORDERS, SQLDocuments, SQLLedger, mutate
from tests.conftest import FRIES, LAST_CAKE, WINGS, FrozenClock, err, ok


@pytest.fixture
async def sql_restaurant(tmp_path, clock: FrozenClock, gateway: FakeGateway, staff: Actor):
    config = Config().with_database_url(f"sqlite+aiosqlite:///{tmp_path / 'tableside.db'}")
    r = await with_database(config, gateway, clock=clock)
    for item in (WINGS, FRIES, LAST_CAKE):
        ok(await r.catalog.put(item))
    ok(await r.identities.put(staff))
    yield r
    await r.close()


async def test_catalog_round_trip(sql_restaurant: Restaurant) -> None:
    wings = ok(await sql_restaurant.catalog.get(WINGS.id))
    assert wings == WINGS

    mains = ok(await sql_restaurant.catalog.list("mains"))
    assert [i.id for i in mains] == [WINGS.id]

    assert ok(await sql_restaurant.catalog.delete(FRIES.id)) is True
    assert ok(await sql_restaurant.catalog.delete(FRIES.id)) is False
    assert ok(await sql_restaurant.catalog.get(FRIES.id)) is None


async def test_take_stock_is_all_or_nothing(sql_restaurant: Restaurant) -> None:
    catalog = sql_restaurant.catalog

    short = ok(await catalog.take_stock({WINGS.id: 2, FRIES.id: 6}))

    assert short is not None
    assert (short.menu_item_id, short.requested, short.available) == (FRIES.id, 6, 5)
    assert ok(await catalog.get(WINGS.id)).stock == 10

    assert ok(await catalog.take_stock({WINGS.id: 2, FRIES.id: 5})) is None
    assert ok(await catalog.get(WINGS.id)).stock == 8
    assert ok(await catalog.get(FRIES.id)).stock == 0


async def test_order_survives_storage(sql_restaurant: Restaurant, customer: Actor) -> None:
    order = ok(
        await sql_restaurant.orders.create_order(
            [CartLine(WINGS.id, 2, flavor="buffalo")], customer.user_id, customer.email
        )
    )

    stored = ok(await sql_restaurant.orders.get(order.id))
    assert stored == order
    assert stored.total == 33_600
    assert [o.id for o in ok(await sql_restaurant.orders.for_user(customer.user_id))] == [order.id]


async def test_last_unit_race_on_sqlite(sql_restaurant: Restaurant) -> None:
    lines = [CartLine(LAST_CAKE.id, 1)]

    results = await asyncio.gather(
        *(sql_restaurant.orders.create_order(lines, f"usr_{n}", "") for n in range(3))
    )

    refused = [e for r in results for e in refusals(r)]
    assert len(refused) == 2
    assert all(isinstance(e, InsufficientStock) for e in refused)
    assert ok(await sql_restaurant.catalog.get(LAST_CAKE.id)).stock == 0


def refusals(result) -> list:
    match result:
        case Error(e):
            return [e]
        case _:
            return []


async def test_compare_and_set_detects_stale_version(
    sql_restaurant: Restaurant, customer: Actor, clock: FrozenClock
) -> None:
    order = ok(
        await sql_restaurant.orders.create_order(
            [CartLine(FRIES.id, 1)], customer.user_id, customer.email
        )
    )
    docs = SQLDocuments(sql_restaurant.database, ORDERS)

    current = ok(await docs.get(order.id))
    assert current.version == 1

    ok(await docs.compare_and_set(replace(order, notes="first"), 1))
    assert ok(await docs.compare_and_set(replace(order, notes="second"), 1)) is None
    assert ok(await docs.get(order.id)).value.notes == "first"

    mutation = ok(
        await mutate(docs, order.id, lambda o: Ok(replace(o, notes="third")), entity="order")
    )
    assert mutation.version == 3


async def test_booking_flow_and_sweep_on_sqlite(
    sql_restaurant: Restaurant, customer: Actor, staff: Actor, clock: FrozenClock, gateway
) -> None:
    bookings = sql_restaurant.bookings
    booking = ok(
        await bookings.create_booking(customer.user_id, "Ana", date(2026, 3, 5), time(19, 30), 2)
    )
    ok(await bookings.approve(booking.id, staff))

    handle = ok(
        await sql_restaurant.payments.begin_payment(
            booking.id, SubjectType.BOOKING, booking.reservation_fee, customer.email
        )
    )
    gateway.settle(handle.reference, GatewayStatus.SUCCEEDED)
    paid = ok(await sql_restaurant.payments.confirm(handle.reference))
    assert paid.status is BookingStatus.PAID
    assert paid.starts_at == booking.starts_at

    clock.advance(days=4)
    moved = ok(await bookings.sweep_past_bookings())
    assert [b.id for b in moved] == [booking.id]
    assert ok(await bookings.sweep_past_bookings()) == []
    assert ok(await bookings.get(booking.id)).status is BookingStatus.PAST


async def test_ledger_settles_once(sql_restaurant: Restaurant, customer: Actor) -> None:
    order = ok(
        await sql_restaurant.orders.create_order(
            [CartLine(WINGS.id, 1)], customer.user_id, customer.email
        )
    )
    handle = ok(
        await sql_restaurant.payments.begin_payment(
            order.id, SubjectType.ORDER, order.total, customer.email
        )
    )

    ok(await sql_restaurant.payments.handle_callback(handle.reference, Outcome.SUCCEEDED))
    ok(await sql_restaurant.payments.handle_callback(handle.reference, Outcome.FAILED))

    attempt = ok(await SQLLedger(sql_restaurant.database).get(handle.reference))
    assert attempt.state is AttemptState.SUCCEEDED
    stored = ok(await sql_restaurant.orders.get(order.id))
    assert stored.payment.status is PaymentStatus.PAID
    assert stored.status is OrderStatus.PREPARING


async def test_identities_and_carts(sql_restaurant: Restaurant) -> None:
    assert isinstance(err(await grant_staff(sql_restaurant.identities, "new@example.com")), NotFound)

    granted = ok(await grant_staff(sql_restaurant.identities, "New@Example.com", create=True))
    found = ok(await sql_restaurant.identities.by_email("new@example.com"))
    assert found == granted
    assert found.is_staff

    lines = [CartLine(WINGS.id, 2, "no dip", "buffalo"), CartLine(FRIES.id, 1)]
    ok(await sql_restaurant.carts.save("usr_ana", lines))
    assert ok(await sql_restaurant.carts.load("usr_ana")) == lines
    ok(await sql_restaurant.carts.clear("usr_ana"))
    assert ok(await sql_restaurant.carts.load("usr_ana")) == []


async def test_update_writes_only_named_columns(sql_restaurant: Restaurant) -> None:
    catalog = sql_restaurant.catalog
    ok(await catalog.take_stock({WINGS.id: 3}))

    updated = ok(await catalog.update(WINGS.id, {"price": 16_000, "flavors": ("honey",)}))

    assert (updated.price, updated.flavors, updated.stock) == (16_000, ("honey",), 7)
    assert ok(await catalog.get(WINGS.id)) == updated
    assert ok(await catalog.update("itm_nope", {"price": 1})) is None
    assert isinstance(await catalog.update(WINGS.id, {"stock": -1}), Error)


async def test_categories_on_sqlite(sql_restaurant: Restaurant, staff: Actor) -> None:
    menu = sql_restaurant.menu
    mains = ok(await menu.add_category(staff, "mains"))
    ok(await menu.add_category(staff, "desserts", "Sweet things"))

    ok(await menu.update_category(staff, mains.id, name="grill"))

    assert [c.name for c in ok(await menu.categories())] == ["desserts", "grill"]
    assert ok(await sql_restaurant.catalog.get(WINGS.id)).category == "grill"


async def test_open_attempt_is_reused_across_begins(
    sql_restaurant: Restaurant, customer: Actor, gateway: FakeGateway
) -> None:
    order = ok(
        await sql_restaurant.orders.create_order(
            [CartLine(WINGS.id, 1)], customer.user_id, customer.email
        )
    )
    payments = sql_restaurant.payments

    first = ok(await payments.begin_payment(order.id, SubjectType.ORDER, order.total, customer.email))
    again = ok(await payments.begin_payment(order.id, SubjectType.ORDER, order.total, customer.email))
    assert again == first

    ok(await payments.handle_callback(first.reference, Outcome.FAILED))
    retry = ok(await payments.begin_payment(order.id, SubjectType.ORDER, order.total, customer.email))
    assert retry.reference != first.reference
    assert gateway.call_count == 2
