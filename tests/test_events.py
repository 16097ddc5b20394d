from tableside import Actor, OrderStatus, Restaurant
from tableside.domain import CartLine, Outcome, SubjectType
from tableside.events import EventBus, SubjectChanged
from tests.conftest import WINGS, ok


async def test_lifecycle_publishes_committed_changes(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    seen: list[SubjectChanged] = []

    async def record(event: SubjectChanged) -> None:
        seen.append(event)

    restaurant.events.subscribe(record)

    order = ok(
        await restaurant.orders.create_order([CartLine(WINGS.id, 1)], customer.user_id, "")
    )
    ok(await restaurant.orders.apply_payment(order.id, "pi_1", Outcome.SUCCEEDED))
    ok(await restaurant.orders.apply_payment(order.id, "pi_1", Outcome.SUCCEEDED))
    ok(await restaurant.orders.update_status(order.id, OrderStatus.READY, staff))

    assert [(e.subject_type, e.status, e.payment_status, e.version) for e in seen] == [
        (SubjectType.ORDER, "pending", "unpaid", 1),
        (SubjectType.ORDER, "preparing", "paid", 2),
        (SubjectType.ORDER, "ready", "paid", 3),
    ]


async def test_refused_change_publishes_nothing(
    restaurant: Restaurant, customer: Actor
) -> None:
    order = ok(
        await restaurant.orders.create_order([CartLine(WINGS.id, 1)], customer.user_id, "")
    )
    seen: list[SubjectChanged] = []

    async def record(event: SubjectChanged) -> None:
        seen.append(event)

    restaurant.events.subscribe(record, subject_id=order.id)
    await restaurant.orders.update_status(order.id, OrderStatus.PREPARING, customer)

    assert seen == []


async def test_per_subject_subscription_and_unsubscribe(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    lines = [CartLine(WINGS.id, 1)]
    first = ok(await restaurant.orders.create_order(lines, customer.user_id, ""))
    second = ok(await restaurant.orders.create_order(lines, customer.user_id, ""))
    seen: list[str] = []

    async def record(event: SubjectChanged) -> None:
        seen.append(event.subject_id)

    unsubscribe = restaurant.events.subscribe(record, subject_id=first.id)
    ok(await restaurant.orders.cancel(second.id, staff))
    ok(await restaurant.orders.update_status(first.id, OrderStatus.PREPARING, staff))
    unsubscribe()
    ok(await restaurant.orders.update_status(first.id, OrderStatus.READY, staff))

    assert seen == [first.id]


async def test_failing_handler_does_not_block_others(
    restaurant: Restaurant, customer: Actor, caplog
) -> None:
    bus = EventBus()
    seen: list[SubjectChanged] = []

    async def broken(event: SubjectChanged) -> None:
        raise RuntimeError("socket closed")

    async def record(event: SubjectChanged) -> None:
        seen.append(event)

    bus.subscribe(broken)
    bus.subscribe(record)
    order = ok(
        await restaurant.orders.create_order([CartLine(WINGS.id, 1)], customer.user_id, "")
    )

    await bus.publish(SubjectChanged.of(order, 1))

    assert len(seen) == 1
    assert "event handler failed" in caplog.text
