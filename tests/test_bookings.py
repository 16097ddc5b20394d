import asyncio
from datetime import UTC, date, datetime, time, timedelta, timezone

import pytest

from tableside import Actor, BookingStatus, Config, Restaurant
from tableside.domain import Outcome, PaymentStatus
from tableside.errors import InvalidBooking, InvalidStateTransition, NotFound, Unauthorized
from tests.conftest import FrozenClock, err, ok

DINNER = (date(2026, 3, 5), time(19, 30))


async def request(restaurant: Restaurant, customer: Actor, **overrides):
    args = dict(
        user_id=customer.user_id,
        customer_name="Ana Reyes",
        day=DINNER[0],
        at=DINNER[1],
        party_size=4,
    )
    args.update(overrides)
    return await restaurant.bookings.create_booking(**args)


async def paid_booking(restaurant: Restaurant, customer: Actor, staff: Actor):
    booking = ok(await request(restaurant, customer))
    ok(await restaurant.bookings.approve(booking.id, staff))
    return ok(await restaurant.bookings.apply_payment(booking.id, "pi_fee", Outcome.SUCCEEDED))


async def test_request_is_pending_with_fee(
    restaurant: Restaurant, customer: Actor, config: Config
) -> None:
    booking = ok(await request(restaurant, customer, special_requests="  window seat "))

    assert booking.status is BookingStatus.PENDING
    assert booking.reservation_fee == config.reservation_fee == 10_000
    assert booking.payment.amount == 10_000
    assert booking.payment.status is PaymentStatus.UNPAID
    assert booking.special_requests == "window seat"
    assert booking.starts_at == datetime(2026, 3, 5, 11, 30, tzinfo=UTC)
    assert booking.date == DINNER[0]


async def test_explicit_timezone_is_kept(restaurant: Restaurant, customer: Actor) -> None:
    at = time(19, 30, tzinfo=timezone(timedelta(hours=1)))
    booking = ok(await request(restaurant, customer, at=at))
    assert booking.starts_at == datetime(2026, 3, 5, 18, 30, tzinfo=UTC)


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"customer_name": "   "}, "customer_name"),
        ({"party_size": 0}, "party_size"),
        ({"party_size": 21}, "party_size"),
        ({"day": date(2026, 3, 1)}, "starts_at"),
        ({"day": date(2026, 3, 2), "at": time(12, 0)}, "starts_at"),
    ],
)
async def test_invalid_requests_write_nothing(
    restaurant: Restaurant, customer: Actor, overrides: dict, field: str
) -> None:
    e = err(await request(restaurant, customer, **overrides))

    assert isinstance(e, InvalidBooking)
    assert e.field == field
    assert ok(await restaurant.bookings.list()) == []


async def test_staff_approves_or_declines(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    first = ok(await request(restaurant, customer))
    second = ok(await request(restaurant, customer))

    assert ok(await restaurant.bookings.approve(first.id, staff)).status is BookingStatus.UNPAID
    assert ok(await restaurant.bookings.decline(second.id, staff)).status is BookingStatus.DECLINED

    assert isinstance(err(await restaurant.bookings.approve(first.id, staff)), InvalidStateTransition)
    assert isinstance(err(await restaurant.bookings.cancel(second.id, staff)), InvalidStateTransition)


async def test_customer_cannot_approve_own_booking(restaurant: Restaurant, customer: Actor) -> None:
    booking = ok(await request(restaurant, customer))
    assert isinstance(err(await restaurant.bookings.approve(booking.id, customer)), Unauthorized)


async def test_fee_payment_moves_unpaid_to_paid(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    booking = await paid_booking(restaurant, customer, staff)

    assert booking.status is BookingStatus.PAID
    assert booking.payment.status is PaymentStatus.PAID
    assert booking.payment.gateway_reference == "pi_fee"


async def test_failed_fee_payment_leaves_booking_unpaid(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    booking = ok(await request(restaurant, customer))
    ok(await restaurant.bookings.approve(booking.id, staff))

    failed = ok(await restaurant.bookings.apply_payment(booking.id, "pi_1", Outcome.FAILED))

    assert failed.status is BookingStatus.UNPAID
    assert failed.payment.status is PaymentStatus.FAILED


async def test_cancelling_a_paid_booking_forfeits_the_fee(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    booking = await paid_booking(restaurant, customer, staff)

    cancelled = ok(await restaurant.bookings.cancel(booking.id, customer))

    assert cancelled.status is BookingStatus.CANCELLED
    assert cancelled.payment.status is PaymentStatus.PAID
    assert cancelled.payment.amount == 10_000


async def test_only_owner_or_staff_cancels(
    restaurant: Restaurant, customer: Actor, stranger: Actor, staff: Actor
) -> None:
    booking = ok(await request(restaurant, customer))

    assert isinstance(err(await restaurant.bookings.cancel(booking.id, stranger)), Unauthorized)
    assert ok(await restaurant.bookings.cancel(booking.id, staff)).status is BookingStatus.CANCELLED


async def test_sweep_retires_started_paid_and_cancelled(
    restaurant: Restaurant, customer: Actor, staff: Actor, clock: FrozenClock
) -> None:
    paid = await paid_booking(restaurant, customer, staff)
    cancelled = ok(await request(restaurant, customer))
    ok(await restaurant.bookings.cancel(cancelled.id, customer))
    unpaid = ok(await request(restaurant, customer))
    ok(await restaurant.bookings.approve(unpaid.id, staff))
    pending = ok(await request(restaurant, customer))
    later = ok(await request(restaurant, customer, day=date(2026, 3, 9)))
    ok(await restaurant.bookings.cancel(later.id, customer))

    assert ok(await restaurant.bookings.sweep_past_bookings()) == []

    clock.advance(days=4)
    moved = ok(await restaurant.bookings.sweep_past_bookings())

    assert sorted(b.id for b in moved) == sorted([paid.id, cancelled.id])
    assert all(b.status is BookingStatus.PAST for b in moved)
    assert ok(await restaurant.bookings.get(unpaid.id)).status is BookingStatus.UNPAID
    assert ok(await restaurant.bookings.get(pending.id)).status is BookingStatus.PENDING
    assert ok(await restaurant.bookings.get(later.id)).status is BookingStatus.CANCELLED


async def test_sweep_is_idempotent(
    restaurant: Restaurant, customer: Actor, staff: Actor, clock: FrozenClock
) -> None:
    booking = await paid_booking(restaurant, customer, staff)
    clock.advance(days=4)

    first = ok(await restaurant.bookings.sweep_past_bookings())
    second = ok(await restaurant.bookings.sweep_past_bookings())

    assert [b.id for b in first] == [booking.id]
    assert second == []


async def test_sweep_reads_naive_now_as_local_time(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    booking = await paid_booking(restaurant, customer, staff)

    before = datetime.combine(DINNER[0], time(19, 29))
    after = datetime.combine(DINNER[0], time(19, 31))

    assert ok(await restaurant.bookings.sweep_past_bookings(now=before)) == []
    assert [b.id for b in ok(await restaurant.bookings.sweep_past_bookings(now=after))] == [
        booking.id
    ]


async def test_concurrent_sweeps_retire_each_booking_once(
    restaurant: Restaurant, customer: Actor, staff: Actor, clock: FrozenClock
) -> None:
    ids = {(await paid_booking(restaurant, customer, staff)).id for _ in range(5)}
    clock.advance(days=4)

    runs = await asyncio.gather(*(restaurant.bookings.sweep_past_bookings() for _ in range(3)))

    moved = [b.id for run in runs for b in ok(run)]
    assert sorted(moved) == sorted(ids)


async def test_past_is_terminal(
    restaurant: Restaurant, customer: Actor, staff: Actor, clock: FrozenClock
) -> None:
    booking = await paid_booking(restaurant, customer, staff)
    clock.advance(days=4)
    ok(await restaurant.bookings.sweep_past_bookings())

    assert isinstance(err(await restaurant.bookings.cancel(booking.id, staff)), InvalidStateTransition)


async def test_purge_declined_is_staff_only(
    restaurant: Restaurant, customer: Actor, staff: Actor
) -> None:
    declined = ok(await request(restaurant, customer))
    ok(await restaurant.bookings.decline(declined.id, staff))
    kept = ok(await request(restaurant, customer))

    assert isinstance(err(await restaurant.bookings.purge_declined(customer)), Unauthorized)
    assert ok(await restaurant.bookings.purge_declined(staff)) == 1

    assert isinstance(err(await restaurant.bookings.get(declined.id)), NotFound)
    assert [b.id for b in ok(await restaurant.bookings.list())] == [kept.id]


async def test_clear_cancelled_only_touches_own_bookings(
    restaurant: Restaurant, customer: Actor, stranger: Actor
) -> None:
    mine = ok(await request(restaurant, customer))
    theirs = ok(await request(restaurant, stranger, user_id=stranger.user_id))
    ok(await restaurant.bookings.cancel(mine.id, customer))
    ok(await restaurant.bookings.cancel(theirs.id, stranger))

    assert ok(await restaurant.bookings.clear_cancelled(customer)) == 1
    assert ok(await restaurant.bookings.for_user(customer.user_id)) == []
    assert len(ok(await restaurant.bookings.for_user(stranger.user_id))) == 1
