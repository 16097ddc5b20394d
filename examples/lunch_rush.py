"""
Lunch Rush Example

Run: uv run python examples/lunch_rush.py
"""

import asyncio
from datetime import time, timedelta

from combinators import batch, lift as L
from kungfu import Error, Ok

from tableside import Actor, CartLine, Config, MenuItem, Outcome, SubjectType, in_memory
from tableside._types import format_money, utcnow
from tableside.payments import FakeGateway, GatewayStatus


WINGS = MenuItem("itm_wings", "Wings", 15_000, "mains", stock=20, flavors=("buffalo",))
CAKE = MenuItem("itm_cake", "Cake", 12_000, "desserts", stock=1)

STAFF = Actor("usr_staff", "owner@example.com", is_staff=True)
ANA = Actor("usr_ana", "ana@example.com")


def banner(title: str) -> None:
    print(f"\n{'─' * 50}\n{title}\n{'─' * 50}")


async def main() -> None:
    banner("Lunch Rush")

    gateway = FakeGateway()
    restaurant = in_memory(Config(), gateway, menu=[WINGS, CAKE])
    await restaurant.identities.put(STAFF)

    # 1. Cart and checkout
    print("1. Cart and checkout:")
    cart = restaurant.cart(ANA.user_id)
    await cart.add_item(WINGS, 2, flavor="buffalo")
    print(f"   Cart total: {format_money(cart.totals.total)}")

    match await restaurant.checkout(cart, ANA.email):
        case Ok(order):
            print(f"   Order {order.id}, pickup {order.pickup_code}, {order.status.value}")
        case Error(e):
            print(f"   Error: {e}")
            return

    # 2. Ten shoppers, one cake (via combinators.batch)
    print("\n2. Ten shoppers, one cake:")
    placed: list[str] = []

    async def grab(n: int) -> None:
        match await restaurant.orders.create_order([CartLine(CAKE.id, 1)], f"usr_{n}", ""):
            case Ok(cake_order):
                placed.append(cake_order.user_id)

    await batch(
        range(10),
        handler=lambda n: L.catching_async(lambda: grab(n), on_error=str),
        concurrency=10,
    )
    print(f"   Winners: {placed} (only 1!)")

    # 3. Pay; redirect and webhook both report it
    print("\n3. Payment:")
    match await restaurant.payments.begin_payment(order.id, SubjectType.ORDER, order.total, ANA.email):
        case Ok(handle):
            pass
        case Error(e):
            print(f"   Error: {e}")
            return

    gateway.settle(handle.reference, GatewayStatus.SUCCEEDED)
    await restaurant.payments.confirm(handle.reference)
    await restaurant.payments.handle_callback(handle.reference, Outcome.SUCCEEDED)

    match await restaurant.orders.get(order.id):
        case Ok(paid):
            print(f"   {paid.status.value}, payment {paid.payment.status.value}")
            print(f"   Gateway calls: {gateway.call_count}")

    # 4. Booking, fee, sweep
    print("\n4. Booking:")
    tomorrow = (utcnow() + timedelta(days=1)).date()
    match await restaurant.bookings.create_booking(
        ANA.user_id, "Ana Reyes", tomorrow, time(19, 30), party_size=4
    ):
        case Ok(booking):
            pass
        case Error(e):
            print(f"   Error: {e}")
            return

    await restaurant.bookings.approve(booking.id, STAFF)
    match await restaurant.payments.begin_payment(
        booking.id, SubjectType.BOOKING, booking.reservation_fee, ANA.email
    ):
        case Ok(fee):
            await restaurant.payments.handle_callback(fee.reference, Outcome.SUCCEEDED)

    later = booking.starts_at + timedelta(hours=3)
    match await restaurant.bookings.sweep_past_bookings(now=later):
        case Ok(moved):
            print(f"   Swept: {[(b.id, b.status.value) for b in moved]}")

    print("\nSummary: order paid once, one cake sold, booking retired")


if __name__ == "__main__":
    asyncio.run(main())
