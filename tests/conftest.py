from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from kungfu import Error, Ok, Result

from tableside import Actor, Config, MenuItem, Restaurant, in_memory
from tableside.payments import FakeGateway


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


WINGS = MenuItem(
    id="itm_wings",
    name="Wings",
    price=15_000,
    category="mains",
    stock=10,
    flavors=("buffalo", "garlic parmesan"),
    featured=True,
)
FRIES = MenuItem(id="itm_fries", name="Fries", price=8_000, category="sides", stock=5)
LAST_CAKE = MenuItem(id="itm_cake", name="Cake", price=12_000, category="desserts", stock=1)
SOLD_OUT = MenuItem(id="itm_soup", name="Soup", price=9_000, category="sides", stock=0)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 4, 0, tzinfo=UTC))


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def staff() -> Actor:
    return Actor(user_id="usr_staff", email="owner@example.com", is_staff=True)


@pytest.fixture
def customer() -> Actor:
    return Actor(user_id="usr_ana", email="ana@example.com")


@pytest.fixture
def stranger() -> Actor:
    return Actor(user_id="usr_ben", email="ben@example.com")


@pytest.fixture
async def restaurant(
    config: Config, gateway: FakeGateway, clock: FrozenClock, staff: Actor
) -> Restaurant:
    r = in_memory(config, gateway, menu=[WINGS, FRIES, LAST_CAKE, SOLD_OUT], clock=clock)
    await r.identities.put(staff)
    return r


def ok[T](result: Result[T, Any]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise AssertionError(f"expected Ok, got Error({e!r})")


def err(result: Result[Any, Any]) -> Any:
    match result:
        case Error(e):
            return e
        case Ok(value):
            raise AssertionError(f"expected Error, got Ok({value!r})")
