"""
Atomic read-modify-write over a Documents store.

    result = await mutate(
        orders,
        order_id,
        lambda order: check_transition(order, target, actor).map(...),
        entity="order",
        attempts=5,
    )

`change` sees the latest committed value on every attempt, so a writer that
lost a race re-evaluates its rule against the winner's state instead of
overwriting it. Returning the very same object means "nothing to do" and
skips the write.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from kungfu import Error, Ok, Result

from tableside.errors import ConcurrentModification, NotFound
from tableside.store._store import Documents
from tableside.store._types import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Mutation[T]:
    before: T
    after: T
    version: int

    @property
    def changed(self) -> bool:
        return self.after is not self.before


async def mutate[T, E](
    documents: Documents[T],
    key: str,
    change: Callable[[T], Result[T, E]],
    *,
    entity: str,
    attempts: int = 5,
) -> Result[Mutation[T], E | NotFound | ConcurrentModification | StoreError]:
    for attempt in range(1, attempts + 1):
        match await documents.get(key):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(NotFound(entity, key))
            case Ok(current):
                pass

        match change(current.value):
            case Error(e):
                return Error(e)
            case Ok(updated):
                pass

        if updated is current.value:
            return Ok(Mutation(current.value, current.value, current.version))

        match await documents.compare_and_set(updated, current.version):
            case Error(e):
                return Error(e)
            case Ok(None):
                logger.debug("%s:%s lost update race (attempt %d)", entity, key, attempt)
                continue
            case Ok(stored):
                return Ok(Mutation(current.value, stored.value, stored.version))

    return Error(ConcurrentModification(entity, key, attempts))


__all__ = (
    "Mutation",
    "mutate",
)
