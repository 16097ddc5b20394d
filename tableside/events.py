"""
Change notification — "subject X changed to state Y".

Lifecycle managers publish after every committed change. A client-facing
push gateway subscribes here; the core never manages connections.

    bus = EventBus()
    unsubscribe = bus.subscribe(on_change, subject_id=order.id)
    ...
    unsubscribe()
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from tableside.domain import Booking, Order, SubjectType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SubjectChanged:
    subject_type: SubjectType
    subject_id: str
    status: str
    payment_status: str
    version: int
    at: datetime

    @staticmethod
    def of(subject: Order | Booking, version: int) -> SubjectChanged:
        kind = SubjectType.ORDER if isinstance(subject, Order) else SubjectType.BOOKING
        return SubjectChanged(
            subject_type=kind,
            subject_id=subject.id,
            status=subject.status.value,
            payment_status=subject.payment.status.value,
            version=version,
            at=subject.updated_at,
        )


type Handler = Callable[[SubjectChanged], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._global: list[Handler] = []
        self._by_subject: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, handler: Handler, *, subject_id: str | None = None) -> Callable[[], None]:
        """Returns a callable that removes the subscription."""
        bucket = self._global if subject_id is None else self._by_subject[subject_id]
        bucket.append(handler)

        def unsubscribe() -> None:
            if handler in bucket:
                bucket.remove(handler)
            if subject_id is not None and not bucket:
                self._by_subject.pop(subject_id, None)

        return unsubscribe

    async def publish(self, event: SubjectChanged) -> None:
        """
        Deliver to global then per-subject handlers.

        A failing handler is logged and skipped; the state change it
        reports is already committed.
        """
        handlers = [*self._global, *self._by_subject.get(event.subject_id, ())]
        for handler in handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "event handler failed for %s:%s",
                    event.subject_type.value,
                    event.subject_id,
                )


__all__ = (
    "SubjectChanged",
    "Handler",
    "EventBus",
)
