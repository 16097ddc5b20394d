"""
Order lifecycle — checkout, staff transitions and payment application.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from kungfu import Error, Ok, Result

from tableside._types import Clock, utcnow
from tableside.config import Config
from tableside.domain import (
    Actor,
    CartLine,
    MenuItem,
    Order,
    OrderItem,
    OrderStatus,
    Outcome,
    Payment,
)
from tableside.errors import (
    ConcurrentModification,
    EmptyCart,
    InsufficientStock,
    InvalidQuantity,
    InvalidStateTransition,
    NotFound,
    Unauthorized,
)
from tableside.events import EventBus, SubjectChanged
from tableside.inventory import InventoryGuard
from tableside.orders._machine import settle_payment, transition
from tableside.orders._pickup import unique_pickup_code
from tableside.pricing import PricedLine, price_lines
from tableside.store import Catalog, Documents, Mutation, StoreError, Versioned, mutate

logger = logging.getLogger(__name__)


type CheckoutError = EmptyCart | InvalidQuantity | InsufficientStock | NotFound | StoreError
type TransitionError = (
    InvalidStateTransition | Unauthorized | NotFound | ConcurrentModification | StoreError
)


class OrderLifecycle:
    """
    Owns `Order.status` and the order side of `payment`.

    Every change goes through `store.mutate`, so two writers racing on one
    order are serialised and the loser re-checks the matrix against the
    winner's state.
    """

    def __init__(
        self,
        orders: Documents[Order],
        catalog: Catalog,
        guard: InventoryGuard,
        events: EventBus,
        config: Config | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._orders = orders
        self._catalog = catalog
        self._guard = guard
        self._events = events
        self._config = config or Config()
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════════════════
    # Checkout
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_order(
        self,
        lines: Sequence[CartLine],
        user_id: str,
        user_email: str,
        notes: str = "",
    ) -> Result[Order, CheckoutError]:
        """
        Turn a cart snapshot into a pending, unpaid order.

        Stock is taken for all lines in one atomic step before anything is
        written. If the order cannot be stored afterwards the stock is put
        back, so a failed checkout never leaves a partial decrement.
        """
        if not lines:
            return Error(EmptyCart(user_id))
        for line in lines:
            if line.quantity <= 0:
                return Error(InvalidQuantity(line.quantity, "quantity must be positive"))

        match await self._read_items(lines):
            case Error(e):
                return Error(e)

        match await self._guard.commit((l.menu_item_id, l.quantity) for l in lines):
            case Error(e):
                logger.info("checkout for %s rejected: %s", user_id, e)
                return Error(e)
            case Ok(taken):
                pass

        # Snapshot names and prices as they stood when the stock was taken.
        match await self._read_items(lines):
            case Error(e):
                await self._guard.release(taken)
                return Error(e)
            case Ok(items):
                pass

        match await self._persist(lines, items, user_id, user_email, notes):
            case Error(e):
                await self._guard.release(taken)
                return Error(e)
            case Ok(stored):
                pass

        order = stored.value
        logger.info(
            "order %s created for %s: %d items, total %d, pickup %s",
            order.id,
            user_id,
            len(order.items),
            order.total,
            order.pickup_code,
        )
        await self._events.publish(SubjectChanged.of(order, stored.version))
        return Ok(order)

    async def _read_items(
        self, lines: Sequence[CartLine]
    ) -> Result[dict[str, MenuItem], NotFound | StoreError]:
        items: dict[str, MenuItem] = {}
        for line in lines:
            if line.menu_item_id in items:
                continue
            match await self._catalog.get(line.menu_item_id):
                case Error(e):
                    return Error(e)
                case Ok(None):
                    return Error(NotFound("menu_item", line.menu_item_id))
                case Ok(item):
                    items[item.id] = item
        return Ok(items)

    async def _persist(
        self,
        lines: Sequence[CartLine],
        items: dict[str, MenuItem],
        user_id: str,
        user_email: str,
        notes: str,
    ) -> Result[Versioned[Order], InvalidQuantity | StoreError]:
        snapshot = tuple(
            OrderItem(
                menu_item_id=line.menu_item_id,
                name=items[line.menu_item_id].name,
                category=items[line.menu_item_id].category,
                description=items[line.menu_item_id].description,
                unit_price=items[line.menu_item_id].price,
                quantity=line.quantity,
                notes=line.notes,
                flavor=line.flavor,
            )
            for line in lines
        )

        match price_lines(
            [PricedLine(i.unit_price, i.quantity) for i in snapshot],
            self._config.tax_rate,
        ):
            case Error(e):
                return Error(e)
            case Ok(totals):
                pass

        match await unique_pickup_code(
            self._orders,
            prefix=self._config.pickup_code_prefix,
            length=self._config.pickup_code_length,
            attempts=self._config.pickup_code_attempts,
        ):
            case Error(e):
                return Error(e)
            case Ok(code):
                pass

        now = self._clock()
        order = Order(
            id=f"ord_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            user_email=user_email,
            items=snapshot,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            notes=notes,
            pickup_code=code,
            status=OrderStatus.PENDING,
            payment=Payment(amount=totals.total),
            created_at=now,
            updated_at=now,
        )
        return await self._orders.insert(order)

    # ═══════════════════════════════════════════════════════════════════════════
    # Transitions
    # ═══════════════════════════════════════════════════════════════════════════

    async def update_status(
        self, order_id: str, new_status: OrderStatus, actor: Actor
    ) -> Result[Order, TransitionError]:
        result = await mutate(
            self._orders,
            order_id,
            lambda order: transition(order, new_status, actor, self._clock()),
            entity="order",
            attempts=self._config.update_attempts,
        )
        match result:
            case Error(e):
                logger.info("order %s -> %s refused for %s: %s", order_id, new_status.value, actor.user_id, e)
                return Error(e)
            case Ok(mutation):
                logger.info(
                    "order %s %s -> %s by %s",
                    order_id,
                    mutation.before.status.value,
                    mutation.after.status.value,
                    actor.user_id,
                )
                await self._committed(mutation)
                return Ok(mutation.after)

    async def cancel(self, order_id: str, actor: Actor) -> Result[Order, TransitionError]:
        return await self.update_status(order_id, OrderStatus.CANCELLED, actor)

    async def apply_payment(
        self, order_id: str, reference: str, outcome: Outcome
    ) -> Result[Order, NotFound | ConcurrentModification | StoreError]:
        """
        Apply a gateway outcome. Repeats are no-ops; paid is sticky.

        A success arriving for an order that was already cancelled is still
        recorded; the order stays cancelled.
        """
        result = await mutate(
            self._orders,
            order_id,
            lambda order: Ok(settle_payment(order, reference, outcome, self._clock())),
            entity="order",
            attempts=self._config.update_attempts,
        )
        match result:
            case Error(e):
                return Error(e)
            case Ok(mutation):
                pass

        before, after = mutation.before, mutation.after
        if not mutation.changed:
            if (
                outcome is Outcome.SUCCEEDED
                and before.payment.is_paid
                and before.payment.gateway_reference != reference
            ):
                logger.warning(
                    "order %s already paid via %s, second success %s ignored",
                    order_id,
                    before.payment.gateway_reference,
                    reference,
                )
            return Ok(after)

        if after.payment.is_paid and after.status is OrderStatus.CANCELLED:
            logger.warning("order %s paid via %s after it was cancelled", order_id, reference)
        logger.info(
            "order %s payment %s -> %s (%s), status %s",
            order_id,
            before.payment.status.value,
            after.payment.status.value,
            reference,
            after.status.value,
        )
        await self._committed(mutation)
        return Ok(after)

    async def _committed(self, mutation: Mutation[Order]) -> None:
        if mutation.changed:
            await self._events.publish(SubjectChanged.of(mutation.after, mutation.version))

    # ═══════════════════════════════════════════════════════════════════════════
    # Reads
    # ═══════════════════════════════════════════════════════════════════════════

    async def get(self, order_id: str) -> Result[Order, NotFound | StoreError]:
        match await self._orders.get(order_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(NotFound("order", order_id))
            case Ok(stored):
                return Ok(stored.value)

    async def for_user(self, user_id: str) -> Result[list[Order], StoreError]:
        match await self._orders.find(owner=user_id):
            case Error(e):
                return Error(e)
            case Ok(docs):
                return Ok([d.value for d in docs])

    async def list(self, status: OrderStatus | None = None) -> Result[list[Order], StoreError]:
        statuses = None if status is None else [status.value]
        match await self._orders.find(statuses=statuses):
            case Error(e):
                return Error(e)
            case Ok(docs):
                return Ok([d.value for d in docs])


__all__ = (
    "CheckoutError",
    "TransitionError",
    "OrderLifecycle",
)
