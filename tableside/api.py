"""
HTTP surface — FastAPI app over a Restaurant.

    app = create_app(in_memory(Config(), menu=[...]))
    # uvicorn: tableside serve

Identity comes from the `X-User-Id` / `X-User-Email` headers set by the
auth proxy in front of this app; the staff claim is read from the identity
store, never from the request.
"""

import datetime as dt
import hashlib
import hmac
import logging
from typing import Annotated, Any, Self

import fastapi
from fastapi import Depends, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from kungfu import Error, Ok, Result
from pydantic import BaseModel, Field, ValidationError

from tableside.cart import Cart
from tableside.domain import (
    Actor,
    Booking,
    BookingStatus,
    CartLine,
    Category,
    MenuItem,
    Order,
    OrderStatus,
    Outcome,
    Payment,
    SubjectType,
)
from tableside.errors import (
    ConcurrentModification,
    DuplicateName,
    EmptyCart,
    GatewayUnavailable,
    InsufficientStock,
    InvalidBooking,
    InvalidQuantity,
    InvalidStateTransition,
    NotFound,
    PaymentMismatch,
    Unauthorized,
)
from tableside.identity import resolve_actor
from tableside.payments import PaymentHandle
from tableside.pricing import Totals
from tableside.service import Restaurant
from tableside.store import StoreError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Error mapping
# ═══════════════════════════════════════════════════════════════════════════════

STATUS_OF: dict[type[Exception], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Unauthorized: status.HTTP_403_FORBIDDEN,
    InvalidStateTransition: status.HTTP_409_CONFLICT,
    InsufficientStock: status.HTTP_409_CONFLICT,
    ConcurrentModification: status.HTTP_409_CONFLICT,
    DuplicateName: status.HTTP_409_CONFLICT,
    InvalidQuantity: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidBooking: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EmptyCart: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentMismatch: status.HTTP_422_UNPROCESSABLE_ENTITY,
    GatewayUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def unwrap[T](result: Result[T, Any]) -> T:
    """Ok value, or raise the error for the exception handlers to render."""
    match result:
        case Ok(value):
            return value
        case Error(StoreError() as e):
            logger.error("store failure: %s", e, exc_info=e.cause)
            raise fastapi.HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "storage failure")
        case Error(e):
            raise e


async def _domain_error(request: Request, exc: Exception) -> JSONResponse:
    code = STATUS_OF.get(type(exc), status.HTTP_400_BAD_REQUEST)
    headers = {"Retry-After": "5"} if isinstance(exc, GatewayUnavailable) else None
    return JSONResponse(
        {"error": type(exc).__name__, "detail": str(exc)},
        status_code=code,
        headers=headers,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Request / Response models
# ═══════════════════════════════════════════════════════════════════════════════


class LineIn(BaseModel):
    menu_item_id: str
    quantity: int = Field(ge=1)
    notes: str = ""
    flavor: str | None = None

    def to_domain(self) -> CartLine:
        return CartLine(self.menu_item_id, self.quantity, self.notes, self.flavor)


class CheckoutIn(BaseModel):
    notes: str = ""


class OrderIn(BaseModel):
    lines: list[LineIn]
    notes: str = ""


class QuantityIn(BaseModel):
    quantity: int


class NotesIn(BaseModel):
    notes: str


class OrderStatusIn(BaseModel):
    status: OrderStatus


class MenuItemIn(BaseModel):
    name: str = Field(min_length=1)
    price: int = Field(ge=0)
    category: str
    stock: int = Field(default=0, ge=0)
    description: str = ""
    flavors: list[str] = []
    featured: bool = False
    available: bool = True


class CategoryIn(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""


class CategoryPatchIn(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None


class StockIn(BaseModel):
    stock: int


class AvailabilityIn(BaseModel):
    available: bool


class BookingIn(BaseModel):
    customer_name: str
    date: dt.date
    time: dt.time
    party_size: int
    special_requests: str | None = None


class PaymentIn(BaseModel):
    subject_id: str
    subject_type: SubjectType
    amount: int


class WebhookIn(BaseModel):
    reference: str
    outcome: Outcome
    amount: int | None = None


class MenuItemOut(BaseModel):
    id: str
    name: str
    description: str
    price: int
    category: str
    stock: int
    available: bool
    flavors: list[str]
    featured: bool

    @classmethod
    def from_domain(cls, item: MenuItem) -> Self:
        return cls(
            id=item.id,
            name=item.name,
            description=item.description,
            price=item.price,
            category=item.category,
            stock=item.stock,
            available=item.available,
            flavors=list(item.flavors),
            featured=item.featured,
        )


class CategoryOut(BaseModel):
    id: str
    name: str
    description: str

    @classmethod
    def from_domain(cls, category: Category) -> Self:
        return cls(id=category.id, name=category.name, description=category.description)


class CartLineOut(BaseModel):
    line_id: str
    menu_item_id: str
    quantity: int
    notes: str
    flavor: str | None


class CartOut(BaseModel):
    lines: list[CartLineOut]
    subtotal: int
    tax: int
    total: int

    @classmethod
    def from_domain(cls, cart: Cart, totals: Totals | None = None) -> Self:
        totals = totals or cart.totals
        return cls(
            lines=[
                CartLineOut(
                    line_id=l.line_id,
                    menu_item_id=l.menu_item_id,
                    quantity=l.quantity,
                    notes=l.notes,
                    flavor=l.flavor,
                )
                for l in cart.lines
            ],
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
        )


class PaymentOut(BaseModel):
    status: str
    amount: int
    gateway_reference: str | None
    paid_at: dt.datetime | None

    @classmethod
    def from_domain(cls, payment: Payment) -> Self:
        return cls(
            status=payment.status.value,
            amount=payment.amount,
            gateway_reference=payment.gateway_reference,
            paid_at=payment.paid_at,
        )


class OrderItemOut(BaseModel):
    menu_item_id: str
    name: str
    category: str
    unit_price: int
    quantity: int
    notes: str
    flavor: str | None


class OrderOut(BaseModel):
    id: str
    user_id: str
    user_email: str
    items: list[OrderItemOut]
    subtotal: int
    tax: int
    total: int
    notes: str
    pickup_code: str
    status: str
    payment: PaymentOut
    created_at: dt.datetime
    updated_at: dt.datetime

    @classmethod
    def from_domain(cls, order: Order) -> Self:
        return cls(
            id=order.id,
            user_id=order.user_id,
            user_email=order.user_email,
            items=[
                OrderItemOut(
                    menu_item_id=i.menu_item_id,
                    name=i.name,
                    category=i.category,
                    unit_price=i.unit_price,
                    quantity=i.quantity,
                    notes=i.notes,
                    flavor=i.flavor,
                )
                for i in order.items
            ],
            subtotal=order.subtotal,
            tax=order.tax,
            total=order.total,
            notes=order.notes,
            pickup_code=order.pickup_code,
            status=order.status.value,
            payment=PaymentOut.from_domain(order.payment),
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class BookingOut(BaseModel):
    id: str
    user_id: str
    customer_name: str
    starts_at: dt.datetime
    party_size: int
    special_requests: str | None
    status: str
    reservation_fee: int
    payment: PaymentOut
    created_at: dt.datetime
    updated_at: dt.datetime

    @classmethod
    def from_domain(cls, booking: Booking) -> Self:
        return cls(
            id=booking.id,
            user_id=booking.user_id,
            customer_name=booking.customer_name,
            starts_at=booking.starts_at,
            party_size=booking.party_size,
            special_requests=booking.special_requests,
            status=booking.status.value,
            reservation_fee=booking.reservation_fee,
            payment=PaymentOut.from_domain(booking.payment),
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class PaymentHandleOut(BaseModel):
    reference: str
    client_secret: str
    subject_id: str
    subject_type: SubjectType
    amount: int
    currency: str

    @classmethod
    def from_domain(cls, handle: PaymentHandle) -> Self:
        return cls(
            reference=handle.reference,
            client_secret=handle.client_secret,
            subject_id=handle.subject_id,
            subject_type=handle.subject_type,
            amount=handle.amount,
            currency=handle.currency,
        )


class SubjectOut(BaseModel):
    subject_type: SubjectType
    subject_id: str
    status: str
    payment_status: str

    @classmethod
    def from_domain(cls, subject: Order | Booking) -> Self:
        return cls(
            subject_type=SubjectType.ORDER if isinstance(subject, Order) else SubjectType.BOOKING,
            subject_id=subject.id,
            status=subject.status.value,
            payment_status=subject.payment.status.value,
        )


class SweepOut(BaseModel):
    retired: list[str]


class DeletedOut(BaseModel):
    deleted: int


# ═══════════════════════════════════════════════════════════════════════════════
# App
# ═══════════════════════════════════════════════════════════════════════════════


def _signature_ok(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def create_app(restaurant: Restaurant) -> fastapi.FastAPI:
    app = fastapi.FastAPI(title="tableside")
    for error in STATUS_OF:
        app.add_exception_handler(error, _domain_error)

    r = restaurant

    async def current_actor(
        x_user_id: Annotated[str | None, Header()] = None,
        x_user_email: Annotated[str, Header()] = "",
    ) -> Actor:
        if not x_user_id:
            raise fastapi.HTTPException(status.HTTP_401_UNAUTHORIZED, "missing X-User-Id")
        return unwrap(await resolve_actor(r.identities, x_user_id, x_user_email))

    async def staff_actor(actor: Annotated[Actor, Depends(current_actor)]) -> Actor:
        if not actor.is_staff:
            raise Unauthorized(actor.user_id, "use staff endpoints")
        return actor

    CurrentActor = Annotated[Actor, Depends(current_actor)]
    StaffActor = Annotated[Actor, Depends(staff_actor)]

    def visible(actor: Actor, subject: Order | Booking) -> Order | Booking:
        if actor.is_staff or actor.owns(subject.user_id):
            return subject
        raise NotFound(type(subject).__name__.lower(), subject.id)

    # ─────────────────────────────────────────────────────────────────────────
    # Menu
    # ─────────────────────────────────────────────────────────────────────────

    @app.get("/menu")
    async def list_menu(category: str | None = None) -> list[MenuItemOut]:
        return [MenuItemOut.from_domain(i) for i in unwrap(await r.menu.list(category))]

    @app.post("/menu", status_code=status.HTTP_201_CREATED)
    async def add_menu_item(body: MenuItemIn, actor: StaffActor) -> MenuItemOut:
        item = unwrap(
            await r.menu.add_item(
                actor,
                name=body.name,
                price=body.price,
                category=body.category,
                stock=body.stock,
                description=body.description,
                flavors=tuple(body.flavors),
                featured=body.featured,
                available=body.available,
            )
        )
        return MenuItemOut.from_domain(item)

    @app.put("/menu/{menu_item_id}/stock")
    async def set_stock(menu_item_id: str, body: StockIn, actor: StaffActor) -> MenuItemOut:
        return MenuItemOut.from_domain(unwrap(await r.menu.set_stock(actor, menu_item_id, body.stock)))

    @app.put("/menu/{menu_item_id}/availability")
    async def set_availability(
        menu_item_id: str, body: AvailabilityIn, actor: StaffActor
    ) -> MenuItemOut:
        item = unwrap(await r.menu.set_available(actor, menu_item_id, body.available))
        return MenuItemOut.from_domain(item)

    @app.delete("/menu/{menu_item_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_menu_item(menu_item_id: str, actor: StaffActor) -> None:
        unwrap(await r.menu.delete_item(actor, menu_item_id))

    @app.get("/categories")
    async def list_categories() -> list[CategoryOut]:
        return [CategoryOut.from_domain(c) for c in unwrap(await r.menu.categories())]

    @app.post("/categories", status_code=status.HTTP_201_CREATED)
    async def add_category(body: CategoryIn, actor: StaffActor) -> CategoryOut:
        category = unwrap(await r.menu.add_category(actor, body.name, body.description))
        return CategoryOut.from_domain(category)

    @app.patch("/categories/{category_id}")
    async def update_category(
        category_id: str, body: CategoryPatchIn, actor: StaffActor
    ) -> CategoryOut:
        category = unwrap(
            await r.menu.update_category(
                actor, category_id, name=body.name, description=body.description
            )
        )
        return CategoryOut.from_domain(category)

    @app.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_category(category_id: str, actor: StaffActor) -> None:
        unwrap(await r.menu.delete_category(actor, category_id))

    # ─────────────────────────────────────────────────────────────────────────
    # Cart
    # ─────────────────────────────────────────────────────────────────────────

    async def saved(cart: Cart, result: Result[Totals, Any]) -> CartOut:
        totals = unwrap(result)
        unwrap(await cart.save(r.carts))
        return CartOut.from_domain(cart, totals)

    @app.get("/cart")
    async def get_cart(actor: CurrentActor) -> CartOut:
        return CartOut.from_domain(unwrap(await r.open_cart(actor.user_id)))

    @app.post("/cart/items")
    async def add_to_cart(body: LineIn, actor: CurrentActor) -> CartOut:
        cart = unwrap(await r.open_cart(actor.user_id))
        item = unwrap(await r.menu.get(body.menu_item_id))
        return await saved(cart, await cart.add_item(item, body.quantity, body.notes, body.flavor))

    @app.put("/cart/items/{line_id}")
    async def set_cart_quantity(line_id: str, body: QuantityIn, actor: CurrentActor) -> CartOut:
        cart = unwrap(await r.open_cart(actor.user_id))
        return await saved(cart, await cart.set_quantity(line_id, body.quantity))

    @app.put("/cart/items/{line_id}/notes")
    async def set_cart_notes(line_id: str, body: NotesIn, actor: CurrentActor) -> CartOut:
        cart = unwrap(await r.open_cart(actor.user_id))
        return await saved(cart, await cart.update_notes(line_id, body.notes))

    @app.delete("/cart/items/{line_id}")
    async def remove_from_cart(line_id: str, actor: CurrentActor) -> CartOut:
        cart = unwrap(await r.open_cart(actor.user_id))
        return await saved(cart, await cart.remove_line(line_id))

    @app.post("/cart/checkout", status_code=status.HTTP_201_CREATED)
    async def checkout(body: CheckoutIn, actor: CurrentActor) -> OrderOut:
        cart = unwrap(await r.open_cart(actor.user_id))
        return OrderOut.from_domain(unwrap(await r.checkout(cart, actor.email, body.notes)))

    # ─────────────────────────────────────────────────────────────────────────
    # Orders
    # ─────────────────────────────────────────────────────────────────────────

    @app.post("/orders", status_code=status.HTTP_201_CREATED)
    async def create_order(body: OrderIn, actor: CurrentActor) -> OrderOut:
        lines = [l.to_domain() for l in body.lines]
        order = unwrap(await r.orders.create_order(lines, actor.user_id, actor.email, body.notes))
        return OrderOut.from_domain(order)

    @app.get("/orders")
    async def list_orders(actor: CurrentActor, status: OrderStatus | None = None) -> list[OrderOut]:
        if actor.is_staff:
            orders = unwrap(await r.orders.list(status))
        else:
            orders = [
                o for o in unwrap(await r.orders.for_user(actor.user_id))
                if status is None or o.status is status
            ]
        return [OrderOut.from_domain(o) for o in orders]

    @app.get("/orders/{order_id}")
    async def get_order(order_id: str, actor: CurrentActor) -> OrderOut:
        order = visible(actor, unwrap(await r.orders.get(order_id)))
        return OrderOut.from_domain(order)

    @app.post("/orders/{order_id}/status")
    async def update_order_status(
        order_id: str, body: OrderStatusIn, actor: CurrentActor
    ) -> OrderOut:
        return OrderOut.from_domain(unwrap(await r.orders.update_status(order_id, body.status, actor)))

    @app.post("/orders/{order_id}/cancel")
    async def cancel_order(order_id: str, actor: CurrentActor) -> OrderOut:
        return OrderOut.from_domain(unwrap(await r.orders.cancel(order_id, actor)))

    # ─────────────────────────────────────────────────────────────────────────
    # Bookings
    # ─────────────────────────────────────────────────────────────────────────

    @app.post("/bookings", status_code=status.HTTP_201_CREATED)
    async def create_booking(body: BookingIn, actor: CurrentActor) -> BookingOut:
        booking = unwrap(
            await r.bookings.create_booking(
                actor.user_id,
                body.customer_name,
                body.date,
                body.time,
                body.party_size,
                body.special_requests,
            )
        )
        return BookingOut.from_domain(booking)

    @app.get("/bookings")
    async def list_bookings(
        actor: CurrentActor, status: BookingStatus | None = None
    ) -> list[BookingOut]:
        if actor.is_staff:
            bookings = unwrap(await r.bookings.list(status))
        else:
            bookings = [
                b for b in unwrap(await r.bookings.for_user(actor.user_id))
                if status is None or b.status is status
            ]
        return [BookingOut.from_domain(b) for b in bookings]

    @app.delete("/bookings/declined")
    async def purge_declined(actor: StaffActor) -> DeletedOut:
        return DeletedOut(deleted=unwrap(await r.bookings.purge_declined(actor)))

    @app.delete("/bookings/cancelled")
    async def clear_cancelled(actor: CurrentActor) -> DeletedOut:
        return DeletedOut(deleted=unwrap(await r.bookings.clear_cancelled(actor)))

    @app.post("/bookings/sweep")
    async def sweep(actor: StaffActor) -> SweepOut:
        retired = unwrap(await r.bookings.sweep_past_bookings())
        return SweepOut(retired=[b.id for b in retired])

    @app.get("/bookings/{booking_id}")
    async def get_booking(booking_id: str, actor: CurrentActor) -> BookingOut:
        booking = visible(actor, unwrap(await r.bookings.get(booking_id)))
        return BookingOut.from_domain(booking)

    @app.post("/bookings/{booking_id}/approve")
    async def approve_booking(booking_id: str, actor: CurrentActor) -> BookingOut:
        return BookingOut.from_domain(unwrap(await r.bookings.approve(booking_id, actor)))

    @app.post("/bookings/{booking_id}/decline")
    async def decline_booking(booking_id: str, actor: CurrentActor) -> BookingOut:
        return BookingOut.from_domain(unwrap(await r.bookings.decline(booking_id, actor)))

    @app.post("/bookings/{booking_id}/cancel")
    async def cancel_booking(booking_id: str, actor: CurrentActor) -> BookingOut:
        return BookingOut.from_domain(unwrap(await r.bookings.cancel(booking_id, actor)))

    # ─────────────────────────────────────────────────────────────────────────
    # Payments
    # ─────────────────────────────────────────────────────────────────────────

    @app.post("/payments", status_code=status.HTTP_201_CREATED)
    async def begin_payment(body: PaymentIn, actor: CurrentActor) -> PaymentHandleOut:
        match body.subject_type:
            case SubjectType.ORDER:
                subject = unwrap(await r.orders.get(body.subject_id))
            case SubjectType.BOOKING:
                subject = unwrap(await r.bookings.get(body.subject_id))
        visible(actor, subject)

        handle = unwrap(
            await r.payments.begin_payment(body.subject_id, body.subject_type, body.amount, actor.email)
        )
        return PaymentHandleOut.from_domain(handle)

    @app.post("/payments/{reference}/verify")
    async def verify_payment(reference: str, actor: CurrentActor) -> SubjectOut:
        return SubjectOut.from_domain(unwrap(await r.payments.confirm(reference)))

    @app.post("/payments/webhook")
    async def payment_webhook(
        request: Request,
        x_tableside_signature: Annotated[str | None, Header()] = None,
    ) -> SubjectOut:
        body = await request.body()
        secret = r.config.webhook_secret
        if secret and not _signature_ok(secret, body, x_tableside_signature):
            logger.warning("webhook rejected: bad signature")
            raise fastapi.HTTPException(status.HTTP_400_BAD_REQUEST, "bad signature")

        try:
            event = WebhookIn.model_validate_json(body)
        except ValidationError as e:
            raise RequestValidationError(e.errors()) from e

        if not secret:
            # Unsigned: the event only prompts us to ask the gateway ourselves.
            return SubjectOut.from_domain(unwrap(await r.payments.confirm(event.reference)))

        subject = unwrap(await r.payments.handle_callback(event.reference, event.outcome, event.amount))
        return SubjectOut.from_domain(subject)

    return app


__all__ = (
    "STATUS_OF",
    "unwrap",
    "create_app",
)
