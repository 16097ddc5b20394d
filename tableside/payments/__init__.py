"""
Payments — bridging an asynchronous card gateway into order and booking state.

    from tableside import payments as P

    gateway = P.FakeGateway()
    reconciler = P.PaymentReconciler(ledger, orders, bookings, gateway, config)

    handle = ...  # await reconciler.begin_payment(order.id, SubjectType.ORDER, order.total, email)

    # Any of these may fire, in any order, any number of times:
    await reconciler.confirm(handle.reference)                              # return redirect
    await reconciler.handle_callback(handle.reference, Outcome.SUCCEEDED)   # webhook
    await reconciler.apply_result(                                          # client report
        handle.reference, order.id, SubjectType.ORDER, Outcome.SUCCEEDED
    )
"""

from tableside.payments._types import (
    GatewayStatus,
    GatewayIntent,
    GatewayPayment,
    PaymentHandle,
)
from tableside.payments._gateway import (
    Gateway,
    FakeGateway,
)
from tableside.payments._reconciler import (
    BeginError,
    ApplyError,
    PaymentReconciler,
)


__all__ = (
    # Types
    "GatewayStatus",
    "GatewayIntent",
    "GatewayPayment",
    "PaymentHandle",
    # Gateway
    "Gateway",
    "FakeGateway",
    # Reconciler
    "BeginError",
    "ApplyError",
    "PaymentReconciler",
)
