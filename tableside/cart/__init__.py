"""
Cart — per-user staging area in front of checkout.

    from tableside.cart import Cart

    cart = Cart(user_id, catalog, guard, tax_rate=config.tax_rate)
    await cart.add_item(wings, 2)
    await cart.set_quantity("wings", 3)
    cart.totals  # Totals(subtotal=45000, tax=5400, total=50400)

    await cart.save(cart_store)
    match await Cart.resume(user_id, catalog, guard, cart_store):
        case Ok(cart):
            ...
        case Error(e):
            ...
"""

from tableside.cart._aggregate import (
    CartError,
    Cart,
)


__all__ = (
    "CartError",
    "Cart",
)
