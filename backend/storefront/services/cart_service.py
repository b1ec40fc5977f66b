# Overview: Service-layer operations for carts; encapsulates business logic and database work.

"""
Cart Store

WHY: One cart per user holding line items with a price snapshot taken at
add/update time.

DESIGN NOTES:
- Cart lines are not stock holds. Stock is checked here only to give the
  shopper early feedback; it is checked and decremented authoritatively at
  checkout (order_service.create_order).
- Every mutation re-reads the latest persisted cart. The cart carries an
  optimistic version, so two tabs writing at once cause a retry that sees
  the other write instead of silently overwriting it.
- total_amount is recomputed on every mutation.
"""

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    InsufficientStockError,
    InvalidQuantityError,
    NotFoundError,
    OutOfStockError,
)
from ..models import Cart, CartItem, Product
from .concurrency import lock_for_update, run_with_retry


def parse_quantity(value) -> int:
    """
    Coerce a client-supplied quantity to an int >= 1.

    Accepts ints and digit strings; rejects bools, floats and anything < 1.
    """
    if isinstance(value, bool):
        raise InvalidQuantityError("Quantity must be at least 1", details={"quantity": value})
    if isinstance(value, int):
        qty = value
    elif isinstance(value, str) and value.strip().isdigit():
        qty = int(value.strip())
    else:
        raise InvalidQuantityError("Quantity must be at least 1", details={"quantity": value})
    if qty < 1:
        raise InvalidQuantityError("Quantity must be at least 1", details={"quantity": qty})
    return qty


def _check_stock(product: Product, quantity: int) -> None:
    if product.stock is None or product.stock <= 0:
        raise OutOfStockError(
            f'"{product.name}" is out of stock',
            details={"product_id": product.id, "current_stock": product.stock or 0},
        )
    if quantity > product.stock:
        raise InsufficientStockError(
            f"Insufficient stock (current stock: {product.stock}, requested: {quantity})",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "requested_quantity": quantity,
                "current_stock": product.stock,
            },
        )


def find_cart(user_id: int, *, lock: bool = False) -> Cart | None:
    query = db.session.query(Cart).filter_by(user_id=user_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def _get_or_create_cart(user_id: int) -> Cart:
    cart = find_cart(user_id, lock=True)
    if cart is not None:
        return cart

    cart = Cart(user_id=user_id, total_amount=0)
    db.session.add(cart)
    try:
        db.session.flush()
    except IntegrityError:
        # Another request created the cart first
        db.session.rollback()
        cart = find_cart(user_id, lock=True)
        if cart is None:
            raise
    return cart


def _find_item(cart: Cart, item_id: int) -> CartItem:
    for item in cart.items:
        if item.id == item_id:
            return item
    raise NotFoundError("Cart item not found", details={"item_id": item_id})


def get_cart(user_id: int) -> Cart:
    """Return the user's cart, creating an empty one on first access."""
    def _op():
        cart = _get_or_create_cart(user_id)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def add_item(user_id: int, product_id: int, quantity) -> Cart:
    """
    Add a product to the cart, summing with an existing line for the product.

    Raises NotFoundError, InvalidQuantityError, OutOfStockError or
    InsufficientStockError (details carry the current stock).
    """
    def _op():
        product = db.session.query(Product).filter_by(id=product_id).first()
        if product is None or not product.is_active:
            raise NotFoundError("Product not found", details={"product_id": product_id})

        qty = parse_quantity(quantity)
        if product.stock is None or product.stock <= 0:
            raise OutOfStockError(
                f'"{product.name}" is out of stock',
                details={"product_id": product.id, "current_stock": product.stock or 0},
            )

        cart = _get_or_create_cart(user_id)
        unit_price = product.effective_price

        existing = next((i for i in cart.items if i.product_id == product.id), None)
        if existing is not None:
            new_qty = existing.quantity + qty
            _check_stock(product, new_qty)
            existing.quantity = new_qty
            existing.price_snapshot = unit_price
        else:
            _check_stock(product, qty)
            cart.items.append(CartItem(
                product_id=product.id,
                quantity=qty,
                price_snapshot=unit_price,
            ))

        cart.recalculate_total()
        db.session.commit()
        return cart

    return run_with_retry(_op)


def update_item(user_id: int, item_id: int, quantity) -> Cart:
    """Set an absolute quantity on a cart line, re-validated against current stock."""
    def _op():
        qty = parse_quantity(quantity)

        cart = find_cart(user_id, lock=True)
        if cart is None:
            raise NotFoundError("Cart not found")

        item = _find_item(cart, item_id)

        product = db.session.query(Product).filter_by(id=item.product_id).first()
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": item.product_id})

        _check_stock(product, qty)

        item.quantity = qty
        item.price_snapshot = product.effective_price

        cart.recalculate_total()
        db.session.commit()
        return cart

    return run_with_retry(_op)


def remove_item(user_id: int, item_id: int) -> Cart:
    def _op():
        cart = find_cart(user_id, lock=True)
        if cart is None:
            raise NotFoundError("Cart not found")

        item = _find_item(cart, item_id)
        cart.items.remove(item)

        cart.recalculate_total()
        db.session.commit()
        return cart

    return run_with_retry(_op)


def empty_cart_locked(cart: Cart) -> None:
    """Remove every line without committing (used inside the checkout transaction)."""
    cart.items.clear()
    cart.total_amount = 0


def clear_cart(user_id: int) -> Cart:
    def _op():
        cart = _get_or_create_cart(user_id)
        empty_cart_locked(cart)
        db.session.commit()
        return cart

    return run_with_retry(_op)
