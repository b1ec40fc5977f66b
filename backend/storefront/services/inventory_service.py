# Overview: Service-layer operations for inventory; encapsulates the stock ledger.

# backend/storefront/services/inventory_service.py

from flask import current_app
from sqlalchemy import case, update

from ..extensions import db
from ..errors import InsufficientStockError, InvalidQuantityError, NotFoundError
from ..models import Product
"""
Storefront Stock Ledger Invariants (authoritative)

- Product.stock and Product.sales_count are the authoritative counters.
- They are mutated ONLY through reserve() and release() below.
- reserve() is a single conditional UPDATE (stock >= qty in the WHERE clause),
  so two concurrent reservations can never both succeed when their combined
  quantity exceeds available stock.
- release() restores stock and decrements sales_count, floored at 0.
- Neither function commits: they run inside the caller's transaction so an
  order insert and its stock decrements commit or roll back together.
"""


def _require_positive(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise InvalidQuantityError("Quantity must be a positive integer", details={"quantity": quantity})


def get_stock(product_id: int) -> int:
    stock = db.session.query(Product.stock).filter_by(id=product_id).scalar()
    if stock is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return int(stock)


def reserve(product_id: int, quantity: int) -> None:
    """
    Atomically decrement stock and increment sales_count.

    Raises InsufficientStockError (with the current stock) when the
    conditional update matches no row because stock < quantity.
    """
    _require_positive(quantity)

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(
            stock=Product.stock - quantity,
            sales_count=Product.sales_count + quantity,
        )
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        return

    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})

    raise InsufficientStockError(
        f'Insufficient stock for "{product.name}" '
        f"(requested: {quantity}, current stock: {product.stock})",
        details={
            "product_id": product.id,
            "product_name": product.name,
            "sku": product.sku,
            "requested_quantity": quantity,
            "current_stock": product.stock,
        },
    )


def release(product_id: int, quantity: int) -> bool:
    """
    Restore stock for a cancelled/refunded order line.

    Returns False (and logs) if the product no longer exists; the order's
    line snapshot is kept regardless.
    """
    _require_positive(quantity)

    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(
            stock=Product.stock + quantity,
            sales_count=case(
                (Product.sales_count > quantity, Product.sales_count - quantity),
                else_=0,
            ),
        )
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        current_app.logger.warning(
            "Stock release skipped: product %s no longer exists (quantity=%s)",
            product_id,
            quantity,
        )
        return False
    return True
