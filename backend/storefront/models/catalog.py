from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data, owned by the catalog.

    The order core only reads name/sku/price/discount and mutates the
    stock ledger columns (stock, sales_count) through inventory_service.

    STOCK LEDGER:
    - stock and sales_count never go negative (CHECK constraints back the
      service-level guard).
    - Do NOT assign product.stock directly in order/cart code; use
      inventory_service.reserve / release so the update stays atomic.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("sales_count >= 0", name="ck_products_sales_count_non_negative"),
        db.CheckConstraint("discount_rate >= 0 AND discount_rate <= 100", name="ck_products_discount_rate_range"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Integer currency units (no minor unit)
    price = db.Column(db.Integer, nullable=False)

    stock = db.Column(db.Integer, nullable=False, default=0)
    sales_count = db.Column(db.Integer, nullable=False, default=0)

    discount_enabled = db.Column(db.Boolean, nullable=False, default=False)
    discount_rate = db.Column(db.Integer, nullable=False, default=0)  # percent, 0-100

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def has_discount(self) -> bool:
        return bool(self.discount_enabled) and (self.discount_rate or 0) > 0

    @property
    def effective_price(self) -> int:
        """Unit price with the discount currently in effect (half-up rounding)."""
        if not self.has_discount:
            return self.price
        return (self.price * (100 - self.discount_rate) + 50) // 100

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price": self.price,
            "effective_price": self.effective_price,
            "discount": {
                "enabled": bool(self.discount_enabled),
                "rate": self.discount_rate,
            },
            "stock": self.stock,
            "sales_count": self.sales_count,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
