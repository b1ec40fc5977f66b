from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Order(db.Model):
    """
    Immutable order snapshot created from a cart at checkout.

    INVARIANTS:
    - total_amount == subtotal + shipping_fee
    - subtotal == sum(line.subtotal)
    - order_number is allocated once and never changes
    - payment_transaction_id identifies at most one order (idempotency key)
    - line items are never mutated after creation

    Status moves only along the edges defined in order_service.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.UniqueConstraint("payment_transaction_id", name="uq_orders_payment_transaction_id"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.CheckConstraint("total_amount = subtotal + shipping_fee", name="ck_orders_total_amount"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number, e.g. "ORD-20250101-000001"
    order_number = db.Column(db.String(32), nullable=False)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Shipping
    shipping_recipient_name = db.Column(db.String(50), nullable=False)
    shipping_recipient_phone = db.Column(db.String(32), nullable=False)
    shipping_postal_code = db.Column(db.String(16), nullable=False)
    shipping_address1 = db.Column(db.String(200), nullable=False)
    shipping_address2 = db.Column(db.String(200), nullable=True)
    shipping_city = db.Column(db.String(50), nullable=True)
    shipping_country = db.Column(db.String(64), nullable=False)
    shipping_delivery_request = db.Column(db.String(200), nullable=True)

    # Payment
    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_amount = db.Column(db.Integer, nullable=False)
    payment_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_transaction_id = db.Column(db.String(128), nullable=True)
    payment_refund_reason = db.Column(db.String(500), nullable=True)
    payment_refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Amounts (integer currency units)
    subtotal = db.Column(db.Integer, nullable=False)
    shipping_fee = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.Integer, nullable=False)

    order_notes = db.Column(db.String(500), nullable=True)

    # Fulfilment
    tracking_number = db.Column(db.String(64), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cancellation
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(500), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderLineItem",
        back_populates="order",
        order_by="OrderLineItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def shipping_dict(self) -> dict:
        return {
            "recipient_name": self.shipping_recipient_name,
            "recipient_phone": self.shipping_recipient_phone,
            "postal_code": self.shipping_postal_code,
            "address1": self.shipping_address1,
            "address2": self.shipping_address2,
            "city": self.shipping_city,
            "country": self.shipping_country,
            "delivery_request": self.shipping_delivery_request,
        }

    def payment_dict(self) -> dict:
        return {
            "method": self.payment_method,
            "status": self.payment_status,
            "amount": self.payment_amount,
            "paid_at": to_utc_z(self.payment_paid_at) if self.payment_paid_at else None,
            "transaction_id": self.payment_transaction_id,
            "refund_reason": self.payment_refund_reason,
            "refunded_at": to_utc_z(self.payment_refunded_at) if self.payment_refunded_at else None,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "status": self.status,
            "items": [item.to_dict() for item in self.items],
            "shipping": self.shipping_dict(),
            "payment": self.payment_dict(),
            "subtotal": self.subtotal,
            "shipping_fee": self.shipping_fee,
            "total_amount": self.total_amount,
            "order_notes": self.order_notes,
            "tracking_number": self.tracking_number,
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderLineItem(db.Model):
    """Frozen copy of a cart line: product name/SKU/price as of checkout."""
    __tablename__ = "order_line_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_line_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Not a hard FK: the snapshot must survive catalog deletion
    product_id = db.Column(db.Integer, nullable=False, index=True)
    product_name_snapshot = db.Column(db.String(255), nullable=False)
    sku_snapshot = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_snapshot = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name_snapshot,
            "sku": self.sku_snapshot,
            "quantity": self.quantity,
            "unit_price": self.unit_price_snapshot,
            "subtotal": self.subtotal,
        }


class OrderNumberSequence(db.Model):
    """
    Atomic per-day order number sequence.

    WHY: order numbers are ORD-YYYYMMDD-NNNNNN, sequential per UTC day.
    Scanning for the highest number and adding one races under concurrent
    checkouts; an UPDATE ... SET next_number = next_number + 1 on this row
    does not.
    """
    __tablename__ = "order_number_sequences"
    __table_args__ = (
        db.UniqueConstraint("day_key", name="uq_order_number_sequences_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    day_key = db.Column(db.String(8), nullable=False)  # YYYYMMDD (UTC)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "day_key": self.day_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
