# Overview: Service-layer operations for orders; checkout, status machine and cancellation.

"""
Order Workflow Engine

WHY: Converts a cart into an immutable order snapshot, confirms payment,
and keeps the stock ledger consistent through checkout, cancellation and
refunds.

CHECKOUT (create_order):
1. Idempotency: a payment transaction id already recorded on an order
   returns DuplicateOrderError pointing at that order.
2. Load the cart (EmptyCartError), re-read every product, check stock and
   re-price each line from the product's CURRENT discount.
3. subtotal + flat shipping fee = total.
4. Verify payment through the configured PaymentVerifier. This is network
   I/O, so it runs before any write transaction is opened.
5. One write transaction: allocate the order number, insert the order,
   reserve stock for every line, empty the cart, commit. Any failure rolls
   the whole unit back.

STATUS MACHINE:
    pending -> confirmed | processing
    confirmed -> processing
    processing -> shipped
    shipped -> delivered
    any non-terminal -> cancelled (restock) | refunded (restock)
Terminal: delivered, cancelled, refunded.

Customers may cancel their own order unless it is shipped, delivered,
cancelled or refunded. Every other transition is admin-only.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    CancellationNotAllowedError,
    CartChangedError,
    DuplicateOrderError,
    EmptyCartError,
    ForbiddenError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    NotFoundError,
    StorefrontError,
    ValidationError,
)
from ..models import Cart, Order, OrderLineItem, OrderNumberSequence, Product, User
from storefront.time_utils import parse_iso_datetime, parse_iso_datetime_or_now, utcnow
from . import cart_service, inventory_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .payment_verification_service import PaymentVerifier, build_payment_verifier


# =============================================================================
# STATUS (CONSTANTS)
# =============================================================================

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_PROCESSING = "processing"
STATUS_SHIPPED = "shipped"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"
STATUS_REFUNDED = "refunded"

ORDER_STATUSES = (
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
    STATUS_REFUNDED,
)

TERMINAL_STATUSES = frozenset({STATUS_DELIVERED, STATUS_CANCELLED, STATUS_REFUNDED})

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_CONFIRMED, STATUS_PROCESSING, STATUS_CANCELLED, STATUS_REFUNDED},
    STATUS_CONFIRMED: {STATUS_PROCESSING, STATUS_CANCELLED, STATUS_REFUNDED},
    STATUS_PROCESSING: {STATUS_SHIPPED, STATUS_CANCELLED, STATUS_REFUNDED},
    STATUS_SHIPPED: {STATUS_DELIVERED, STATUS_CANCELLED, STATUS_REFUNDED},
    STATUS_DELIVERED: set(),
    STATUS_CANCELLED: set(),
    STATUS_REFUNDED: set(),
}

# Customer self-service cancellation is refused in these states
CUSTOMER_CANCEL_BLOCKED = {
    STATUS_CANCELLED: "Order is already cancelled",
    STATUS_REFUNDED: "Order has already been refunded",
    STATUS_DELIVERED: "Delivered orders cannot be cancelled",
    STATUS_SHIPPED: "Orders in transit cannot be cancelled; please contact customer service",
}

PAYMENT_METHODS = (
    "card",
    "bank_transfer",
    "virtual_account",
    "mobile",
    "kakao_pay",
    "naver_pay",
    "toss_pay",
)

PAYMENT_STATUS_CANCELLED = "cancelled"
PAYMENT_STATUS_REFUNDED = "refunded"

DEFAULT_SHIPPING_FEE = 3000
DEFAULT_COUNTRY = "South Korea"

ORDER_NUMBER_PREFIX = "ORD"
ORDER_NUMBER_PAD = 6

MAX_PAGE_SIZE = 100
SORT_FIELDS = {
    "createdAt": Order.created_at,
    "totalAmount": Order.total_amount,
    "orderNumber": Order.order_number,
}

PHONE_PATTERN = re.compile(r"^[0-9-]+$")

# (attribute, camelCase request key, required, max length)
SHIPPING_FIELDS = (
    ("recipient_name", "recipientName", True, 50),
    ("recipient_phone", "recipientPhone", True, 32),
    ("postal_code", "postalCode", True, 16),
    ("address1", "address1", True, 200),
    ("address2", "address2", False, 200),
    ("city", "city", False, 50),
    ("country", "country", False, 64),
    ("delivery_request", "deliveryRequest", False, 200),
)


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _pick(data: dict, snake: str, camel: str):
    if camel in data:
        return data.get(camel)
    return data.get(snake)


def normalize_shipping(data) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Shipping information is required")

    shipping = {}
    missing = []
    for attr, key, required, max_len in SHIPPING_FIELDS:
        value = _pick(data, attr, key)
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"shipping.{key} must be a string")
        value = value.strip() if value else None
        if required and not value:
            missing.append(key)
            continue
        if value and len(value) > max_len:
            raise ValidationError(f"shipping.{key} must be at most {max_len} characters")
        shipping[attr] = value

    if missing:
        raise ValidationError(
            f"Missing shipping fields: {', '.join(missing)}",
            details={"missing": missing},
        )

    if not PHONE_PATTERN.match(shipping["recipient_phone"]):
        raise ValidationError("shipping.recipientPhone must contain only digits and dashes")

    shipping["country"] = shipping.get("country") or DEFAULT_COUNTRY
    return shipping


def normalize_payment(data) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Payment information is required")

    method = data.get("method") or "card"
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}",
            details={"allowed": list(PAYMENT_METHODS)},
        )

    amount = data.get("amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, (int, float))):
        raise ValidationError("payment.amount must be a number")

    transaction_id = _pick(data, "transaction_id", "transactionId")
    if transaction_id is not None:
        transaction_id = str(transaction_id).strip() or None

    return {
        "method": method,
        "status": data.get("status"),
        "amount": amount,
        "transaction_id": transaction_id,
        "paid_at": _pick(data, "paid_at", "paidAt"),
    }


def _normalize_notes(order_notes) -> str | None:
    if order_notes is None:
        return None
    if not isinstance(order_notes, str):
        raise ValidationError("orderNotes must be a string")
    order_notes = order_notes.strip()
    if len(order_notes) > 500:
        raise ValidationError("orderNotes must be at most 500 characters")
    return order_notes or None


def _parse_optional_time(value, field_name: str):
    if value is None:
        return None
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")


# =============================================================================
# PRICING
# =============================================================================

@dataclass
class PricedLine:
    product_id: int
    product_name: str
    sku: str
    quantity: int
    unit_price: int

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


@dataclass
class CheckoutQuote:
    lines: list[PricedLine] = field(default_factory=list)
    shipping_fee: int = 0

    @property
    def subtotal(self) -> int:
        return sum(line.subtotal for line in self.lines)

    @property
    def total_amount(self) -> int:
        return self.subtotal + self.shipping_fee

    def signature(self) -> tuple:
        return tuple((line.product_id, line.quantity, line.unit_price) for line in self.lines)


def get_shipping_fee() -> int:
    return int(current_app.config.get("SHIPPING_FEE", DEFAULT_SHIPPING_FEE))


def price_cart(cart: Cart) -> CheckoutQuote:
    """
    Re-read every product on the cart, check stock and price each line at
    the product's current effective price (not the cart's snapshot).
    """
    if cart is None or not cart.items:
        raise EmptyCartError("Cart is empty")

    quote = CheckoutQuote(shipping_fee=get_shipping_fee())
    for item in cart.items:
        product = db.session.query(Product).filter_by(id=item.product_id).first()
        if product is None or not product.is_active:
            raise NotFoundError(
                "A product in the cart is no longer available",
                details={"product_id": item.product_id, "cart_item_id": item.id},
            )

        current_stock = product.stock or 0
        if current_stock < item.quantity:
            raise InsufficientStockError(
                f'Insufficient stock for "{product.name}" '
                f"(ordered: {item.quantity}, current stock: {current_stock})",
                details={
                    "product_id": product.id,
                    "product_name": product.name,
                    "sku": product.sku,
                    "requested_quantity": item.quantity,
                    "current_stock": current_stock,
                },
            )

        quote.lines.append(PricedLine(
            product_id=product.id,
            product_name=product.name,
            sku=product.sku,
            quantity=item.quantity,
            unit_price=product.effective_price,
        ))

    return quote


# =============================================================================
# ORDER NUMBERS
# =============================================================================

def _highest_sequence_for_day(day_key: str) -> int:
    prefix = f"{ORDER_NUMBER_PREFIX}-{day_key}-"
    last = (
        db.session.query(Order.order_number)
        .filter(Order.order_number.like(f"{prefix}%"))
        .order_by(Order.order_number.desc())
        .first()
    )
    if not last:
        return 0
    tail = last[0][len(prefix):]
    return int(tail) if tail.isdigit() else 0


def allocate_order_number(now=None) -> str:
    """
    Allocate the next ORD-YYYYMMDD-NNNNNN number for the UTC day.

    Uses an atomic increment on the day's sequence row. The first allocation
    of a day seeds the row from the highest order number already carrying
    that day's prefix. Must run inside the checkout write transaction.
    """
    day_key = (now or utcnow()).strftime("%Y%m%d")

    stmt = (
        update(OrderNumberSequence)
        .where(OrderNumberSequence.day_key == day_key)
        .values(next_number=OrderNumberSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(OrderNumberSequence.next_number)
            .filter_by(day_key=day_key)
            .scalar()
        )
        number = current - 1
    else:
        number = _highest_sequence_for_day(day_key) + 1
        try:
            with db.session.begin_nested():
                db.session.add(OrderNumberSequence(day_key=day_key, next_number=number + 1))
        except IntegrityError:
            # Another writer seeded the day first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            current = (
                db.session.query(OrderNumberSequence.next_number)
                .filter_by(day_key=day_key)
                .scalar()
            )
            number = current - 1

    return f"{ORDER_NUMBER_PREFIX}-{day_key}-{number:0{ORDER_NUMBER_PAD}d}"


# =============================================================================
# CHECKOUT
# =============================================================================

def get_payment_verifier() -> PaymentVerifier:
    verifier = current_app.extensions.get("storefront.payment_verifier")
    if verifier is None:
        verifier = build_payment_verifier(current_app.config)
        current_app.extensions["storefront.payment_verifier"] = verifier
    return verifier


def find_order_by_transaction_id(transaction_id: str) -> Order | None:
    if not transaction_id:
        return None
    return db.session.query(Order).filter_by(payment_transaction_id=transaction_id).first()


def _duplicate_error(order: Order) -> DuplicateOrderError:
    return DuplicateOrderError(
        "This order has already been processed (duplicate payment or resubmitted request)",
        details={"order_id": order.id, "order_number": order.order_number},
    )


def create_order(user_id: int, shipping, payment, order_notes=None) -> Order:
    """
    Check out the user's cart.

    Raises ValidationError, EmptyCartError, InsufficientStockError,
    DuplicateOrderError, CartChangedError, PaymentVerificationFailedError,
    PaymentNotCompletedError or AmountMismatchError. On any failure nothing
    is persisted and stock is untouched.
    """
    shipping_data = normalize_shipping(shipping)
    payment_data = normalize_payment(payment)
    notes = _normalize_notes(order_notes)
    transaction_id = payment_data["transaction_id"]

    existing = find_order_by_transaction_id(transaction_id)
    if existing is not None:
        raise _duplicate_error(existing)

    quote = price_cart(cart_service.find_cart(user_id))

    # Close the read transaction; no DB locks are held across the gateway call
    db.session.commit()

    try:
        verified = get_payment_verifier().verify(payment_data, quote.total_amount)
    except StorefrontError as exc:
        current_app.logger.warning(
            "Payment rejected for user %s (transaction=%s, expected=%s): %s %s",
            user_id,
            transaction_id,
            quote.total_amount,
            exc.message,
            exc.details,
        )
        raise

    paid_at = verified.paid_at or parse_iso_datetime_or_now(payment_data["paid_at"])

    def _op():
        begin_write_transaction()

        if transaction_id:
            raced = find_order_by_transaction_id(transaction_id)
            if raced is not None:
                raise _duplicate_error(raced)

        cart = cart_service.find_cart(user_id, lock=True)
        current = price_cart(cart)
        if current.signature() != quote.signature() or current.total_amount != quote.total_amount:
            raise CartChangedError(
                "Cart changed during checkout; please review your cart and try again",
                details={
                    "verified_amount": quote.total_amount,
                    "current_amount": current.total_amount,
                },
            )

        order = Order(
            order_number=allocate_order_number(),
            user_id=user_id,
            status=STATUS_PENDING,
            shipping_recipient_name=shipping_data["recipient_name"],
            shipping_recipient_phone=shipping_data["recipient_phone"],
            shipping_postal_code=shipping_data["postal_code"],
            shipping_address1=shipping_data["address1"],
            shipping_address2=shipping_data.get("address2"),
            shipping_city=shipping_data.get("city"),
            shipping_country=shipping_data["country"],
            shipping_delivery_request=shipping_data.get("delivery_request"),
            payment_method=payment_data["method"],
            payment_status=verified.status,
            payment_amount=current.total_amount,
            payment_paid_at=paid_at,
            payment_transaction_id=transaction_id,
            subtotal=current.subtotal,
            shipping_fee=current.shipping_fee,
            total_amount=current.total_amount,
            order_notes=notes,
        )
        for line in current.lines:
            order.items.append(OrderLineItem(
                product_id=line.product_id,
                product_name_snapshot=line.product_name,
                sku_snapshot=line.sku,
                quantity=line.quantity,
                unit_price_snapshot=line.unit_price,
                subtotal=line.subtotal,
            ))

        db.session.add(order)
        db.session.flush()

        for line in current.lines:
            inventory_service.reserve(line.product_id, line.quantity)

        cart_service.empty_cart_locked(cart)

        db.session.commit()
        return order

    try:
        order = run_with_retry(_op)
    except IntegrityError:
        # A concurrent request recorded the same transaction id first
        raced = find_order_by_transaction_id(transaction_id)
        if raced is not None:
            raise _duplicate_error(raced) from None
        raise

    current_app.logger.info(
        "Order %s created for user %s (total=%s, payment verified by %s)",
        order.order_number,
        user_id,
        order.total_amount,
        verified.verified_by,
    )
    return order


# =============================================================================
# COMPENSATION
# =============================================================================

def _restock(order: Order) -> None:
    for item in order.items:
        inventory_service.release(item.product_id, item.quantity)


def _apply_cancellation(order: Order, reason: str | None) -> None:
    order.status = STATUS_CANCELLED
    order.cancelled_at = utcnow()
    if reason:
        order.cancel_reason = reason
    order.payment_status = PAYMENT_STATUS_CANCELLED
    _restock(order)


def _apply_refund(order: Order, reason: str | None) -> None:
    order.status = STATUS_REFUNDED
    order.payment_status = PAYMENT_STATUS_REFUNDED
    order.payment_refunded_at = utcnow()
    if reason:
        order.payment_refund_reason = reason
    _restock(order)


def _normalize_reason(reason, field_name: str) -> str | None:
    if reason is None:
        return None
    if not isinstance(reason, str):
        raise ValidationError(f"{field_name} must be a string")
    reason = reason.strip()
    if len(reason) > 500:
        raise ValidationError(f"{field_name} must be at most 500 characters")
    return reason or None


def _load_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def cancel_order(user_id: int, order_id: int, cancel_reason=None) -> Order:
    """
    Customer cancellation of their own order.

    Marks the order and its payment cancelled and restores stock for every
    line in the same transaction.
    """
    reason = _normalize_reason(cancel_reason, "cancelReason")

    def _op():
        begin_write_transaction()
        order = _load_order_locked(order_id)

        if order.user_id != user_id:
            raise ForbiddenError("You do not have permission to cancel this order")

        blocked = CUSTOMER_CANCEL_BLOCKED.get(order.status)
        if blocked:
            raise CancellationNotAllowedError(blocked, details={"status": order.status})

        _apply_cancellation(order, reason)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s cancelled by user %s", order.order_number, user_id)
    return order


def update_order_status(
    order_id: int,
    status: str,
    *,
    tracking_number: str | None = None,
    shipped_at=None,
    delivered_at=None,
    reason=None,
) -> Order:
    """
    Admin status change along ALLOWED_TRANSITIONS.

    cancelled/refunded apply the same restock compensation as customer
    cancellation.
    """
    if status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid order status: {status}",
            details={"allowed": list(ORDER_STATUSES)},
        )
    if tracking_number is not None and not isinstance(tracking_number, str):
        raise ValidationError("trackingNumber must be a string")

    shipped_dt = _parse_optional_time(shipped_at, "shippedAt")
    delivered_dt = _parse_optional_time(delivered_at, "deliveredAt")
    reason = _normalize_reason(reason, "reason")

    def _op():
        begin_write_transaction()
        order = _load_order_locked(order_id)

        allowed = ALLOWED_TRANSITIONS.get(order.status, set())
        if status not in allowed:
            raise InvalidStatusTransitionError(
                f"Cannot change order status from {order.status} to {status}",
                details={"from": order.status, "to": status, "allowed": sorted(allowed)},
            )

        previous = order.status
        if status == STATUS_SHIPPED:
            if tracking_number and tracking_number.strip():
                order.tracking_number = tracking_number.strip()
            order.shipped_at = shipped_dt or utcnow()
            order.status = status
        elif status == STATUS_DELIVERED:
            order.delivered_at = delivered_dt or utcnow()
            order.status = status
        elif status == STATUS_CANCELLED:
            _apply_cancellation(order, reason)
        elif status == STATUS_REFUNDED:
            _apply_refund(order, reason)
        else:
            order.status = status

        db.session.commit()
        return order, previous

    order, previous = run_with_retry(_op)
    current_app.logger.info("Order %s status %s -> %s", order.order_number, previous, order.status)
    return order


# =============================================================================
# QUERIES
# =============================================================================

def _ensure_can_view(user: User, order: Order) -> None:
    if not user.is_admin and order.user_id != user.id:
        raise ForbiddenError("You do not have permission to view this order")


def get_order(user: User, order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    _ensure_can_view(user, order)
    return order


def get_order_by_number(user: User, order_number: str) -> Order:
    number = (order_number or "").strip().upper()
    order = db.session.query(Order).filter_by(order_number=number).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_number": number})
    _ensure_can_view(user, order)
    return order


def _positive_int(value, name: str, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a positive integer")
    if parsed < 1:
        raise ValidationError(f"{name} must be a positive integer")
    return parsed


def list_orders(user: User, status=None, page=1, limit=10, sort="-createdAt") -> dict:
    """
    Paginated order list: the caller's own orders, or every order for admins.

    sort is a SORT_FIELDS key with an optional "-" prefix for descending.
    """
    page = _positive_int(page, "page", 1)
    limit = min(_positive_int(limit, "limit", 10), MAX_PAGE_SIZE)

    sort = sort or "-createdAt"
    descending = sort.startswith("-")
    sort_key = sort.lstrip("-")
    column = SORT_FIELDS.get(sort_key)
    if column is None:
        raise ValidationError(
            f"Invalid sort field: {sort_key}",
            details={"allowed": sorted(SORT_FIELDS)},
        )

    query = db.session.query(Order)
    if not user.is_admin:
        query = query.filter(Order.user_id == user.id)
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Invalid order status: {status}")
        query = query.filter(Order.status == status)

    total = query.count()
    orders = (
        query.order_by(column.desc() if descending else column.asc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "orders": orders,
        "count": len(orders),
        "total": total,
        "page": page,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def update_order_details(user: User, order_id: int, shipping=None, order_notes=None) -> Order:
    """
    Edit shipping and notes. Line items and amounts never change.

    Owners may edit their own orders, admins any order, while the order is
    not cancelled, delivered or refunded.
    """
    notes_given = order_notes is not None
    notes = _normalize_notes(order_notes)

    def _op():
        begin_write_transaction()
        order = _load_order_locked(order_id)
        if not user.is_admin and order.user_id != user.id:
            raise ForbiddenError("You do not have permission to modify this order")
        if order.status in TERMINAL_STATUSES:
            raise ValidationError(
                "Cancelled, delivered or refunded orders cannot be modified",
                details={"status": order.status},
            )

        if shipping is not None:
            if not isinstance(shipping, dict):
                raise ValidationError("Shipping information must be an object")
            merged = order.shipping_dict()
            for attr, key, _required, _max_len in SHIPPING_FIELDS:
                if key in shipping or attr in shipping:
                    merged[attr] = _pick(shipping, attr, key)
            normalized = normalize_shipping(merged)
            for attr, _key, _required, _max_len in SHIPPING_FIELDS:
                setattr(order, f"shipping_{attr}", normalized.get(attr))

        if notes_given:
            order.order_notes = notes

        db.session.commit()
        return order

    return run_with_retry(_op)
