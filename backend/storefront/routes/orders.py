# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/storefront/routes/orders.py
"""
Order API routes

Customers check out, browse and cancel their own orders. Admins see every
order and drive the fulfilment status machine.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_service
from ..errors import StorefrontError
from ..decorators import require_auth, require_admin


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Check out the current cart.

    Body: {shipping: {...}, payment: {method, status, amount, transactionId, paidAt},
           orderNotes?}

    Returns 201 with the order. A payment transaction id that already has an
    order returns 409 with that order's id and number in details.
    """
    try:
        data = request.get_json(silent=True) or {}

        order = order_service.create_order(
            g.current_user.id,
            shipping=data.get("shipping"),
            payment=data.get("payment"),
            order_notes=data.get("orderNotes", data.get("order_notes")),
        )

        return jsonify({"order": order.to_dict()}), 201

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    List orders (own orders; every order for admins).

    Query params: status, page (default 1), limit (default 10, max 100),
    sort (createdAt | totalAmount | orderNumber, "-" prefix = descending).
    """
    try:
        result = order_service.list_orders(
            g.current_user,
            status=request.args.get("status"),
            page=request.args.get("page", 1),
            limit=request.args.get("limit", 10),
            sort=request.args.get("sort", "-createdAt"),
        )

        return jsonify({
            "orders": [order.to_dict() for order in result["orders"]],
            "count": result["count"],
            "total": result["total"],
            "page": result["page"],
            "total_pages": result["total_pages"],
        }), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.current_user, order_id)
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/number/<string:order_number>")
@require_auth
def get_order_by_number_route(order_number: str):
    """Look up an order by its ORD-YYYYMMDD-NNNNNN number (case-insensitive)."""
    try:
        order = order_service.get_order_by_number(g.current_user, order_number)
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order by number")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>")
@require_auth
def update_order_route(order_id: int):
    """
    Edit shipping details and notes.

    Body: {shipping?: {...partial...}, orderNotes?}
    Line items and amounts cannot be edited.
    """
    try:
        data = request.get_json(silent=True) or {}

        order = order_service.update_order_details(
            g.current_user,
            order_id,
            shipping=data.get("shipping"),
            order_notes=data.get("orderNotes", data.get("order_notes")),
        )

        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_admin
def update_order_status_route(order_id: int):
    """
    Change order status (admin only).

    Body: {status, trackingNumber?, shippedAt?, deliveredAt?, reason?}
    cancelled / refunded restore stock for every line.
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")

        if not status:
            return jsonify({"error": "status required", "code": "VALIDATION_ERROR", "details": {}}), 400

        order = order_service.update_order_status(
            order_id,
            status,
            tracking_number=data.get("trackingNumber", data.get("tracking_number")),
            shipped_at=data.get("shippedAt", data.get("shipped_at")),
            delivered_at=data.get("deliveredAt", data.get("delivered_at")),
            reason=data.get("reason", data.get("cancelReason")),
        )

        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """
    Cancel the caller's own order and restore stock.

    Shipped, delivered, cancelled and refunded orders cannot be cancelled.
    """
    try:
        data = request.get_json(silent=True) or {}

        order = order_service.cancel_order(
            g.current_user.id,
            order_id,
            cancel_reason=data.get("cancelReason", data.get("cancel_reason")),
        )

        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
