# Overview: Flask API routes for the cart; parses input and returns JSON responses.

# backend/storefront/routes/cart.py
"""Cart API routes (always the authenticated user's own cart)"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import cart_service
from ..errors import StorefrontError
from ..decorators import require_auth


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_auth
def get_cart_route():
    """Return the cart, creating an empty one on first access."""
    try:
        cart = cart_service.get_cart(g.current_user.id)
        return jsonify({"cart": cart.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("/items")
@require_auth
def add_item_route():
    """
    Add a product to the cart.

    Body: {productId, quantity}. Quantity sums with an existing line for
    the same product and is checked against current stock.
    """
    try:
        data = request.get_json(silent=True) or {}
        product_id = data.get("productId", data.get("product_id"))
        quantity = data.get("quantity", 1)

        if product_id is None:
            return jsonify({"error": "productId required", "code": "VALIDATION_ERROR", "details": {}}), 400

        try:
            product_id = int(product_id)
        except (TypeError, ValueError):
            return jsonify({"error": "productId must be an integer", "code": "VALIDATION_ERROR", "details": {}}), 400

        cart = cart_service.add_item(g.current_user.id, product_id, quantity)
        return jsonify({"cart": cart.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.put("/items/<int:item_id>")
@require_auth
def update_item_route(item_id: int):
    """Set an absolute quantity on a cart line. Body: {quantity}."""
    try:
        data = request.get_json(silent=True) or {}
        if "quantity" not in data:
            return jsonify({"error": "quantity required", "code": "VALIDATION_ERROR", "details": {}}), 400

        cart = cart_service.update_item(g.current_user.id, item_id, data.get("quantity"))
        return jsonify({"cart": cart.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<int:item_id>")
@require_auth
def remove_item_route(item_id: int):
    try:
        cart = cart_service.remove_item(g.current_user.id, item_id)
        return jsonify({"cart": cart.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("")
@require_auth
def clear_cart_route():
    try:
        cart = cart_service.clear_cart(g.current_user.id)
        return jsonify({"cart": cart.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return jsonify({"error": "Internal server error"}), 500
