# Overview: Flask API routes for shopper orders; parses input and returns JSON responses.

"""
Customer order routes.

POST /api/orders is the cash-on-delivery checkout. Gateway orders go
through /api/payments and only show up here once they exist.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..services import order_service
from ..validation import NotFoundError, ValidationError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
def create_order():
    """
    Request body:
    {
        "address_id": 3,
        "payment_method": "cod",
        "items": [{"product_id": 1, "variant_id": null, "name": "Pashmina Shawl", "price_paisa": 100000, "quantity": 2}],
        "discount_code": "SAVE20",
        "notes": "Leave at the gate"
    }
    """
    try:
        data = request.get_json() or {}
        order = order_service.create_order(
            g.current_user.id,
            address_id=data.get("address_id"),
            payment_method=data.get("payment_method") or order_service.METHOD_COD,
            items=data.get("items"),
            discount_code=data.get("discount_code"),
            notes=data.get("notes"),
        )
        return jsonify({"message": "Order placed successfully", "order": order.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders():
    try:
        result = order_service.list_user_orders(
            g.current_user.id,
            status=request.args.get("status"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order(order_id: int):
    try:
        order = order_service.get_user_order(g.current_user.id, order_id)
        return jsonify({"order": order.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order(order_id: int):
    try:
        reason = (request.get_json(silent=True) or {}).get("reason")
        order = order_service.cancel_user_order(g.current_user.id, order_id, reason)
        return jsonify({"message": "Order cancelled successfully", "order": order.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
