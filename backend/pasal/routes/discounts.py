# Overview: Flask API routes for discount codes at checkout; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth
from ..services import discount_service
from ..validation import NotFoundError, ValidationError


discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discounts")


@discounts_bp.post("/validate")
def validate_discount():
    """
    Public quote for a code against a cart.

    Request body:
    {
        "code": "SAVE20",
        "subtotal_paisa": 400000,
        "items": [{"product_id": 1, "quantity": 2}]
    }

    Nothing is reserved; usage is only counted when an order is placed.
    """
    try:
        data = request.get_json() or {}
        quote = discount_service.validate_discount(
            data.get("code"),
            data.get("subtotal_paisa"),
            data.get("items") or [],
        )
        return jsonify(quote.to_dict()), 200
    except ValidationError as e:
        return jsonify({"valid": False, "error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"valid": False, "error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to validate discount")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.post("/apply")
@require_auth
def apply_discount():
    """Request body: {"discount_id": 4}. Counts one redemption."""
    try:
        discount_id = (request.get_json() or {}).get("discount_id")
        if not isinstance(discount_id, int) or isinstance(discount_id, bool):
            return jsonify({"error": "discount_id is required"}), 400
        discount = discount_service.apply_discount(discount_id)
        return jsonify({"message": "Discount applied successfully", "discount": discount.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to apply discount")
        return jsonify({"error": "Internal server error"}), 500
