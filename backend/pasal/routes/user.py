# Overview: Flask API routes for the signed-in shopper; profile, notifications, addresses, own reviews and wishlist.

"""
Account routes under /api/user.

Every route is scoped to g.current_user; the user id is passed to the
services explicitly.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..services import address_service, profile_service, review_service, wishlist_service
from ..validation import ConflictError, NotFoundError, ValidationError


user_bp = Blueprint("user", __name__, url_prefix="/api/user")


def _error(exc: Exception):
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    return jsonify({"error": str(exc)}), 400


# =============================================================================
# PROFILE
# =============================================================================

@user_bp.get("/profile")
@require_auth
def get_profile():
    return jsonify({"user": g.current_user.to_dict()}), 200


@user_bp.put("/profile")
@require_auth
def update_profile():
    """Request body: any of name, phone, image, vendor_profile."""
    try:
        user = profile_service.update_profile(g.current_user.id, request.get_json() or {})
        return jsonify({"message": "Profile updated successfully", "user": user.to_dict()}), 200
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500


@user_bp.get("/notifications")
@require_auth
def get_notifications():
    try:
        return jsonify({"preferences": profile_service.get_notification_preferences(g.current_user.id)}), 200
    except NotFoundError as e:
        return _error(e)


@user_bp.put("/notifications")
@require_auth
def update_notifications():
    try:
        data = request.get_json() or {}
        prefs = profile_service.update_notification_preferences(g.current_user.id, data.get("preferences", data))
        return jsonify({"message": "Notification preferences updated successfully", "preferences": prefs}), 200
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update notification preferences")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADDRESSES
# =============================================================================

@user_bp.get("/addresses")
@require_auth
def list_addresses():
    return jsonify({"addresses": address_service.list_addresses(g.current_user.id)}), 200


@user_bp.post("/addresses")
@require_auth
def add_address():
    """
    Request body: full_name, phone, address/locality/district/province,
    postal_code, landmark, address_type, coordinates {lat, lng},
    delivery_instructions, is_default.

    The first address always becomes the default.
    """
    try:
        address_service.add_address(g.current_user.id, request.get_json() or {})
        return jsonify({
            "message": "Address added successfully",
            "addresses": address_service.list_addresses(g.current_user.id),
        }), 201
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to add address")
        return jsonify({"error": "Internal server error"}), 500


@user_bp.put("/addresses/<int:address_id>")
@require_auth
def update_address(address_id: int):
    try:
        address = address_service.update_address(g.current_user.id, address_id, request.get_json() or {})
        return jsonify({
            "message": "Address updated successfully",
            "address": address.to_dict(),
            "addresses": address_service.list_addresses(g.current_user.id),
        }), 200
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update address")
        return jsonify({"error": "Internal server error"}), 500


@user_bp.post("/addresses/<int:address_id>/default")
@require_auth
def set_default_address(address_id: int):
    try:
        address_service.set_default_address(g.current_user.id, address_id)
        return jsonify({
            "message": "Default address updated",
            "addresses": address_service.list_addresses(g.current_user.id),
        }), 200
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to set default address")
        return jsonify({"error": "Internal server error"}), 500


@user_bp.delete("/addresses/<int:address_id>")
@require_auth
def delete_address(address_id: int):
    try:
        remaining = address_service.delete_address(g.current_user.id, address_id)
        return jsonify({"message": "Address deleted successfully", "addresses": remaining}), 200
    except NotFoundError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to delete address")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# OWN REVIEWS
# =============================================================================

@user_bp.get("/reviews")
@require_auth
def list_my_reviews():
    try:
        result = review_service.list_user_reviews(
            g.current_user.id,
            status=request.args.get("status"),
            search=request.args.get("search"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int) or request.args.get("limit", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return _error(e)


@user_bp.post("/reviews")
@require_auth
def create_my_review():
    """Request body: product_id, rating, content, title, images."""
    try:
        data = request.get_json() or {}
        if not data.get("product_id"):
            return jsonify({"error": "Missing required fields"}), 400
        review = review_service.create_review(g.current_user.id, int(data["product_id"]), data)
        return jsonify({"message": "Review created successfully", "review": review.to_dict()}), 201
    except (TypeError, ValueError):
        return jsonify({"error": "product_id must be an integer"}), 400
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create review")
        return jsonify({"error": "Failed to create review"}), 500


@user_bp.get("/reviews/<int:review_id>")
@require_auth
def get_my_review(review_id: int):
    try:
        return jsonify({"review": review_service.get_user_review(g.current_user.id, review_id).to_dict()}), 200
    except NotFoundError as e:
        return _error(e)


@user_bp.put("/reviews/<int:review_id>")
@require_auth
def update_my_review(review_id: int):
    try:
        review = review_service.update_user_review(g.current_user.id, review_id, request.get_json() or {})
        return jsonify({"message": "Review updated successfully", "review": review.to_dict()}), 200
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update review")
        return jsonify({"error": "Failed to update review"}), 500


@user_bp.delete("/reviews/<int:review_id>")
@require_auth
def delete_my_review(review_id: int):
    try:
        review_service.delete_user_review(g.current_user.id, review_id)
        return jsonify({"message": "Review deleted successfully"}), 200
    except NotFoundError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to delete review")
        return jsonify({"error": "Failed to delete review"}), 500


# =============================================================================
# WISHLIST
# =============================================================================

@user_bp.get("/wishlist")
@require_auth
def get_wishlist():
    items = wishlist_service.list_wishlist(g.current_user.id)
    return jsonify({"items": items, "count": len(items)}), 200


@user_bp.post("/wishlist")
@require_auth
def add_to_wishlist():
    try:
        data = request.get_json() or {}
        item, already_exists = wishlist_service.add_to_wishlist(g.current_user.id, data.get("product_id"))
        if already_exists:
            return jsonify({"message": "Item already in wishlist", "already_exists": True, "item": item.to_dict()}), 200
        return jsonify({"message": "Item added to wishlist successfully", "already_exists": False, "item": item.to_dict()}), 201
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to add to wishlist")
        return jsonify({"error": "Internal server error"}), 500


@user_bp.delete("/wishlist")
@user_bp.delete("/wishlist/<int:product_id>")
@require_auth
def remove_from_wishlist(product_id: int | None = None):
    try:
        if product_id is None:
            product_id = request.args.get("product_id") or (request.get_json(silent=True) or {}).get("product_id")
        wishlist_service.remove_from_wishlist(g.current_user.id, product_id)
        return jsonify({"message": "Item removed from wishlist successfully"}), 200
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to remove from wishlist")
        return jsonify({"error": "Internal server error"}), 500


@user_bp.get("/wishlist/check")
@require_auth
def check_wishlist():
    try:
        product_id = request.args.get("product_id") or request.args.get("productId")
        return jsonify({"in_wishlist": wishlist_service.is_in_wishlist(g.current_user.id, product_id)}), 200
    except ValidationError as e:
        return _error(e)


@user_bp.delete("/wishlist/clear")
@require_auth
def clear_wishlist():
    try:
        removed = wishlist_service.clear_wishlist(g.current_user.id)
        return jsonify({"message": "Wishlist cleared successfully", "removed": removed}), 200
    except Exception:
        current_app.logger.exception("Failed to clear wishlist")
        return jsonify({"error": "Internal server error"}), 500
