# Overview: Flask API routes for the admin console; customers, users, locations, orders, discounts, reviews and analytics.

"""
Admin routes under /api/admin.

Every route requires an authenticated admin (or superadmin) session.
List endpoints share the paginate_query envelope {items, count, pagination}.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_admin
from ..services import (
    analytics_service,
    discount_service,
    location_service,
    order_service,
    profile_service,
    review_service,
    user_admin_service,
)
from ..services.auth_service import PasswordValidationError
from ..validation import ConflictError, NotFoundError, ValidationError


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.before_request
@require_auth
@require_admin
def _guard():
    return None


def _error(exc: Exception):
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    return jsonify({"error": str(exc)}), 400


# =============================================================================
# CUSTOMERS
# =============================================================================

@admin_bp.get("/customers")
def list_customers():
    try:
        result = profile_service.list_customers(
            search=request.args.get("search"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return _error(e)


@admin_bp.get("/customers/<int:user_id>")
def get_customer(user_id: int):
    try:
        return jsonify({"customer": profile_service.get_customer(user_id)}), 200
    except NotFoundError as e:
        return _error(e)


@admin_bp.patch("/customers/<int:user_id>/active")
def set_customer_active(user_id: int):
    """Request body: {"is_active": false}. Deactivated users fail session validation."""
    try:
        is_active = (request.get_json() or {}).get("is_active")
        if not isinstance(is_active, bool):
            return jsonify({"error": "is_active must be a boolean"}), 400
        user = profile_service.set_customer_active(user_id, is_active)
        return jsonify({"message": "Customer updated successfully", "customer": user.to_dict()}), 200
    except NotFoundError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# USERS
# =============================================================================

@admin_bp.get("/users")
def list_users():
    """Every account below superadmin; ?search=&role=user|admin&page=&per_page="""
    try:
        result = user_admin_service.list_users(
            search=request.args.get("search"),
            role=request.args.get("role"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return _error(e)


@admin_bp.post("/users")
def create_user():
    """
    Request body:
    {"name": "Sita Sharma", "email": "sita@example.com", "password": "...", "role": "user"}

    Only a superadmin may create an admin.
    """
    try:
        user = user_admin_service.create_user(g.current_user, request.get_json() or {})
        current_app.logger.info("User %s created by %s with role %s", user.id, g.current_user.id, user.role)
        return jsonify({"message": "User created successfully", "user": user.to_dict()}), 201
    except user_admin_service.RoleGrantError as e:
        return jsonify({"error": str(e)}), 401
    except (PasswordValidationError, ValidationError, ConflictError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/users/<int:user_id>")
def get_user(user_id: int):
    try:
        return jsonify({"user": user_admin_service.get_user(user_id).to_dict()}), 200
    except NotFoundError as e:
        return _error(e)


@admin_bp.put("/users/<int:user_id>")
def update_user(user_id: int):
    """Request body: any of name, email, role, is_active."""
    try:
        user = user_admin_service.update_user(g.current_user, user_id, request.get_json() or {})
        return jsonify({"message": "User updated successfully", "user": user.to_dict()}), 200
    except user_admin_service.RoleGrantError as e:
        return jsonify({"error": str(e)}), 401
    except (ValidationError, NotFoundError, ConflictError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/users/<int:user_id>")
def delete_user(user_id: int):
    try:
        user_admin_service.delete_user(g.current_user, user_id)
        current_app.logger.info("User %s deleted by %s", user_id, g.current_user.id)
        return jsonify({"message": "User deleted successfully"}), 200
    except user_admin_service.RoleGrantError as e:
        return jsonify({"error": str(e)}), 401
    except (ValidationError, NotFoundError, ConflictError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LOCATIONS
# =============================================================================

@admin_bp.get("/locations")
def list_all_locations():
    locations = location_service.list_all_locations()
    return jsonify({"locations": locations, "count": len(locations)}), 200


@admin_bp.post("/locations")
def create_location():
    """
    Request body:
    {"name": "Thamel", "type": "landmark", "parent_id": 3, "shipping_price_paisa": 10000}

    type is one of country, province, city, landmark; only landmarks keep a shipping price.
    """
    try:
        location = location_service.create_location(request.get_json() or {}, user_id=g.current_user.id)
        return jsonify({"message": "Location created successfully", "location": location.to_dict()}), 201
    except (ValidationError, ConflictError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create location")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.put("/locations/<int:location_id>")
def update_location(location_id: int):
    try:
        location = location_service.update_location(location_id, request.get_json() or {}, user_id=g.current_user.id)
        return jsonify({"message": "Location updated successfully", "location": location.to_dict()}), 200
    except (ValidationError, NotFoundError, ConflictError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update location")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/locations/<int:location_id>")
def delete_location(location_id: int):
    """Deletes the location and everything under it."""
    try:
        removed = location_service.delete_location(location_id)
        return jsonify({"message": "Location deleted successfully", "deleted": removed}), 200
    except NotFoundError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to delete location")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ORDERS
# =============================================================================

@admin_bp.get("/orders")
def list_orders():
    """Filters: status, payment_status, payment_method, search, date_from, date_to."""
    try:
        result = order_service.list_orders(
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            payment_method=request.args.get("payment_method"),
            search=request.args.get("search"),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return _error(e)


@admin_bp.get("/orders/<int:order_id>")
def get_order(order_id: int):
    try:
        order = order_service.get_order(order_id)
        data = order.to_dict()
        data["customer"] = {"id": order.user.id, "name": order.user.name, "email": order.user.email}
        return jsonify({"order": data}), 200
    except NotFoundError as e:
        return _error(e)


@admin_bp.patch("/orders/<int:order_id>/status")
def update_order_status(order_id: int):
    """Request body: {"status": "shipped", "tracking_number": "...", "note": "..."}."""
    try:
        data = request.get_json() or {}
        order = order_service.update_order_status(
            order_id,
            status=data.get("status"),
            actor_user_id=g.current_user.id,
            tracking_number=data.get("tracking_number"),
            note=data.get("note"),
        )
        return jsonify({"message": "Order status updated successfully", "order": order.to_dict()}), 200
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DISCOUNTS
# =============================================================================

@admin_bp.get("/discounts")
def list_discounts():
    try:
        result = discount_service.list_discounts(
            search=request.args.get("search"),
            status=request.args.get("status"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return _error(e)


@admin_bp.post("/discounts")
def create_discount():
    """
    Request body:
    {
        "code": "DASHAIN20",
        "discount_type": "percentage",   # value in basis points (2000 = 20%)
        "value": 2000,
        "max_discount_paisa": 50000,
        "min_purchase_paisa": 100000,
        "start_date": "...", "end_date": "...",
        "usage_limit": 100,
        "applicable_product_ids": [], "applicable_category_ids": []
    }
    """
    try:
        discount = discount_service.create_discount(request.get_json() or {}, user_id=g.current_user.id)
        return jsonify({"message": "Discount created successfully", "discount": discount.to_dict()}), 201
    except (ValidationError, NotFoundError, ConflictError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create discount")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/discounts/<int:discount_id>")
def get_discount(discount_id: int):
    try:
        return jsonify({"discount": discount_service.get_discount(discount_id).to_dict()}), 200
    except NotFoundError as e:
        return _error(e)


@admin_bp.put("/discounts/<int:discount_id>")
def update_discount(discount_id: int):
    try:
        discount = discount_service.update_discount(discount_id, request.get_json() or {}, user_id=g.current_user.id)
        return jsonify({"message": "Discount updated successfully", "discount": discount.to_dict()}), 200
    except (ValidationError, NotFoundError, ConflictError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update discount")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.patch("/discounts/<int:discount_id>/toggle-status")
def toggle_discount_status(discount_id: int):
    try:
        discount = discount_service.toggle_discount_status(discount_id, user_id=g.current_user.id)
        state = "activated" if discount.is_active else "deactivated"
        return jsonify({"message": f"Discount {state} successfully", "discount": discount.to_dict()}), 200
    except NotFoundError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to toggle discount status")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/discounts/<int:discount_id>")
def delete_discount(discount_id: int):
    try:
        discount_service.delete_discount(discount_id)
        return jsonify({"message": "Discount deleted successfully"}), 200
    except (NotFoundError, ConflictError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to delete discount")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REVIEWS
# =============================================================================

@admin_bp.get("/reviews")
def list_reviews():
    try:
        result = review_service.list_reviews(
            status=request.args.get("status"),
            product_id=request.args.get("product_id", type=int),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return _error(e)


@admin_bp.patch("/reviews/<int:review_id>")
def moderate_review(review_id: int):
    """Request body: {"status": "approved" | "rejected"}."""
    try:
        review = review_service.moderate_review(review_id, (request.get_json() or {}).get("status"))
        return jsonify({"message": "Review updated successfully", "review": review.to_dict()}), 200
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to moderate review")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ANALYTICS
# =============================================================================

@admin_bp.get("/stats")
def get_stats():
    try:
        return jsonify(analytics_service.admin_stats()), 200
    except Exception:
        current_app.logger.exception("Failed to fetch admin stats")
        return jsonify({"error": "Failed to fetch stats"}), 500


@admin_bp.get("/analytics")
def get_analytics():
    """
    ?section=dashboard|sales|products|customers|recent_activity|performance
    ?period=7d|30d|90d|365d (sales only)
    ?section=monthly_revenue&detailed=true for order and customer counts
    """
    section = request.args.get("section", "dashboard")
    period = request.args.get("period", "30d")
    try:
        if section == "monthly_revenue":
            detailed = request.args.get("detailed", "false").lower() == "true"
            return jsonify({"monthly_revenue": analytics_service.monthly_revenue(detailed=detailed)}), 200
        return jsonify({section: analytics_service.get_section(section, period)}), 200
    except analytics_service.ReportError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to fetch analytics section %s", section)
        return jsonify({"error": "Failed to fetch analytics"}), 500


@admin_bp.get("/analytics/all")
def get_all_analytics():
    """All six sections computed concurrently. One failing section fails the response."""
    period = request.args.get("period", "30d")
    if period not in analytics_service.PERIOD_DAYS:
        return jsonify({"error": f"period must be one of {', '.join(analytics_service.PERIOD_DAYS)}"}), 400
    try:
        return jsonify(analytics_service.all_analytics(period)), 200
    except analytics_service.ReportError as e:
        current_app.logger.warning("Analytics report failed: %s", e)
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to fetch analytics")
        return jsonify({"error": "Failed to fetch analytics"}), 500


@admin_bp.get("/recent-sales")
def get_recent_sales():
    try:
        limit = request.args.get("limit", 5, type=int)
        return jsonify({"sales": analytics_service.recent_sales(limit=max(1, min(limit, 50)))}), 200
    except Exception:
        current_app.logger.exception("Failed to fetch recent sales")
        return jsonify({"error": "Failed to fetch recent sales"}), 500
