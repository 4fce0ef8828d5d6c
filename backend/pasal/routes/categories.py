# Overview: Flask API routes for categories; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_admin
from ..services import catalog_service
from ..validation import NotFoundError, ValidationError

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
def list_categories():
    """Active categories with product counts; ?include_inactive=true for admins' pickers."""
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    return jsonify({"categories": catalog_service.list_categories(include_inactive=include_inactive)}), 200


@categories_bp.get("/<int:category_id>")
def get_category(category_id: int):
    try:
        category = catalog_service.get_category(category_id)
        data = category.to_dict()
        data["children"] = [c.to_dict() for c in category.children]
        return jsonify({"category": data}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@categories_bp.post("")
@require_auth
@require_admin
def create_category():
    try:
        category = catalog_service.create_category(request.get_json() or {})
        return jsonify({"message": "Category created successfully", "category": category.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.put("/<int:category_id>")
@require_auth
@require_admin
def update_category(category_id: int):
    try:
        category = catalog_service.update_category(category_id, request.get_json() or {})
        return jsonify({"message": "Category updated successfully", "category": category.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_admin
def delete_category(category_id: int):
    """Refused with 400 while products or subcategories still point at it."""
    try:
        catalog_service.delete_category(category_id)
        return jsonify({"message": "Category deleted successfully"}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete category")
        return jsonify({"error": "Internal server error"}), 500
