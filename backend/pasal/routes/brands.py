# Overview: Flask API routes for brands; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_admin
from ..services import catalog_service
from ..validation import NotFoundError, ValidationError

brands_bp = Blueprint("brands", __name__, url_prefix="/api/brands")


@brands_bp.get("")
def list_brands():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    return jsonify({"brands": catalog_service.list_brands(include_inactive=include_inactive)}), 200


@brands_bp.get("/<int:brand_id>")
def get_brand(brand_id: int):
    try:
        return jsonify({"brand": catalog_service.get_brand(brand_id).to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@brands_bp.post("")
@require_auth
@require_admin
def create_brand():
    try:
        brand = catalog_service.create_brand(request.get_json() or {})
        return jsonify({"message": "Brand created successfully", "brand": brand.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create brand")
        return jsonify({"error": "Internal server error"}), 500


@brands_bp.put("/<int:brand_id>")
@require_auth
@require_admin
def update_brand(brand_id: int):
    try:
        brand = catalog_service.update_brand(brand_id, request.get_json() or {})
        return jsonify({"message": "Brand updated successfully", "brand": brand.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update brand")
        return jsonify({"error": "Internal server error"}), 500


@brands_bp.delete("/<int:brand_id>")
@require_auth
@require_admin
def delete_brand(brand_id: int):
    try:
        catalog_service.delete_brand(brand_id)
        return jsonify({"message": "Brand deleted successfully"}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete brand")
        return jsonify({"error": "Internal server error"}), 500
