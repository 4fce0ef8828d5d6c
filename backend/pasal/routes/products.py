# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/pasal/routes/products.py
"""
Product catalog routes.

Reads are public and only ever expose published products. Writes require
an admin session. Product reviews hang off the product URL as well.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_admin
from ..services import catalog_service, review_service
from ..validation import ConflictError, NotFoundError, ValidationError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _arg_bool(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes")


@products_bp.get("")
def list_products():
    """
    Query params:
    - q, category_id, brand_id
    - min_price, max_price (paisa)
    - featured, on_sale (true/false)
    - sort: newest | price_asc | price_desc | rating | name
    - page, per_page (default 20, max 100)
    """
    try:
        result = catalog_service.list_products(
            q=request.args.get("q") or request.args.get("search"),
            category_id=request.args.get("category_id", type=int),
            brand_id=request.args.get("brand_id", type=int),
            min_price=request.args.get("min_price", type=int),
            max_price=request.args.get("max_price", type=int),
            featured=_arg_bool("featured"),
            on_sale=_arg_bool("on_sale"),
            sort=request.args.get("sort", "newest"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@products_bp.get("/admin")
@require_auth
@require_admin
def list_products_admin():
    """Same filters as the public list plus status; archived products included."""
    try:
        result = catalog_service.list_products(
            q=request.args.get("q"),
            category_id=request.args.get("category_id", type=int),
            brand_id=request.args.get("brand_id", type=int),
            status=request.args.get("status"),
            public=False,
            sort=request.args.get("sort", "newest"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@products_bp.get("/<id_or_slug>")
def get_product(id_or_slug: str):
    try:
        return jsonify({"product": catalog_service.get_product(id_or_slug).to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@products_bp.post("")
@require_auth
@require_admin
def create_product():
    try:
        product = catalog_service.create_product(request.get_json() or {}, user_id=g.current_user.id)
        return jsonify({"message": "Product created successfully", "product": product.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_auth
@require_admin
def update_product(product_id: int):
    try:
        product = catalog_service.update_product(product_id, request.get_json() or {})
        return jsonify({"message": "Product updated successfully", "product": product.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def delete_product(product_id: int):
    """Archives the product; order history keeps pointing at it."""
    try:
        product = catalog_service.archive_product(product_id)
        return jsonify({"message": "Product deleted successfully", "product": product.to_dict(include_variants=False)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REVIEWS
# =============================================================================

@products_bp.get("/<int:product_id>/reviews")
def list_reviews(product_id: int):
    try:
        result = review_service.list_product_reviews(
            product_id,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to fetch reviews")
        return jsonify({"error": "Failed to fetch reviews"}), 500


@products_bp.post("/<int:product_id>/reviews")
@require_auth
def create_review(product_id: int):
    """Request body: rating (1-5), content, title, images."""
    try:
        review = review_service.create_review(g.current_user.id, product_id, request.get_json() or {})
        return jsonify({"message": "Review created successfully", "review": review.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to create review")
        return jsonify({"error": "Failed to create review"}), 500


@products_bp.post("/<int:product_id>/reviews/<int:review_id>/vote")
@require_auth
def vote_review(product_id: int, review_id: int):
    """Request body: {"isHelpful": bool} (is_helpful also accepted)."""
    try:
        data = request.get_json() or {}
        is_helpful = data.get("isHelpful", data.get("is_helpful"))
        review = review_service.vote_review(product_id, review_id, is_helpful)
        return jsonify({"message": "Vote recorded successfully", "review": review.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to vote on review")
        return jsonify({"error": "Failed to vote on review"}), 500
