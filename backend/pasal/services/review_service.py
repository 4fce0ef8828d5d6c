# Overview: Service-layer operations for product reviews; submission, votes, owner edits and moderation.

"""
Review Service

RATING AGGREGATE: Product.rating and Product.review_count only count
approved reviews and are recomputed after every write that can change the
approved set (create, edit, delete, moderation).

MODERATION: with REVIEW_MODERATION off, new reviews are approved
immediately. With it on, they start pending and an edit sends a review back
to pending.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderItem, Product, Review
from ..models.engagement import REVIEW_APPROVED, REVIEW_PENDING, REVIEW_REJECTED, VALID_REVIEW_STATUSES
from ..validation import NotFoundError, ValidationError
from .pagination import paginate_query


class ReviewError(ValidationError):
    """Raised for review rule violations (400)."""
    pass


MAX_TITLE_LENGTH = 100
MAX_CONTENT_LENGTH = 2000
MAX_IMAGES = 5

_VERIFIED_ORDER_STATUSES = ("delivered",)


def _rating(value) -> int:
    if isinstance(value, bool):
        raise ReviewError("Rating must be between 1 and 5")
    try:
        rating = int(value)
    except (TypeError, ValueError):
        raise ReviewError("Rating must be between 1 and 5")
    if rating != value and str(rating) != str(value).strip():
        raise ReviewError("Rating must be between 1 and 5")
    if not 1 <= rating <= 5:
        raise ReviewError("Rating must be between 1 and 5")
    return rating


def _clean_fields(data: dict, *, partial: bool) -> dict:
    fields = {}
    if "rating" in data or not partial:
        if data.get("rating") is None:
            raise ReviewError("Missing required fields")
        fields["rating"] = _rating(data["rating"])
    if "content" in data or not partial:
        content = str(data.get("content") or "").strip()
        if not content:
            raise ReviewError("Missing required fields")
        if len(content) > MAX_CONTENT_LENGTH:
            raise ReviewError(f"content must be at most {MAX_CONTENT_LENGTH} characters")
        fields["content"] = content
    if "title" in data:
        title = str(data.get("title") or "").strip()
        if len(title) > MAX_TITLE_LENGTH:
            raise ReviewError(f"title must be at most {MAX_TITLE_LENGTH} characters")
        fields["title"] = title or None
    if "images" in data:
        images = data.get("images") or []
        if not isinstance(images, list) or not all(isinstance(i, str) for i in images):
            raise ReviewError("images must be a list of URLs")
        if len(images) > MAX_IMAGES:
            raise ReviewError(f"At most {MAX_IMAGES} images are allowed")
        fields["images"] = images
    return fields


def refresh_product_rating(product_id: int) -> None:
    """Recompute rating (1 dp) and review_count from approved reviews. Does not commit."""
    avg, count = db.session.query(func.avg(Review.rating), func.count(Review.id)).filter(
        Review.product_id == product_id, Review.status == REVIEW_APPROVED
    ).one()
    product = db.session.get(Product, product_id)
    if product is None:
        return
    product.review_count = int(count or 0)
    product.rating = round(float(avg), 1) if count else 0.0


def has_purchased(user_id: int, product_id: int) -> bool:
    """True when the user has a paid or delivered order containing the product."""
    row = (
        db.session.query(Order.id)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(
            Order.user_id == user_id,
            OrderItem.product_id == product_id,
            Order.status != "cancelled",
            (Order.payment_status == "paid") | (Order.status.in_(_VERIFIED_ORDER_STATUSES)),
        )
        .first()
    )
    return row is not None


# =============================================================================
# PUBLIC
# =============================================================================

def list_product_reviews(product_id: int, page: int = 1, per_page: int = 10) -> dict:
    if not db.session.get(Product, product_id):
        raise NotFoundError("Product not found")
    query = (
        db.session.query(Review)
        .filter(Review.product_id == product_id, Review.status == REVIEW_APPROVED)
        .order_by(Review.created_at.desc(), Review.id.desc())
    )
    return paginate_query(query, page=page, per_page=per_page, serialize=lambda r: r.to_dict())


def create_review(user_id: int, product_id: int, data: dict) -> Review:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")
    fields = _clean_fields(data or {}, partial=False)

    if db.session.query(Review.id).filter_by(user_id=user_id, product_id=product_id).first():
        raise ReviewError("You have already reviewed this product")

    moderated = current_app.config.get("REVIEW_MODERATION", False)
    review = Review(
        user_id=user_id,
        product_id=product_id,
        status=REVIEW_PENDING if moderated else REVIEW_APPROVED,
        is_verified_purchase=has_purchased(user_id, product_id),
        **fields,
    )
    db.session.add(review)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ReviewError("You have already reviewed this product")
    refresh_product_rating(product_id)
    db.session.commit()
    return review


def vote_review(product_id: int, review_id: int, is_helpful) -> Review:
    review = db.session.query(Review).filter_by(id=review_id, product_id=product_id).first()
    if not review:
        raise NotFoundError("Review not found")
    if not isinstance(is_helpful, bool):
        raise ReviewError("isHelpful must be true or false")
    column = Review.helpful if is_helpful else Review.unhelpful
    db.session.query(Review).filter(Review.id == review.id).update(
        {column: column + 1}, synchronize_session=False
    )
    db.session.commit()
    db.session.refresh(review)
    return review


# =============================================================================
# OWNER
# =============================================================================

def list_user_reviews(
    user_id: int,
    *,
    status: str | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = 10,
) -> dict:
    query = db.session.query(Review).filter(Review.user_id == user_id)
    if status:
        if status not in VALID_REVIEW_STATUSES:
            raise ReviewError(f"status must be one of {', '.join(VALID_REVIEW_STATUSES)}")
        query = query.filter(Review.status == status)
    if search:
        query = query.join(Product, Product.id == Review.product_id).filter(
            Product.name.ilike(f"%{search.strip()}%")
        )
    query = query.order_by(Review.created_at.desc(), Review.id.desc())
    return paginate_query(query, page=page, per_page=per_page, serialize=lambda r: r.to_dict())


def get_user_review(user_id: int, review_id: int) -> Review:
    review = db.session.query(Review).filter_by(id=review_id, user_id=user_id).first()
    if not review:
        raise NotFoundError("Review not found")
    return review


def update_user_review(user_id: int, review_id: int, data: dict) -> Review:
    review = get_user_review(user_id, review_id)
    fields = _clean_fields(data or {}, partial=True)
    if not fields:
        raise ReviewError("No fields to update")
    for key, value in fields.items():
        setattr(review, key, value)
    if current_app.config.get("REVIEW_MODERATION", False) or review.status == REVIEW_REJECTED:
        review.status = REVIEW_PENDING
    refresh_product_rating(review.product_id)
    db.session.commit()
    return review


def delete_user_review(user_id: int, review_id: int) -> None:
    review = get_user_review(user_id, review_id)
    product_id = review.product_id
    db.session.delete(review)
    db.session.flush()
    refresh_product_rating(product_id)
    db.session.commit()


# =============================================================================
# ADMIN
# =============================================================================

def list_reviews(status: str | None = None, product_id: int | None = None, page: int = 1, per_page: int = 20) -> dict:
    query = db.session.query(Review)
    if status:
        query = query.filter(Review.status == status)
    if product_id:
        query = query.filter(Review.product_id == product_id)
    query = query.order_by(Review.created_at.desc(), Review.id.desc())
    return paginate_query(query, page=page, per_page=per_page, serialize=lambda r: r.to_dict())


def moderate_review(review_id: int, status: str) -> Review:
    if status not in (REVIEW_APPROVED, REVIEW_REJECTED):
        raise ReviewError("status must be approved or rejected")
    review = db.session.get(Review, review_id)
    if not review:
        raise NotFoundError("Review not found")
    review.status = status
    refresh_product_rating(review.product_id)
    db.session.commit()
    current_app.logger.info("Review %s %s", review_id, status)
    return review
