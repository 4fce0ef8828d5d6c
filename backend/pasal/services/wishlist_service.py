# Overview: Service-layer operations for the shopper wishlist.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, WishlistItem
from ..validation import NotFoundError, ValidationError, require_positive_int


def _product_id(value) -> int:
    if value in (None, ""):
        raise ValidationError("Product ID is required")
    return require_positive_int(value, "product_id")


def list_wishlist(user_id: int) -> list[dict]:
    items = (
        db.session.query(WishlistItem)
        .filter(WishlistItem.user_id == user_id)
        .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
        .all()
    )
    return [item.to_dict() for item in items if item.product is not None]


def add_to_wishlist(user_id: int, product_id) -> tuple[WishlistItem, bool]:
    """Returns (item, already_exists). Adding twice is not an error."""
    product_id = _product_id(product_id)
    if not db.session.get(Product, product_id):
        raise NotFoundError("Product not found")

    existing = db.session.query(WishlistItem).filter_by(user_id=user_id, product_id=product_id).first()
    if existing:
        return existing, True

    item = WishlistItem(user_id=user_id, product_id=product_id)
    db.session.add(item)
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent add of the same product
        db.session.rollback()
        return db.session.query(WishlistItem).filter_by(user_id=user_id, product_id=product_id).one(), True
    return item, False


def remove_from_wishlist(user_id: int, product_id) -> None:
    product_id = _product_id(product_id)
    item = db.session.query(WishlistItem).filter_by(user_id=user_id, product_id=product_id).first()
    if not item:
        raise NotFoundError("Item not found in wishlist")
    db.session.delete(item)
    db.session.commit()


def is_in_wishlist(user_id: int, product_id) -> bool:
    product_id = _product_id(product_id)
    return db.session.query(WishlistItem.id).filter_by(user_id=user_id, product_id=product_id).first() is not None


def clear_wishlist(user_id: int) -> int:
    count = db.session.query(WishlistItem).filter(WishlistItem.user_id == user_id).delete(synchronize_session=False)
    db.session.commit()
    return count
