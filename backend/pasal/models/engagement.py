from __future__ import annotations

from ..extensions import db
from pasal.time_utils import to_utc_z, utcnow


REVIEW_PENDING = "pending"
REVIEW_APPROVED = "approved"
REVIEW_REJECTED = "rejected"
VALID_REVIEW_STATUSES = (REVIEW_PENDING, REVIEW_APPROVED, REVIEW_REJECTED)


class Review(db.Model):
    """
    One user's rating of one product.

    Only approved reviews count toward Product.rating and review_count.
    """
    __tablename__ = "reviews"
    __table_args__ = (
        db.UniqueConstraint("user_id", "product_id", name="uq_reviews_user_product"),
        db.Index("ix_reviews_product_status", "product_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    rating = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(100), nullable=True)
    content = db.Column(db.Text, nullable=False)
    images = db.Column(db.JSON, nullable=False, default=list)

    helpful = db.Column(db.Integer, nullable=False, default=0)
    unhelpful = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=REVIEW_APPROVED)
    is_verified_purchase = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", backref=db.backref("reviews", lazy=True))
    product = db.relationship("Product", backref=db.backref("reviews", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user": {"name": self.user.name, "image": self.user.image} if self.user else None,
            "product_id": self.product_id,
            "product": {"name": self.product.name, "slug": self.product.slug} if self.product else None,
            "rating": self.rating,
            "title": self.title,
            "content": self.content,
            "images": list(self.images or []),
            "helpful": self.helpful,
            "unhelpful": self.unhelpful,
            "status": self.status,
            "is_verified_purchase": self.is_verified_purchase,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WishlistItem(db.Model):
    __tablename__ = "wishlist_items"
    __table_args__ = (
        db.UniqueConstraint("user_id", "product_id", name="uq_wishlist_user_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": self.product.to_dict(include_variants=False) if self.product else None,
            "added_at": to_utc_z(self.created_at),
        }
