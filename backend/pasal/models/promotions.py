from __future__ import annotations

from ..extensions import db
from pasal.time_utils import to_utc_z, utcnow


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
VALID_DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)


discount_products = db.Table(
    "discount_products",
    db.Column("discount_id", db.Integer, db.ForeignKey("discounts.id"), primary_key=True),
    db.Column("product_id", db.Integer, db.ForeignKey("products.id"), primary_key=True),
)

discount_categories = db.Table(
    "discount_categories",
    db.Column("discount_id", db.Integer, db.ForeignKey("discounts.id"), primary_key=True),
    db.Column("category_id", db.Integer, db.ForeignKey("categories.id"), primary_key=True),
)


class Discount(db.Model):
    """
    Promotional code redeemable at checkout.

    value is basis points for percentage codes (2000 = 20%) and paisa for
    fixed codes. Empty allow-lists mean the code applies to every product.
    """
    __tablename__ = "discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)
    value = db.Column(db.Integer, nullable=False)

    min_purchase_paisa = db.Column(db.Integer, nullable=True)
    max_discount_paisa = db.Column(db.Integer, nullable=True)

    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    applicable_products = db.relationship("Product", secondary=discount_products, lazy="selectin")
    applicable_categories = db.relationship("Category", secondary=discount_categories, lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "value": self.value,
            "min_purchase_paisa": self.min_purchase_paisa,
            "max_discount_paisa": self.max_discount_paisa,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "applicable_product_ids": sorted(p.id for p in self.applicable_products),
            "applicable_category_ids": sorted(c.id for c in self.applicable_categories),
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
