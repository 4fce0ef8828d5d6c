from __future__ import annotations

from ..extensions import db
from pasal.time_utils import to_utc_z, utcnow


PRODUCT_STATUS_DRAFT = "draft"
PRODUCT_STATUS_PUBLISHED = "published"
PRODUCT_STATUS_ARCHIVED = "archived"
VALID_PRODUCT_STATUSES = (PRODUCT_STATUS_DRAFT, PRODUCT_STATUS_PUBLISHED, PRODUCT_STATUS_ARCHIVED)


class Category(db.Model):
    """
    Taxonomy node. Categories nest through parent_id.

    Product counts are not stored; catalog_service aggregates them on demand.
    """
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(120), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    image = db.Column(db.String(500), nullable=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    parent = db.relationship("Category", remote_side=[id], backref=db.backref("children", lazy=True))

    def to_dict(self, product_count: int | None = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "image": self.image,
            "parent_id": self.parent_id,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if product_count is not None:
            data["product_count"] = product_count
        return data


class Brand(db.Model):
    __tablename__ = "brands"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(120), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    logo = db.Column(db.String(500), nullable=True)
    website = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self, product_count: int | None = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "logo": self.logo,
            "website": self.website,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if product_count is not None:
            data["product_count"] = product_count
        return data


class Product(db.Model):
    """
    Sellable catalog item.

    DERIVED FIELDS:
    - slug: regenerated from name whenever the name changes
    - discount_price_paisa: price less discount_percent while is_on_sale
    - rating / review_count: aggregated from approved reviews
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(220), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)

    # Money in paisa
    price_paisa = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Integer, nullable=True)
    is_on_sale = db.Column(db.Boolean, nullable=False, default=False)
    discount_price_paisa = db.Column(db.Integer, nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    images = db.Column(db.JSON, nullable=False, default=list)
    tags = db.Column(db.JSON, nullable=False, default=list)
    sku = db.Column(db.String(64), nullable=True, unique=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    brand_id = db.Column(db.Integer, db.ForeignKey("brands.id"), nullable=True, index=True)

    rating = db.Column(db.Float, nullable=False, default=0.0)
    review_count = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_PUBLISHED, index=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    is_new = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    brand = db.relationship("Brand", backref=db.backref("products", lazy=True))
    variants = db.relationship(
        "ProductVariant",
        backref="product",
        lazy=True,
        order_by="ProductVariant.id",
        cascade="all, delete-orphan",
    )

    def recompute_discount_price(self) -> None:
        if self.is_on_sale and self.discount_percent:
            off = self.price_paisa * self.discount_percent / 100
            self.discount_price_paisa = round(self.price_paisa - off)
        else:
            self.discount_price_paisa = None

    @property
    def effective_price_paisa(self) -> int:
        if self.discount_price_paisa is not None:
            return self.discount_price_paisa
        return self.price_paisa

    def to_dict(self, include_variants: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "price_paisa": self.price_paisa,
            "discount_percent": self.discount_percent,
            "is_on_sale": self.is_on_sale,
            "discount_price_paisa": self.discount_price_paisa,
            "stock": self.stock,
            "images": list(self.images or []),
            "tags": list(self.tags or []),
            "sku": self.sku,
            "category_id": self.category_id,
            "category": self.category.name if self.category else None,
            "brand_id": self.brand_id,
            "brand": self.brand.name if self.brand else None,
            "rating": round(self.rating or 0.0, 2),
            "review_count": self.review_count,
            "status": self.status,
            "is_featured": self.is_featured,
            "is_new": self.is_new,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_variants:
            data["variants"] = [v.to_dict() for v in self.variants]
        return data


class ProductVariant(db.Model):
    """One purchasable combination of option values (e.g. size=M, color=red)."""
    __tablename__ = "product_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # [{"type": "size", "value": "M"}, ...]
    options = db.Column(db.JSON, nullable=False, default=list)

    price_paisa = db.Column(db.Integer, nullable=True)
    sale_price_paisa = db.Column(db.Integer, nullable=True)
    inventory = db.Column(db.Integer, nullable=False, default=0)
    is_available = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    images = db.Column(db.JSON, nullable=False, default=list)
    sku = db.Column(db.String(64), nullable=True)
    barcode = db.Column(db.String(64), nullable=True)
    min_order_quantity = db.Column(db.Integer, nullable=False, default=1)
    max_order_quantity = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "options": list(self.options or []),
            "price_paisa": self.price_paisa,
            "sale_price_paisa": self.sale_price_paisa,
            "inventory": self.inventory,
            "is_available": self.is_available,
            "is_active": self.is_active,
            "images": list(self.images or []),
            "sku": self.sku,
            "barcode": self.barcode,
            "min_order_quantity": self.min_order_quantity,
            "max_order_quantity": self.max_order_quantity,
        }
