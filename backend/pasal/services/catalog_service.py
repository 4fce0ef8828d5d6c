# Overview: Service-layer operations for products, categories and brands; encapsulates business logic and database work.

"""
Catalog Service

DERIVED DATA:
- Slugs are regenerated from the name on every rename and made unique with
  a numeric suffix (shoes, shoes-1, shoes-2, ...)
- Product.discount_price_paisa is recomputed on every write
- Category and brand product counts are aggregated per request, never stored

DELETE GUARDS: a category or brand that still has products (or a category
with subcategories) cannot be deleted. The caller must reassign or delete
the dependants first.
"""

from __future__ import annotations

import re

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Brand, Category, Product, ProductVariant
from ..models.catalog import (
    PRODUCT_STATUS_ARCHIVED,
    PRODUCT_STATUS_PUBLISHED,
    VALID_PRODUCT_STATUSES,
)
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)
from .pagination import paginate_query


class CatalogError(ValidationError):
    """Raised for catalog business rule violations (400)."""
    pass


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "price_paisa", "discount_percent", "is_on_sale",
        "stock", "images", "tags", "sku", "category_id", "brand_id", "status",
        "is_featured", "is_new",
    },
    required_on_create={"name", "price_paisa"},
)

VARIANT_POLICY = ModelValidationPolicy(
    writable_fields={
        "options", "price_paisa", "sale_price_paisa", "inventory", "is_available",
        "is_active", "images", "sku", "barcode", "min_order_quantity", "max_order_quantity",
    },
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "image", "parent_id", "is_active", "sort_order"},
    required_on_create={"name"},
)

BRAND_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "logo", "website", "is_active"},
    required_on_create={"name"},
)

PRODUCT_SORTS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "price_asc": (Product.price_paisa.asc(), Product.id.asc()),
    "price_desc": (Product.price_paisa.desc(), Product.id.desc()),
    "rating": (Product.rating.desc(), Product.review_count.desc(), Product.id.desc()),
    "name": (Product.name.asc(), Product.id.asc()),
}


# =============================================================================
# SLUGS
# =============================================================================

def slugify(text: str) -> str:
    value = (text or "").strip().lower()
    value = re.sub(r"[^\w\s-]", "", value)
    value = re.sub(r"[\s_-]+", "-", value)
    return value.strip("-") or "item"


def unique_slug(model, name: str, *, exclude_id: int | None = None) -> str:
    base = slugify(name)
    candidate = base
    suffix = 0
    while True:
        q = db.session.query(model.id).filter(model.slug == candidate)
        if exclude_id is not None:
            q = q.filter(model.id != exclude_id)
        if q.first() is None:
            return candidate
        suffix += 1
        candidate = f"{base}-{suffix}"


# =============================================================================
# PRODUCTS
# =============================================================================

def _check_references(patch: dict) -> None:
    if patch.get("category_id") is not None and not db.session.get(Category, patch["category_id"]):
        raise NotFoundError("Category not found")
    if patch.get("brand_id") is not None and not db.session.get(Brand, patch["brand_id"]):
        raise NotFoundError("Brand not found")
    if "status" in patch and patch["status"] not in VALID_PRODUCT_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(VALID_PRODUCT_STATUSES)}")


def _check_sku(sku: str | None, exclude_id: int | None = None) -> None:
    if not sku:
        return
    q = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(f"SKU {sku} already exists")


def _build_variants(raw_variants) -> list[ProductVariant]:
    if not isinstance(raw_variants, list):
        raise ValidationError("variants must be a list")
    variants = []
    for index, raw in enumerate(raw_variants):
        patch = validate_payload(model=ProductVariant, payload=raw, policy=VARIANT_POLICY, partial=True)
        for option in patch.get("options") or []:
            if not isinstance(option, dict) or not option.get("type") or not option.get("value"):
                raise ValidationError(f"variants[{index}].options entries need type and value")
        for key in ("price_paisa", "sale_price_paisa", "inventory"):
            if patch.get(key) is not None and patch[key] < 0:
                raise ValidationError(f"variants[{index}].{key} must be >= 0")
        variants.append(ProductVariant(**patch))
    return variants


def create_product(data: dict, user_id: int | None = None) -> Product:
    data = dict(data or {})
    raw_variants = data.pop("variants", None)

    patch = validate_payload(model=Product, payload=data, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    _check_references(patch)
    _check_sku(patch.get("sku"))

    product = Product(**patch, created_by_user_id=user_id)
    product.slug = unique_slug(Product, product.name)
    product.recompute_discount_price()
    if raw_variants is not None:
        product.variants = _build_variants(raw_variants)

    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Product with this SKU or slug already exists")
    return product


def update_product(product_id: int, data: dict) -> Product:
    data = dict(data or {})
    raw_variants = data.pop("variants", None)

    product = get_product(product_id, public=False)
    patch = validate_payload(model=Product, payload=data, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    _check_references(patch)
    if "sku" in patch:
        _check_sku(patch["sku"], exclude_id=product.id)

    name_changed = "name" in patch and patch["name"] != product.name
    for key, value in patch.items():
        setattr(product, key, value)

    if name_changed:
        product.slug = unique_slug(Product, product.name, exclude_id=product.id)
    product.recompute_discount_price()

    if raw_variants is not None:
        product.variants = _build_variants(raw_variants)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Product with this SKU or slug already exists")
    return product


def archive_product(product_id: int) -> Product:
    """Products referenced by orders are kept; deletion archives them."""
    product = get_product(product_id, public=False)
    product.status = PRODUCT_STATUS_ARCHIVED
    db.session.commit()
    return product


def get_product(id_or_slug, *, public: bool = True) -> Product:
    query = db.session.query(Product)
    if isinstance(id_or_slug, int) or str(id_or_slug).isdigit():
        product = query.filter(Product.id == int(id_or_slug)).first()
    else:
        product = query.filter(Product.slug == str(id_or_slug)).first()
    if not product or (public and product.status != PRODUCT_STATUS_PUBLISHED):
        raise NotFoundError("Product not found")
    return product


def list_products(
    *,
    q: str | None = None,
    category_id: int | None = None,
    brand_id: int | None = None,
    min_price: int | None = None,
    max_price: int | None = None,
    featured: bool | None = None,
    on_sale: bool | None = None,
    status: str | None = None,
    public: bool = True,
    sort: str = "newest",
    page: int | None = 1,
    per_page: int | None = 20,
) -> dict:
    """
    Catalog listing with filters and pagination.

    Storefront callers (public=True) only ever see published products;
    admins may filter on any status.
    """
    query = db.session.query(Product)

    if public:
        query = query.filter(Product.status == PRODUCT_STATUS_PUBLISHED)
    elif status:
        query = query.filter(Product.status == status)

    if q:
        like = f"%{q.strip()}%"
        query = query.filter(or_(Product.name.ilike(like), Product.description.ilike(like), Product.sku.ilike(like)))
    if category_id:
        child_ids = [c.id for c in db.session.query(Category.id).filter(Category.parent_id == category_id)]
        query = query.filter(Product.category_id.in_([category_id, *child_ids]))
    if brand_id:
        query = query.filter(Product.brand_id == brand_id)
    if min_price is not None:
        query = query.filter(Product.price_paisa >= min_price)
    if max_price is not None:
        query = query.filter(Product.price_paisa <= max_price)
    if featured is not None:
        query = query.filter(Product.is_featured.is_(featured))
    if on_sale is not None:
        query = query.filter(Product.is_on_sale.is_(on_sale))

    if sort not in PRODUCT_SORTS:
        raise ValidationError(f"sort must be one of {', '.join(PRODUCT_SORTS)}")
    query = query.order_by(*PRODUCT_SORTS[sort])

    return paginate_query(
        query, page=page, per_page=per_page,
        serialize=lambda p: p.to_dict(include_variants=False),
    )


# =============================================================================
# CATEGORIES
# =============================================================================

def _product_counts(column) -> dict[int, int]:
    rows = (
        db.session.query(column, func.count(Product.id))
        .filter(column.isnot(None), Product.status != PRODUCT_STATUS_ARCHIVED)
        .group_by(column)
        .all()
    )
    return {ref_id: int(count) for ref_id, count in rows}


def list_categories(include_inactive: bool = False) -> list[dict]:
    query = db.session.query(Category)
    if not include_inactive:
        query = query.filter(Category.is_active.is_(True))
    counts = _product_counts(Product.category_id)
    rows = query.order_by(Category.sort_order.asc(), Category.name.asc()).all()
    return [c.to_dict(product_count=counts.get(c.id, 0)) for c in rows]


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if not category:
        raise NotFoundError("Category not found")
    return category


def _check_parent(category_id: int | None, parent_id: int | None) -> None:
    if parent_id is None:
        return
    parent = get_category(parent_id)
    if category_id is None:
        return
    # Walk up from the proposed parent; meeting ourselves means a cycle
    node = parent
    while node is not None:
        if node.id == category_id:
            raise CatalogError("A category cannot be its own parent")
        node = node.parent


def create_category(data: dict) -> Category:
    patch = validate_payload(model=Category, payload=data, policy=CATEGORY_POLICY, partial=False)
    _check_parent(None, patch.get("parent_id"))
    category = Category(**patch)
    category.slug = unique_slug(Category, category.name)
    db.session.add(category)
    db.session.commit()
    return category


def update_category(category_id: int, data: dict) -> Category:
    category = get_category(category_id)
    patch = validate_payload(model=Category, payload=data, policy=CATEGORY_POLICY, partial=True)
    if "parent_id" in patch:
        _check_parent(category.id, patch["parent_id"])

    name_changed = "name" in patch and patch["name"] != category.name
    for key, value in patch.items():
        setattr(category, key, value)
    if name_changed:
        category.slug = unique_slug(Category, category.name, exclude_id=category.id)

    db.session.commit()
    return category


def delete_category(category_id: int) -> None:
    category = get_category(category_id)

    has_products = db.session.query(Product.id).filter(Product.category_id == category.id).first()
    if has_products:
        raise CatalogError(
            "Cannot delete category with products. Please reassign or delete the products first."
        )
    has_children = db.session.query(Category.id).filter(Category.parent_id == category.id).first()
    if has_children:
        raise CatalogError(
            "Cannot delete category with subcategories. Please reassign or delete the subcategories first."
        )

    db.session.delete(category)
    db.session.commit()


# =============================================================================
# BRANDS
# =============================================================================

def list_brands(include_inactive: bool = False) -> list[dict]:
    query = db.session.query(Brand)
    if not include_inactive:
        query = query.filter(Brand.is_active.is_(True))
    counts = _product_counts(Product.brand_id)
    return [b.to_dict(product_count=counts.get(b.id, 0)) for b in query.order_by(Brand.name.asc()).all()]


def get_brand(brand_id: int) -> Brand:
    brand = db.session.get(Brand, brand_id)
    if not brand:
        raise NotFoundError("Brand not found")
    return brand


def create_brand(data: dict) -> Brand:
    patch = validate_payload(model=Brand, payload=data, policy=BRAND_POLICY, partial=False)
    brand = Brand(**patch)
    brand.slug = unique_slug(Brand, brand.name)
    db.session.add(brand)
    db.session.commit()
    return brand


def update_brand(brand_id: int, data: dict) -> Brand:
    brand = get_brand(brand_id)
    patch = validate_payload(model=Brand, payload=data, policy=BRAND_POLICY, partial=True)
    name_changed = "name" in patch and patch["name"] != brand.name
    for key, value in patch.items():
        setattr(brand, key, value)
    if name_changed:
        brand.slug = unique_slug(Brand, brand.name, exclude_id=brand.id)
    db.session.commit()
    return brand


def delete_brand(brand_id: int) -> None:
    brand = get_brand(brand_id)
    if db.session.query(Product.id).filter(Product.brand_id == brand.id).first():
        raise CatalogError(
            "Cannot delete brand with products. Please reassign or delete the products first."
        )
    db.session.delete(brand)
    db.session.commit()
