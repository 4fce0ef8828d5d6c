# Overview: Service-layer operations for discount codes; validation at checkout plus admin management.

"""
Discount Service

VALIDATION ORDER (each failure has its own message):
1. code supplied
2. code exists                                -> NotFoundError (404)
3. active flag and [start_date, end_date]     -> DiscountError (400)
4. usage_count < usage_limit (when set)       -> DiscountError (400)
5. subtotal >= min_purchase (when set)        -> DiscountError (400)
6. allow-lists: when either list is non-empty, the code applies to the
   whole cart as long as at least one line is allow-listed by product or
   by category

AMOUNT:
- percentage: subtotal * value / 10000 (value in basis points), rounded
  half-up to the paisa, capped by max_discount_paisa
- fixed: value, capped at the subtotal
The result is always within [0, subtotal].

USAGE COUNTING: increments are a single conditional UPDATE so concurrent
checkouts cannot push usage_count past usage_limit. Checkout records usage
after the order commits and only logs a failure; the order is kept.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Category, Discount, Order, Product
from ..models.promotions import DISCOUNT_PERCENTAGE, VALID_DISCOUNT_TYPES
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_discount,
    require_positive_int,
    validate_payload,
)
from pasal.time_utils import utcnow
from .concurrency import increment_if
from .pagination import paginate_query


class DiscountError(ValidationError):
    """Raised when a discount code cannot be used (400)."""
    pass


CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,32}$")

DISCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "description", "discount_type", "value", "min_purchase_paisa",
        "max_discount_paisa", "start_date", "end_date", "usage_limit", "is_active",
    },
    required_on_create={"code", "discount_type", "value"},
)


@dataclass(frozen=True)
class DiscountQuote:
    discount: Discount
    amount_paisa: int

    def to_dict(self) -> dict:
        return {
            "valid": True,
            "discount_id": self.discount.id,
            "code": self.discount.code,
            "discount_type": self.discount.discount_type,
            "value": self.discount.value,
            "discount_amount_paisa": self.amount_paisa,
        }


def format_rupees(paisa: int) -> str:
    rupees = paisa / 100
    if paisa % 100 == 0:
        return f"{int(rupees):,}"
    return f"{rupees:,.2f}"


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def compute_discount_amount(discount: Discount, subtotal_paisa: int) -> int:
    if subtotal_paisa <= 0:
        return 0
    if discount.discount_type == DISCOUNT_PERCENTAGE:
        amount = (subtotal_paisa * discount.value + 5_000) // 10_000
        if discount.max_discount_paisa is not None:
            amount = min(amount, discount.max_discount_paisa)
    else:
        amount = discount.value
    return max(0, min(amount, subtotal_paisa))


def _is_applicable(discount: Discount, items: list[dict]) -> bool:
    product_ids = {p.id for p in discount.applicable_products}
    category_ids = {c.id for c in discount.applicable_categories}
    if not product_ids and not category_ids:
        return True

    cart_product_ids = set()
    for item in items or []:
        raw = item.get("product_id") if isinstance(item, dict) else None
        if raw is not None:
            try:
                cart_product_ids.add(int(raw))
            except (TypeError, ValueError):
                continue

    if cart_product_ids & product_ids:
        return True
    if not category_ids or not cart_product_ids:
        return False

    cart_category_ids = {
        row.category_id
        for row in db.session.query(Product.category_id).filter(Product.id.in_(cart_product_ids))
        if row.category_id is not None
    }
    return bool(cart_category_ids & category_ids)


def validate_discount(code: str | None, subtotal_paisa: int, items: list[dict] | None = None, *, now=None) -> DiscountQuote:
    """
    Check a code against the cart and compute the amount it takes off.

    Raises:
        DiscountError: code missing, inactive/expired, exhausted, minimum
            purchase not met, or not applicable to the cart
        NotFoundError: code does not exist
    """
    code = normalize_code(code)
    if not code:
        raise DiscountError("Discount code is required")
    if not isinstance(subtotal_paisa, int) or isinstance(subtotal_paisa, bool) or subtotal_paisa < 0:
        raise DiscountError("subtotal_paisa must be a non-negative integer")

    discount = db.session.query(Discount).filter_by(code=code).first()
    if not discount:
        raise NotFoundError("Invalid discount code")

    now = now or utcnow()
    if not discount.is_active:
        raise DiscountError("This discount code is inactive or expired")
    if discount.start_date and now < discount.start_date:
        raise DiscountError("This discount code is inactive or expired")
    if discount.end_date and now > discount.end_date:
        raise DiscountError("This discount code is inactive or expired")

    if discount.usage_limit is not None and discount.usage_count >= discount.usage_limit:
        raise DiscountError("This discount code has reached its usage limit")

    if discount.min_purchase_paisa and subtotal_paisa < discount.min_purchase_paisa:
        raise DiscountError(
            f"Minimum purchase of Rs. {format_rupees(discount.min_purchase_paisa)} required for this discount"
        )

    if not _is_applicable(discount, items or []):
        raise DiscountError("This discount code does not apply to the items in your cart")

    return DiscountQuote(discount=discount, amount_paisa=compute_discount_amount(discount, subtotal_paisa))


# =============================================================================
# USAGE COUNTING
# =============================================================================

def _increment_usage(discount_id: int) -> bool:
    return increment_if(
        Discount,
        discount_id,
        Discount.usage_count,
        or_(Discount.usage_limit.is_(None), Discount.usage_count < Discount.usage_limit),
    )


def apply_discount(discount_id: int) -> Discount:
    """Record one redemption. Raises when the code is exhausted."""
    discount = db.session.get(Discount, discount_id)
    if not discount:
        raise NotFoundError("Discount not found")
    if not _increment_usage(discount_id):
        db.session.rollback()
        raise DiscountError("This discount code has reached its usage limit")
    db.session.commit()
    db.session.refresh(discount)
    return discount


def record_usage_best_effort(discount_id: int | None) -> bool:
    """
    Increment usage after an order has been committed.

    Never raises: the order stands even when the counter cannot be bumped.
    """
    if not discount_id:
        return False
    try:
        applied = _increment_usage(discount_id)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Failed to record usage for discount %s", discount_id, exc_info=True)
        return False
    if not applied:
        current_app.logger.warning("Discount %s usage not recorded: usage limit already reached", discount_id)
    return applied


# =============================================================================
# ADMIN MANAGEMENT
# =============================================================================

def _id_set(data: dict, field: str) -> set[int]:
    raw = data.get(field) or []
    if not isinstance(raw, list):
        raise DiscountError(f"{field} must be a list")
    return {require_positive_int(value, field) for value in raw}


def _resolve_allow_lists(discount: Discount, data: dict) -> None:
    if "applicable_product_ids" in data:
        ids = _id_set(data, "applicable_product_ids")
        products = db.session.query(Product).filter(Product.id.in_(ids)).all() if ids else []
        if len(products) != len(ids):
            raise NotFoundError("One or more applicable products not found")
        discount.applicable_products = products
    if "applicable_category_ids" in data:
        ids = _id_set(data, "applicable_category_ids")
        categories = db.session.query(Category).filter(Category.id.in_(ids)).all() if ids else []
        if len(categories) != len(ids):
            raise NotFoundError("One or more applicable categories not found")
        discount.applicable_categories = categories


def _split_payload(data: dict) -> tuple[dict, dict]:
    data = dict(data or {})
    lists = {k: data.pop(k) for k in ("applicable_product_ids", "applicable_category_ids") if k in data}
    if "code" in data and data["code"] is not None:
        data["code"] = normalize_code(data["code"])
    return data, lists


def _check_code(code: str, exclude_id: int | None = None) -> None:
    if not CODE_PATTERN.match(code):
        raise ValidationError("Discount code must be 3-32 uppercase letters or digits")
    q = db.session.query(Discount.id).filter(Discount.code == code)
    if exclude_id is not None:
        q = q.filter(Discount.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Discount code already exists")


def list_discounts(search: str | None = None, status: str | None = None, page: int = 1, per_page: int = 20) -> dict:
    query = db.session.query(Discount)
    if search:
        query = query.filter(Discount.code.ilike(f"%{search.strip().upper()}%"))
    if status == "active":
        query = query.filter(Discount.is_active.is_(True))
    elif status == "inactive":
        query = query.filter(Discount.is_active.is_(False))
    query = query.order_by(Discount.created_at.desc(), Discount.id.desc())
    return paginate_query(query, page=page, per_page=per_page, serialize=lambda d: d.to_dict())


def get_discount(discount_id: int) -> Discount:
    discount = db.session.get(Discount, discount_id)
    if not discount:
        raise NotFoundError("Discount not found")
    return discount


def create_discount(data: dict, user_id: int | None = None) -> Discount:
    fields, lists = _split_payload(data)
    patch = validate_payload(model=Discount, payload=fields, policy=DISCOUNT_POLICY, partial=False)
    enforce_rules_discount(patch)
    _check_code(patch["code"])

    discount = Discount(**patch, created_by_user_id=user_id, updated_by_user_id=user_id)
    _resolve_allow_lists(discount, lists)
    db.session.add(discount)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Discount code already exists")
    return discount


def update_discount(discount_id: int, data: dict, user_id: int | None = None) -> Discount:
    discount = get_discount(discount_id)
    fields, lists = _split_payload(data)
    patch = validate_payload(model=Discount, payload=fields, policy=DISCOUNT_POLICY, partial=True)

    # Range rules depend on the resulting type, so check the merged view
    merged = {
        "discount_type": discount.discount_type,
        "value": discount.value,
        "start_date": discount.start_date,
        "end_date": discount.end_date,
        **patch,
    }
    enforce_rules_discount(merged)
    if merged["discount_type"] not in VALID_DISCOUNT_TYPES:
        raise ValidationError("discount_type must be percentage or fixed")
    if "code" in patch:
        _check_code(patch["code"], exclude_id=discount.id)

    for key, value in patch.items():
        setattr(discount, key, value)
    _resolve_allow_lists(discount, lists)
    discount.updated_by_user_id = user_id
    db.session.commit()
    return discount


def toggle_discount_status(discount_id: int, user_id: int | None = None) -> Discount:
    discount = get_discount(discount_id)
    discount.is_active = not discount.is_active
    discount.updated_by_user_id = user_id
    db.session.commit()
    return discount


def delete_discount(discount_id: int) -> None:
    discount = get_discount(discount_id)
    if db.session.query(Order.id).filter(Order.discount_id == discount.id).first():
        raise ConflictError("Discount has been used by orders; deactivate it instead")
    db.session.delete(discount)
    db.session.commit()
