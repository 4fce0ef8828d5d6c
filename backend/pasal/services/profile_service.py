# Overview: Service-layer operations for account profiles, notification switches and the admin customer directory.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Order, User
from ..models.auth import DEFAULT_NOTIFICATION_PREFERENCES, ROLE_USER
from ..validation import NotFoundError, ValidationError
from .pagination import paginate_query


PROFILE_FIELDS = ("name", "phone", "image")
VENDOR_PROFILE_FIELDS = (
    "store_name", "store_description", "banner", "logo", "business_type",
    "business_registration_number", "pickup_address", "contact_email",
    "contact_phone", "bank_details", "social_links",
)


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def update_profile(user_id: int, data: dict) -> User:
    user = get_user(user_id)
    unknown = [k for k in data if k not in PROFILE_FIELDS and k != "vendor_profile"]
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")

    if "name" in data:
        name = (data["name"] or "").strip()
        if not 2 <= len(name) <= 100:
            raise ValidationError("Name must be between 2 and 100 characters")
        user.name = name
    if "phone" in data:
        user.phone = (data["phone"] or "").strip() or None
    if "image" in data:
        user.image = data["image"] or None

    if "vendor_profile" in data:
        user.vendor_profile = _merge_vendor_profile(user.vendor_profile, data["vendor_profile"])

    db.session.commit()
    return user


def _merge_vendor_profile(current: dict | None, incoming) -> dict | None:
    if incoming is None:
        return None
    if not isinstance(incoming, dict):
        raise ValidationError("vendor_profile must be an object")
    unknown = [k for k in incoming if k not in VENDOR_PROFILE_FIELDS]
    if unknown:
        raise ValidationError(f"Unknown vendor_profile field: {unknown[0]}")
    merged = dict(current or {})
    merged.update(incoming)
    if not (merged.get("store_name") or "").strip():
        raise ValidationError("vendor_profile.store_name is required")
    # Approval is granted by an admin, never self-asserted
    merged["is_approved"] = bool((current or {}).get("is_approved", False))
    return merged


def get_notification_preferences(user_id: int) -> dict:
    user = get_user(user_id)
    prefs = dict(DEFAULT_NOTIFICATION_PREFERENCES)
    prefs.update(user.notification_preferences or {})
    return prefs


def update_notification_preferences(user_id: int, data: dict) -> dict:
    """Only known switches are accepted and each must be a boolean."""
    if not isinstance(data, dict) or not data:
        raise ValidationError("No preferences provided")
    for key, value in data.items():
        if key not in DEFAULT_NOTIFICATION_PREFERENCES:
            raise ValidationError(f"Unknown notification preference: {key}")
        if not isinstance(value, bool):
            raise ValidationError(f"{key} must be true or false")

    user = get_user(user_id)
    prefs = get_notification_preferences(user_id)
    prefs.update(data)
    # JSON columns need a new object to register as dirty
    user.notification_preferences = prefs
    db.session.commit()
    return prefs


# =============================================================================
# ADMIN CUSTOMER DIRECTORY
# =============================================================================

def _customer_stats_subquery():
    return (
        db.session.query(
            Order.user_id.label("user_id"),
            func.count(Order.id).label("order_count"),
            func.coalesce(func.sum(Order.total_paisa), 0).label("total_spent_paisa"),
            func.max(Order.created_at).label("last_order_at"),
        )
        .filter(Order.status != "cancelled")
        .group_by(Order.user_id)
        .subquery()
    )


def list_customers(search: str | None = None, page: int = 1, per_page: int = 20) -> dict:
    stats = _customer_stats_subquery()
    query = (
        db.session.query(User, stats.c.order_count, stats.c.total_spent_paisa)
        .outerjoin(stats, stats.c.user_id == User.id)
        .filter(User.role == ROLE_USER)
    )
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(User.name.ilike(like), User.email.ilike(like)))
    query = query.order_by(User.created_at.desc(), User.id.desc())

    def _row(row):
        user, order_count, total_spent = row
        data = user.to_dict()
        data["order_count"] = int(order_count or 0)
        data["total_spent_paisa"] = int(total_spent or 0)
        return data

    return paginate_query(query, page=page, per_page=per_page, serialize=_row)


def get_customer(user_id: int) -> dict:
    user = get_user(user_id)
    orders = (
        db.session.query(Order)
        .filter_by(user_id=user_id)
        .order_by(Order.created_at.desc())
        .limit(10)
        .all()
    )
    totals = db.session.query(
        func.count(Order.id), func.coalesce(func.sum(Order.total_paisa), 0)
    ).filter(Order.user_id == user_id, Order.status != "cancelled").one()

    data = user.to_dict()
    data["addresses"] = [a.to_dict() for a in user.addresses]
    data["order_count"] = int(totals[0] or 0)
    data["total_spent_paisa"] = int(totals[1] or 0)
    data["recent_orders"] = [o.to_dict(include_items=False) for o in orders]
    return data


def set_customer_active(user_id: int, is_active: bool) -> User:
    user = get_user(user_id)
    user.is_active = bool(is_active)
    db.session.commit()
    return user
