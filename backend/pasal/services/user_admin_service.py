# Overview: Service-layer operations for back-office account management; staff and shopper accounts below superadmin.

"""
User Admin Service

VISIBILITY: superadmin accounts are never listed, fetched, edited or deleted
through these operations. They exist only through the admin CLI.

ROLE GRANTS: any admin may create and edit shopper accounts. Creating an
admin, promoting to admin or demoting an admin requires a superadmin actor
(RoleGrantError, reported as 401 like any other insufficient role).

DELETE: an account with orders is kept for the order history and must be
deactivated instead (409). Otherwise its sessions, wishlist, pending
payments and reviews go with it; authorship columns on catalog, discount,
timeline and location rows are cleared.
"""

from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    Discount,
    Location,
    Order,
    OrderTimelineEntry,
    PendingPayment,
    Product,
    Review,
    SessionToken,
    User,
    WishlistItem,
)
from ..models.auth import ADMIN_ROLES, ROLE_SUPERADMIN, ROLE_USER, VALID_ROLES
from ..validation import ConflictError, NotFoundError, ValidationError
from . import auth_service, review_service, session_service
from .pagination import paginate_query


class RoleGrantError(Exception):
    """Raised when the acting account may not grant or revoke admin roles."""
    pass


ASSIGNABLE_ROLES = tuple(r for r in VALID_ROLES if r != ROLE_SUPERADMIN)


def _visible_users():
    return db.session.query(User).filter(User.role != ROLE_SUPERADMIN)


def _check_role(role) -> str:
    if role not in ASSIGNABLE_ROLES:
        raise ValidationError(f"role must be one of {', '.join(ASSIGNABLE_ROLES)}")
    return role


def _require_role_authority(actor: User, old_role: str | None, new_role: str) -> None:
    touches_admin = new_role in ADMIN_ROLES or (old_role in ADMIN_ROLES and old_role != new_role)
    if touches_admin and actor.role != ROLE_SUPERADMIN:
        raise RoleGrantError("Only a superadmin can grant admin roles")


def list_users(
    search: str | None = None,
    role: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = _visible_users()
    if role:
        query = query.filter(User.role == _check_role(role))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(User.name.ilike(like), User.email.ilike(like)))
    query = query.order_by(User.created_at.desc(), User.id.desc())
    return paginate_query(query, page=page, per_page=per_page, serialize=lambda u: u.to_dict())


def get_user(user_id: int) -> User:
    user = _visible_users().filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def create_user(actor: User, data: dict) -> User:
    """
    Create an account from the admin console.

    Request fields: name, email, password (required); role (default user).
    Raises RoleGrantError, ValidationError, PasswordValidationError or
    ConflictError.
    """
    if not data.get("name") or not data.get("email") or not data.get("password"):
        raise ValidationError("Name, email and password are required")

    role = _check_role(data.get("role") or ROLE_USER)
    _require_role_authority(actor, None, role)

    email = auth_service.normalize_email(data["email"])
    if db.session.query(User.id).filter_by(email=email).first():
        raise ConflictError("User with this email already exists")

    return auth_service.create_user(
        name=data["name"],
        email=email,
        password=data["password"],
        role=role,
    )


def update_user(actor: User, user_id: int, data: dict) -> User:
    """Update name, email, role or is_active. Deactivation revokes every session."""
    user = get_user(user_id)
    unknown = [k for k in data if k not in ("name", "email", "role", "is_active")]
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")

    if "role" in data and data["role"] != user.role:
        if user.id == actor.id:
            raise ValidationError("Cannot change your own role")
        role = _check_role(data["role"])
        _require_role_authority(actor, user.role, role)
        user.role = role
    elif user.role in ADMIN_ROLES and user.id != actor.id and actor.role != ROLE_SUPERADMIN:
        # Editing another admin's account is a superadmin action too
        raise RoleGrantError("Only a superadmin can manage admin accounts")

    if "name" in data:
        user.name = auth_service._normalize_name(data["name"])

    if "email" in data:
        email = auth_service.normalize_email(data["email"])
        if email != user.email:
            taken = db.session.query(User.id).filter(User.email == email, User.id != user.id).first()
            if taken:
                raise ConflictError("Email already in use")
            user.email = email

    deactivated = False
    if "is_active" in data:
        if not isinstance(data["is_active"], bool):
            raise ValidationError("is_active must be a boolean")
        if user.id == actor.id and not data["is_active"]:
            raise ValidationError("Cannot deactivate your own account")
        deactivated = user.is_active and not data["is_active"]
        user.is_active = data["is_active"]

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already in use")

    if deactivated:
        session_service.revoke_all_user_sessions(user.id, reason="Account deactivated")
    return user


def delete_user(actor: User, user_id: int) -> None:
    user = get_user(user_id)
    if user.id == actor.id:
        raise ValidationError("Cannot delete your own account")
    if user.role in ADMIN_ROLES and actor.role != ROLE_SUPERADMIN:
        raise RoleGrantError("Only a superadmin can delete admin accounts")
    if db.session.query(Order.id).filter_by(user_id=user.id).first():
        raise ConflictError("User has orders; deactivate the account instead")

    reviewed = [
        pid for (pid,) in db.session.query(Review.product_id).filter_by(user_id=user.id).distinct()
    ]

    db.session.query(SessionToken).filter_by(user_id=user.id).delete(synchronize_session=False)
    db.session.query(WishlistItem).filter_by(user_id=user.id).delete(synchronize_session=False)
    db.session.query(PendingPayment).filter_by(user_id=user.id).delete(synchronize_session=False)
    db.session.query(Review).filter_by(user_id=user.id).delete(synchronize_session=False)

    for model, column in (
        (Product, Product.created_by_user_id),
        (Discount, Discount.created_by_user_id),
        (Discount, Discount.updated_by_user_id),
        (OrderTimelineEntry, OrderTimelineEntry.actor_user_id),
        (Location, Location.created_by_user_id),
        (Location, Location.updated_by_user_id),
    ):
        db.session.query(model).filter(column == user.id).update(
            {column.key: None}, synchronize_session=False
        )

    db.session.delete(user)
    db.session.flush()
    for product_id in reviewed:
        review_service.refresh_product_rating(product_id)
    db.session.commit()
