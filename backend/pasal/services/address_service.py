# Overview: Service-layer operations for saved delivery addresses.

"""
Address Book Service

INVARIANT: a user has at most one default address.

WHY lock the user row: two requests from the same user changing defaults
at once could each clear the other's flag and leave two defaults. Every
mutation here locks the owning user row first, so default changes for one
user are serialized (SQLite serializes writers on its own).

DEFAULT RULES:
- The first address a user saves becomes the default
- Saving or updating with is_default=True clears every other default
- Deleting the default promotes the oldest remaining address
"""

from __future__ import annotations

import re

from ..extensions import db
from ..models import Address, User
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_payload,
)
from .concurrency import lock_for_update, run_with_retry


class AddressError(ValidationError):
    """Raised for address business rule failures."""
    pass


NEPAL_MOBILE_PATTERN = re.compile(r"^(9[678]\d{8})$")
POSTAL_CODE_PATTERN = re.compile(r"^\d{5}$")
VALID_ADDRESS_TYPES = ("home", "office", "other")

ADDRESS_POLICY = ModelValidationPolicy(
    writable_fields={
        "full_name", "phone", "alternate_phone", "address", "locality", "district",
        "province", "postal_code", "landmark", "address_type", "lat", "lng",
        "delivery_instructions", "is_default", "is_active",
    },
    required_on_create={"full_name", "phone"},
)


def _flatten_coordinates(payload: dict) -> dict:
    data = dict(payload or {})
    coords = data.pop("coordinates", None)
    if isinstance(coords, dict):
        data.setdefault("lat", coords.get("lat"))
        data.setdefault("lng", coords.get("lng"))
    return data


def _enforce_address_rules(patch: dict) -> None:
    if "full_name" in patch:
        name = patch["full_name"] or ""
        if len(name) < 2:
            raise AddressError("Full name must be at least 2 characters")
    if "phone" in patch and not NEPAL_MOBILE_PATTERN.match(patch["phone"] or ""):
        raise AddressError("Please enter a valid Nepali phone number (98xxxxxxxx)")
    if patch.get("alternate_phone") and not NEPAL_MOBILE_PATTERN.match(patch["alternate_phone"]):
        raise AddressError("Please enter a valid alternate Nepali phone number")
    if patch.get("postal_code") and not POSTAL_CODE_PATTERN.match(patch["postal_code"]):
        raise AddressError("Postal code must be 5 digits")
    if "address_type" in patch and patch["address_type"] not in VALID_ADDRESS_TYPES:
        raise AddressError("Address type must be home, office, or other")
    if patch.get("lat") is not None and not -90 <= patch["lat"] <= 90:
        raise AddressError("Latitude must be between -90 and 90")
    if patch.get("lng") is not None and not -180 <= patch["lng"] <= 180:
        raise AddressError("Longitude must be between -180 and 180")


def _lock_user(user_id: int) -> User:
    user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def _clear_defaults(user_id: int, *, keep_id: int | None = None) -> None:
    q = db.session.query(Address).filter(Address.user_id == user_id, Address.is_default.is_(True))
    if keep_id is not None:
        q = q.filter(Address.id != keep_id)
    q.update({"is_default": False}, synchronize_session="fetch")


def list_addresses(user_id: int) -> list[dict]:
    rows = db.session.query(Address).filter_by(user_id=user_id).order_by(Address.id.asc()).all()
    return [a.to_dict() for a in rows]


def get_address(user_id: int, address_id: int) -> Address:
    """Fetch one of the user's own addresses or raise NotFoundError."""
    address = db.session.query(Address).filter_by(id=address_id, user_id=user_id).first()
    if not address:
        raise NotFoundError("Address not found")
    return address


def add_address(user_id: int, payload: dict) -> Address:
    patch = validate_payload(
        model=Address, payload=_flatten_coordinates(payload), policy=ADDRESS_POLICY, partial=False
    )
    _enforce_address_rules(patch)

    def _op():
        _lock_user(user_id)
        existing = db.session.query(Address).filter_by(user_id=user_id).count()
        make_default = existing == 0 or bool(patch.get("is_default"))

        address = Address(user_id=user_id, **{**patch, "is_default": False})
        db.session.add(address)
        db.session.flush()

        if make_default:
            _clear_defaults(user_id, keep_id=address.id)
            address.is_default = True

        db.session.commit()
        return address

    return run_with_retry(_op)


def update_address(user_id: int, address_id: int, payload: dict) -> Address:
    patch = validate_payload(
        model=Address, payload=_flatten_coordinates(payload), policy=ADDRESS_POLICY, partial=True
    )
    _enforce_address_rules(patch)

    def _op():
        _lock_user(user_id)
        address = get_address(user_id, address_id)

        for key, value in patch.items():
            if key != "is_default":
                setattr(address, key, value)

        if patch.get("is_default") is True:
            _clear_defaults(user_id, keep_id=address.id)
            address.is_default = True
        elif patch.get("is_default") is False:
            address.is_default = False

        db.session.commit()
        return address

    return run_with_retry(_op)


def set_default_address(user_id: int, address_id: int) -> Address:
    return update_address(user_id, address_id, {"is_default": True})


def delete_address(user_id: int, address_id: int) -> list[dict]:
    """Delete an address and return the remaining list."""
    def _op():
        _lock_user(user_id)
        address = get_address(user_id, address_id)
        was_default = address.is_default
        db.session.delete(address)
        db.session.flush()

        if was_default:
            successor = (
                db.session.query(Address)
                .filter_by(user_id=user_id)
                .order_by(Address.id.asc())
                .first()
            )
            if successor:
                successor.is_default = True

        db.session.commit()

    run_with_retry(_op)
    return list_addresses(user_id)


def count_defaults(user_id: int) -> int:
    return db.session.query(Address).filter_by(user_id=user_id, is_default=True).count()
