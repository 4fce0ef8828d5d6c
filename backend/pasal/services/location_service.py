# Overview: Service-layer operations for the delivery location hierarchy; public lookup and admin maintenance.

"""
Location Service

HIERARCHY: country > province > city > landmark. A location's parent must
be of a shallower type (a city may sit directly under a country). Names are
unique among siblings, case-insensitively.

PATHS: path is parent.path + "/" + name, or just the name at the root.
Renaming or moving a node rewrites the paths of its whole subtree.

SHIPPING: only landmarks carry shipping_price_paisa; other types store 0.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Location
from ..models.locations import LOCATION_LANDMARK, LOCATION_TYPES
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    MAX_PRICE_PAISA,
    NotFoundError,
    ValidationError,
    require_positive_int,
    validate_payload,
)


LOCATION_POLICY = ModelValidationPolicy(
    writable_fields={"name", "type", "parent_id", "shipping_price_paisa"},
    required_on_create={"name", "type"},
)


def list_locations(
    location_type: str | None = None,
    parent_id=None,
    search: str | None = None,
) -> list[dict]:
    """
    Flat lookup sorted by name.

    parent_id="root" (or "null") selects top-level locations.
    """
    query = db.session.query(Location)
    if location_type:
        if location_type not in LOCATION_TYPES:
            raise ValidationError("Invalid location type")
        query = query.filter(Location.type == location_type)
    if parent_id not in (None, ""):
        if str(parent_id).strip().lower() in ("root", "null"):
            query = query.filter(Location.parent_id.is_(None))
        else:
            query = query.filter(Location.parent_id == require_positive_int(parent_id, "parent"))
    if search and search.strip():
        query = query.filter(Location.name.ilike(f"%{search.strip()}%"))
    rows = query.order_by(Location.name.asc(), Location.id.asc()).all()
    return [loc.to_dict(include_parent=True) for loc in rows]


def list_all_locations() -> list[dict]:
    """Admin listing, sorted by path so each subtree reads top-down."""
    rows = db.session.query(Location).order_by(Location.path.asc()).all()
    return [loc.to_dict(include_parent=True) for loc in rows]


def location_tree() -> list[dict]:
    """Every location nested under its parent; roots and siblings sorted by name."""
    rows = db.session.query(Location).order_by(Location.name.asc(), Location.id.asc()).all()
    nodes = {loc.id: dict(loc.to_dict(), children=[]) for loc in rows}
    roots = []
    for loc in rows:
        node = nodes[loc.id]
        if loc.parent_id is None:
            roots.append(node)
        else:
            nodes[loc.parent_id]["children"].append(node)
    return roots


def get_location(location_id: int) -> Location:
    location = db.session.get(Location, location_id)
    if not location:
        raise NotFoundError("Location not found")
    return location


def _resolve_parent(parent_id, location_type: str, location_id: int | None = None) -> Location | None:
    if parent_id is None:
        return None
    parent = db.session.get(Location, parent_id)
    if not parent:
        raise ValidationError("Parent location not found")
    if LOCATION_TYPES.index(parent.type) >= LOCATION_TYPES.index(location_type):
        raise ValidationError(f"A {location_type} cannot be placed under a {parent.type}")
    if location_id is not None:
        node = parent
        while node is not None:
            if node.id == location_id:
                raise ValidationError("A location cannot be moved under itself")
            node = node.parent
    return parent


def _check_sibling_name(name: str, parent_id: int | None, location_id: int | None = None) -> None:
    query = db.session.query(Location.id).filter(
        func.lower(Location.name) == name.lower(),
        Location.parent_id.is_(None) if parent_id is None else Location.parent_id == parent_id,
    )
    if location_id is not None:
        query = query.filter(Location.id != location_id)
    if query.first():
        raise ConflictError("A location with this name already exists here")


def _shipping_price(patch: dict, location_type: str, current: int = 0) -> int:
    if location_type != LOCATION_LANDMARK:
        return 0
    price = patch.get("shipping_price_paisa", current)
    if price is None:
        return 0
    if price < 0:
        raise ValidationError("shipping_price_paisa must be >= 0")
    if price > MAX_PRICE_PAISA:
        raise ValidationError(f"shipping_price_paisa cannot exceed {MAX_PRICE_PAISA}")
    return price


def _rewrite_paths(location: Location) -> None:
    location.path = f"{location.parent.path}/{location.name}" if location.parent else location.name
    for child in location.children:
        _rewrite_paths(child)


def create_location(data: dict, user_id: int | None = None) -> Location:
    patch = validate_payload(model=Location, payload=data, policy=LOCATION_POLICY, partial=False)
    name = str(patch["name"]).strip()
    if not name:
        raise ValidationError("name cannot be blank")
    if "/" in name:
        raise ValidationError("name cannot contain '/'")
    location_type = patch["type"]
    if location_type not in LOCATION_TYPES:
        raise ValidationError("Invalid location type")

    parent = _resolve_parent(patch.get("parent_id"), location_type)
    _check_sibling_name(name, parent.id if parent else None)

    location = Location(
        name=name,
        type=location_type,
        parent=parent,
        shipping_price_paisa=_shipping_price(patch, location_type),
        created_by_user_id=user_id,
        updated_by_user_id=user_id,
    )
    _rewrite_paths(location)
    db.session.add(location)
    db.session.commit()
    return location


def update_location(location_id: int, data: dict, user_id: int | None = None) -> Location:
    location = get_location(location_id)
    patch = validate_payload(model=Location, payload=data, policy=LOCATION_POLICY, partial=True)

    location_type = patch.get("type", location.type)
    if location_type not in LOCATION_TYPES:
        raise ValidationError("Invalid location type")
    if location_type != location.type:
        shallowest_child = min((LOCATION_TYPES.index(c.type) for c in location.children), default=None)
        if shallowest_child is not None and shallowest_child <= LOCATION_TYPES.index(location_type):
            raise ValidationError("Location type must stay above its children")

    parent_id = patch["parent_id"] if "parent_id" in patch else location.parent_id
    parent = _resolve_parent(parent_id, location_type, location_id=location.id)

    name = str(patch.get("name") or "").strip() if "name" in patch else location.name
    if not name:
        raise ValidationError("name cannot be blank")
    if "/" in name:
        raise ValidationError("name cannot contain '/'")
    _check_sibling_name(name, parent.id if parent else None, location_id=location.id)

    location.name = name
    location.type = location_type
    location.parent = parent
    location.shipping_price_paisa = _shipping_price(patch, location_type, location.shipping_price_paisa)
    location.updated_by_user_id = user_id
    _rewrite_paths(location)
    db.session.commit()
    return location


def delete_location(location_id: int) -> int:
    """Delete a location and its subtree. Returns the number of rows removed."""
    location = get_location(location_id)

    def _count(node: Location) -> int:
        return 1 + sum(_count(c) for c in node.children)

    removed = _count(location)
    db.session.delete(location)
    db.session.commit()
    return removed
