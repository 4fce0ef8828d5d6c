from __future__ import annotations

from ..extensions import db
from pasal.time_utils import to_utc_z, utcnow


LOCATION_COUNTRY = "country"
LOCATION_PROVINCE = "province"
LOCATION_CITY = "city"
LOCATION_LANDMARK = "landmark"
# Outermost first; a child sits strictly below its parent
LOCATION_TYPES = (LOCATION_COUNTRY, LOCATION_PROVINCE, LOCATION_CITY, LOCATION_LANDMARK)


class Location(db.Model):
    """
    Delivery area node (country > province > city > landmark).

    path is the slash-joined chain of names from the root ("Nepal/Bagmati/
    Kathmandu"); location_service rewrites it for the whole subtree on rename.
    Deleting a node deletes its subtree.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.Index("ix_locations_parent_name", "parent_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)
    path = db.Column(db.String(500), nullable=False, index=True)

    # Landmarks only
    shipping_price_paisa = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    parent = db.relationship(
        "Location",
        remote_side=[id],
        backref=db.backref("children", lazy=True, cascade="all", order_by="Location.name"),
    )

    def to_dict(self, include_parent: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "parent_id": self.parent_id,
            "path": self.path,
            "shipping_price_paisa": self.shipping_price_paisa,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_parent:
            data["parent"] = (
                {"id": self.parent.id, "name": self.parent.name, "type": self.parent.type}
                if self.parent else None
            )
        return data
