# Overview: Flask API routes for the public delivery location lookup used by address forms.

from flask import Blueprint, request, jsonify

from ..services import location_service
from ..validation import ValidationError

locations_bp = Blueprint("locations", __name__, url_prefix="/api/locations")


@locations_bp.get("")
def list_locations():
    """Query: ?type=city&parent=<id|root>&search=kath"""
    try:
        locations = location_service.list_locations(
            location_type=request.args.get("type"),
            parent_id=request.args.get("parent"),
            search=request.args.get("search"),
        )
        return jsonify({"locations": locations, "count": len(locations)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@locations_bp.get("/tree")
def location_tree():
    return jsonify({"locations": location_service.location_tree()}), 200
