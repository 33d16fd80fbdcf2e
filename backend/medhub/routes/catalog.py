# Overview: Flask API routes for catalog browsing and offering search; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..errors import ServiceError, error_response
from ..models.catalog import SERVICE_KINDS
from ..services import catalog_service
from ..services.catalog_service import SORT_DISTANCE, SORT_PRICE
from ..validation import Field, validate_request


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


ITEM_QUERY_FIELDS = {
    "kind": Field("enum", choices=SERVICE_KINDS),
    "q": Field("str", max_length=100),
    "limit": Field("int", min_value=1, max_value=200),
    "offset": Field("int", min_value=0),
}
SEARCH_FIELDS = {
    "q": Field("str", max_length=100),
    "kind": Field("enum", choices=SERVICE_KINDS),
    "latitude": Field("float", min_value=-90, max_value=90),
    "longitude": Field("float", min_value=-180, max_value=180),
    "radius_km": Field("float", min_value=0),
    "sort": Field("enum", choices=(SORT_PRICE, SORT_DISTANCE)),
    "limit": Field("int", min_value=1, max_value=200),
}


@catalog_bp.get("/items")
def list_items_route():
    try:
        data = validate_request(request.args.to_dict(), ITEM_QUERY_FIELDS)
        items = catalog_service.list_items(
            kind=data["kind"], query=data["q"], limit=data["limit"] or 50, offset=data["offset"] or 0
        )
        return jsonify({"message": "Items retrieved", "items": [item.to_dict() for item in items]}), 200

    except ServiceError as e:
        return error_response(e)


@catalog_bp.get("/items/<int:item_id>")
def get_item_route(item_id: int):
    try:
        item = catalog_service.get_item(item_id)
        return jsonify({"message": "Item retrieved", "item": item.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, item_id=item_id)


@catalog_bp.get("/search")
def search_route():
    """
    Offerings from verified providers.

    Query: q, kind, latitude + longitude (+ radius_km), sort=price|distance, limit.
    """
    try:
        data = validate_request(request.args.to_dict(), SEARCH_FIELDS)
        results = catalog_service.search_offerings(
            query=data["q"],
            kind=data["kind"],
            latitude=data["latitude"],
            longitude=data["longitude"],
            radius_km=data["radius_km"],
            sort=data["sort"] or SORT_PRICE,
            limit=data["limit"] or 50,
        )
        return jsonify({"message": "Search results", "results": results}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Catalog search failed")
        return jsonify({"message": "Internal server error"}), 500
