# Overview: Flask API routes for the provider back-office; parses input and returns JSON responses.

"""
Provider back-office API routes.

Every route acts on the authenticated user's own provider (g.provider_id);
there is no way to address another provider's offerings or orders.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_provider_staff, require_role
from ..errors import ServiceError, error_response
from ..models.auth import ROLE_MANAGER, ROLE_PHARMACIST
from ..models.orders import ORDER_STATUSES
from ..services import provider_service
from ..validation import MAX_PRICE_KOBO, Field, validate_request


provider_bp = Blueprint("provider", __name__, url_prefix="/api/provider")


ADD_OFFERING_FIELDS = {
    "item_id": Field("int", required=True, min_value=1),
    "price_kobo": Field("int", required=True, min_value=0, max_value=MAX_PRICE_KOBO),
    "stock": Field("int", min_value=0),
    "available": Field("bool"),
    "received_date": Field("date"),
    "expiry_date": Field("date"),
}
UPDATE_OFFERING_FIELDS = {
    "price_kobo": Field("int", min_value=0, max_value=MAX_PRICE_KOBO),
    "stock": Field("int", min_value=0),
    "available": Field("bool"),
    "received_date": Field("date"),
    "expiry_date": Field("date"),
}
LIST_ORDERS_FIELDS = {
    "status": Field("enum", choices=ORDER_STATUSES),
    "limit": Field("int", min_value=1, max_value=200),
    "offset": Field("int", min_value=0),
}
ORDER_STATUS_FIELDS = {
    "status": Field("enum", required=True, choices=ORDER_STATUSES),
    "reason": Field("str", max_length=500),
}
DEVICE_FIELDS = {
    "device_token": Field("str", required=True, max_length=512),
}
PROFILE_FIELDS = {
    "name": Field("str", max_length=200),
    "address": Field("str", max_length=500),
    "phone": Field("phone"),
    "home_collection_available": Field("bool"),
    "operating_hours": Field("str", max_length=32),
    "state": Field("str", max_length=100),
    "lga": Field("str", max_length=100),
    "ward": Field("str", max_length=100),
    "latitude": Field("float", min_value=-90, max_value=90),
    "longitude": Field("float", min_value=-180, max_value=180),
}


@provider_bp.get("/profile")
@require_auth
@require_provider_staff
def get_profile_route():
    try:
        provider = provider_service.get_provider(g.provider_id)
        return jsonify({"message": "Profile retrieved", "provider": provider.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, provider_id=g.provider_id)


@provider_bp.patch("/profile")
@require_auth
@require_provider_staff
@require_role(ROLE_MANAGER)
def update_profile_route():
    """Managers only. Location fields must be sent together and match the reference dataset."""
    try:
        data = validate_request(request.get_json(silent=True), PROFILE_FIELDS)
        provider = provider_service.update_profile(g.provider_id, data)
        return jsonify({"message": "Profile updated", "provider": provider.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, provider_id=g.provider_id)
    except Exception:
        current_app.logger.exception("Failed to update provider %s profile", g.provider_id)
        return jsonify({"message": "Internal server error"}), 500


@provider_bp.get("/offerings")
@require_auth
@require_provider_staff
def list_offerings_route():
    try:
        offerings = provider_service.list_offerings(g.provider_id)
        return jsonify({"message": "Offerings retrieved", "offerings": [o.to_dict() for o in offerings]}), 200

    except ServiceError as e:
        return error_response(e, provider_id=g.provider_id)


@provider_bp.post("/offerings")
@require_auth
@require_provider_staff
@require_role(ROLE_MANAGER, ROLE_PHARMACIST)
def add_offering_route():
    try:
        data = validate_request(request.get_json(silent=True), ADD_OFFERING_FIELDS)
        offering = provider_service.add_offering(g.provider_id, data["item_id"], data)
        return jsonify({"message": "Offering added", "offering": offering.to_dict()}), 201

    except ServiceError as e:
        return error_response(e, provider_id=g.provider_id)
    except Exception:
        current_app.logger.exception("Failed to add offering for provider %s", g.provider_id)
        return jsonify({"message": "Internal server error"}), 500


@provider_bp.patch("/offerings/<int:item_id>")
@require_auth
@require_provider_staff
@require_role(ROLE_MANAGER, ROLE_PHARMACIST)
def update_offering_route(item_id: int):
    """Partial update of price, stock, availability or batch dates."""
    try:
        data = validate_request(request.get_json(silent=True), UPDATE_OFFERING_FIELDS)
        offering = provider_service.update_offering(g.provider_id, item_id, data)
        return jsonify({"message": "Offering updated", "offering": offering.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, provider_id=g.provider_id, item_id=item_id)
    except Exception:
        current_app.logger.exception("Failed to update offering %s for provider %s", item_id, g.provider_id)
        return jsonify({"message": "Internal server error"}), 500


@provider_bp.delete("/offerings/<int:item_id>")
@require_auth
@require_provider_staff
@require_role(ROLE_MANAGER, ROLE_PHARMACIST)
def delete_offering_route(item_id: int):
    try:
        provider_service.delete_offering(g.provider_id, item_id)
        return jsonify({"message": "Offering removed"}), 200

    except ServiceError as e:
        return error_response(e, provider_id=g.provider_id, item_id=item_id)
    except Exception:
        current_app.logger.exception("Failed to delete offering %s for provider %s", item_id, g.provider_id)
        return jsonify({"message": "Internal server error"}), 500


@provider_bp.get("/orders")
@require_auth
@require_provider_staff
def list_orders_route():
    """
    Orders containing this provider's items, newest first.

    Query: status, limit (default 50), offset. Carts and orders still awaiting
    payment or prescription review are never listed.
    """
    try:
        data = validate_request(request.args.to_dict(), LIST_ORDERS_FIELDS)
        result = provider_service.list_orders(
            g.provider_id,
            status=data["status"],
            limit=data["limit"] or 50,
            offset=data["offset"] or 0,
        )
        return jsonify({"message": "Orders retrieved", **result}), 200

    except ServiceError as e:
        return error_response(e, provider_id=g.provider_id)
    except Exception:
        current_app.logger.exception("Failed to list orders for provider %s", g.provider_id)
        return jsonify({"message": "Internal server error"}), 500


@provider_bp.get("/orders/<int:order_id>")
@require_auth
@require_provider_staff
def get_order_route(order_id: int):
    try:
        order = provider_service.get_order(g.provider_id, order_id)
        return jsonify({"message": "Order retrieved", "order": order}), 200

    except ServiceError as e:
        return error_response(e, provider_id=g.provider_id, order_id=order_id)


@provider_bp.patch("/orders/<int:order_id>")
@require_auth
@require_provider_staff
def update_order_status_route(order_id: int):
    try:
        data = validate_request(request.get_json(silent=True), ORDER_STATUS_FIELDS)
        order = provider_service.update_order_status(
            g.provider_id, order_id, data["status"], reason=data["reason"]
        )
        return jsonify({"message": "Order status updated", "order": order.to_dict(include_items=False)}), 200

    except ServiceError as e:
        return error_response(e, provider_id=g.provider_id, order_id=order_id)
    except Exception:
        current_app.logger.exception("Failed to update order %s for provider %s", order_id, g.provider_id)
        return jsonify({"message": "Internal server error"}), 500


@provider_bp.post("/notifications/register")
@require_auth
@require_provider_staff
def register_device_route():
    try:
        data = validate_request(request.get_json(silent=True), DEVICE_FIELDS)
        provider_service.register_device(g.provider_id, data["device_token"])
        return jsonify({"message": "Device registered"}), 200

    except ServiceError as e:
        return error_response(e, provider_id=g.provider_id)
    except Exception:
        current_app.logger.exception("Failed to register device for provider %s", g.provider_id)
        return jsonify({"message": "Internal server error"}), 500


@provider_bp.get("/dashboard")
@require_auth
@require_provider_staff
def dashboard_route():
    return jsonify({"message": "Dashboard retrieved", **provider_service.dashboard(g.provider_id)}), 200
