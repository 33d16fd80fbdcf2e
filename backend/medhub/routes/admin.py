# Overview: Flask API routes for platform administration; parses input and returns JSON responses.

"""
Admin API routes

All routes require an authenticated admin. Admins verify providers,
review prescriptions and test orders, manage accounts and the catalog.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import ServiceError, error_response
from ..models.auth import ROLES
from ..models.catalog import SERVICE_KINDS, VERIFICATION_STATUSES
from ..models.orders import ORDER_STATUSES
from ..models.prescriptions import PRESCRIPTION_STATUSES
from ..services import admin_service, catalog_service, prescription_service
from ..validation import Field, validate_request


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


PAGE_FIELDS = {
    "limit": Field("int", min_value=1, max_value=200),
    "offset": Field("int", min_value=0),
}
PROVIDER_QUERY_FIELDS = {
    **PAGE_FIELDS,
    "verification_status": Field("enum", choices=VERIFICATION_STATUSES),
}
VERIFY_FIELDS = {
    "status": Field("enum", required=True, choices=VERIFICATION_STATUSES),
}
ACTIVE_FIELDS = {
    "is_active": Field("bool", required=True),
}
USER_QUERY_FIELDS = {
    "role": Field("enum", choices=ROLES),
    "provider_id": Field("int", min_value=1),
}
ORDER_QUERY_FIELDS = {
    **PAGE_FIELDS,
    "status": Field("enum", choices=ORDER_STATUSES),
}
PRESCRIPTION_QUERY_FIELDS = {
    **PAGE_FIELDS,
    "status": Field("enum", choices=PRESCRIPTION_STATUSES),
}
REVIEW_FIELDS = {
    "status": Field("enum", required=True, choices=PRESCRIPTION_STATUSES),
}
COVERAGE_FIELDS = {
    "items": Field("list", required=True),
}
ITEM_FIELDS = {
    "name": Field("str", required=True, max_length=255),
    "kind": Field("enum", required=True, choices=SERVICE_KINDS),
    "category": Field("str", max_length=100),
    "description": Field("str", max_length=2000),
    "prescription_required": Field("bool"),
    "strength": Field("str", max_length=64),
    "dosage": Field("str", max_length=64),
    "form": Field("str", max_length=64),
    "prep_instructions": Field("str", max_length=2000),
}
ITEM_PATCH_FIELDS = {
    **ITEM_FIELDS,
    "name": Field("str", max_length=255),
    "kind": Field("enum", choices=SERVICE_KINDS),
}
COVERAGE_ITEM_FIELDS = {
    "item_id": Field("int", required=True, min_value=1),
    "quantity": Field("int", min_value=1),
    "dosage_instructions": Field("str", max_length=500),
}


@admin_bp.get("/dashboard")
@require_auth
@require_admin
def dashboard_route():
    return jsonify({"message": "Dashboard retrieved", **admin_service.dashboard()}), 200


@admin_bp.get("/providers")
@require_auth
@require_admin
def list_providers_route():
    try:
        data = validate_request(request.args.to_dict(), PROVIDER_QUERY_FIELDS)
        providers = admin_service.list_providers(
            verification_status=data["verification_status"],
            limit=data["limit"] or 50,
            offset=data["offset"] or 0,
        )
        return jsonify({"message": "Providers retrieved", "providers": [p.to_dict() for p in providers]}), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id)


@admin_bp.patch("/providers/<int:provider_id>/verify")
@require_auth
@require_admin
def verify_provider_route(provider_id: int):
    """Mark a provider verified (can take orders) or rejected."""
    try:
        data = validate_request(request.get_json(silent=True), VERIFY_FIELDS)
        provider = admin_service.set_provider_verification(provider_id, data["status"])
        return jsonify({"message": "Provider verification updated", "provider": provider.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id, provider_id=provider_id)
    except Exception:
        current_app.logger.exception("Failed to verify provider %s", provider_id)
        return jsonify({"message": "Internal server error"}), 500


@admin_bp.patch("/providers/<int:provider_id>/active")
@require_auth
@require_admin
def provider_active_route(provider_id: int):
    try:
        data = validate_request(request.get_json(silent=True), ACTIVE_FIELDS)
        provider = admin_service.set_provider_active(provider_id, data["is_active"])
        return jsonify({"message": "Provider status updated", "provider": provider.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id, provider_id=provider_id)
    except Exception:
        current_app.logger.exception("Failed to change provider %s status", provider_id)
        return jsonify({"message": "Internal server error"}), 500


@admin_bp.get("/users")
@require_auth
@require_admin
def list_users_route():
    try:
        data = validate_request(request.args.to_dict(), USER_QUERY_FIELDS)
        users = admin_service.list_users(role=data["role"], provider_id=data["provider_id"])
        return jsonify({"message": "Users retrieved", "users": [u.to_dict() for u in users]}), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id)


@admin_bp.patch("/users/<int:user_id>/active")
@require_auth
@require_admin
def user_active_route(user_id: int):
    """Activate or deactivate an account; deactivation revokes its sessions. Not allowed on yourself."""
    try:
        data = validate_request(request.get_json(silent=True), ACTIVE_FIELDS)
        user = admin_service.set_user_active(g.current_user, user_id, data["is_active"])
        return jsonify({"message": "User status updated", "user": user.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id, target_user_id=user_id)
    except Exception:
        current_app.logger.exception("Failed to change user %s status", user_id)
        return jsonify({"message": "Internal server error"}), 500


@admin_bp.get("/orders")
@require_auth
@require_admin
def list_orders_route():
    try:
        data = validate_request(request.args.to_dict(), ORDER_QUERY_FIELDS)
        result = admin_service.list_orders(
            status=data["status"], limit=data["limit"] or 50, offset=data["offset"] or 0
        )
        return jsonify({"message": "Orders retrieved", **result}), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id)


@admin_bp.get("/prescriptions")
@require_auth
@require_admin
def list_prescriptions_route():
    try:
        data = validate_request(request.args.to_dict(), PRESCRIPTION_QUERY_FIELDS)
        prescriptions = prescription_service.list_prescriptions(
            status=data["status"], limit=data["limit"] or 50, offset=data["offset"] or 0
        )
        return jsonify({
            "message": "Prescriptions retrieved",
            "prescriptions": [p.to_dict() for p in prescriptions],
        }), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id)


@admin_bp.post("/prescriptions/<int:prescription_id>/items")
@require_auth
@require_admin
def add_coverage_items_route(prescription_id: int):
    """Body: {"items": [{"item_id", "quantity"?, "dosage_instructions"?}, ...]}"""
    try:
        data = validate_request(request.get_json(silent=True), COVERAGE_FIELDS)
        items = [validate_request(entry, COVERAGE_ITEM_FIELDS) for entry in data["items"]]
        prescription = prescription_service.add_coverage_items(prescription_id, items)
        return jsonify({"message": "Prescription items updated", "prescription": prescription.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id, prescription_id=prescription_id)
    except Exception:
        current_app.logger.exception("Failed to add items to prescription %s", prescription_id)
        return jsonify({"message": "Internal server error"}), 500


@admin_bp.patch("/prescriptions/<int:prescription_id>/verify")
@require_auth
@require_admin
def review_prescription_route(prescription_id: int):
    """
    Verify or reject a pending prescription / test order (once).

    Verifying releases linked pending_prescription orders to pending so the
    guest can resume checkout.
    Rejecting cancels them and returns their reserved stock.
    """
    try:
        data = validate_request(request.get_json(silent=True), REVIEW_FIELDS)
        result = prescription_service.review_prescription(
            prescription_id, data["status"], reviewer_user_id=g.current_user.id
        )
        return jsonify({"message": f"Prescription {data['status']}", **result}), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id, prescription_id=prescription_id)
    except Exception:
        current_app.logger.exception("Failed to review prescription %s", prescription_id)
        return jsonify({"message": "Internal server error"}), 500


@admin_bp.post("/catalog/items")
@require_auth
@require_admin
def create_item_route():
    try:
        data = validate_request(request.get_json(silent=True), ITEM_FIELDS)
        item = catalog_service.create_item(data)
        return jsonify({"message": "Catalog item created", "item": item.to_dict()}), 201

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id)
    except Exception:
        current_app.logger.exception("Failed to create catalog item")
        return jsonify({"message": "Internal server error"}), 500


@admin_bp.patch("/catalog/items/<int:item_id>")
@require_auth
@require_admin
def update_item_route(item_id: int):
    try:
        data = validate_request(request.get_json(silent=True), ITEM_PATCH_FIELDS)
        item = catalog_service.update_item(item_id, data)
        return jsonify({"message": "Catalog item updated", "item": item.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id, item_id=item_id)
    except Exception:
        current_app.logger.exception("Failed to update catalog item %s", item_id)
        return jsonify({"message": "Internal server error"}), 500
