# Overview: Flask API routes for provider registration, staff login and staff management; parses input and returns JSON responses.

"""
Authentication API routes

- Providers self-register; the provider starts pending verification and
  its first account is the manager.
- Login issues an opaque bearer token (see session_service).
- Managers add and remove staff of their own provider.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError, error_response
from ..models.auth import PROVIDER_ROLES, ROLE_MANAGER
from ..models.catalog import PROVIDER_TYPES
from ..services import auth_service, session_service
from ..validation import Field, validate_request


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


REGISTER_PROVIDER_FIELDS = {
    "provider_name": Field("str", required=True, max_length=200),
    "provider_type": Field("enum", required=True, choices=PROVIDER_TYPES),
    "address": Field("str", required=True, max_length=500),
    "state": Field("str", required=True, max_length=100),
    "lga": Field("str", required=True, max_length=100),
    "ward": Field("str", required=True, max_length=100),
    "latitude": Field("float", required=True, min_value=-90, max_value=90),
    "longitude": Field("float", required=True, min_value=-180, max_value=180),
    "phone": Field("phone", required=True),
    "license_number": Field("str", max_length=100),
    "home_collection_available": Field("bool"),
    "operating_hours": Field("str", max_length=32),
    "manager_name": Field("str", required=True, max_length=200),
    "email": Field("email", required=True, max_length=255),
    "password": Field("str", required=True, max_length=128),
}
LOGIN_FIELDS = {
    "email": Field("email", required=True, max_length=255),
    "password": Field("str", required=True, max_length=128),
}
STAFF_FIELDS = {
    "name": Field("str", required=True, max_length=200),
    "email": Field("email", required=True, max_length=255),
    "password": Field("str", required=True, max_length=128),
    "role": Field("enum", required=True, choices=PROVIDER_ROLES),
}


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


@auth_bp.post("/register-provider")
def register_provider_route():
    """
    Register a pharmacy, lab or diagnostic center with its manager account.

    The location (state/lga/ward + coordinates) must match the reference
    dataset. The provider cannot take orders until an admin verifies it.
    """
    try:
        data = validate_request(request.get_json(silent=True), REGISTER_PROVIDER_FIELDS)
        provider, manager = auth_service.register_provider(data)
        return jsonify({
            "message": "Registration received, pending verification",
            "provider": provider.to_dict(),
            "user": manager.to_dict(),
        }), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register provider")
        return jsonify({"message": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate staff and create a session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = validate_request(request.get_json(silent=True), LOGIN_FIELDS)
        user = auth_service.authenticate(data["email"], data["password"])
        if not user:
            current_app.logger.warning("Failed login for %s", data["email"])
            return jsonify({"message": "Invalid credentials", "error": "unauthorized"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({
            "message": "Login successful",
            "user": user.to_dict(),
            "provider": user.provider.to_dict() if user.provider else None,
            "token": token,
            "session": session.to_dict(),
        }), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"message": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    try:
        token = _bearer_token()
        if not token:
            return jsonify({"message": "Authorization header required", "error": "unauthorized"}), 401

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"message": "Invalid or expired token", "error": "unauthorized"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"message": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "message": "Profile retrieved",
        "user": user.to_dict(),
        "provider": user.provider.to_dict() if user.provider else None,
    }), 200


@auth_bp.get("/staff")
@require_auth
@require_role(ROLE_MANAGER)
def list_staff_route():
    staff = auth_service.list_staff(g.provider_id)
    return jsonify({"message": "Staff retrieved", "users": [u.to_dict() for u in staff]}), 200


@auth_bp.post("/staff")
@require_auth
@require_role(ROLE_MANAGER)
def add_staff_route():
    try:
        data = validate_request(request.get_json(silent=True), STAFF_FIELDS)
        user = auth_service.add_staff(
            g.provider_id, data["name"], data["email"], data["password"], data["role"]
        )
        current_app.logger.info("Manager %s added staff %s to provider %s", g.current_user.id, user.id, g.provider_id)
        return jsonify({"message": "Staff member added", "user": user.to_dict()}), 201

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id, provider_id=g.provider_id)
    except Exception:
        current_app.logger.exception("Failed to add staff to provider %s", g.provider_id)
        return jsonify({"message": "Internal server error"}), 500


@auth_bp.delete("/staff/<int:user_id>")
@require_auth
@require_role(ROLE_MANAGER)
def remove_staff_route(user_id: int):
    try:
        user = auth_service.remove_staff(g.current_user, user_id)
        current_app.logger.info("Manager %s removed staff %s", g.current_user.id, user.id)
        return jsonify({"message": "Staff member removed", "user": user.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, user_id=g.current_user.id, target_user_id=user_id)
    except Exception:
        current_app.logger.exception("Failed to remove staff %s", user_id)
        return jsonify({"message": "Internal server error"}), 500
