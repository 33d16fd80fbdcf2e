# Overview: Request, identity and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .models.auth import ROLE_ADMIN, PROVIDER_ROLES
from .models.consent import CONSENT_DATA_SHARING
from .services import consent_service, session_service


GUEST_HEADER = "X-Guest-Id"


def current_guest_id() -> str | None:
    """Guest identity travels in X-Guest-Id; blank means none."""
    value = (request.headers.get(GUEST_HEADER) or "").strip()
    return value or None


def require_guest(f):
    """
    Require the X-Guest-Id header and expose it as g.guest_id.

    Only the first cart add may omit it (that call issues one).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        guest_id = current_guest_id()
        if not guest_id:
            return jsonify({"message": "Guest ID is required", "error": "validation_error"}), 400
        g.guest_id = guest_id
        return f(*args, **kwargs)

    return decorated_function


def require_consent(f):
    """
    Require a granted DATA_SHARING consent for the X-Guest-Id caller.

    Checks the guest header itself, so it can guard routes that do not
    otherwise need one. Sets g.guest_id.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        guest_id = current_guest_id()
        if not guest_id:
            return jsonify({"message": "Guest ID is required", "error": "validation_error"}), 400
        if not consent_service.has_consent(guest_id, CONSENT_DATA_SHARING):
            return jsonify({
                "message": "User consent required for data sharing",
                "error": "consent_required",
            }), 403
        g.guest_id = guest_id
        return f(*args, **kwargs)

    return decorated_function


def require_auth(f):
    """
    Require a valid bearer session.

    Sets:
    - g.current_user: the authenticated User
    - g.provider_id: the user's provider (None for admins)
    - g.session_context: the full SessionContext
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"message": "Authentication required", "error": "unauthorized"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"message": "Invalid or expired token", "error": "unauthorized"}), 401

        g.current_user = context.user
        g.provider_id = context.provider_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require the authenticated user to hold one of roles (use after require_auth)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"message": "Authentication required", "error": "unauthorized"}), 401
            if g.current_user.role not in roles:
                return jsonify({
                    "message": f"Requires role: {', '.join(roles)}",
                    "error": "forbidden",
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_admin(f):
    return require_role(ROLE_ADMIN)(f)


def require_provider_staff(f):
    """Provider roles only; the provider must be set on the account."""
    @wraps(f)
    @require_role(*PROVIDER_ROLES)
    def decorated_function(*args, **kwargs):
        if not g.provider_id:
            return jsonify({"message": "Account is not linked to a provider", "error": "forbidden"}), 403
        return f(*args, **kwargs)

    return decorated_function
