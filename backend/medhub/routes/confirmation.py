# Overview: Flask API routes for payment confirmation; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_guest
from ..errors import ServiceError, error_response
from ..services import confirmation_service
from ..validation import Field, require_one_of, validate_request


confirmation_bp = Blueprint("confirmation", __name__, url_prefix="/api/confirmation")


CONFIRM_FIELDS = {
    "reference": Field("str", max_length=128),
    "session": Field("str", max_length=64),
}


@confirmation_bp.get("")
@require_guest
def confirm_route():
    """
    Verify the payment and confirm the bookings of a checkout session.

    Query: reference (transaction reference from checkout) and/or session
    (checkout_session_id, as embedded in the payment callback URL). Safe to
    call repeatedly; paid orders are never downgraded.
    """
    data = {}
    try:
        data = validate_request(request.args.to_dict(), CONFIRM_FIELDS)
        require_one_of(data, "reference", "session")
        result = confirmation_service.confirm_order(
            g.guest_id,
            reference=data["reference"],
            checkout_session_id=data["session"],
        )
        return jsonify(result), 200

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id, reference=data.get("reference"))
    except Exception:
        current_app.logger.exception("Failed to confirm payment for guest %s", g.guest_id)
        return jsonify({"message": "Internal server error"}), 500
