# Overview: Flask API routes for recording patient consent; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_guest
from ..errors import ServiceError, error_response
from ..models.consent import CONSENT_TYPES
from ..services import consent_service
from ..validation import Field, validate_request


consent_bp = Blueprint("consent", __name__, url_prefix="/api/consent")


CONSENT_FIELDS = {
    "consent_type": Field("enum", required=True, choices=CONSENT_TYPES),
    "granted": Field("bool"),
}


@consent_bp.post("")
@require_guest
def record_consent_route():
    """
    Record the guest's answer for one consent type.

    Body: consent_type (TERMS, PRIVACY, MARKETING, DATA_SHARING, REGULATORY),
    granted (defaults to true). Recording again overwrites the answer.
    """
    try:
        data = validate_request(request.get_json(silent=True), CONSENT_FIELDS)
        granted = True if data["granted"] is None else data["granted"]
        consent = consent_service.record_consent(g.guest_id, data["consent_type"], granted)
        return jsonify({"message": "Consent recorded", "consent": consent.to_dict()}), 201

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id)
    except Exception:
        current_app.logger.exception("Failed to record consent for guest %s", g.guest_id)
        return jsonify({"message": "Internal server error"}), 500


@consent_bp.get("")
@require_guest
def list_consents_route():
    try:
        consents = consent_service.list_consents(g.guest_id)
        return jsonify({"message": "Consents retrieved", "consents": [c.to_dict() for c in consents]}), 200

    except Exception:
        current_app.logger.exception("Failed to list consents for guest %s", g.guest_id)
        return jsonify({"message": "Internal server error"}), 500
