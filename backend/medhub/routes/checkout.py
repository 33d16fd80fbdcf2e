# Overview: Flask API routes for checkout, session recovery and resumed payment; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_consent, require_guest
from ..errors import ServiceError, error_response
from ..models.orders import FULFILLMENT_METHODS
from ..services import checkout_service, prescription_service
from ..validation import Field, ValidationError, require_one_of, validate_request


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


CHECKOUT_FIELDS = {
    "name": Field("str", required=True, max_length=200),
    "email": Field("email", required=True, max_length=255),
    "phone": Field("phone", required=True),
    "address": Field("str", max_length=500),
    "fulfillment_method": Field("enum", choices=FULFILLMENT_METHODS),
    "file_url": Field("str", max_length=500),
}
RETRIEVE_FIELDS = {
    "email": Field("email", max_length=255),
    "phone": Field("phone"),
    "checkout_session_id": Field("str", max_length=64),
}
RESUME_FIELDS = {
    "email": Field("email", max_length=255),
}

UPLOAD_FIELD = "prescription"


def _checkout_payload() -> tuple[dict, object]:
    """JSON body, or multipart form with the prescription file under UPLOAD_FIELD."""
    if request.mimetype == "multipart/form-data":
        return request.form.to_dict(), request.files.get(UPLOAD_FIELD)
    return request.get_json(silent=True), None


def _parse_item_ids(raw: str | None) -> list[int]:
    if not raw:
        raise ValidationError("item_ids is required", {"item_ids": "item_ids is required"})
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ValidationError("item_ids must be a comma-separated list of integers",
                              {"item_ids": "must be integers"})


@checkout_bp.post("")
@require_consent
def initiate_checkout_route():
    """
    Split the cart into per-provider sub-orders and start payment.

    Prescription-gated items without a verified record need an upload
    (multipart `prescription` file, or `file_url` in JSON). When nothing is
    payable yet the response carries no payment_url.
    """
    saved_path = None
    try:
        payload, upload = _checkout_payload()
        data = validate_request(payload, CHECKOUT_FIELDS)

        file_url = data["file_url"]
        if upload is not None and upload.filename:
            saved_path = file_url = prescription_service.save_upload(upload)

        result = checkout_service.initiate_checkout(
            g.guest_id,
            name=data["name"],
            email=data["email"],
            phone=data["phone"],
            address=data["address"],
            fulfillment_method=data["fulfillment_method"],
            file_url=file_url,
        )
        return jsonify(result), 201

    except ServiceError as e:
        prescription_service.discard_upload(saved_path)
        return error_response(e, guest_id=g.guest_id)
    except Exception:
        prescription_service.discard_upload(saved_path)
        current_app.logger.exception("Failed to initiate checkout for guest %s", g.guest_id)
        return jsonify({"message": "Internal server error"}), 500


@checkout_bp.post("/session/retrieve")
@require_consent
def retrieve_session_route():
    """
    Recover a guest id from a checkout session id, email or phone.

    The caller still sends its current X-Guest-Id, which must carry
    data-sharing consent.
    """
    try:
        data = validate_request(request.get_json(silent=True), RETRIEVE_FIELDS)
        require_one_of(data, "email", "phone", "checkout_session_id")
        session = checkout_service.retrieve_session(
            email=data["email"],
            phone=data["phone"],
            checkout_session_id=data["checkout_session_id"],
        )
        return jsonify({"message": "Session retrieved", **session}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to retrieve checkout session")
        return jsonify({"message": "Internal server error"}), 500


@checkout_bp.get("/resume/<int:order_id>")
@require_guest
def session_details_route(order_id: int):
    try:
        details = checkout_service.get_session_details(order_id, g.guest_id)
        return jsonify({"message": "Checkout session retrieved", **details}), 200

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id, order_id=order_id)
    except Exception:
        current_app.logger.exception("Failed to load checkout session for order %s", order_id)
        return jsonify({"message": "Internal server error"}), 500


@checkout_bp.post("/resume/<int:order_id>")
@require_guest
def resume_checkout_route(order_id: int):
    try:
        data = validate_request(request.get_json(silent=True), RESUME_FIELDS)
        result = checkout_service.resume_checkout(order_id, g.guest_id, email=data["email"])
        return jsonify(result), 200

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id, order_id=order_id)
    except Exception:
        current_app.logger.exception("Failed to resume checkout for order %s", order_id)
        return jsonify({"message": "Internal server error"}), 500


@checkout_bp.get("/prescription/validate")
@require_guest
def prescription_coverage_route():
    """Query: item_ids=1,2,3. Tells the client whether checkout will need an upload."""
    try:
        item_ids = _parse_item_ids(request.args.get("item_ids"))
        coverage = checkout_service.check_prescription_coverage(g.guest_id, item_ids)
        return jsonify({"message": "Coverage checked", **coverage}), 200

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id)
    except Exception:
        current_app.logger.exception("Failed to check prescription coverage for guest %s", g.guest_id)
        return jsonify({"message": "Internal server error"}), 500
