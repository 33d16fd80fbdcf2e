# Overview: Flask API routes for prescription and test-order uploads; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_consent, require_guest
from ..errors import ServiceError, error_response
from ..models.prescriptions import PRESCRIPTION_KIND_PRESCRIPTION, PRESCRIPTION_KINDS
from ..services import prescription_service
from ..validation import Field, ValidationError, validate_request


prescriptions_bp = Blueprint("prescriptions", __name__, url_prefix="/api/prescriptions")


UPLOAD_FIELDS = {
    "kind": Field("enum", choices=PRESCRIPTION_KINDS),
    "email": Field("email", max_length=255),
    "phone": Field("phone"),
    "file_url": Field("str", max_length=500),
}
UPLOAD_FILE_FIELD = "file"


def _item_ids_from(payload) -> list[int]:
    raw = payload.getlist("item_ids") if hasattr(payload, "getlist") else (payload or {}).get("item_ids")
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [part for part in raw.split(",") if part.strip()]
    if not isinstance(raw, list):
        raise ValidationError("item_ids must be a list", {"item_ids": "must be a list"})
    try:
        return [int(value) for value in raw]
    except (TypeError, ValueError):
        raise ValidationError("item_ids must be integers", {"item_ids": "must be integers"})


@prescriptions_bp.post("/upload")
@require_consent
def upload_route():
    """
    Upload a prescription or test order ahead of checkout.

    Multipart with a `file` part (plus kind, email, phone, item_ids form
    fields), or JSON with a `file_url` already hosted elsewhere.
    """
    saved_path = None
    try:
        if request.mimetype == "multipart/form-data":
            data = validate_request(request.form.to_dict(), UPLOAD_FIELDS)
            item_ids = _item_ids_from(request.form)
            upload = request.files.get(UPLOAD_FILE_FIELD)
            if upload and upload.filename:
                saved_path = file_url = prescription_service.save_upload(upload)
            else:
                file_url = data["file_url"]
        else:
            payload = request.get_json(silent=True)
            data = validate_request(payload, UPLOAD_FIELDS)
            item_ids = _item_ids_from(payload)
            file_url = data["file_url"]

        if not file_url:
            raise ValidationError("A prescription file is required", {"file": "file is required"})

        prescription = prescription_service.upload_prescription(
            g.guest_id,
            file_url,
            kind=data["kind"] or PRESCRIPTION_KIND_PRESCRIPTION,
            email=data["email"],
            phone=data["phone"],
            item_ids=item_ids,
        )
        return jsonify({"message": "Prescription uploaded", "prescription": prescription.to_dict()}), 201

    except ServiceError as e:
        prescription_service.discard_upload(saved_path)
        return error_response(e, guest_id=g.guest_id)
    except Exception:
        prescription_service.discard_upload(saved_path)
        current_app.logger.exception("Failed to upload prescription for guest %s", g.guest_id)
        return jsonify({"message": "Internal server error"}), 500


@prescriptions_bp.get("")
@require_guest
def list_route():
    try:
        prescriptions = prescription_service.list_guest_prescriptions(g.guest_id)
        return jsonify({
            "message": "Prescriptions retrieved",
            "prescriptions": [p.to_dict() for p in prescriptions],
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list prescriptions for guest %s", g.guest_id)
        return jsonify({"message": "Internal server error"}), 500
