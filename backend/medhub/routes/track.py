# Overview: Flask API routes for public order tracking; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify

from ..errors import ServiceError, error_response
from ..services import tracking_service


track_bp = Blueprint("track", __name__, url_prefix="/api/track")


@track_bp.get("/<string:tracking_code>")
def track_route(tracking_code: str):
    """No guest header needed: the tracking code is the credential."""
    try:
        result = tracking_service.track_orders(tracking_code)
        return jsonify({"message": "Orders retrieved", **result}), 200

    except ServiceError as e:
        return error_response(e, tracking_code=tracking_code)
    except Exception:
        current_app.logger.exception("Failed to track orders for %s", tracking_code)
        return jsonify({"message": "Internal server error"}), 500
