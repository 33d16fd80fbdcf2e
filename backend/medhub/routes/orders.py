# Overview: Flask API routes for the guest cart, appointment slots and partial checkout; parses input and returns JSON responses.

"""
Cart API routes.

Guest identity travels in the X-Guest-Id header. Adding the first item
may omit it; the generated id comes back as `guest_id` and every later
call must send it.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import current_guest_id, require_guest
from ..errors import ServiceError, error_response
from ..models.orders import FULFILLMENT_METHODS
from ..services import cart_service, checkout_service, schedule_service
from ..validation import MAX_QUANTITY, Field, validate_request


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


ADD_ITEM_FIELDS = {
    "item_id": Field("int", required=True, min_value=1),
    "provider_id": Field("int", required=True, min_value=1),
    "quantity": Field("int", required=True, min_value=1, max_value=MAX_QUANTITY),
}
UPDATE_ITEM_FIELDS = {
    "quantity": Field("int", required=True, min_value=1, max_value=MAX_QUANTITY),
}
SLOT_QUERY_FIELDS = {
    "provider_id": Field("int", required=True, min_value=1),
    "item_id": Field("int", min_value=1),
    "fulfillment_type": Field("str", max_length=32),
    "date": Field("date"),
}
SCHEDULE_FIELDS = {
    "time_slot_start": Field("datetime"),
    "fulfillment_type": Field("enum", choices=FULFILLMENT_METHODS),
}
ORDER_REF_FIELDS = {
    "order_id": Field("int", required=True, min_value=1),
}


@orders_bp.post("/add")
def add_item_route():
    """Add an item from a provider to the guest's cart (merges quantities)."""
    guest_id = current_guest_id()
    try:
        data = validate_request(request.get_json(silent=True), ADD_ITEM_FIELDS)
        line, guest_id = cart_service.add_item(
            data["item_id"], data["provider_id"], data["quantity"], guest_id=guest_id
        )
        return jsonify({
            "message": "Item added to cart",
            "guest_id": guest_id,
            "order_item": line.to_dict(),
        }), 201

    except ServiceError as e:
        return error_response(e, guest_id=guest_id)
    except Exception:
        current_app.logger.exception("Failed to add item to cart for guest %s", guest_id)
        return jsonify({"message": "Internal server error"}), 500


@orders_bp.get("")
@require_guest
def get_cart_route():
    try:
        cart = cart_service.get_cart(g.guest_id)
        return jsonify({"message": "Cart retrieved", **cart}), 200

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id)
    except Exception:
        current_app.logger.exception("Failed to fetch cart for guest %s", g.guest_id)
        return jsonify({"message": "Internal server error"}), 500


@orders_bp.patch("/update/<int:order_item_id>")
@require_guest
def update_item_route(order_item_id: int):
    """Change a cart line's quantity; the price is re-read from the offering."""
    try:
        data = validate_request(request.get_json(silent=True), UPDATE_ITEM_FIELDS)
        line = cart_service.update_item(order_item_id, data["quantity"], g.guest_id)
        return jsonify({"message": "Cart item updated", "order_item": line.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id, order_item_id=order_item_id)
    except Exception:
        current_app.logger.exception("Failed to update cart item %s", order_item_id)
        return jsonify({"message": "Internal server error"}), 500


@orders_bp.delete("/remove/<int:order_item_id>")
@require_guest
def remove_item_route(order_item_id: int):
    try:
        cart_service.remove_item(order_item_id, g.guest_id)
        cart = cart_service.get_cart(g.guest_id)
        return jsonify({"message": "Item removed from cart", **cart}), 200

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id, order_item_id=order_item_id)
    except Exception:
        current_app.logger.exception("Failed to remove cart item %s", order_item_id)
        return jsonify({"message": "Internal server error"}), 500


@orders_bp.get("/slots")
def time_slots_route():
    """
    Bookable 30-minute slots for a provider.

    Query: provider_id (required), item_id, fulfillment_type, date (YYYY-MM-DD).
    Without a date the next seven days are listed.
    """
    try:
        data = validate_request(request.args.to_dict(), SLOT_QUERY_FIELDS)
        slots = schedule_service.get_available_time_slots(
            data["provider_id"],
            item_id=data["item_id"],
            fulfillment_type=data["fulfillment_type"],
            day=data["date"],
        )
        return jsonify({"message": "Time slots retrieved", "time_slots": slots}), 200

    except ServiceError as e:
        return error_response(e, provider_id=request.args.get("provider_id"))
    except Exception:
        current_app.logger.exception("Failed to list time slots")
        return jsonify({"message": "Internal server error"}), 500


@orders_bp.patch("/update-details/<int:order_item_id>")
@require_guest
def schedule_item_route(order_item_id: int):
    try:
        data = validate_request(request.get_json(silent=True), SCHEDULE_FIELDS)
        line = schedule_service.update_item_schedule(
            order_item_id,
            g.guest_id,
            time_slot_start=data["time_slot_start"],
            fulfillment_type=data["fulfillment_type"],
        )
        return jsonify({"message": "Booking details updated", "order_item": line.to_dict()}), 200

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id, order_item_id=order_item_id)
    except Exception:
        current_app.logger.exception("Failed to update booking details for item %s", order_item_id)
        return jsonify({"message": "Internal server error"}), 500


@orders_bp.post("/partial-checkout")
@require_guest
def partial_checkout_route():
    order_id = None
    try:
        order_id = validate_request(request.get_json(silent=True), ORDER_REF_FIELDS)["order_id"]
        result = checkout_service.partial_checkout(order_id, g.guest_id)
        return jsonify({"message": "Partial checkout created", **result}), 201

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id, order_id=order_id)
    except Exception:
        current_app.logger.exception("Failed partial checkout for guest %s", g.guest_id)
        return jsonify({"message": "Internal server error"}), 500


@orders_bp.post("/cancel-partial-checkout")
@require_guest
def cancel_partial_checkout_route():
    """Return a split-off order's items to the cart and release its stock."""
    order_id = None
    try:
        order_id = validate_request(request.get_json(silent=True), ORDER_REF_FIELDS)["order_id"]
        cart = checkout_service.cancel_partial_checkout(order_id, g.guest_id)
        return jsonify({"message": "Partial checkout cancelled", **cart}), 200

    except ServiceError as e:
        return error_response(e, guest_id=g.guest_id, order_id=order_id)
    except Exception:
        current_app.logger.exception("Failed to cancel partial checkout for guest %s", g.guest_id)
        return jsonify({"message": "Internal server error"}), 500
