# Overview: Service-layer operations for tracking codes; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy.orm import joinedload

from ..extensions import db
from ..errors import NotFoundError
from ..models import Order, OrderItem
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_READY_FOR_PICKUP,
    ORDER_STATUS_RESULT_READY,
    ORDER_STATUS_SAMPLE_COLLECTED,
    ORDER_STATUS_SHIPPED,
)
from ..time_utils import unix_millis
from ..validation import ValidationError, is_valid_tracking_code


# Placed-but-unpaid orders (cart / pending / pending_prescription) are not trackable
TRACKABLE_STATUSES = (
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_SAMPLE_COLLECTED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_READY_FOR_PICKUP,
    ORDER_STATUS_RESULT_READY,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
)


def _as_int(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def generate_tracking_code(checkout_session_id, fallback_id=None, millis: int | None = None) -> str:
    """
    TRK-SESSION-<id>-<unixMillis>; <id> is the numeric session id, else the
    numeric fallback (first order id), else 0.
    """
    session_number = _as_int(checkout_session_id)
    if session_number is None:
        session_number = _as_int(fallback_id)
    if session_number is None:
        session_number = 0
    return f"TRK-SESSION-{session_number}-{millis if millis is not None else unix_millis()}"


def _tracked_order_dict(order: Order) -> dict:
    data = order.to_dict()
    data["provider"] = order.provider.summary_dict() if order.provider else None
    data["prescription"] = (
        {
            "id": order.prescription.id,
            "kind": order.prescription.kind,
            "status": order.prescription.status,
        }
        if order.prescription
        else None
    )
    return data


def track_orders(tracking_code: str) -> dict:
    if not is_valid_tracking_code(tracking_code):
        raise ValidationError("Invalid tracking code format", {"tracking_code": "Invalid tracking code format"})

    orders = (
        db.session.query(Order)
        .options(joinedload(Order.items).joinedload(OrderItem.item))
        .options(joinedload(Order.provider))
        .options(joinedload(Order.prescription))
        .filter(Order.tracking_code == tracking_code, Order.status.in_(TRACKABLE_STATUSES))
        .order_by(Order.id)
        .all()
    )
    if not orders:
        raise NotFoundError("No orders found for this tracking code", {"tracking_code": tracking_code})

    return {
        "tracking_code": tracking_code,
        "orders": [_tracked_order_dict(order) for order in orders],
        "total_price_kobo": sum(order.total_price_kobo for order in orders),
    }
