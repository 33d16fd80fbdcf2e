# Overview: Service-layer operations for provider back-office; encapsulates business logic and database work.

"""
Provider back-office: inventory, order fulfilment, device registration.

Every operation takes the acting provider's id and scopes by it; one
provider can never read or change another provider's offerings or move
an order that contains none of its items.
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import exists

from ..extensions import db
from ..errors import ConflictError, InvalidTransitionError, NotFoundError
from ..location import validate_location
from ..models import CatalogItem, Order, OrderItem, Provider, ProviderOffering
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CART,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PARTIALLY_COMPLETED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PENDING_PRESCRIPTION,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_READY_FOR_PICKUP,
    ORDER_STATUS_RESULT_READY,
    ORDER_STATUS_SAMPLE_COLLECTED,
    ORDER_STATUS_SHIPPED,
)
from ..time_utils import utcnow
from ..validation import ValidationError, validate_price_kobo
from .cart_service import release_reservation
from .concurrency import lock_for_update, run_with_retry


# Provider staff only see orders that have gone past checkout
HIDDEN_FROM_PROVIDER = (
    ORDER_STATUS_CART,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PENDING_PRESCRIPTION,
    ORDER_STATUS_PARTIALLY_COMPLETED,
)

ALLOWED_TRANSITIONS = {
    ORDER_STATUS_PENDING: {ORDER_STATUS_CANCELLED},
    ORDER_STATUS_PENDING_PRESCRIPTION: {ORDER_STATUS_CANCELLED},
    ORDER_STATUS_CONFIRMED: {ORDER_STATUS_PROCESSING, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_PROCESSING: {
        ORDER_STATUS_SHIPPED,
        ORDER_STATUS_SAMPLE_COLLECTED,
        ORDER_STATUS_READY_FOR_PICKUP,
        ORDER_STATUS_DELIVERED,
        ORDER_STATUS_CANCELLED,
    },
    ORDER_STATUS_SHIPPED: {ORDER_STATUS_DELIVERED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_SAMPLE_COLLECTED: {ORDER_STATUS_RESULT_READY, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_READY_FOR_PICKUP: {ORDER_STATUS_DELIVERED, ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_DELIVERED: {ORDER_STATUS_COMPLETED},
    ORDER_STATUS_RESULT_READY: {ORDER_STATUS_COMPLETED},
}
FILLED_STATUSES = (ORDER_STATUS_DELIVERED, ORDER_STATUS_READY_FOR_PICKUP, ORDER_STATUS_RESULT_READY)

OFFERING_FIELDS = ("price_kobo", "stock", "available", "received_date", "expiry_date")
PROFILE_FIELDS = ("name", "address", "phone", "home_collection_available", "operating_hours")
LOCATION_FIELDS = ("state", "lga", "ward", "latitude", "longitude")


def get_provider(provider_id: int) -> Provider:
    provider = db.session.get(Provider, provider_id)
    if not provider:
        raise NotFoundError("Provider not found", {"provider_id": provider_id})
    return provider


def update_profile(provider_id: int, patch: dict) -> Provider:
    """Edit contact/operations fields; a location change must pass validate_location as a whole."""
    provider = get_provider(provider_id)

    for field in PROFILE_FIELDS:
        if patch.get(field) is not None:
            setattr(provider, field, patch[field])

    if any(patch.get(field) is not None for field in LOCATION_FIELDS):
        missing = [field for field in LOCATION_FIELDS if patch.get(field) is None]
        if missing:
            raise ValidationError(
                "Location updates need state, lga, ward, latitude and longitude together",
                {field: "required" for field in missing},
            )
        location = validate_location(
            patch["state"], patch["lga"], patch["ward"], patch["latitude"], patch["longitude"]
        )
        for field in LOCATION_FIELDS:
            setattr(provider, field, location[field])

    db.session.commit()
    return provider


def _check_dates(received: date | None, expiry: date | None) -> None:
    if received and expiry and expiry < received:
        raise ValidationError("expiry_date must be after received_date", {"expiry_date": "before received_date"})


def list_offerings(provider_id: int) -> list[ProviderOffering]:
    get_provider(provider_id)
    return (
        db.session.query(ProviderOffering)
        .filter_by(provider_id=provider_id)
        .order_by(ProviderOffering.item_id)
        .all()
    )


def add_offering(provider_id: int, item_id: int, data: dict) -> ProviderOffering:
    get_provider(provider_id)
    if not db.session.get(CatalogItem, item_id):
        raise NotFoundError("Catalog item not found", {"item_id": item_id})
    if db.session.get(ProviderOffering, (provider_id, item_id)):
        raise ConflictError("Offering already exists for this item", {"item_id": item_id})

    if data.get("price_kobo") is None:
        raise ValidationError("price_kobo is required", {"price_kobo": "price_kobo is required"})
    validate_price_kobo(data["price_kobo"])
    _check_dates(data.get("received_date"), data.get("expiry_date"))

    offering = ProviderOffering(
        provider_id=provider_id,
        item_id=item_id,
        price_kobo=data["price_kobo"],
        stock=data.get("stock"),
        available=True if data.get("available") is None else data["available"],
        received_date=data.get("received_date"),
        expiry_date=data.get("expiry_date"),
    )
    db.session.add(offering)
    db.session.commit()
    current_app.logger.info("Provider %s added offering for item %s", provider_id, item_id)
    return offering


def update_offering(provider_id: int, item_id: int, patch: dict) -> ProviderOffering:
    """Partial update; only keys present (non-None) in patch are written."""
    def _op():
        offering = lock_for_update(
            db.session.query(ProviderOffering).filter_by(provider_id=provider_id, item_id=item_id)
        ).first()
        if not offering:
            raise NotFoundError("Offering not found", {"provider_id": provider_id, "item_id": item_id})

        validate_price_kobo(patch.get("price_kobo"))
        for field in OFFERING_FIELDS:
            if patch.get(field) is not None:
                setattr(offering, field, patch[field])
        _check_dates(offering.received_date, offering.expiry_date)

        db.session.commit()
        return offering

    return run_with_retry(_op)


def delete_offering(provider_id: int, item_id: int) -> None:
    offering = db.session.query(ProviderOffering).filter_by(provider_id=provider_id, item_id=item_id).first()
    if not offering:
        raise NotFoundError("Offering not found", {"provider_id": provider_id, "item_id": item_id})
    db.session.delete(offering)
    db.session.commit()
    current_app.logger.info("Provider %s removed offering for item %s", provider_id, item_id)


def _has_provider_item(provider_id: int):
    return exists().where(OrderItem.order_id == Order.id, OrderItem.provider_id == provider_id)


def _provider_order_dict(order: Order, provider_id: int) -> dict:
    data = order.to_dict(include_items=False)
    data["items"] = [line.to_dict() for line in order.items if line.provider_id == provider_id]
    data["provider_subtotal_kobo"] = sum(
        line.line_total_kobo for line in order.items if line.provider_id == provider_id
    )
    return data


def list_orders(provider_id: int, status: str | None = None, limit: int = 50, offset: int = 0) -> dict:
    """Orders containing at least one of this provider's items, newest first."""
    query = db.session.query(Order).filter(
        _has_provider_item(provider_id),
        Order.status.notin_(HIDDEN_FROM_PROVIDER),
    )
    if status:
        query = query.filter(Order.status == status)

    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()
    return {
        "orders": [_provider_order_dict(order, provider_id) for order in orders],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


def get_order(provider_id: int, order_id: int) -> dict:
    order = db.session.query(Order).filter(Order.id == order_id, _has_provider_item(provider_id)).first()
    if not order:
        raise NotFoundError("Order not found", {"order_id": order_id})
    return _provider_order_dict(order, provider_id)


def update_order_status(provider_id: int, order_id: int, status: str, reason: str | None = None) -> Order:
    """
    Move an order along ALLOWED_TRANSITIONS.

    Cancelling needs a reason and gives reserved stock back; reaching
    delivered / ready_for_pickup / result_ready stamps filled_at.
    """
    def _op():
        order = lock_for_update(
            db.session.query(Order).filter(Order.id == order_id, _has_provider_item(provider_id))
        ).first()
        if not order:
            raise NotFoundError("Order not found", {"order_id": order_id})

        allowed = ALLOWED_TRANSITIONS.get(order.status, set())
        if status not in allowed:
            raise InvalidTransitionError(
                f"Cannot change order status from {order.status} to {status}",
                {"from": order.status, "to": status, "allowed": sorted(allowed)},
            )

        now = utcnow()
        if status == ORDER_STATUS_CANCELLED:
            if not reason:
                raise ValidationError("A reason is required to cancel an order", {"reason": "reason is required"})
            order.cancel_reason = reason
            order.cancelled_at = now
            if order.filled_at is None:
                release_reservation(order)
        if status in FILLED_STATUSES and order.filled_at is None:
            order.filled_at = now

        previous = order.status
        order.status = status
        db.session.commit()
        return order, previous

    order, previous = run_with_retry(_op)
    current_app.logger.info(
        "Provider %s moved order %s from %s to %s", provider_id, order.id, previous, order.status
    )
    return order


def register_device(provider_id: int, device_token: str) -> Provider:
    provider = get_provider(provider_id)
    provider.device_token = device_token
    db.session.commit()
    return provider


def dashboard(provider_id: int) -> dict:
    """Counts of this provider's visible orders per status plus low-stock offerings."""
    rows = (
        db.session.query(Order.status, db.func.count(Order.id))
        .filter(_has_provider_item(provider_id), Order.status.notin_(HIDDEN_FROM_PROVIDER))
        .group_by(Order.status)
        .all()
    )
    low_stock = (
        db.session.query(ProviderOffering)
        .filter(
            ProviderOffering.provider_id == provider_id,
            ProviderOffering.stock.isnot(None),
            ProviderOffering.stock <= 5,
        )
        .count()
    )
    return {"orders_by_status": {row[0]: row[1] for row in rows}, "low_stock_offerings": low_stock}
