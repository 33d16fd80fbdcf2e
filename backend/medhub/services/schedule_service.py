# Overview: Service-layer operations for appointment slots; encapsulates business logic and database work.

"""
Time-slot scheduling for appointment-style items (lab visits, home collection).

Slots are 30-minute windows cut from the provider's operating-hours string
("HH:MM-HH:MM", default 09:00-17:00). Slot generation takes the reference
instant as a parameter so it can be exercised with fixed clocks.

Booking re-counts overlaps while holding the provider row lock, so two
guests cannot both take the last place in a slot.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from flask import current_app

from ..extensions import db
from ..errors import NotFoundError, SlotUnavailableError, UnavailableError
from ..models import Order, OrderItem, Provider, ProviderOffering
from ..models.catalog import DEFAULT_OPERATING_HOURS
from ..models.orders import (
    FULFILLMENT_IN_PERSON,
    FULFILLMENT_METHODS,
    ORDER_STATUS_CANCELLED,
    REMOTE_FULFILLMENT_METHODS,
)
from ..time_utils import parse_hhmm, utcnow
from ..validation import ValidationError
from .cart_service import get_cart_line
from .concurrency import lock_for_update, run_with_retry


SLOT_MINUTES = 30
LOOKAHEAD_DAYS = 7
SLOT_AVAILABLE = "available"
SLOT_LIMITED = "limited"


def parse_operating_hours(value: str | None):
    """Return (open, close) times; malformed or empty input falls back to the default."""
    raw = value or DEFAULT_OPERATING_HOURS
    try:
        opens, closes = raw.split("-", 1)
        open_at, close_at = parse_hhmm(opens), parse_hhmm(closes)
    except ValueError:
        opens, closes = DEFAULT_OPERATING_HOURS.split("-", 1)
        open_at, close_at = parse_hhmm(opens), parse_hhmm(closes)
    return open_at, close_at


def generate_slots(operating_hours: str | None, day: date | None, now: datetime) -> list[tuple[datetime, datetime]]:
    """
    Cut 30-minute (start, end) windows for `day`, or for the 7 days starting
    at now's date when no day is given. Slots that have already started at
    `now` are dropped.
    """
    open_at, close_at = parse_operating_hours(operating_hours)
    days = [day] if day else [now.date() + timedelta(days=offset) for offset in range(LOOKAHEAD_DAYS)]
    step = timedelta(minutes=SLOT_MINUTES)

    slots = []
    for current in days:
        start = datetime.combine(current, open_at)
        closing = datetime.combine(current, close_at)
        while start + step <= closing:
            if start >= now:
                slots.append((start, start + step))
            start += step
    return slots


def _booked_windows(
    provider_id: int,
    window_start: datetime,
    window_end: datetime,
    exclude_order_item_id: int | None = None,
) -> list[tuple[datetime, datetime]]:
    query = (
        db.session.query(OrderItem.time_slot_start, OrderItem.time_slot_end)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            OrderItem.provider_id == provider_id,
            OrderItem.time_slot_start.isnot(None),
            OrderItem.time_slot_start < window_end,
            OrderItem.time_slot_end > window_start,
            Order.status != ORDER_STATUS_CANCELLED,
        )
    )
    if exclude_order_item_id is not None:
        query = query.filter(OrderItem.id != exclude_order_item_id)
    return [(start, end) for start, end in query.all()]


def count_overlapping(bookings: list[tuple[datetime, datetime]], start: datetime, end: datetime) -> int:
    return sum(1 for booked_start, booked_end in bookings if booked_start < end and booked_end > start)


def _capacity() -> int:
    return current_app.config.get("SLOT_CAPACITY", 3)


def get_available_time_slots(
    provider_id: int,
    item_id: int | None = None,
    fulfillment_type: str | None = None,
    day: date | None = None,
    now: datetime | None = None,
) -> list[dict]:
    provider = db.session.get(Provider, provider_id)
    if not provider:
        raise NotFoundError("Provider not found", {"provider_id": provider_id})
    if item_id is not None and not db.session.get(ProviderOffering, (provider_id, item_id)):
        raise NotFoundError(
            "Item not offered by this provider",
            {"provider_id": provider_id, "item_id": item_id},
        )

    now = now or utcnow()
    slots = generate_slots(provider.operating_hours, day, now)
    if not slots:
        return []

    # Capacity is shared by every item and fulfillment type at the provider
    bookings = _booked_windows(provider_id, slots[0][0], slots[-1][1])
    capacity = _capacity()
    result = []
    for start, end in slots:
        booked = count_overlapping(bookings, start, end)
        result.append({
            "start": start.isoformat(),
            "end": end.isoformat(),
            "fulfillment_type": fulfillment_type or FULFILLMENT_IN_PERSON,
            "availability_status": SLOT_LIMITED if booked >= capacity else SLOT_AVAILABLE,
        })
    return result


def _check_within_hours(provider: Provider, start: datetime, end: datetime) -> None:
    open_at, close_at = parse_operating_hours(provider.operating_hours)
    if start.time() < open_at or end.time() > close_at or end.date() != start.date():
        raise ValidationError(
            "Time slot is outside operating hours",
            {"time_slot_start": f"must fall within {open_at:%H:%M}-{close_at:%H:%M}"},
        )


def update_item_schedule(
    order_item_id: int,
    guest_id: str,
    time_slot_start: datetime | None = None,
    fulfillment_type: str | None = None,
    now: datetime | None = None,
) -> OrderItem:
    """
    Set a cart line's appointment slot and/or fulfillment type.

    End time is always start + 30 minutes. Delivery and home collection need
    a provider that offers them. The slot is re-counted under the provider
    row lock and refused once it holds SLOT_CAPACITY bookings.
    """
    if fulfillment_type is not None and fulfillment_type not in FULFILLMENT_METHODS:
        raise ValidationError(
            "Invalid fulfillment type",
            {"fulfillment_type": f"must be one of: {', '.join(FULFILLMENT_METHODS)}"},
        )

    def _op():
        _cart, line = get_cart_line(order_item_id, guest_id)
        provider = lock_for_update(db.session.query(Provider).filter_by(id=line.provider_id)).first()
        if provider is None:
            raise NotFoundError("Provider not found", {"provider_id": line.provider_id})

        if fulfillment_type in REMOTE_FULFILLMENT_METHODS and not provider.home_collection_available:
            raise UnavailableError(
                f"Provider does not support {fulfillment_type.replace('_', ' ')}",
                {"provider_id": provider.id, "fulfillment_type": fulfillment_type},
            )

        if time_slot_start is not None:
            start = time_slot_start
            end = start + timedelta(minutes=SLOT_MINUTES)
            if start < (now or utcnow()):
                raise ValidationError("Time slot is in the past", {"time_slot_start": "must be in the future"})
            _check_within_hours(provider, start, end)

            bookings = _booked_windows(provider.id, start, end, exclude_order_item_id=line.id)
            if count_overlapping(bookings, start, end) >= _capacity():
                raise SlotUnavailableError(
                    "Selected time slot is fully booked",
                    {"time_slot_start": start.isoformat()},
                )
            line.time_slot_start = start
            line.time_slot_end = end

        if fulfillment_type is not None:
            line.fulfillment_method = fulfillment_type

        db.session.commit()
        return line

    line = run_with_retry(_op)
    current_app.logger.info(
        "Guest %s scheduled order item %s at %s (%s)",
        guest_id, line.id, line.time_slot_start, line.fulfillment_method,
    )
    return line
