# Overview: Service-layer operations for the guest cart; encapsulates business logic and database work.

"""
Cart Service - one open 'cart' order per patient identifier.

WHY: Guests are anonymous. The guest id (an opaque UUID handed out on the
first add) is the only key tying cart, checkout and prescriptions together,
so every operation here is scoped by it, never by item id alone.

INVARIANTS:
- At most one cart per guest: uq_orders_one_cart_per_patient + savepoint
  create; a losing concurrent insert re-reads the winner's cart.
- Order.total_price_kobo == sum(quantity * price_kobo) after every mutation,
  recomputed in the same transaction as the item change.
- OrderItem prices are snapshots taken at add/update time.
"""

from __future__ import annotations

import logging
import uuid

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..errors import NotFoundError, UnavailableError
from ..models import Order, OrderItem, Provider, ProviderOffering
from ..models.orders import (
    ORDER_STATUS_CART,
    ORDER_STATUS_PENDING,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PENDING,
)
from .concurrency import lock_for_update, release_stock, run_with_retry


def _logger() -> logging.Logger:
    return current_app.logger


def new_guest_id() -> str:
    return str(uuid.uuid4())


def get_open_cart(guest_id: str, *, lock: bool = False) -> Order | None:
    query = db.session.query(Order).filter_by(patient_identifier=guest_id, status=ORDER_STATUS_CART)
    if lock:
        query = lock_for_update(query)
    return query.first()


def _reopen_abandoned_order(guest_id: str) -> Order | None:
    """
    Recovery path for abandoned payment flows: the guest's latest unpaid
    'pending' sub-order becomes the cart again. Its stock reservation is
    released and its payment references are dropped so a new checkout
    issues fresh ones.
    """
    order = lock_for_update(
        db.session.query(Order)
        .filter(
            Order.patient_identifier == guest_id,
            Order.status == ORDER_STATUS_PENDING,
            Order.payment_status.in_([PAYMENT_STATUS_PENDING, PAYMENT_STATUS_FAILED]),
            Order.tracking_code.is_(None),
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
    ).first()
    if order is None:
        return None

    release_reservation(order)
    order.status = ORDER_STATUS_CART
    order.payment_status = PAYMENT_STATUS_PENDING
    order.payment_reference = None
    order.checkout_session_id = None
    order.provider_id = None
    order.split_from_order_id = None
    db.session.flush()

    _logger().info("Reopened order %s as cart for guest %s", order.id, guest_id)
    return order


def release_reservation(order: Order) -> None:
    """Give back the stock an order reserved; no-op for unreserved orders."""
    if not order.stock_reserved:
        return
    for line in order.items:
        release_stock(line.provider_id, line.item_id, line.quantity)
    order.stock_reserved = False


def get_or_create_cart(guest_id: str, *, reopen: bool = True) -> Order:
    """
    Find-or-create the guest's cart inside the caller's transaction.

    Creation runs in a savepoint so a unique-index violation from a
    concurrent first add only rolls back the insert, then the winner's
    cart is read back.
    """
    cart = get_open_cart(guest_id, lock=True)
    if cart is not None:
        return cart

    if reopen:
        cart = _reopen_abandoned_order(guest_id)
        if cart is not None:
            return cart

    try:
        with db.session.begin_nested():
            cart = Order(
                patient_identifier=guest_id,
                status=ORDER_STATUS_CART,
                payment_status=PAYMENT_STATUS_PENDING,
                total_price_kobo=0,
            )
            db.session.add(cart)
    except IntegrityError:
        cart = get_open_cart(guest_id, lock=True)
        if cart is None:
            raise
        _logger().info("Concurrent cart creation for guest %s resolved to order %s", guest_id, cart.id)
    return cart


def _load_offering(provider_id: int, item_id: int) -> ProviderOffering:
    provider = db.session.get(Provider, provider_id)
    if not provider:
        raise NotFoundError("Provider not found", {"provider_id": provider_id})

    offering = db.session.get(ProviderOffering, (provider_id, item_id))
    if not offering:
        raise NotFoundError(
            "Item not offered by this provider",
            {"provider_id": provider_id, "item_id": item_id},
        )
    if not provider.is_active:
        raise UnavailableError("Provider is not accepting orders", {"provider_id": provider_id})
    return offering


def _require_supply(offering: ProviderOffering, quantity: int) -> None:
    if not offering.can_supply(quantity):
        raise UnavailableError(
            "Item is not available in the requested quantity",
            {
                "provider_id": offering.provider_id,
                "item_id": offering.item_id,
                "requested_quantity": quantity,
                "stock": offering.stock,
                "available": offering.available,
            },
        )


def find_cart_item(order: Order, provider_id: int, item_id: int) -> OrderItem | None:
    return (
        db.session.query(OrderItem)
        .filter_by(order_id=order.id, provider_id=provider_id, item_id=item_id)
        .first()
    )


def merge_item(order: Order, provider_id: int, item_id: int, quantity: int, price_kobo: int) -> OrderItem:
    """
    Upsert one line: increment quantity on an existing (order, provider, item)
    row, insert otherwise. Price is re-snapshotted either way.
    """
    line = find_cart_item(order, provider_id, item_id)
    if line is not None:
        line.quantity += quantity
        line.price_kobo = price_kobo
    else:
        line = OrderItem(
            provider_id=provider_id,
            item_id=item_id,
            quantity=quantity,
            price_kobo=price_kobo,
        )
        order.items.append(line)
    return line


def add_item(item_id: int, provider_id: int, quantity: int, guest_id: str | None = None) -> tuple[OrderItem, str]:
    """
    Add an offering to the guest's cart.

    Generates the guest id when none is supplied; the caller must echo it
    back on every later request. Returns (order_item, guest_id).
    """
    guest_id = guest_id or new_guest_id()

    def _op():
        offering = _load_offering(provider_id, item_id)
        _require_supply(offering, quantity)
        cart = get_or_create_cart(guest_id)

        existing = find_cart_item(cart, provider_id, item_id)
        requested = quantity + (existing.quantity if existing else 0)
        _require_supply(offering, requested)

        line = merge_item(cart, provider_id, item_id, quantity, offering.price_kobo)
        db.session.flush()
        cart.recalculate_total()
        db.session.commit()
        return line

    line = run_with_retry(_op)
    _logger().info(
        "Guest %s added item %s from provider %s (qty %s) to order %s",
        guest_id, item_id, provider_id, quantity, line.order_id,
    )
    return line, guest_id


def group_items_by_provider(items: list[OrderItem]) -> list[dict]:
    """
    Group order items into [{provider, items, subtotal_kobo}] in first-seen
    provider order.
    """
    groups: dict[int, dict] = {}
    for line in items:
        group = groups.get(line.provider_id)
        if group is None:
            group = {
                "provider": line.provider.summary_dict() if line.provider else {"id": line.provider_id},
                "items": [],
                "subtotal_kobo": 0,
            }
            groups[line.provider_id] = group
        group["items"].append(line.to_dict())
        group["subtotal_kobo"] += line.line_total_kobo
    return list(groups.values())


def get_cart(guest_id: str) -> dict:
    """
    Cart grouped by provider. A guest without a cart gets the empty shape,
    never an error.
    """
    cart = (
        db.session.query(Order)
        .options(joinedload(Order.items).joinedload(OrderItem.provider))
        .options(joinedload(Order.items).joinedload(OrderItem.item))
        .filter_by(patient_identifier=guest_id, status=ORDER_STATUS_CART)
        .first()
    )
    if cart is None or not cart.items:
        return {"order_id": cart.id if cart else None, "providers": [], "total_price_kobo": 0}

    providers = group_items_by_provider(cart.items)
    return {
        "order_id": cart.id,
        "providers": providers,
        "total_price_kobo": sum(group["subtotal_kobo"] for group in providers),
    }


def get_cart_line(order_item_id: int, guest_id: str) -> tuple[Order, OrderItem]:
    cart = get_open_cart(guest_id, lock=True)
    line = None
    if cart is not None:
        line = db.session.query(OrderItem).filter_by(id=order_item_id, order_id=cart.id).first()
    if line is None:
        raise NotFoundError("Item not found in cart", {"order_item_id": order_item_id})
    return cart, line


def update_item(order_item_id: int, quantity: int, guest_id: str) -> OrderItem:
    """Change quantity; re-validates supply and re-snapshots the price."""
    def _op():
        cart, line = get_cart_line(order_item_id, guest_id)
        offering = _load_offering(line.provider_id, line.item_id)
        _require_supply(offering, quantity)

        line.quantity = quantity
        line.price_kobo = offering.price_kobo
        cart.recalculate_total()
        db.session.commit()
        return line

    return run_with_retry(_op)


def remove_item(order_item_id: int, guest_id: str) -> Order:
    def _op():
        cart, line = get_cart_line(order_item_id, guest_id)
        cart.items.remove(line)
        db.session.flush()
        cart.recalculate_total()
        db.session.commit()
        return cart

    cart = run_with_retry(_op)
    _logger().info("Guest %s removed order item %s from order %s", guest_id, order_item_id, cart.id)
    return cart
