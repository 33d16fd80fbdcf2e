# Overview: Service-layer operations for checkout; encapsulates business logic and database work.

"""
Checkout Service - turns a guest cart into payable sub-orders.

WHY: Providers settle independently and prescription-gated items cannot be
paid for until a reviewer verifies the document, so one cart becomes up to
three sub-orders per provider:
- covered:  gated items covered by the guest's latest verified record (payable)
- uploaded: gated items covered only by the document uploaded now (awaiting review)
- ungated:  items that need no prescription (payable)

One gateway charge settles every payable sub-order; a TransactionReference
maps that external reference to the sub-orders' own payment references.

DESIGN: Sub-order creation, stock reservation and cart deletion are flushed
but not committed until the gateway has returned a payment page. A gateway
failure rolls the whole checkout back, so no orphan sub-orders or stock
decrements survive it. Stock is reserved with a conditional decrement, so
two checkouts racing for the last units cannot both win.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import (
    EmptyCartError,
    NoPayableItemsError,
    NotFoundError,
    PaymentGatewayError,
    PrescriptionNotVerifiedError,
    PrescriptionRequiredError,
    SessionNotFoundError,
    UnavailableError,
    ConflictError,
)
from ..models import Order, OrderItem, Prescription, TransactionReference, TransactionReferenceEntry
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CART,
    ORDER_STATUS_PARTIALLY_COMPLETED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PENDING_PRESCRIPTION,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
)
from ..models.prescriptions import PRESCRIPTION_STATUS_VERIFIED
from ..time_utils import unix_millis, utcnow
from ..validation import normalize_phone
from . import cart_service, prescription_service
from .concurrency import lock_for_update, reserve_stock, run_with_retry
from .payment_gateway import get_gateway


BUCKET_COVERED = "covered"
BUCKET_UPLOADED = "uploaded"
BUCKET_UNGATED = "ungated"

# Orders a guest can still split for partial payment
PARTIAL_CHECKOUT_STATUSES = (
    ORDER_STATUS_CART,
    ORDER_STATUS_PARTIALLY_COMPLETED,
    ORDER_STATUS_PENDING_PRESCRIPTION,
    ORDER_STATUS_PENDING,
)

PRESCRIPTION_REVIEW_TIMEOUT = timedelta(hours=48)
PAYMENT_TIMEOUT = timedelta(hours=24)
TIMEOUT_RULES = (
    (ORDER_STATUS_PENDING_PRESCRIPTION, PRESCRIPTION_REVIEW_TIMEOUT, "Prescription verification timeout"),
    (ORDER_STATUS_PENDING, PAYMENT_TIMEOUT, "Payment timeout"),
)

SESSION_OPEN_STATUSES = (ORDER_STATUS_PENDING, ORDER_STATUS_PENDING_PRESCRIPTION)


def new_checkout_session_id() -> str:
    """Numeric session id (millis + 3 random digits); tracking codes embed it."""
    return f"{unix_millis()}{secrets.randbelow(1000):03d}"


def new_order_reference() -> str:
    return f"order_{uuid.uuid4().hex}"


def new_transaction_reference(checkout_session_id: str) -> str:
    return f"session_{checkout_session_id}_{uuid.uuid4().hex}"


def _callback_url(checkout_session_id: str) -> str:
    return f"{current_app.config['PAYMENT_CALLBACK_URL']}?session={checkout_session_id}"


def _payer_email(email: str | None, guest_id: str) -> str:
    if email:
        return email
    return f"guest-{guest_id}@{current_app.config['PAYMENT_FALLBACK_EMAIL_DOMAIN']}"


def _copy_line(line: OrderItem) -> OrderItem:
    return OrderItem(
        provider_id=line.provider_id,
        item_id=line.item_id,
        quantity=line.quantity,
        price_kobo=line.price_kobo,
        time_slot_start=line.time_slot_start,
        time_slot_end=line.time_slot_end,
        fulfillment_method=line.fulfillment_method,
    )


def reserve_order_stock(order: Order) -> None:
    """Reserve every stock-tracked line of order, or fail the whole order."""
    for line in order.items:
        if not reserve_stock(line.provider_id, line.item_id, line.quantity):
            raise UnavailableError(
                "Insufficient stock to complete checkout",
                {"provider_id": line.provider_id, "item_id": line.item_id, "requested_quantity": line.quantity},
            )
    order.stock_reserved = True


def _partition(
    lines: list[OrderItem],
    covered_ids: set[int],
    uploaded_ids: set[int],
) -> dict[int, dict[str, list[OrderItem]]]:
    """provider_id -> bucket -> lines, in first-seen provider order."""
    buckets: dict[int, dict[str, list[OrderItem]]] = {}
    for line in lines:
        provider_buckets = buckets.setdefault(line.provider_id, {})
        if line.item_id in covered_ids:
            bucket = BUCKET_COVERED
        elif line.item_id in uploaded_ids:
            bucket = BUCKET_UPLOADED
        else:
            bucket = BUCKET_UNGATED
        provider_buckets.setdefault(bucket, []).append(line)
    return buckets


def _start_payment(
    guest_id: str,
    checkout_session_id: str,
    payable: list[Order],
    email: str | None,
    transaction_reference: str | None = None,
) -> tuple[TransactionReference, object]:
    """Call the gateway for the payable orders and stage the TransactionReference row."""
    total = sum(order.total_price_kobo for order in payable)
    reference = transaction_reference or new_transaction_reference(checkout_session_id)

    payment = get_gateway().initialize(
        email=_payer_email(email, guest_id),
        amount_kobo=total,
        reference=reference,
        callback_url=_callback_url(checkout_session_id),
    )

    record = TransactionReference(
        transaction_reference=reference,
        checkout_session_id=checkout_session_id,
        amount_kobo=total,
        authorization_url=payment.authorization_url,
    )
    for order in payable:
        record.entries.append(TransactionReferenceEntry(payment_reference=order.payment_reference))
    db.session.add(record)
    return record, payment


def initiate_checkout(
    guest_id: str,
    name: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    fulfillment_method: str | None = None,
    file_url: str | None = None,
) -> dict:
    """
    Split the guest's cart into sub-orders and start one payment session for
    the payable ones.

    Returns the sub-orders plus, when anything is payable, the gateway's
    payment_url and the transaction_reference to confirm with later.
    """
    def _op():
        cart = cart_service.get_open_cart(guest_id, lock=True)
        if cart is None or not cart.items:
            raise EmptyCartError("Cart is empty")

        lines = list(cart.items)
        required_ids = {line.item_id for line in lines if line.item.prescription_required}

        verified = None
        uploaded = None
        covered_ids: set[int] = set()
        uploaded_ids: set[int] = set()
        if required_ids:
            verified = prescription_service.latest_verified_prescription(guest_id)
            if verified is not None:
                covered_ids = required_ids & verified.covered_item_ids
            uncovered = required_ids - covered_ids
            if uncovered:
                if not file_url:
                    raise PrescriptionRequiredError(
                        "A verified prescription or test order is required for some items, "
                        "and none was uploaded",
                        {"item_ids": sorted(uncovered)},
                    )
                gated_items = [line.item for line in lines if line.item_id in uncovered]
                uploaded = prescription_service.create_prescription(
                    guest_id,
                    file_url,
                    kind=prescription_service.kind_for_items(gated_items),
                    email=email,
                    phone=phone,
                    item_ids=sorted(uncovered),
                )
                uploaded_ids = uncovered

        checkout_session_id = new_checkout_session_id()
        sub_orders: list[Order] = []
        for provider_id, buckets in _partition(lines, covered_ids, uploaded_ids).items():
            for bucket, bucket_lines in buckets.items():
                order = Order(
                    patient_identifier=guest_id,
                    provider_id=provider_id,
                    status=ORDER_STATUS_PENDING_PRESCRIPTION if bucket == BUCKET_UPLOADED else ORDER_STATUS_PENDING,
                    payment_status=PAYMENT_STATUS_PENDING,
                    checkout_session_id=checkout_session_id,
                    payment_reference=new_order_reference(),
                    name=name,
                    email=email,
                    phone=phone,
                    address=address,
                    fulfillment_method=fulfillment_method,
                )
                if bucket == BUCKET_COVERED:
                    order.prescription_id = verified.id
                elif bucket == BUCKET_UPLOADED:
                    order.prescription_id = uploaded.id
                for line in bucket_lines:
                    order.items.append(_copy_line(line))
                order.recalculate_total()
                db.session.add(order)
                sub_orders.append(order)

        db.session.delete(cart)
        db.session.flush()

        for order in sub_orders:
            reserve_order_stock(order)
        db.session.flush()

        payable = [order for order in sub_orders if order.status == ORDER_STATUS_PENDING]
        result = {
            "checkout_session_id": checkout_session_id,
            "orders": sub_orders,
            "prescription_id": uploaded.id if uploaded else None,
            "total_payable_kobo": sum(order.total_price_kobo for order in payable),
            "transaction_reference": None,
            "payment_url": None,
        }
        if payable:
            record, payment = _start_payment(guest_id, checkout_session_id, payable, email)
            result["transaction_reference"] = record.transaction_reference
            result["payment_url"] = payment.authorization_url

        db.session.commit()
        return result

    try:
        result = run_with_retry(_op)
    except PaymentGatewayError:
        current_app.logger.warning("Checkout for guest %s rolled back: payment gateway failure", guest_id)
        raise

    current_app.logger.info(
        "Checkout session %s for guest %s: %s sub-orders, payable %s kobo",
        result["checkout_session_id"], guest_id, len(result["orders"]), result["total_payable_kobo"],
    )
    if result["payment_url"] is None:
        result["message"] = "Order submitted, awaiting prescription verification"
    else:
        result["message"] = "Checkout initiated"
    result["orders"] = [order.to_dict() for order in result["orders"]]
    return result


def retrieve_session(
    email: str | None = None,
    phone: str | None = None,
    checkout_session_id: str | None = None,
) -> dict:
    """
    Best-effort guest id recovery: exact checkout session first, otherwise the
    newer of the latest order and latest prescription matching email/phone.
    """
    if checkout_session_id:
        order = (
            db.session.query(Order)
            .filter_by(checkout_session_id=checkout_session_id)
            .order_by(Order.id.desc())
            .first()
        )
        if order:
            return {"guest_id": order.patient_identifier, "checkout_session_id": checkout_session_id}

    phone = normalize_phone(phone)
    if not email and not phone:
        raise SessionNotFoundError("No session found")

    def _contact_filter(model):
        clauses = []
        if email:
            clauses.append(model.email == email.lower())
        if phone:
            clauses.append(model.phone == phone)
        return or_(*clauses)

    order = (
        db.session.query(Order)
        .filter(_contact_filter(Order))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .first()
    )
    prescription = (
        db.session.query(Prescription)
        .filter(_contact_filter(Prescription))
        .order_by(Prescription.created_at.desc(), Prescription.id.desc())
        .first()
    )

    if order and (prescription is None or order.created_at >= prescription.created_at):
        return {"guest_id": order.patient_identifier, "checkout_session_id": order.checkout_session_id}
    if prescription:
        return {"guest_id": prescription.patient_identifier, "checkout_session_id": None}
    raise SessionNotFoundError("No session found")


def _guest_order(order_id: int, guest_id: str, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id, patient_identifier=guest_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFoundError("Order not found", {"order_id": order_id})
    return order


def _session_orders(guest_id: str, checkout_session_id: str, *, lock: bool = False) -> list[Order]:
    query = (
        db.session.query(Order)
        .filter(
            Order.patient_identifier == guest_id,
            Order.checkout_session_id == checkout_session_id,
            Order.status.in_(SESSION_OPEN_STATUSES),
            Order.payment_status != PAYMENT_STATUS_PAID,
        )
        .order_by(Order.id)
    )
    if lock:
        query = lock_for_update(query)
    return query.all()


def get_session_details(order_id: int, guest_id: str) -> dict:
    """Open (unpaid) sub-orders of the checkout session the order belongs to."""
    order = _guest_order(order_id, guest_id)
    if not order.checkout_session_id:
        raise SessionNotFoundError("Order has no checkout session", {"order_id": order_id})

    orders = _session_orders(guest_id, order.checkout_session_id)
    payable = [o for o in orders if o.status == ORDER_STATUS_PENDING]
    return {
        "checkout_session_id": order.checkout_session_id,
        "orders": [o.to_dict() for o in orders],
        "total_price_kobo": sum(o.total_price_kobo for o in orders),
        "payable_total_kobo": sum(o.total_price_kobo for o in payable),
        "awaiting_prescription": any(o.status == ORDER_STATUS_PENDING_PRESCRIPTION for o in orders),
        "email": order.email,
    }


def resume_checkout(order_id: int, guest_id: str, email: str | None = None) -> dict:
    """
    Restart payment for a checkout session once its prescriptions are verified.

    Every prescription-gated sub-order must now have a verified record; the
    payable total is recomputed over all pending sub-orders, and fresh
    per-order and transaction references replace the old ones.
    """
    def _op():
        order = _guest_order(order_id, guest_id)
        session_id = order.checkout_session_id
        if not session_id:
            raise SessionNotFoundError("Order has no checkout session", {"order_id": order_id})

        orders = _session_orders(guest_id, session_id, lock=True)
        if not orders:
            raise NoPayableItemsError("No unpaid orders in this checkout session")

        for pending in orders:
            if pending.status != ORDER_STATUS_PENDING_PRESCRIPTION:
                continue
            prescription = pending.prescription
            if prescription is None or prescription.status != PRESCRIPTION_STATUS_VERIFIED:
                raise PrescriptionNotVerifiedError(
                    "Prescription has not been verified yet",
                    {"order_id": pending.id, "prescription_id": pending.prescription_id},
                )
            pending.status = ORDER_STATUS_PENDING

        millis = unix_millis()
        for pending in orders:
            pending.payment_reference = f"order_{pending.id}_{session_id}_{millis}"
            pending.recalculate_total()
        db.session.flush()

        record, payment = _start_payment(guest_id, session_id, orders, email or order.email)
        db.session.commit()
        return {
            "checkout_session_id": session_id,
            "orders": [o.to_dict() for o in orders],
            "total_payable_kobo": record.amount_kobo,
            "transaction_reference": record.transaction_reference,
            "payment_url": payment.authorization_url,
        }

    result = run_with_retry(_op)
    current_app.logger.info(
        "Resumed checkout session %s for guest %s with reference %s",
        result["checkout_session_id"], guest_id, result["transaction_reference"],
    )
    result["message"] = "Checkout resumed"
    return result


def _payable_lines(order: Order, guest_id: str) -> tuple[list[OrderItem], Prescription | None]:
    verified = order.prescription if order.prescription and order.prescription.status == PRESCRIPTION_STATUS_VERIFIED else None
    if verified is None:
        verified = prescription_service.latest_verified_prescription(guest_id)
    covered = verified.covered_item_ids if verified else set()
    payable = [
        line for line in order.items
        if not line.item.prescription_required or line.item_id in covered
    ]
    return payable, verified


def partial_checkout(order_id: int, guest_id: str) -> dict:
    """
    Move the payable items of an order into a new pending order, leaving the
    gated ones behind (original becomes partially_completed, or is deleted
    when emptied). A repeat call finds nothing payable and fails with
    NoPayableItemsError instead of splitting again.
    """
    def _op():
        order = (
            lock_for_update(
                db.session.query(Order).filter(
                    Order.id == order_id,
                    Order.patient_identifier == guest_id,
                    Order.status.in_(PARTIAL_CHECKOUT_STATUSES),
                )
            )
            .first()
        )
        if order is None:
            already_split = (
                db.session.query(Order)
                .filter_by(split_from_order_id=order_id, patient_identifier=guest_id)
                .first()
            )
            if already_split:
                raise NoPayableItemsError("No payable items available for partial checkout")
            raise NotFoundError("Order not found", {"order_id": order_id})

        payable, verified = _payable_lines(order, guest_id)
        if not payable:
            raise NoPayableItemsError("No payable items available for partial checkout")

        providers = {line.provider_id for line in payable}
        split = Order(
            patient_identifier=guest_id,
            provider_id=next(iter(providers)) if len(providers) == 1 else None,
            status=ORDER_STATUS_PENDING,
            payment_status=PAYMENT_STATUS_PENDING,
            checkout_session_id=new_checkout_session_id(),
            payment_reference=new_order_reference(),
            split_from_order_id=order.id,
            name=order.name,
            email=order.email,
            phone=order.phone,
            address=order.address,
            fulfillment_method=order.fulfillment_method,
            stock_reserved=order.stock_reserved,
        )
        if verified is not None and any(line.item.prescription_required for line in payable):
            split.prescription_id = verified.id
        for line in payable:
            split.items.append(_copy_line(line))
            order.items.remove(line)
        split.recalculate_total()
        db.session.add(split)
        db.session.flush()

        if not split.stock_reserved:
            reserve_order_stock(split)

        remaining_id = None
        if order.items:
            order.status = ORDER_STATUS_PARTIALLY_COMPLETED
            order.recalculate_total()
            remaining_id = order.id
        else:
            db.session.delete(order)

        db.session.commit()
        return split, remaining_id

    split, remaining_id = run_with_retry(_op)
    current_app.logger.info(
        "Guest %s split order %s: payable items moved to order %s", guest_id, order_id, split.id
    )
    return {"order": split.to_dict(), "remaining_order_id": remaining_id}


def cancel_partial_checkout(order_id: int, guest_id: str) -> dict:
    """Merge a still-unpaid pending order back into the cart and delete it."""
    def _op():
        order = _guest_order(order_id, guest_id, lock=True)
        if order.status != ORDER_STATUS_PENDING or order.payment_status == PAYMENT_STATUS_PAID:
            raise ConflictError(
                "Only unpaid pending orders can be returned to the cart",
                {"order_id": order.id, "status": order.status, "payment_status": order.payment_status},
            )

        cart = cart_service.get_or_create_cart(guest_id, reopen=False)
        cart_service.release_reservation(order)
        for line in list(order.items):
            merged = cart_service.merge_item(cart, line.provider_id, line.item_id, line.quantity, line.price_kobo)
            if merged.time_slot_start is None:
                merged.time_slot_start = line.time_slot_start
                merged.time_slot_end = line.time_slot_end
                merged.fulfillment_method = merged.fulfillment_method or line.fulfillment_method

        db.session.delete(order)
        db.session.flush()
        cart.recalculate_total()
        db.session.commit()
        return cart

    cart = run_with_retry(_op)
    current_app.logger.info("Guest %s returned order %s to cart %s", guest_id, order_id, cart.id)
    return cart_service.get_cart(guest_id)


def check_prescription_coverage(guest_id: str, item_ids: list[int]) -> dict:
    return prescription_service.check_coverage(guest_id, item_ids)


def cancel_timed_out_orders(now: datetime | None = None) -> list[int]:
    """
    Cancel unpaid orders left waiting too long and give their stock back.

    - pending_prescription older than PRESCRIPTION_REVIEW_TIMEOUT
    - pending older than PAYMENT_TIMEOUT

    Paid orders are left alone. Returns the cancelled order ids.
    """
    now = now or utcnow()

    def _op():
        cancelled = []
        for status, timeout, reason in TIMEOUT_RULES:
            orders = lock_for_update(
                db.session.query(Order)
                .filter(
                    Order.status == status,
                    Order.payment_status != PAYMENT_STATUS_PAID,
                    Order.created_at <= now - timeout,
                )
                .order_by(Order.id)
            ).all()
            for order in orders:
                order.status = ORDER_STATUS_CANCELLED
                order.cancel_reason = reason
                order.cancelled_at = now
                cart_service.release_reservation(order)
                cancelled.append(order.id)
        db.session.commit()
        return cancelled

    cancelled = run_with_retry(_op)
    if cancelled:
        current_app.logger.info("Cancelled %d timed-out orders: %s", len(cancelled), cancelled)
    return cancelled
