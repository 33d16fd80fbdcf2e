# Overview: Service-layer operations for payment confirmation; encapsulates business logic and database work.

"""
Confirmation Service - runs when the guest returns from the payment page.

The callback URL carries no trusted payload: only the gateway's verify
response can move an order to paid. Resolution order:
1. reference as an external transaction reference, then as one of the
   internal order references it settles
2. the checkout session (given, or taken from the resolved transaction)

A failed verification marks the resolved orders' payment failed and is
terminal for that payment attempt. Orders already paid are never
downgraded by a later confirmation call.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import OrdersNotFoundError, PaymentVerificationFailedError
from ..models import Order, TransactionReference, TransactionReferenceEntry
from ..models.orders import (
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PENDING_PRESCRIPTION,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PAID,
)
from ..models.prescriptions import PRESCRIPTION_STATUS_VERIFIED
from ..time_utils import utcnow
from ..validation import ValidationError, is_valid_payment_reference
from . import prescription_service
from .cart_service import group_items_by_provider
from .concurrency import lock_for_update, run_with_retry
from .payment_gateway import get_gateway
from .tracking_service import generate_tracking_code


IN_FLIGHT_STATUSES = (ORDER_STATUS_PENDING, ORDER_STATUS_PENDING_PRESCRIPTION, ORDER_STATUS_CONFIRMED)
UNCONFIRMED_STATUSES = (ORDER_STATUS_PENDING, ORDER_STATUS_PENDING_PRESCRIPTION)

CONFIRMATION_COMPLETED = "completed"
CONFIRMATION_AWAITING = "awaiting_verification"


def resolve_transaction(reference: str) -> TransactionReference | None:
    record = db.session.query(TransactionReference).filter_by(transaction_reference=reference).first()
    if record is not None:
        return record
    entry = (
        db.session.query(TransactionReferenceEntry)
        .filter_by(payment_reference=reference)
        .order_by(TransactionReferenceEntry.id.desc())
        .first()
    )
    return entry.transaction if entry else None


def _resolve_orders(guest_id: str, record: TransactionReference | None, checkout_session_id: str | None) -> list[Order]:
    orders: list[Order] = []
    if record is not None:
        orders = lock_for_update(
            db.session.query(Order)
            .filter(
                Order.patient_identifier == guest_id,
                Order.payment_reference.in_(record.payment_references),
            )
            .order_by(Order.id)
        ).all()

    session_id = checkout_session_id or (record.checkout_session_id if record else None)
    if not orders and session_id:
        orders = lock_for_update(
            db.session.query(Order)
            .filter(
                Order.patient_identifier == guest_id,
                Order.checkout_session_id == session_id,
                Order.status.in_(IN_FLIGHT_STATUSES),
            )
            .order_by(Order.id)
        ).all()
    return orders


def _session_tracking_code(guest_id: str, session_id: str | None) -> str | None:
    """A session keeps the tracking code of its first confirmed payment."""
    if not session_id:
        return None
    row = (
        db.session.query(Order.tracking_code)
        .filter(
            Order.patient_identifier == guest_id,
            Order.checkout_session_id == session_id,
            Order.tracking_code.isnot(None),
        )
        .first()
    )
    return row[0] if row else None


def is_covered(order: Order, guest_id: str) -> bool:
    """Every prescription-required item on the order is covered by a verified record."""
    required = {line.item_id for line in order.items if line.item.prescription_required}
    if not required:
        return True
    prescription = order.prescription
    if prescription is None or prescription.status != PRESCRIPTION_STATUS_VERIFIED:
        prescription = prescription_service.latest_verified_prescription(guest_id)
    return prescription_service.covers(prescription, required)


def _is_settled(order: Order) -> bool:
    return order.payment_status == PAYMENT_STATUS_PAID and order.status not in UNCONFIRMED_STATUSES


def confirm_order(guest_id: str, reference: str | None = None, checkout_session_id: str | None = None) -> dict:
    if reference and not is_valid_payment_reference(reference):
        raise ValidationError("Invalid payment reference format", {"reference": "Invalid payment reference format"})

    def _op():
        record = resolve_transaction(reference) if reference else None
        orders = _resolve_orders(guest_id, record, checkout_session_id)
        if not orders:
            raise OrdersNotFoundError(
                "No orders found for this payment",
                {"reference": reference, "checkout_session_id": checkout_session_id},
            )

        session_id = checkout_session_id or (record.checkout_session_id if record else None) or orders[0].checkout_session_id
        tracking_code = next((o.tracking_code for o in orders if o.tracking_code), None)
        if tracking_code is None:
            tracking_code = _session_tracking_code(guest_id, session_id)
        if tracking_code is None:
            tracking_code = generate_tracking_code(session_id, orders[0].id)

        settled_refs: set[str] = set()
        if record is not None:
            verification = get_gateway().verify(record.transaction_reference)
            # A reported amount must match what this reference was opened for
            amount_matches = verification.amount_kobo is None or verification.amount_kobo == record.amount_kobo
            if not verification.successful or not amount_matches:
                for order in orders:
                    if order.payment_status != PAYMENT_STATUS_PAID:
                        order.payment_status = PAYMENT_STATUS_FAILED
                db.session.commit()
                current_app.logger.warning(
                    "Payment verification failed for %s (guest %s, gateway status %s, amount %s of %s)",
                    record.transaction_reference, guest_id, verification.gateway_status,
                    verification.amount_kobo, record.amount_kobo,
                )
                raise PaymentVerificationFailedError(
                    "Payment verification failed",
                    {
                        "reference": record.transaction_reference,
                        "gateway_status": verification.gateway_status,
                        "amount_kobo": verification.amount_kobo,
                        "expected_amount_kobo": record.amount_kobo,
                    },
                )
            settled_refs = set(record.payment_references)

        now = utcnow()
        for order in orders:
            order.tracking_code = order.tracking_code or tracking_code
            if _is_settled(order):
                continue
            if order.payment_reference not in settled_refs:
                continue
            order.payment_status = PAYMENT_STATUS_PAID
            order.paid_at = order.paid_at or now
            if is_covered(order, guest_id):
                order.status = ORDER_STATUS_CONFIRMED
            else:
                order.status = ORDER_STATUS_PENDING_PRESCRIPTION

        db.session.commit()
        return orders, tracking_code, session_id

    orders, tracking_code, session_id = run_with_retry(_op)

    confirmed = [o for o in orders if _is_settled(o)]
    awaiting = [o for o in orders if not _is_settled(o)]
    providers = group_items_by_provider([line for order in confirmed for line in order.items])
    completed = not awaiting

    current_app.logger.info(
        "Confirmation for guest %s session %s: %s confirmed, %s awaiting",
        guest_id, session_id, len(confirmed), len(awaiting),
    )
    return {
        "message": (
            "Payment verified and bookings confirmed"
            if completed
            else "Bookings retrieved, some awaiting verification"
        ),
        "status": CONFIRMATION_COMPLETED if completed else CONFIRMATION_AWAITING,
        "tracking_code": tracking_code,
        "checkout_session_id": session_id,
        "providers": providers,
        "total_price_kobo": sum(group["subtotal_kobo"] for group in providers),
        "pending_orders": [o.to_dict() for o in awaiting],
    }
