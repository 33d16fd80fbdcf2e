from __future__ import annotations

from ..extensions import db
from medhub.time_utils import to_utc_z


# Order lifecycle
ORDER_STATUS_CART = "cart"
ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PENDING_PRESCRIPTION = "pending_prescription"
ORDER_STATUS_PARTIALLY_COMPLETED = "partially_completed"
ORDER_STATUS_CONFIRMED = "confirmed"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_SHIPPED = "shipped"
ORDER_STATUS_SAMPLE_COLLECTED = "sample_collected"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_READY_FOR_PICKUP = "ready_for_pickup"
ORDER_STATUS_RESULT_READY = "result_ready"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = (
    ORDER_STATUS_CART,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PENDING_PRESCRIPTION,
    ORDER_STATUS_PARTIALLY_COMPLETED,
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

# Payment status is tracked orthogonally to order status
PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_CANCELLED = "cancelled"

PAYMENT_STATUSES = (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_CANCELLED,
)

FULFILLMENT_PICKUP = "pickup"
FULFILLMENT_DELIVERY = "delivery"
FULFILLMENT_LAB_VISIT = "lab_visit"
FULFILLMENT_HOME_COLLECTION = "home_collection"
FULFILLMENT_IN_PERSON = "in_person"
FULFILLMENT_METHODS = (
    FULFILLMENT_PICKUP,
    FULFILLMENT_DELIVERY,
    FULFILLMENT_LAB_VISIT,
    FULFILLMENT_HOME_COLLECTION,
)
# Fulfillment types that send staff or goods to the patient
REMOTE_FULFILLMENT_METHODS = (FULFILLMENT_DELIVERY, FULFILLMENT_HOME_COLLECTION)


class Order(db.Model):
    """
    Cart, sub-order or booking for one patient identifier.

    A patient has at most one order in status 'cart'; the partial unique
    index makes the database refuse a second one so concurrent first adds
    collapse onto a single cart.

    total_price_kobo is derived: recalculated from items after every item
    mutation, never trusted from input.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index(
            "uq_orders_one_cart_per_patient",
            "patient_identifier",
            unique=True,
            sqlite_where=db.text("status = 'cart'"),
            postgresql_where=db.text("status = 'cart'"),
        ),
        db.Index("ix_orders_patient_status", "patient_identifier", "status"),
        db.Index("ix_orders_checkout_session", "checkout_session_id"),
        db.Index("ix_orders_tracking_code", "tracking_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    patient_identifier = db.Column(db.String(64), nullable=False)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=True, index=True)

    status = db.Column(db.String(32), nullable=False, default=ORDER_STATUS_CART)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING)
    total_price_kobo = db.Column(db.Integer, nullable=False, default=0)

    prescription_id = db.Column(db.Integer, db.ForeignKey("prescriptions.id"), nullable=True, index=True)
    tracking_code = db.Column(db.String(64), nullable=True)
    checkout_session_id = db.Column(db.String(64), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True, unique=True)
    # Plain id: the source order may be deleted once all its items are moved out
    split_from_order_id = db.Column(db.Integer, nullable=True, index=True)
    # True once stock for the items has been reserved (checkout or split from a cart)
    stock_reserved = db.Column(db.Boolean, nullable=False, default=False)

    # Contact / delivery details captured at checkout
    name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    phone = db.Column(db.String(32), nullable=True, index=True)
    address = db.Column(db.String(255), nullable=True)
    fulfillment_method = db.Column(db.String(32), nullable=True)

    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    filled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now()
    )

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    provider = db.relationship("Provider")
    prescription = db.relationship("Prescription", backref=db.backref("orders", lazy=True))

    def recalculate_total(self) -> int:
        self.total_price_kobo = sum(item.quantity * item.price_kobo for item in self.items)
        return self.total_price_kobo

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "patient_identifier": self.patient_identifier,
            "provider_id": self.provider_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "total_price_kobo": self.total_price_kobo,
            "prescription_id": self.prescription_id,
            "tracking_code": self.tracking_code,
            "checkout_session_id": self.checkout_session_id,
            "payment_reference": self.payment_reference,
            "split_from_order_id": self.split_from_order_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "fulfillment_method": self.fulfillment_method,
            "cancel_reason": self.cancel_reason,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "filled_at": to_utc_z(self.filled_at) if self.filled_at else None,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    One offering on an order.

    price_kobo is the offering price snapshotted when the item was added or
    last updated; later offering price changes do not reach it.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "provider_id", "item_id", name="uq_order_items_order_offering"),
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_kobo = db.Column(db.Integer, nullable=False)

    # Appointment-style items
    time_slot_start = db.Column(db.DateTime(timezone=True), nullable=True)
    time_slot_end = db.Column(db.DateTime(timezone=True), nullable=True)
    fulfillment_method = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    provider = db.relationship("Provider")
    item = db.relationship("CatalogItem")
    # No FK to the offering: offerings can be withdrawn without rewriting order history
    offering = db.relationship(
        "ProviderOffering",
        primaryjoin="and_(foreign(OrderItem.provider_id) == ProviderOffering.provider_id, "
                    "foreign(OrderItem.item_id) == ProviderOffering.item_id)",
        viewonly=True,
        uselist=False,
    )

    @property
    def line_total_kobo(self) -> int:
        return self.quantity * self.price_kobo

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "provider_id": self.provider_id,
            "item_id": self.item_id,
            "display_name": self.item.display_name if self.item else None,
            "kind": self.item.kind if self.item else None,
            "prescription_required": self.item.prescription_required if self.item else False,
            "quantity": self.quantity,
            "price_kobo": self.price_kobo,
            "line_total_kobo": self.line_total_kobo,
            "time_slot_start": to_utc_z(self.time_slot_start) if self.time_slot_start else None,
            "time_slot_end": to_utc_z(self.time_slot_end) if self.time_slot_end else None,
            "fulfillment_method": self.fulfillment_method,
        }


class TransactionReference(db.Model):
    """
    One external gateway charge settling N internal order references.

    Written once at checkout initiation (or resume); read during confirmation.
    """
    __tablename__ = "transaction_references"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_reference = db.Column(db.String(128), nullable=False, unique=True)
    checkout_session_id = db.Column(db.String(64), nullable=False, index=True)
    amount_kobo = db.Column(db.Integer, nullable=False, default=0)
    authorization_url = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    entries = db.relationship(
        "TransactionReferenceEntry",
        backref="transaction",
        lazy=True,
        cascade="all, delete-orphan",
    )

    @property
    def payment_references(self) -> list[str]:
        return [entry.payment_reference for entry in self.entries]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_reference": self.transaction_reference,
            "checkout_session_id": self.checkout_session_id,
            "amount_kobo": self.amount_kobo,
            "payment_references": self.payment_references,
            "created_at": to_utc_z(self.created_at),
        }


class TransactionReferenceEntry(db.Model):
    """Internal order payment reference covered by a TransactionReference."""
    __tablename__ = "transaction_reference_entries"
    __table_args__ = (
        db.UniqueConstraint(
            "transaction_reference_id", "payment_reference", name="uq_transaction_reference_entries"
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_reference_id = db.Column(
        db.Integer, db.ForeignKey("transaction_references.id"), nullable=False, index=True
    )
    payment_reference = db.Column(db.String(128), nullable=False, index=True)
