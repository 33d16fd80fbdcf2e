from __future__ import annotations

from ..extensions import db
from medhub.time_utils import to_iso_date, to_utc_z


KIND_MEDICATION = "medication"
KIND_DIAGNOSTIC = "diagnostic"
KIND_DIAGNOSTIC_PACKAGE = "diagnostic_package"
SERVICE_KINDS = (KIND_MEDICATION, KIND_DIAGNOSTIC, KIND_DIAGNOSTIC_PACKAGE)

PROVIDER_PHARMACY = "pharmacy"
PROVIDER_LAB = "lab"
PROVIDER_DIAGNOSTIC_CENTER = "diagnostic_center"
PROVIDER_TYPES = (PROVIDER_PHARMACY, PROVIDER_LAB, PROVIDER_DIAGNOSTIC_CENTER)

VERIFICATION_PENDING = "pending"
VERIFICATION_VERIFIED = "verified"
VERIFICATION_REJECTED = "rejected"
VERIFICATION_STATUSES = (VERIFICATION_PENDING, VERIFICATION_VERIFIED, VERIFICATION_REJECTED)

DEFAULT_OPERATING_HOURS = "09:00-17:00"


class CatalogItem(db.Model):
    """
    Medication or diagnostic test/package.

    Reference data created by admin tooling. `kind` replaces the separate
    medication / test / service tables: every cart, checkout and tracking
    path treats items generically and only display naming looks at it.
    """
    __tablename__ = "catalog_items"
    __table_args__ = (
        db.Index("ix_catalog_items_kind_name", "kind", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    kind = db.Column(db.String(32), nullable=False, default=KIND_MEDICATION, index=True)
    category = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)
    prescription_required = db.Column(db.Boolean, nullable=False, default=False)

    # Medication-only attributes
    strength = db.Column(db.String(64), nullable=True)
    dosage = db.Column(db.String(64), nullable=True)
    form = db.Column(db.String(64), nullable=True)

    # Diagnostic-only attributes
    prep_instructions = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def display_name(self) -> str:
        if self.kind != KIND_MEDICATION:
            return self.name
        parts = [self.name]
        if self.dosage or self.strength:
            parts.append(self.dosage or self.strength)
        if self.form:
            parts.append(f"({self.form})")
        return " ".join(parts)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "kind": self.kind,
            "category": self.category,
            "description": self.description,
            "prescription_required": self.prescription_required,
            "strength": self.strength,
            "dosage": self.dosage,
            "form": self.form,
            "prep_instructions": self.prep_instructions,
        }


class Provider(db.Model):
    """
    Pharmacy, lab or diagnostic center.

    Lifecycle: created pending at registration, verified/rejected by an
    admin, can be deactivated (is_active=False) without deleting history.
    """
    __tablename__ = "providers"
    __table_args__ = (
        db.Index("ix_providers_status_active", "verification_status", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    provider_type = db.Column(db.String(32), nullable=False, default=PROVIDER_PHARMACY)

    # Location
    address = db.Column(db.String(255), nullable=True)
    state = db.Column(db.String(64), nullable=True)
    lga = db.Column(db.String(64), nullable=True)
    ward = db.Column(db.String(64), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    license_number = db.Column(db.String(64), nullable=True)

    verification_status = db.Column(db.String(16), nullable=False, default=VERIFICATION_PENDING)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    home_collection_available = db.Column(db.Boolean, nullable=False, default=False)
    operating_hours = db.Column(db.String(32), nullable=True)  # "HH:MM-HH:MM"

    # Push notification target
    device_token = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def summary_dict(self) -> dict:
        """Shape embedded in cart / confirmation / tracking provider groups."""
        return {
            "id": self.id,
            "name": self.name,
            "provider_type": self.provider_type,
            "address": self.address,
            "home_collection_available": self.home_collection_available,
        }

    def to_dict(self) -> dict:
        return {
            **self.summary_dict(),
            "state": self.state,
            "lga": self.lga,
            "ward": self.ward,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "phone": self.phone,
            "email": self.email,
            "license_number": self.license_number,
            "verification_status": self.verification_status,
            "is_active": self.is_active,
            "operating_hours": self.operating_hours or DEFAULT_OPERATING_HOURS,
            "created_at": to_utc_z(self.created_at),
            "verified_at": to_utc_z(self.verified_at) if self.verified_at else None,
        }


class ProviderOffering(db.Model):
    """
    A provider's priced instance of a catalog item.

    stock is NULL for availability-only items (diagnostic tests);
    otherwise it is reserved by conditional decrement at checkout.
    """
    __tablename__ = "provider_offerings"
    __table_args__ = (
        db.CheckConstraint("stock IS NULL OR stock >= 0", name="ck_provider_offerings_stock_nonneg"),
        db.CheckConstraint("price_kobo >= 0", name="ck_provider_offerings_price_nonneg"),
    )

    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), primary_key=True)

    stock = db.Column(db.Integer, nullable=True)
    available = db.Column(db.Boolean, nullable=False, default=True)
    price_kobo = db.Column(db.Integer, nullable=False)

    received_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now()
    )

    provider = db.relationship("Provider", backref=db.backref("offerings", lazy=True))
    item = db.relationship("CatalogItem", backref=db.backref("offerings", lazy=True))

    def can_supply(self, quantity: int) -> bool:
        if not self.available:
            return False
        return self.stock is None or self.stock >= quantity

    def to_dict(self) -> dict:
        return {
            "provider_id": self.provider_id,
            "item_id": self.item_id,
            "stock": self.stock,
            "available": self.available,
            "price_kobo": self.price_kobo,
            "received_date": to_iso_date(self.received_date),
            "expiry_date": to_iso_date(self.expiry_date),
            "item": self.item.to_dict() if self.item else None,
        }
