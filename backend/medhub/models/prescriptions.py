from __future__ import annotations

from ..extensions import db
from medhub.time_utils import to_utc_z


PRESCRIPTION_KIND_PRESCRIPTION = "prescription"
PRESCRIPTION_KIND_TEST_ORDER = "test_order"
PRESCRIPTION_KINDS = (PRESCRIPTION_KIND_PRESCRIPTION, PRESCRIPTION_KIND_TEST_ORDER)

PRESCRIPTION_STATUS_PENDING = "pending"
PRESCRIPTION_STATUS_VERIFIED = "verified"
PRESCRIPTION_STATUS_REJECTED = "rejected"
PRESCRIPTION_STATUSES = (
    PRESCRIPTION_STATUS_PENDING,
    PRESCRIPTION_STATUS_VERIFIED,
    PRESCRIPTION_STATUS_REJECTED,
)


class Prescription(db.Model):
    """
    Uploaded prescription or test order awaiting manual review.

    Status moves exactly once, from pending to verified or rejected.
    Coverage rows list the catalog items the document authorizes.
    """
    __tablename__ = "prescriptions"
    __table_args__ = (
        db.Index("ix_prescriptions_patient_status", "patient_identifier", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False, default=PRESCRIPTION_KIND_PRESCRIPTION)
    patient_identifier = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(255), nullable=True, index=True)
    phone = db.Column(db.String(32), nullable=True, index=True)
    file_url = db.Column(db.String(512), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PRESCRIPTION_STATUS_PENDING)

    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "PrescriptionItem",
        backref="prescription",
        lazy=True,
        cascade="all, delete-orphan",
    )

    @property
    def covered_item_ids(self) -> set[int]:
        return {entry.item_id for entry in self.items}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "patient_identifier": self.patient_identifier,
            "email": self.email,
            "phone": self.phone,
            "file_url": self.file_url,
            "status": self.status,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
            "created_at": to_utc_z(self.created_at),
            "items": [entry.to_dict() for entry in self.items],
        }


class PrescriptionItem(db.Model):
    """Catalog item covered by a prescription-like record."""
    __tablename__ = "prescription_items"
    __table_args__ = (
        db.UniqueConstraint("prescription_id", "item_id", name="uq_prescription_items_prescription_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prescription_id = db.Column(db.Integer, db.ForeignKey("prescriptions.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False)
    # Recorded for reviewers; coverage checks do not compare quantities
    quantity = db.Column(db.Integer, nullable=True)
    dosage_instructions = db.Column(db.String(255), nullable=True)

    item = db.relationship("CatalogItem")

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "display_name": self.item.display_name if self.item else None,
            "quantity": self.quantity,
            "dosage_instructions": self.dosage_instructions,
        }
