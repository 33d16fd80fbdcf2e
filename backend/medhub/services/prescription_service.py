# Overview: Service-layer operations for prescriptions and test orders; encapsulates business logic and database work.

"""
Prescription-like records (prescriptions and test orders).

A record is uploaded pending, reviewed exactly once (verified or rejected),
and lists the catalog items it authorizes. Coverage is by item id only:
quantities are stored for the reviewer but not compared.
"""

from __future__ import annotations

import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from ..extensions import db
from ..errors import ConflictError, NotFoundError
from ..models import CatalogItem, Order, Prescription, PrescriptionItem
from ..models.catalog import KIND_MEDICATION
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PENDING_PRESCRIPTION,
    PAYMENT_STATUS_PAID,
)
from ..models.prescriptions import (
    PRESCRIPTION_KIND_PRESCRIPTION,
    PRESCRIPTION_KIND_TEST_ORDER,
    PRESCRIPTION_KINDS,
    PRESCRIPTION_STATUS_PENDING,
    PRESCRIPTION_STATUS_REJECTED,
    PRESCRIPTION_STATUS_VERIFIED,
)
from ..time_utils import utcnow
from ..validation import ValidationError
from .cart_service import release_reservation
from .concurrency import lock_for_update, run_with_retry


ALLOWED_UPLOAD_EXTENSIONS = {".pdf", ".png", ".jpg", ".jpeg"}
REVIEW_OUTCOMES = (PRESCRIPTION_STATUS_VERIFIED, PRESCRIPTION_STATUS_REJECTED)
REJECTED_CANCEL_REASON = "Prescription rejected"


def save_upload(file_storage) -> str:
    """Persist an uploaded document under UPLOAD_FOLDER; returns its stored path."""
    filename = secure_filename(file_storage.filename or "")
    ext = os.path.splitext(filename)[1].lower()
    if ext not in ALLOWED_UPLOAD_EXTENSIONS:
        raise ValidationError(
            "Unsupported file type",
            {"file": f"allowed: {', '.join(sorted(ALLOWED_UPLOAD_EXTENSIONS))}"},
        )

    folder = current_app.config["UPLOAD_FOLDER"]
    os.makedirs(folder, exist_ok=True)
    stored_name = f"{uuid.uuid4().hex}{ext}"
    path = os.path.join(folder, stored_name)
    file_storage.save(path)
    return path


def discard_upload(path: str | None) -> None:
    """Delete a stored upload whose request failed before a record pointed at it."""
    if path and os.path.exists(path):
        os.remove(path)
        current_app.logger.info("Discarded unused upload %s", path)


def kind_for_items(items: list[CatalogItem]) -> str:
    """Medications need a prescription; anything diagnostic needs a test order."""
    if any(item.kind == KIND_MEDICATION for item in items):
        return PRESCRIPTION_KIND_PRESCRIPTION
    return PRESCRIPTION_KIND_TEST_ORDER


def create_prescription(
    guest_id: str,
    file_url: str,
    kind: str = PRESCRIPTION_KIND_PRESCRIPTION,
    email: str | None = None,
    phone: str | None = None,
    item_ids: list[int] | None = None,
) -> Prescription:
    """Add a pending record (and its coverage rows) to the session; caller commits."""
    if kind not in PRESCRIPTION_KINDS:
        raise ValidationError("Invalid prescription kind", {"kind": f"must be one of: {', '.join(PRESCRIPTION_KINDS)}"})

    prescription = Prescription(
        patient_identifier=guest_id,
        kind=kind,
        file_url=file_url,
        email=email,
        phone=phone,
        status=PRESCRIPTION_STATUS_PENDING,
    )
    for item_id in sorted(set(item_ids or [])):
        prescription.items.append(PrescriptionItem(item_id=item_id))
    db.session.add(prescription)
    db.session.flush()
    return prescription


def upload_prescription(
    guest_id: str,
    file_url: str,
    kind: str = PRESCRIPTION_KIND_PRESCRIPTION,
    email: str | None = None,
    phone: str | None = None,
    item_ids: list[int] | None = None,
) -> Prescription:
    def _op():
        _require_items_exist(item_ids or [])
        prescription = create_prescription(guest_id, file_url, kind, email, phone, item_ids)
        db.session.commit()
        return prescription

    prescription = run_with_retry(_op)
    current_app.logger.info("Guest %s uploaded %s %s", guest_id, prescription.kind, prescription.id)
    return prescription


def _require_items_exist(item_ids: list[int]) -> None:
    if not item_ids:
        return
    found = {row.id for row in db.session.query(CatalogItem.id).filter(CatalogItem.id.in_(item_ids)).all()}
    missing = sorted(set(item_ids) - found)
    if missing:
        raise NotFoundError("Catalog items not found", {"item_ids": missing})


def add_coverage_items(prescription_id: int, items: list[dict]) -> Prescription:
    """
    Attach covered items to a pending record. Each entry:
    {"item_id": int, "quantity": int | None, "dosage_instructions": str | None}.
    Re-adding an item updates its quantity/instructions.
    """
    def _op():
        prescription = lock_for_update(db.session.query(Prescription).filter_by(id=prescription_id)).first()
        if not prescription:
            raise NotFoundError("Prescription not found", {"prescription_id": prescription_id})
        if prescription.status != PRESCRIPTION_STATUS_PENDING:
            raise ConflictError("Only pending prescriptions can be edited", {"status": prescription.status})

        _require_items_exist([entry["item_id"] for entry in items])
        existing = {entry.item_id: entry for entry in prescription.items}
        for entry in items:
            row = existing.get(entry["item_id"])
            if row is None:
                row = PrescriptionItem(item_id=entry["item_id"])
                prescription.items.append(row)
                existing[entry["item_id"]] = row
            row.quantity = entry.get("quantity")
            row.dosage_instructions = entry.get("dosage_instructions")

        db.session.commit()
        return prescription

    return run_with_retry(_op)


def latest_verified_prescription(guest_id: str) -> Prescription | None:
    return (
        db.session.query(Prescription)
        .filter_by(patient_identifier=guest_id, status=PRESCRIPTION_STATUS_VERIFIED)
        .order_by(Prescription.created_at.desc(), Prescription.id.desc())
        .first()
    )


def covers(prescription: Prescription | None, required_item_ids: set[int]) -> bool:
    if not required_item_ids:
        return True
    if prescription is None or prescription.status != PRESCRIPTION_STATUS_VERIFIED:
        return False
    return required_item_ids <= prescription.covered_item_ids


def check_coverage(guest_id: str, item_ids: list[int]) -> dict:
    """
    Which of item_ids need a prescription and whether the guest's latest
    verified record already covers them.
    """
    items = db.session.query(CatalogItem).filter(CatalogItem.id.in_(item_ids or [])).all()
    required = {item.id for item in items if item.prescription_required}
    verified = latest_verified_prescription(guest_id) if required else None
    covered = required & verified.covered_item_ids if verified else set()
    uncovered = required - covered
    return {
        "requires_upload": bool(uncovered),
        "required_item_ids": sorted(required),
        "covered_item_ids": sorted(covered),
        "uncovered_item_ids": sorted(uncovered),
        "prescription_id": verified.id if verified else None,
    }


def review_prescription(prescription_id: int, status: str, reviewer_user_id: int | None = None) -> dict:
    """
    Verify or reject a pending record, once.

    Cascade to orders linked to it:
    - verified: unpaid pending_prescription orders become pending (payable),
      orders already paid become confirmed
    - rejected: linked pending_prescription orders are cancelled and
      their reserved stock goes back on the shelf
    """
    if status not in REVIEW_OUTCOMES:
        raise ValidationError("Invalid status", {"status": f"must be one of: {', '.join(REVIEW_OUTCOMES)}"})

    def _op():
        prescription = lock_for_update(db.session.query(Prescription).filter_by(id=prescription_id)).first()
        if not prescription:
            raise NotFoundError("Prescription not found", {"prescription_id": prescription_id})
        if prescription.status != PRESCRIPTION_STATUS_PENDING:
            raise ConflictError("Prescription already processed", {"status": prescription.status})

        prescription.status = status
        prescription.reviewed_at = utcnow()
        prescription.reviewed_by_user_id = reviewer_user_id

        released, cancelled = [], []
        orders = lock_for_update(
            db.session.query(Order)
            .filter_by(prescription_id=prescription.id, status=ORDER_STATUS_PENDING_PRESCRIPTION)
            .order_by(Order.id)
        ).all()
        for order in orders:
            if status == PRESCRIPTION_STATUS_REJECTED:
                order.status = ORDER_STATUS_CANCELLED
                order.cancel_reason = REJECTED_CANCEL_REASON
                order.cancelled_at = prescription.reviewed_at
                release_reservation(order)
                cancelled.append(order.id)
            elif order.payment_status == PAYMENT_STATUS_PAID:
                order.status = ORDER_STATUS_CONFIRMED
                released.append(order.id)
            else:
                order.status = ORDER_STATUS_PENDING
                released.append(order.id)

        db.session.commit()
        return prescription, released, cancelled

    prescription, released, cancelled = run_with_retry(_op)
    current_app.logger.info(
        "Prescription %s marked %s by user %s; orders released: %s, cancelled: %s",
        prescription.id, status, reviewer_user_id, released, cancelled,
    )
    return {
        "prescription": prescription.to_dict(),
        "released_order_ids": released,
        "cancelled_order_ids": cancelled,
    }


def get_prescription(prescription_id: int) -> Prescription:
    prescription = db.session.get(Prescription, prescription_id)
    if not prescription:
        raise NotFoundError("Prescription not found", {"prescription_id": prescription_id})
    return prescription


def list_guest_prescriptions(guest_id: str) -> list[Prescription]:
    return (
        db.session.query(Prescription)
        .filter_by(patient_identifier=guest_id)
        .order_by(Prescription.created_at.desc(), Prescription.id.desc())
        .all()
    )


def list_prescriptions(status: str | None = None, limit: int = 50, offset: int = 0) -> list[Prescription]:
    query = db.session.query(Prescription)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Prescription.created_at.desc(), Prescription.id.desc()).offset(offset).limit(limit).all()
