# Overview: Service-layer operations for patient consent; encapsulates business logic and database work.

"""
Consent records keyed by patient identifier and consent type.

Checkout, session retrieval and prescription upload share patient data
with providers, so they need a granted DATA_SHARING consent first.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Consent
from ..models.consent import CONSENT_DATA_SHARING, CONSENT_TYPES
from ..validation import ValidationError
from .concurrency import lock_for_update, run_with_retry


def _find(guest_id: str, consent_type: str, *, lock: bool = False) -> Consent | None:
    query = db.session.query(Consent).filter_by(patient_identifier=guest_id, consent_type=consent_type)
    if lock:
        query = lock_for_update(query)
    return query.first()


def record_consent(guest_id: str, consent_type: str, granted: bool = True, user_id: int | None = None) -> Consent:
    """Insert or overwrite the guest's answer for one consent type."""
    if consent_type not in CONSENT_TYPES:
        raise ValidationError(
            "Invalid consent type",
            {"consent_type": f"must be one of: {', '.join(CONSENT_TYPES)}"},
        )

    def _op():
        consent = _find(guest_id, consent_type, lock=True)
        if consent is None:
            try:
                with db.session.begin_nested():
                    consent = Consent(patient_identifier=guest_id, consent_type=consent_type)
                    db.session.add(consent)
            except IntegrityError:
                consent = _find(guest_id, consent_type, lock=True)
                if consent is None:
                    raise
        consent.granted = granted
        if user_id is not None:
            consent.user_id = user_id
        db.session.commit()
        return consent

    consent = run_with_retry(_op)
    current_app.logger.info("Guest %s consent %s set to %s", guest_id, consent_type, granted)
    return consent


def has_consent(guest_id: str, consent_type: str = CONSENT_DATA_SHARING) -> bool:
    consent = _find(guest_id, consent_type)
    return consent is not None and consent.granted


def list_consents(guest_id: str) -> list[Consent]:
    return (
        db.session.query(Consent)
        .filter_by(patient_identifier=guest_id)
        .order_by(Consent.consent_type)
        .all()
    )
