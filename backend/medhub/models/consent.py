from __future__ import annotations

from ..extensions import db
from medhub.time_utils import to_utc_z


CONSENT_TERMS = "TERMS"
CONSENT_PRIVACY = "PRIVACY"
CONSENT_MARKETING = "MARKETING"
CONSENT_DATA_SHARING = "DATA_SHARING"
CONSENT_REGULATORY = "REGULATORY"
CONSENT_TYPES = (
    CONSENT_TERMS,
    CONSENT_PRIVACY,
    CONSENT_MARKETING,
    CONSENT_DATA_SHARING,
    CONSENT_REGULATORY,
)


class Consent(db.Model):
    """
    A patient's answer for one consent type.

    One row per (patient_identifier, consent_type); recording again
    overwrites the previous answer.
    """
    __tablename__ = "consents"
    __table_args__ = (
        db.UniqueConstraint("patient_identifier", "consent_type", name="uq_consents_patient_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    patient_identifier = db.Column(db.String(64), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    consent_type = db.Column(db.String(32), nullable=False)
    granted = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "patient_identifier": self.patient_identifier,
            "user_id": self.user_id,
            "consent_type": self.consent_type,
            "granted": self.granted,
            "created_at": to_utc_z(self.created_at),
        }
