# Overview: Service-layer operations for platform administration; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import ForbiddenError, NotFoundError
from ..models import Order, Prescription, Provider, User
from ..models.catalog import VERIFICATION_PENDING, VERIFICATION_STATUSES, VERIFICATION_VERIFIED
from ..models.prescriptions import PRESCRIPTION_STATUS_PENDING
from ..time_utils import utcnow
from ..validation import ValidationError
from .session_service import revoke_all_user_sessions


def list_providers(verification_status: str | None = None, limit: int = 50, offset: int = 0) -> list[Provider]:
    query = db.session.query(Provider)
    if verification_status:
        query = query.filter_by(verification_status=verification_status)
    return query.order_by(Provider.created_at.desc(), Provider.id.desc()).offset(offset).limit(limit).all()


def set_provider_verification(provider_id: int, status: str) -> Provider:
    if status not in VERIFICATION_STATUSES or status == VERIFICATION_PENDING:
        raise ValidationError("Invalid verification status", {"status": "must be verified or rejected"})

    provider = db.session.get(Provider, provider_id)
    if not provider:
        raise NotFoundError("Provider not found", {"provider_id": provider_id})

    provider.verification_status = status
    provider.verified_at = utcnow() if status == VERIFICATION_VERIFIED else None
    db.session.commit()
    current_app.logger.info("Provider %s marked %s", provider.id, status)
    return provider


def set_provider_active(provider_id: int, is_active: bool) -> Provider:
    provider = db.session.get(Provider, provider_id)
    if not provider:
        raise NotFoundError("Provider not found", {"provider_id": provider_id})
    provider.is_active = is_active
    db.session.commit()
    return provider


def list_users(role: str | None = None, provider_id: int | None = None) -> list[User]:
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    if provider_id is not None:
        query = query.filter_by(provider_id=provider_id)
    return query.order_by(User.id).all()


def set_user_active(actor: User, user_id: int, is_active: bool) -> User:
    """Admins manage any account except their own."""
    if actor.id == user_id:
        raise ForbiddenError("You cannot change the status of your own account")

    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found", {"user_id": user_id})

    user.is_active = is_active
    db.session.commit()
    if not is_active:
        revoke_all_user_sessions(user.id, reason="Account deactivated by admin")
    current_app.logger.info("Admin %s set user %s active=%s", actor.id, user.id, is_active)
    return user


def list_orders(status: str | None = None, limit: int = 50, offset: int = 0) -> dict:
    query = db.session.query(Order)
    if status:
        query = query.filter_by(status=status)
    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()
    return {"orders": [o.to_dict() for o in orders], "total": total, "limit": limit, "offset": offset}


def dashboard() -> dict:
    order_rows = db.session.query(Order.status, db.func.count(Order.id)).group_by(Order.status).all()
    return {
        "orders_by_status": {status: count for status, count in order_rows},
        "providers_pending_verification": (
            db.session.query(Provider).filter_by(verification_status=VERIFICATION_PENDING).count()
        ),
        "prescriptions_pending_review": (
            db.session.query(Prescription).filter_by(status=PRESCRIPTION_STATUS_PENDING).count()
        ),
        "active_users": db.session.query(User).filter_by(is_active=True).count(),
    }
