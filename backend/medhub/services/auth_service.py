# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service - staff accounts and provider registration.

WHY: Every back-office action must be attributable to a person. Passwords
are hashed with bcrypt (cost factor 12) and must meet strength rules.

Provider registration creates the provider (pending verification) together
with its first manager account; the location is checked against the
reference dataset before anything is written.
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..errors import ConflictError, ForbiddenError, NotFoundError
from ..location import validate_location
from ..models import Provider, User
from ..models.auth import PROVIDER_ROLES, ROLE_MANAGER, ROLES
from ..models.catalog import PROVIDER_TYPES, VERIFICATION_PENDING
from medhub.time_utils import utcnow
from ..validation import ValidationError


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""

    def __init__(self, message: str):
        super().__init__(message, {"password": message})


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt-hash (cost factor BCRYPT_LOG_ROUNDS, default 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_LOG_ROUNDS", 12))
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def create_user(
    name: str,
    email: str,
    password: str,
    role: str,
    provider_id: int | None = None,
    commit: bool = True,
) -> User:
    """
    Create a staff user. Provider roles need a provider; admins must not have one.
    Email is unique across the platform.
    """
    if role not in ROLES:
        raise ValidationError("Invalid role", {"role": f"must be one of: {', '.join(ROLES)}"})
    if role in PROVIDER_ROLES and provider_id is None:
        raise ValidationError("Provider staff must belong to a provider", {"provider_id": "required"})
    if role not in PROVIDER_ROLES and provider_id is not None:
        raise ValidationError("Admins cannot belong to a provider", {"provider_id": "must be empty"})

    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError("Email already registered", {"email": email})

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        provider_id=provider_id,
        is_active=True,
    )
    db.session.add(user)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return user


def register_provider(data: dict) -> tuple[Provider, User]:
    """
    Create a provider (pending verification) and its manager account.

    data keys: provider_name, provider_type, address, state, lga, ward,
    latitude, longitude, phone, license_number, home_collection_available,
    operating_hours, manager_name, email, password.
    """
    if data.get("provider_type") not in PROVIDER_TYPES:
        raise ValidationError(
            "Invalid provider type",
            {"provider_type": f"must be one of: {', '.join(PROVIDER_TYPES)}"},
        )
    location = validate_location(
        data["state"], data["lga"], data["ward"], data["latitude"], data["longitude"]
    )

    try:
        provider = Provider(
            name=data["provider_name"],
            provider_type=data["provider_type"],
            address=data.get("address"),
            state=location["state"],
            lga=location["lga"],
            ward=location["ward"],
            latitude=location["latitude"],
            longitude=location["longitude"],
            phone=data.get("phone"),
            email=data["email"].strip().lower(),
            license_number=data.get("license_number"),
            home_collection_available=bool(data.get("home_collection_available")),
            operating_hours=data.get("operating_hours"),
            verification_status=VERIFICATION_PENDING,
            is_active=True,
        )
        db.session.add(provider)
        db.session.flush()

        manager = create_user(
            name=data["manager_name"],
            email=data["email"],
            password=data["password"],
            role=ROLE_MANAGER,
            provider_id=provider.id,
            commit=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Registered provider %s (%s) with manager %s", provider.id, provider.name, manager.id)
    return provider, manager


def authenticate(email: str, password: str) -> User | None:
    """Return the active user for these credentials, or None."""
    user = db.session.query(User).filter_by(email=(email or "").strip().lower()).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def list_staff(provider_id: int) -> list[User]:
    return db.session.query(User).filter_by(provider_id=provider_id).order_by(User.id).all()


def add_staff(provider_id: int, name: str, email: str, password: str, role: str) -> User:
    if role not in PROVIDER_ROLES:
        raise ValidationError("Invalid role", {"role": f"must be one of: {', '.join(PROVIDER_ROLES)}"})
    if not db.session.get(Provider, provider_id):
        raise NotFoundError("Provider not found", {"provider_id": provider_id})
    return create_user(name=name, email=email, password=password, role=role, provider_id=provider_id)


def remove_staff(actor: User, user_id: int) -> User:
    """Deactivate a staff member of the actor's own provider; never the actor."""
    if actor.id == user_id:
        raise ForbiddenError("You cannot remove your own account")

    user = db.session.query(User).filter_by(id=user_id, provider_id=actor.provider_id).first()
    if not user:
        raise NotFoundError("Staff member not found", {"user_id": user_id})

    user.is_active = False
    db.session.commit()

    from .session_service import revoke_all_user_sessions
    revoke_all_user_sessions(user.id, reason="Removed from provider")
    return user
