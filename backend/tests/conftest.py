"""
Pytest fixtures for MedHub backend tests.

Provides the test database, a fake payment gateway, catalog/provider
factories and authenticated staff sessions.
"""

import pytest

from medhub import create_app
from medhub.errors import PaymentGatewayError
from medhub.extensions import db
from medhub.models import CatalogItem, Provider, ProviderOffering
from medhub.models.auth import ROLE_ADMIN, ROLE_MANAGER
from medhub.models.catalog import (
    KIND_DIAGNOSTIC,
    KIND_MEDICATION,
    PROVIDER_LAB,
    PROVIDER_PHARMACY,
    VERIFICATION_VERIFIED,
)
from medhub.models.consent import CONSENT_DATA_SHARING
from medhub.services import consent_service, session_service
from medhub.services.auth_service import create_user
from medhub.services.payment_gateway import PaymentSession, PaymentVerification


TEST_PASSWORD = "Password123!"


class FakeGateway:
    """In-memory stand-in for the payment gateway client."""

    def __init__(self):
        self.initialized = []
        self.verified = []
        self.fail_initialize = False
        self.verify_status = "success"
        # Overrides the amount reported back by verify
        self.paid_amount_kobo = None

    def initialize(self, *, email, amount_kobo, reference, callback_url):
        if self.fail_initialize:
            raise PaymentGatewayError("Payment gateway unreachable", {"reason": "connection refused"})
        self.initialized.append({
            "email": email,
            "amount_kobo": amount_kobo,
            "reference": reference,
            "callback_url": callback_url,
        })
        return PaymentSession(reference=reference, authorization_url=f"https://pay.test/{reference}")

    def verify(self, reference):
        self.verified.append(reference)
        amount_kobo = self.paid_amount_kobo
        if amount_kobo is None:
            amount_kobo = next(
                (call["amount_kobo"] for call in reversed(self.initialized) if call["reference"] == reference), None
            )
        return PaymentVerification(
            reference=reference,
            successful=self.verify_status == "success",
            gateway_status=self.verify_status,
            amount_kobo=amount_kobo,
        )


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_LOG_ROUNDS': 4,
        'UPLOAD_FOLDER': str(tmp_path_factory.mktemp('uploads')),
        'PAYMENT_GATEWAY_SECRET_KEY': 'sk_test_medhub',
        'PAYMENT_CALLBACK_URL': 'http://localhost:3000/confirmation',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function', autouse=True)
def gateway(app):
    """Fresh fake gateway per test; no test ever reaches the network."""
    fake = FakeGateway()
    app.extensions['payment_gateway'] = fake
    return fake


def make_provider(db_session, name, provider_type=PROVIDER_PHARMACY, **overrides):
    data = {
        'name': name,
        'provider_type': provider_type,
        'address': '1 Test Street',
        'state': 'Lagos',
        'lga': 'Ikeja',
        'ward': 'Alausa',
        'latitude': 6.6142,
        'longitude': 3.3581,
        'verification_status': VERIFICATION_VERIFIED,
        'is_active': True,
        'home_collection_available': False,
        'operating_hours': '09:00-17:00',
    }
    data.update(overrides)
    provider = Provider(**data)
    db_session.add(provider)
    db_session.commit()
    return provider


def make_item(db_session, name, kind=KIND_MEDICATION, prescription_required=False, **overrides):
    item = CatalogItem(name=name, kind=kind, prescription_required=prescription_required, **overrides)
    db_session.add(item)
    db_session.commit()
    return item


def make_offering(db_session, provider, item, price_kobo, stock=None, available=True):
    offering = ProviderOffering(
        provider_id=provider.id,
        item_id=item.id,
        price_kobo=price_kobo,
        stock=stock,
        available=available,
    )
    db_session.add(offering)
    db_session.commit()
    return offering


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def guest_headers(guest_id: str) -> dict:
    return {'X-Guest-Id': guest_id}


def grant_consent(guest_id: str) -> None:
    """Record the data-sharing consent checkout and uploads require."""
    consent_service.record_consent(guest_id, CONSENT_DATA_SHARING, True)


@pytest.fixture(scope='function')
def pharmacy(db_session):
    """Verified pharmacy in Alausa."""
    return make_provider(db_session, "Alausa Pharmacy")


@pytest.fixture(scope='function')
def lab(db_session):
    """Verified lab in Lekki offering home collection."""
    return make_provider(
        db_session,
        "Lekki Diagnostics",
        provider_type=PROVIDER_LAB,
        lga='Eti-Osa',
        ward='Lekki',
        latitude=6.4474,
        longitude=3.4726,
        home_collection_available=True,
    )


@pytest.fixture(scope='function')
def paracetamol(db_session):
    return make_item(db_session, "Paracetamol", strength="500mg", form="tablet")


@pytest.fixture(scope='function')
def amoxicillin(db_session):
    return make_item(db_session, "Amoxicillin", prescription_required=True, strength="500mg", form="capsule")


@pytest.fixture(scope='function')
def blood_count(db_session):
    return make_item(db_session, "Full Blood Count", kind=KIND_DIAGNOSTIC, prescription_required=True)


@pytest.fixture(scope='function')
def catalog(db_session, pharmacy, lab, paracetamol, amoxicillin, blood_count):
    """
    Standard offerings:
    - pharmacy: paracetamol 500 NGN (stock 10), amoxicillin 2,500 NGN (stock 5)
    - lab: full blood count 8,000 NGN (untracked stock)
    """
    make_offering(db_session, pharmacy, paracetamol, 50_000, stock=10)
    make_offering(db_session, pharmacy, amoxicillin, 250_000, stock=5)
    make_offering(db_session, lab, blood_count, 800_000)
    return {
        'pharmacy': pharmacy,
        'lab': lab,
        'paracetamol': paracetamol,
        'amoxicillin': amoxicillin,
        'blood_count': blood_count,
    }


@pytest.fixture(scope='function')
def manager(db_session, pharmacy):
    """Manager account of the pharmacy."""
    return create_user(
        name="Pharmacy Manager",
        email="manager@alausa.test",
        password=TEST_PASSWORD,
        role=ROLE_MANAGER,
        provider_id=pharmacy.id,
    )


@pytest.fixture(scope='function')
def admin(db_session):
    return create_user(name="Platform Admin", email="admin@medhub.test", password=TEST_PASSWORD, role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def manager_headers(manager):
    _session, token = session_service.create_session(manager.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin):
    _session, token = session_service.create_session(admin.id)
    return auth_headers(token)
