"""
Flask CLI command tests.
"""

from datetime import timedelta

from medhub.models import CatalogItem, Order, Provider, User
from medhub.models.auth import ROLE_ADMIN
from medhub.services import cart_service, checkout_service
from medhub.time_utils import utcnow

from conftest import TEST_PASSWORD


def test_seed_demo_runs_once(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['catalog', 'seed-demo'])

    assert result.exit_code == 0
    assert "PASS Seeded 6 items, 2 providers, 6 offerings" in result.output
    assert db_session.query(CatalogItem).count() == 6
    assert {p.ward for p in db_session.query(Provider).all()} == {"Alausa", "Lekki"}

    again = runner.invoke(args=['catalog', 'seed-demo'])
    assert "SKIP" in again.output


def test_create_admin(app, db_session):
    result = app.test_cli_runner().invoke(args=[
        'users', 'create-admin', '--name', "Ops", '--email', "ops@medhub.test", '--password', TEST_PASSWORD,
    ])

    assert result.exit_code == 0
    user = db_session.query(User).filter_by(email="ops@medhub.test").one()
    assert user.role == ROLE_ADMIN
    assert user.provider_id is None


def test_create_admin_weak_password(app, db_session):
    result = app.test_cli_runner().invoke(args=[
        'users', 'create-admin', '--name', "Ops", '--email', "ops@medhub.test", '--password', "weak",
    ])

    assert result.exit_code != 0
    assert "at least 8 characters" in result.output


def test_review_unknown_prescription(app, db_session):
    result = app.test_cli_runner().invoke(args=['prescriptions', 'review', '404', 'verified'])

    assert result.exit_code == 1
    assert "Prescription not found" in result.output


def test_cancel_timed_out_orders(app, db_session, catalog):
    _line, guest_id = cart_service.add_item(catalog['amoxicillin'].id, catalog['pharmacy'].id, 2)
    order_id = checkout_service.initiate_checkout(guest_id, name="Ada", file_url="uploads/rx.pdf")['orders'][0]['id']
    db_session.get(Order, order_id).created_at = utcnow() - timedelta(hours=49)
    db_session.commit()

    result = app.test_cli_runner().invoke(args=['orders', 'cancel-timed-out'])

    assert result.exit_code == 0
    assert f"PASS Cancelled 1 timed-out orders: [{order_id}]" in result.output
    db_session.expire_all()
    assert db_session.get(Order, order_id).status == "cancelled"


def test_cancel_timed_out_nothing_due(app, db_session):
    result = app.test_cli_runner().invoke(args=['orders', 'cancel-timed-out'])

    assert result.exit_code == 0
    assert "PASS Cancelled 0 timed-out orders: none" in result.output
