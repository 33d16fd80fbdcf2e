"""
Authentication, provider registration and admin tests.

Verifies:
- Provider registration validates location and creates a pending provider
- Login / logout / session checks
- Managers manage their own staff only
- Admin verification, deactivation and prescription review endpoints
"""

import pytest

from medhub.errors import ConflictError, ForbiddenError
from medhub.models import Order, Provider, User
from medhub.models.auth import ROLE_MANAGER
from medhub.services import auth_service, cart_service, checkout_service, session_service
from medhub.services.auth_service import PasswordValidationError

from conftest import TEST_PASSWORD, auth_headers


REGISTRATION = {
    'provider_name': "Opebi Pharmacy",
    'provider_type': "pharmacy",
    'address': "20 Opebi Road",
    'state': "Lagos",
    'lga': "Ikeja",
    'ward': "Opebi",
    'latitude': 6.5921,
    'longitude': 3.3612,
    'phone': "08031234567",
    'home_collection_available': True,
    'manager_name': "Tunde Bello",
    'email': "Tunde@Opebi.test",
    'password': TEST_PASSWORD,
}


def _login(client, email, password=TEST_PASSWORD):
    return client.post('/api/auth/login', json={'email': email, 'password': password})


class TestPasswords:

    @pytest.mark.parametrize("password", ["Short1!", "password123!", "PASSWORD123!", "Password!!!", "Password123"])
    def test_weak_passwords_rejected(self, app, password):
        with app.app_context():
            with pytest.raises(PasswordValidationError):
                auth_service.hash_password(password)

    def test_hash_and_verify(self, app):
        with app.app_context():
            hashed = auth_service.hash_password(TEST_PASSWORD)
        assert hashed != TEST_PASSWORD
        assert auth_service.verify_password(TEST_PASSWORD, hashed)
        assert not auth_service.verify_password("Password123?", hashed)


class TestRegistration:

    def test_register_provider(self, client, db_session):
        resp = client.post('/api/auth/register-provider', json=REGISTRATION)

        assert resp.status_code == 201
        body = resp.get_json()
        assert body['provider']['verification_status'] == "pending"
        assert body['provider']['phone'] == "+2348031234567"
        assert body['provider']['home_collection_available'] is True
        assert body['user']['role'] == ROLE_MANAGER
        assert body['user']['email'] == "tunde@opebi.test"
        assert body['user']['provider_id'] == body['provider']['id']

    def test_location_mismatch(self, client, db_session):
        resp = client.post('/api/auth/register-provider', json={**REGISTRATION, 'latitude': 6.7})

        assert resp.status_code == 400
        assert resp.get_json()['message'] == "Coordinates do not match selected ward"
        assert db_session.query(Provider).count() == 0

    def test_missing_fields(self, client, db_session):
        resp = client.post('/api/auth/register-provider', json={'provider_name': "Half"})

        assert resp.status_code == 400
        fields = resp.get_json()['details']['fields']
        assert 'ward' in fields
        assert 'password' in fields

    def test_duplicate_email_leaves_no_provider(self, client, db_session):
        client.post('/api/auth/register-provider', json=REGISTRATION)

        resp = client.post('/api/auth/register-provider', json={**REGISTRATION, 'provider_name': "Copy"})

        assert resp.status_code == 409
        db_session.expire_all()
        assert db_session.query(Provider).filter_by(name="Copy").count() == 0


class TestLogin:

    def test_login_and_me(self, client, db_session, manager):
        resp = _login(client, "MANAGER@alausa.test")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body['provider']['id'] == manager.provider_id
        me = client.get('/api/auth/me', headers=auth_headers(body['token']))
        assert me.get_json()['user']['id'] == manager.id

    def test_bad_password(self, client, db_session, manager):
        resp = _login(client, "manager@alausa.test", "Wrong123!")

        assert resp.status_code == 401
        assert resp.get_json()['message'] == "Invalid credentials"

    def test_inactive_user_cannot_login(self, client, db_session, manager):
        manager.is_active = False
        db_session.commit()

        assert _login(client, "manager@alausa.test").status_code == 401

    def test_logout_revokes_token(self, client, db_session, manager):
        token = _login(client, "manager@alausa.test").get_json()['token']

        assert client.post('/api/auth/logout', headers=auth_headers(token)).status_code == 200
        assert client.get('/api/auth/me', headers=auth_headers(token)).status_code == 401

    def test_unknown_token(self, client, db_session):
        assert client.get('/api/auth/me', headers=auth_headers("not-a-token")).status_code == 401


class TestStaff:

    def test_manager_adds_and_removes_staff(self, client, db_session, manager, manager_headers):
        resp = client.post(
            '/api/auth/staff',
            json={'name': "Ngozi", 'email': "ngozi@alausa.test", 'password': TEST_PASSWORD, 'role': "pharmacist"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        staff_id = resp.get_json()['user']['id']

        listed = client.get('/api/auth/staff', headers=manager_headers).get_json()['users']
        assert {u['id'] for u in listed} == {manager.id, staff_id}

        resp = client.delete(f'/api/auth/staff/{staff_id}', headers=manager_headers)
        assert resp.status_code == 200
        assert resp.get_json()['user']['is_active'] is False

    def test_manager_cannot_remove_self(self, db_session, manager):
        with pytest.raises(ForbiddenError):
            auth_service.remove_staff(manager, manager.id)

    def test_duplicate_email(self, db_session, manager):
        with pytest.raises(ConflictError):
            auth_service.add_staff(manager.provider_id, "Again", "manager@alausa.test", TEST_PASSWORD, "staff")

    def test_removed_staff_sessions_revoked(self, db_session, manager):
        clerk = auth_service.add_staff(manager.provider_id, "Clerk", "clerk@alausa.test", TEST_PASSWORD, "staff")
        _session, token = session_service.create_session(clerk.id)

        auth_service.remove_staff(manager, clerk.id)

        assert session_service.validate_session(token) is None


class TestAdmin:

    def test_requires_admin(self, client, db_session, manager_headers):
        assert client.get('/api/admin/providers', headers=manager_headers).status_code == 403

    def test_verify_registered_provider(self, client, db_session, admin_headers):
        provider_id = client.post('/api/auth/register-provider', json=REGISTRATION).get_json()['provider']['id']

        resp = client.patch(
            f'/api/admin/providers/{provider_id}/verify', json={'status': "verified"}, headers=admin_headers
        )

        assert resp.status_code == 200
        provider = resp.get_json()['provider']
        assert provider['verification_status'] == "verified"
        assert provider['verified_at'] is not None

    def test_pending_status_not_allowed(self, client, db_session, pharmacy, admin_headers):
        resp = client.patch(
            f'/api/admin/providers/{pharmacy.id}/verify', json={'status': "pending"}, headers=admin_headers
        )

        assert resp.status_code == 400

    def test_deactivate_provider_blocks_cart(self, client, db_session, catalog, admin_headers):
        resp = client.patch(
            f"/api/admin/providers/{catalog['pharmacy'].id}/active", json={'is_active': False}, headers=admin_headers
        )
        assert resp.status_code == 200

        resp = client.post(
            '/api/orders/add',
            json={'item_id': catalog['paracetamol'].id, 'provider_id': catalog['pharmacy'].id, 'quantity': 1},
        )
        assert resp.status_code == 400

    def test_admin_cannot_deactivate_self(self, client, db_session, admin, admin_headers):
        resp = client.patch(f'/api/admin/users/{admin.id}/active', json={'is_active': False}, headers=admin_headers)

        assert resp.status_code == 403

    def test_deactivate_user_revokes_sessions(self, client, db_session, manager, manager_headers, admin_headers):
        resp = client.patch(
            f'/api/admin/users/{manager.id}/active', json={'is_active': False}, headers=admin_headers
        )

        assert resp.status_code == 200
        assert client.get('/api/auth/me', headers=manager_headers).status_code == 401

    def test_review_prescription_endpoint(self, client, db_session, catalog, admin_headers):
        _line, guest_id = cart_service.add_item(catalog['amoxicillin'].id, catalog['pharmacy'].id, 1)
        result = checkout_service.initiate_checkout(guest_id, name="Ada", file_url="uploads/rx.pdf")

        listed = client.get('/api/admin/prescriptions?status=pending', headers=admin_headers).get_json()
        assert [p['id'] for p in listed['prescriptions']] == [result['prescription_id']]

        resp = client.patch(
            f"/api/admin/prescriptions/{result['prescription_id']}/verify",
            json={'status': "verified"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body['message'] == "Prescription verified"
        assert body['released_order_ids'] == [result['orders'][0]['id']]

        again = client.patch(
            f"/api/admin/prescriptions/{result['prescription_id']}/verify",
            json={'status': "rejected"},
            headers=admin_headers,
        )
        assert again.status_code == 409
        db_session.expire_all()
        assert db_session.get(Order, result['orders'][0]['id']).status == "pending"

    def test_catalog_item_endpoints(self, client, db_session, admin_headers):
        resp = client.post(
            '/api/admin/catalog/items',
            json={'name': "Lipid Profile", 'kind': "diagnostic", 'prescription_required': True},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        item_id = resp.get_json()['item']['id']

        resp = client.patch(
            f'/api/admin/catalog/items/{item_id}', json={'category': "Chemistry"}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.get_json()['item']['category'] == "Chemistry"

    def test_dashboard(self, client, db_session, catalog, admin, admin_headers):
        cart_service.add_item(catalog['paracetamol'].id, catalog['pharmacy'].id, 1, guest_id="dash-guest")

        body = client.get('/api/admin/dashboard', headers=admin_headers).get_json()

        assert body['orders_by_status'] == {"cart": 1}
        assert body['active_users'] == db_session.query(User).filter_by(is_active=True).count()
