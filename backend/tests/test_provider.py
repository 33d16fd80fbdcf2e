"""
Provider back-office tests.

Verifies:
- Offering CRUD through the API, scoped to the caller's provider
- Order listing hides carts and unpaid orders
- Status transitions follow the allowed graph; cancelling needs a reason
  and returns reserved stock
"""

import pytest

from medhub.errors import InvalidTransitionError, NotFoundError
from medhub.models import ProviderOffering
from medhub.models.auth import ROLE_STAFF
from medhub.services import cart_service, checkout_service, confirmation_service, provider_service, session_service
from medhub.services.auth_service import create_user
from medhub.validation import ValidationError

from conftest import TEST_PASSWORD, auth_headers, make_item


def _confirmed_order(catalog, quantity=2):
    _line, guest_id = cart_service.add_item(catalog['paracetamol'].id, catalog['pharmacy'].id, quantity)
    result = checkout_service.initiate_checkout(guest_id, name="Ada", email="ada@example.com")
    confirmation_service.confirm_order(guest_id, reference=result['transaction_reference'])
    return result['orders'][0]['id']


class TestOfferingsApi:

    def test_list_offerings(self, client, db_session, catalog, manager_headers):
        resp = client.get('/api/provider/offerings', headers=manager_headers)

        assert resp.status_code == 200
        item_ids = [o['item_id'] for o in resp.get_json()['offerings']]
        assert item_ids == sorted([catalog['paracetamol'].id, catalog['amoxicillin'].id])

    def test_add_offering(self, client, db_session, catalog, manager_headers):
        ibuprofen = make_item(db_session, "Ibuprofen", strength="400mg")

        resp = client.post(
            '/api/provider/offerings',
            json={'item_id': ibuprofen.id, 'price_kobo': 80_000, 'stock': 25, 'expiry_date': "2027-01-31"},
            headers=manager_headers,
        )

        assert resp.status_code == 201
        offering = resp.get_json()['offering']
        assert offering['stock'] == 25
        assert offering['available'] is True
        assert offering['expiry_date'] == "2027-01-31"

    def test_duplicate_offering_conflicts(self, client, db_session, catalog, manager_headers):
        resp = client.post(
            '/api/provider/offerings',
            json={'item_id': catalog['paracetamol'].id, 'price_kobo': 1},
            headers=manager_headers,
        )

        assert resp.status_code == 409

    def test_update_offering(self, client, db_session, catalog, manager_headers):
        resp = client.patch(
            f"/api/provider/offerings/{catalog['paracetamol'].id}",
            json={'price_kobo': 55_000, 'available': False},
            headers=manager_headers,
        )

        assert resp.status_code == 200
        offering = resp.get_json()['offering']
        assert offering['price_kobo'] == 55_000
        assert offering['available'] is False
        assert offering['stock'] == 10

    def test_expiry_before_receipt_rejected(self, client, db_session, catalog, manager_headers):
        resp = client.patch(
            f"/api/provider/offerings/{catalog['paracetamol'].id}",
            json={'received_date': "2026-05-01", 'expiry_date': "2026-04-01"},
            headers=manager_headers,
        )

        assert resp.status_code == 400

    def test_cannot_touch_other_providers_offering(self, client, db_session, catalog, manager_headers):
        resp = client.patch(
            f"/api/provider/offerings/{catalog['blood_count'].id}",
            json={'price_kobo': 1},
            headers=manager_headers,
        )

        assert resp.status_code == 404

    def test_delete_offering(self, client, db_session, catalog, manager_headers):
        resp = client.delete(f"/api/provider/offerings/{catalog['amoxicillin'].id}", headers=manager_headers)

        assert resp.status_code == 200
        db_session.expire_all()
        assert db_session.get(ProviderOffering, (catalog['pharmacy'].id, catalog['amoxicillin'].id)) is None

    def test_staff_role_cannot_edit_offerings(self, client, db_session, catalog):
        clerk = create_user(
            name="Clerk", email="clerk@alausa.test", password=TEST_PASSWORD,
            role=ROLE_STAFF, provider_id=catalog['pharmacy'].id,
        )
        _session, token = session_service.create_session(clerk.id)

        resp = client.patch(
            f"/api/provider/offerings/{catalog['paracetamol'].id}",
            json={'price_kobo': 1},
            headers=auth_headers(token),
        )

        assert resp.status_code == 403

    def test_requires_auth(self, client, db_session):
        assert client.get('/api/provider/offerings').status_code == 401

    def test_admin_is_not_provider_staff(self, client, db_session, admin_headers):
        assert client.get('/api/provider/offerings', headers=admin_headers).status_code == 403


class TestProviderOrders:

    def test_lists_only_placed_orders(self, db_session, catalog):
        order_id = _confirmed_order(catalog)
        cart_service.add_item(catalog['paracetamol'].id, catalog['pharmacy'].id, 1, guest_id="browsing-guest")

        result = provider_service.list_orders(catalog['pharmacy'].id)

        assert [o['id'] for o in result['orders']] == [order_id]
        assert result['total'] == 1
        assert result['orders'][0]['provider_subtotal_kobo'] == 100_000

    def test_other_provider_sees_nothing(self, db_session, catalog):
        order_id = _confirmed_order(catalog)

        assert provider_service.list_orders(catalog['lab'].id)['orders'] == []
        with pytest.raises(NotFoundError):
            provider_service.get_order(catalog['lab'].id, order_id)

    def test_fulfilment_path(self, db_session, catalog):
        order_id = _confirmed_order(catalog)
        pharmacy_id = catalog['pharmacy'].id

        provider_service.update_order_status(pharmacy_id, order_id, "processing")
        order = provider_service.update_order_status(pharmacy_id, order_id, "ready_for_pickup")

        assert order.status == "ready_for_pickup"
        assert order.filled_at is not None
        order = provider_service.update_order_status(pharmacy_id, order_id, "completed")
        assert order.status == "completed"

    def test_invalid_transition(self, db_session, catalog):
        order_id = _confirmed_order(catalog)

        with pytest.raises(InvalidTransitionError):
            provider_service.update_order_status(catalog['pharmacy'].id, order_id, "delivered")

    def test_cancel_requires_reason(self, db_session, catalog):
        order_id = _confirmed_order(catalog)

        with pytest.raises(ValidationError):
            provider_service.update_order_status(catalog['pharmacy'].id, order_id, "cancelled")

    def test_cancel_releases_stock(self, db_session, catalog):
        order_id = _confirmed_order(catalog, quantity=4)

        order = provider_service.update_order_status(
            catalog['pharmacy'].id, order_id, "cancelled", reason="Out of stock at branch"
        )

        assert order.cancel_reason == "Out of stock at branch"
        assert order.stock_reserved is False
        db_session.expire_all()
        assert db_session.get(ProviderOffering, (catalog['pharmacy'].id, catalog['paracetamol'].id)).stock == 10

    def test_status_update_api(self, client, db_session, catalog, manager_headers):
        order_id = _confirmed_order(catalog)

        resp = client.patch(
            f"/api/provider/orders/{order_id}", json={'status': "processing"}, headers=manager_headers
        )

        assert resp.status_code == 200
        assert resp.get_json()['order']['status'] == "processing"

        resp = client.patch(
            f"/api/provider/orders/{order_id}", json={'status': "cart"}, headers=manager_headers
        )
        assert resp.status_code == 400

    def test_dashboard(self, client, db_session, catalog, manager_headers):
        _confirmed_order(catalog)

        resp = client.get('/api/provider/dashboard', headers=manager_headers)

        body = resp.get_json()
        assert body['orders_by_status'] == {"confirmed": 1}
        assert body['low_stock_offerings'] == 1


class TestProfile:

    def test_update_profile_with_location(self, db_session, catalog):
        provider = provider_service.update_profile(catalog['pharmacy'].id, {
            'operating_hours': "08:00-20:00",
            'state': "lagos", 'lga': "ikeja", 'ward': "oregun",
            'latitude': 6.6018, 'longitude': 3.3665,
        })

        assert provider.operating_hours == "08:00-20:00"
        assert provider.ward == "Oregun"

    def test_partial_location_rejected(self, db_session, catalog):
        with pytest.raises(ValidationError):
            provider_service.update_profile(catalog['pharmacy'].id, {'ward': "Oregun"})

    def test_register_device(self, client, db_session, catalog, manager_headers):
        resp = client.post(
            '/api/provider/notifications/register', json={'device_token': "fcm-token-1"}, headers=manager_headers
        )

        assert resp.status_code == 200
        db_session.expire_all()
        assert provider_service.get_provider(catalog['pharmacy'].id).device_token == "fcm-token-1"
