"""
Guest-facing HTTP tests.

Verifies:
- Full flow over HTTP: add -> cart -> checkout -> confirmation -> track
- Guest header handling and error payloads
- Data-sharing consent gates checkout and session recovery
- Catalog search filters and sorting
- Health and CORS headers
"""

import io
import os

from conftest import grant_consent, guest_headers, make_offering, make_provider


def _add(client, catalog, item_key, provider_key, quantity=1, guest_id=None):
    return client.post(
        '/api/orders/add',
        json={
            'item_id': catalog[item_key].id,
            'provider_id': catalog[provider_key].id,
            'quantity': quantity,
        },
        headers=guest_headers(guest_id) if guest_id else None,
    )


CONTACT = {'name': "Ada Obi", 'email': "ada@example.com", 'phone': "08012345678"}


class TestGuestFlow:

    def test_add_issues_guest_id(self, client, db_session, catalog):
        resp = _add(client, catalog, 'paracetamol', 'pharmacy', quantity=2)

        assert resp.status_code == 201
        body = resp.get_json()
        assert body['guest_id']
        assert body['order_item']['quantity'] == 2

    def test_cart_requires_guest_header(self, client, db_session):
        resp = client.get('/api/orders')

        assert resp.status_code == 400
        assert resp.get_json()['message'] == "Guest ID is required"

    def test_checkout_to_tracking(self, client, db_session, catalog, gateway):
        guest_id = _add(client, catalog, 'paracetamol', 'pharmacy', quantity=2).get_json()['guest_id']
        grant_consent(guest_id)
        cart = client.get('/api/orders', headers=guest_headers(guest_id)).get_json()
        assert cart['total_price_kobo'] == 100_000

        resp = client.post('/api/checkout', json=CONTACT, headers=guest_headers(guest_id))
        assert resp.status_code == 201
        checkout = resp.get_json()
        assert checkout['payment_url'] == f"https://pay.test/{checkout['transaction_reference']}"
        assert checkout['orders'][0]['phone'] == "+2348012345678"

        resp = client.get(
            f"/api/confirmation?reference={checkout['transaction_reference']}",
            headers=guest_headers(guest_id),
        )
        assert resp.status_code == 200
        confirmation = resp.get_json()
        assert confirmation['status'] == "completed"
        assert confirmation['total_price_kobo'] == 100_000

        resp = client.get(f"/api/track/{confirmation['tracking_code']}")
        assert resp.status_code == 200
        tracked = resp.get_json()
        assert [o['status'] for o in tracked['orders']] == ["confirmed"]
        assert tracked['orders'][0]['provider']['id'] == catalog['pharmacy'].id

    def test_checkout_requires_contact(self, client, db_session, catalog):
        guest_id = _add(client, catalog, 'paracetamol', 'pharmacy').get_json()['guest_id']
        grant_consent(guest_id)

        resp = client.post('/api/checkout', json={'name': "Ada"}, headers=guest_headers(guest_id))

        assert resp.status_code == 400
        assert set(resp.get_json()['details']['fields']) == {'email', 'phone'}

    def test_checkout_without_prescription(self, client, db_session, catalog, gateway):
        guest_id = _add(client, catalog, 'amoxicillin', 'pharmacy').get_json()['guest_id']
        grant_consent(guest_id)

        resp = client.post('/api/checkout', json=CONTACT, headers=guest_headers(guest_id))

        assert resp.status_code == 400
        body = resp.get_json()
        assert body['error'] == "prescription_required"
        assert body['details']['item_ids'] == [catalog['amoxicillin'].id]
        assert gateway.initialized == []

    def test_multipart_checkout_with_prescription(self, client, db_session, catalog, gateway):
        guest_id = _add(client, catalog, 'amoxicillin', 'pharmacy').get_json()['guest_id']
        grant_consent(guest_id)

        resp = client.post(
            '/api/checkout',
            data={**CONTACT, 'prescription': (io.BytesIO(b"%PDF-1.4"), "rx.pdf")},
            headers=guest_headers(guest_id),
            content_type='multipart/form-data',
        )

        assert resp.status_code == 201
        body = resp.get_json()
        assert body['payment_url'] is None
        assert body['prescription_id'] is not None
        assert body['orders'][0]['status'] == "pending_prescription"
        assert gateway.initialized == []

    def test_failed_multipart_checkout_discards_upload(self, client, db_session, app):
        grant_consent("empty-cart-guest")
        folder = app.config['UPLOAD_FOLDER']
        before = set(os.listdir(folder))

        resp = client.post(
            '/api/checkout',
            data={**CONTACT, 'prescription': (io.BytesIO(b"%PDF-1.4"), "rx.pdf")},
            headers=guest_headers("empty-cart-guest"),
            content_type='multipart/form-data',
        )

        assert resp.status_code == 400
        assert set(os.listdir(folder)) == before

    def test_confirmation_needs_reference_or_session(self, client, db_session):
        resp = client.get('/api/confirmation', headers=guest_headers("guest-x"))

        assert resp.status_code == 400

    def test_track_unknown_code(self, client, db_session):
        resp = client.get('/api/track/TRK-SESSION-1-1')

        assert resp.status_code == 404

    def test_slots_for_future_day(self, client, db_session, catalog):
        resp = client.get(f"/api/orders/slots?provider_id={catalog['lab'].id}&date=2030-01-07")

        assert resp.status_code == 200
        slots = resp.get_json()['time_slots']
        assert len(slots) == 16
        assert slots[0]['start'] == "2030-01-07T09:00:00"

    def test_partial_checkout_route(self, client, db_session, catalog):
        guest_id = _add(client, catalog, 'paracetamol', 'pharmacy').get_json()['guest_id']
        _add(client, catalog, 'amoxicillin', 'pharmacy', guest_id=guest_id)
        cart = client.get('/api/orders', headers=guest_headers(guest_id)).get_json()

        resp = client.post(
            '/api/orders/partial-checkout', json={'order_id': cart['order_id']}, headers=guest_headers(guest_id)
        )

        assert resp.status_code == 201


class TestConsent:

    def test_record_and_overwrite(self, client, db_session):
        resp = client.post(
            '/api/consent', json={'consent_type': "DATA_SHARING"}, headers=guest_headers("consent-guest")
        )

        assert resp.status_code == 201
        body = resp.get_json()
        assert body['message'] == "Consent recorded"
        assert body['consent']['granted'] is True
        assert body['consent']['patient_identifier'] == "consent-guest"

        resp = client.post(
            '/api/consent',
            json={'consent_type': "DATA_SHARING", 'granted': False},
            headers=guest_headers("consent-guest"),
        )
        assert resp.get_json()['consent']['id'] == body['consent']['id']
        assert resp.get_json()['consent']['granted'] is False
        listed = client.get('/api/consent', headers=guest_headers("consent-guest")).get_json()['consents']
        assert [(c['consent_type'], c['granted']) for c in listed] == [("DATA_SHARING", False)]

    def test_unknown_consent_type(self, client, db_session):
        resp = client.post('/api/consent', json={'consent_type': "SPAM"}, headers=guest_headers("consent-guest"))

        assert resp.status_code == 400

    def test_consent_requires_guest(self, client, db_session):
        assert client.post('/api/consent', json={'consent_type': "TERMS"}).status_code == 400

    def test_checkout_blocked_without_consent(self, client, db_session, catalog, gateway):
        guest_id = _add(client, catalog, 'paracetamol', 'pharmacy').get_json()['guest_id']

        resp = client.post('/api/checkout', json=CONTACT, headers=guest_headers(guest_id))

        assert resp.status_code == 403
        assert resp.get_json()['message'] == "User consent required for data sharing"
        assert gateway.initialized == []
        assert client.get('/api/orders', headers=guest_headers(guest_id)).get_json()['total_price_kobo'] == 50_000

    def test_withdrawn_consent_blocks_checkout(self, client, db_session, catalog):
        guest_id = _add(client, catalog, 'paracetamol', 'pharmacy').get_json()['guest_id']
        client.post(
            '/api/consent', json={'consent_type': "DATA_SHARING", 'granted': False}, headers=guest_headers(guest_id)
        )

        assert client.post('/api/checkout', json=CONTACT, headers=guest_headers(guest_id)).status_code == 403

    def test_other_consent_types_do_not_count(self, client, db_session, catalog):
        guest_id = _add(client, catalog, 'paracetamol', 'pharmacy').get_json()['guest_id']
        client.post('/api/consent', json={'consent_type': "MARKETING"}, headers=guest_headers(guest_id))

        assert client.post('/api/checkout', json=CONTACT, headers=guest_headers(guest_id)).status_code == 403

    def test_session_retrieve_with_consent(self, client, db_session, catalog):
        guest_id = _add(client, catalog, 'paracetamol', 'pharmacy').get_json()['guest_id']
        grant_consent(guest_id)
        checkout = client.post('/api/checkout', json=CONTACT, headers=guest_headers(guest_id)).get_json()

        blocked = client.post(
            '/api/checkout/session/retrieve', json={'email': CONTACT['email']}, headers=guest_headers("new-device")
        )
        assert blocked.status_code == 403

        grant_consent("new-device")
        resp = client.post(
            '/api/checkout/session/retrieve', json={'email': CONTACT['email']}, headers=guest_headers("new-device")
        )
        assert resp.status_code == 200
        assert resp.get_json()['guest_id'] == guest_id
        assert resp.get_json()['checkout_session_id'] == checkout['checkout_session_id']

    def test_session_retrieve_requires_guest(self, client, db_session):
        resp = client.post('/api/checkout/session/retrieve', json={'email': CONTACT['email']})

        assert resp.status_code == 400
        assert resp.get_json()['message'] == "Guest ID is required"


class TestCatalogSearch:

    def test_price_order_by_default(self, client, db_session, catalog):
        results = client.get('/api/catalog/search').get_json()['results']

        assert [r['price_kobo'] for r in results] == [50_000, 250_000, 800_000]
        assert results[0]['distance_km'] is None

    def test_distance_sort(self, client, db_session, catalog):
        results = client.get(
            '/api/catalog/search?latitude=6.4474&longitude=3.4726&sort=distance'
        ).get_json()['results']

        assert results[0]['provider']['id'] == catalog['lab'].id
        assert results[0]['distance_km'] == 0
        assert [r['price_kobo'] for r in results[1:]] == [50_000, 250_000]

    def test_radius_filter(self, client, db_session, catalog):
        results = client.get(
            '/api/catalog/search?latitude=6.6142&longitude=3.3581&radius_km=5'
        ).get_json()['results']

        assert {r['provider']['id'] for r in results} == {catalog['pharmacy'].id}

    def test_hides_unverified_and_out_of_stock(self, client, db_session, catalog):
        pending = make_provider(db_session, "New Pharmacy", verification_status="pending")
        make_offering(db_session, pending, catalog['paracetamol'], 10_000, stock=50)
        make_offering(db_session, make_provider(db_session, "Empty Pharmacy"), catalog['paracetamol'], 20_000, stock=0)

        results = client.get('/api/catalog/search?q=para').get_json()['results']

        assert [r['provider']['id'] for r in results] == [catalog['pharmacy'].id]

    def test_kind_filter(self, client, db_session, catalog):
        results = client.get('/api/catalog/search?kind=diagnostic').get_json()['results']

        assert [r['item']['id'] for r in results] == [catalog['blood_count'].id]

    def test_invalid_sort(self, client, db_session):
        assert client.get('/api/catalog/search?sort=rating').status_code == 400

    def test_item_lookup(self, client, db_session, catalog):
        assert client.get(f"/api/catalog/items/{catalog['paracetamol'].id}").status_code == 200
        assert client.get('/api/catalog/items/999999').status_code == 404


class TestSystem:

    def test_health(self, client, db_session):
        resp = client.get('/api/health')

        assert resp.status_code == 200
        assert resp.get_json()['status'] == "healthy"

    def test_health_degraded_without_secret(self, client, db_session, app, monkeypatch):
        monkeypatch.setitem(app.config, 'PAYMENT_GATEWAY_SECRET_KEY', "")

        body = client.get('/api/health').get_json()

        assert body['status'] == "degraded"
        assert body['checks']['payment_gateway']['status'] == "degraded"

    def test_cors_for_allowed_origin(self, client, db_session):
        resp = client.get('/api/health', headers={'Origin': "http://localhost:5173"})

        assert resp.headers['Access-Control-Allow-Origin'] == "http://localhost:5173"
        assert "X-Guest-Id" in resp.headers['Access-Control-Allow-Headers']

    def test_no_cors_for_unknown_origin(self, client, db_session):
        resp = client.get('/api/health', headers={'Origin': "https://evil.example"})

        assert 'Access-Control-Allow-Origin' not in resp.headers
