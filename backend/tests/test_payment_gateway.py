"""
Payment gateway client tests against an in-process httpx transport.
"""

import json

import httpx
import pytest

from medhub.errors import PaymentGatewayError
from medhub.services.payment_gateway import PaymentGateway


def _gateway(handler):
    return PaymentGateway("https://gateway.test/", "sk_test_secret", timeout=2, transport=httpx.MockTransport(handler))


class TestInitialize:

    def test_sends_reference_as_idempotency_key(self):
        seen = {}

        def handler(request):
            seen['url'] = str(request.url)
            seen['auth'] = request.headers['Authorization']
            seen['idempotency'] = request.headers['Idempotency-Key']
            seen['body'] = json.loads(request.content)
            return httpx.Response(200, json={
                'status': True,
                'data': {'authorization_url': "https://checkout.test/abc", 'access_code': "abc"},
            })

        session = _gateway(handler).initialize(
            email="ada@example.com", amount_kobo=150_000, reference="session_1_abc", callback_url="http://cb"
        )

        assert seen['url'] == "https://gateway.test/transaction/initialize"
        assert seen['auth'] == "Bearer sk_test_secret"
        assert seen['idempotency'] == "session_1_abc"
        assert seen['body'] == {
            'email': "ada@example.com",
            'amount': 150_000,
            'reference': "session_1_abc",
            'callback_url': "http://cb",
        }
        assert session.authorization_url == "https://checkout.test/abc"
        assert session.reference == "session_1_abc"
        assert session.access_code == "abc"

    def test_missing_authorization_url(self):
        gateway = _gateway(lambda request: httpx.Response(200, json={'status': False, 'message': "Invalid key"}))

        with pytest.raises(PaymentGatewayError) as exc:
            gateway.initialize(email="a@b.co", amount_kobo=1, reference="r", callback_url="http://cb")
        assert exc.value.message == "Failed to initialize payment"
        assert exc.value.details == {'gateway_message': "Invalid key"}

    def test_http_error_status(self):
        gateway = _gateway(lambda request: httpx.Response(500, text="oops"))

        with pytest.raises(PaymentGatewayError) as exc:
            gateway.initialize(email="a@b.co", amount_kobo=1, reference="r", callback_url="http://cb")
        assert exc.value.message == "Payment gateway rejected the request"
        assert exc.value.details['status_code'] == 500
        assert exc.value.status == 502

    def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PaymentGatewayError) as exc:
            _gateway(handler).initialize(email="a@b.co", amount_kobo=1, reference="r", callback_url="http://cb")
        assert exc.value.message == "Payment gateway unreachable"


class TestVerify:

    def test_successful_payment(self):
        def handler(request):
            assert request.url.path == "/transaction/verify/session_1_abc"
            return httpx.Response(200, json={'status': True, 'data': {'status': "success", 'amount': 150_000}})

        result = _gateway(handler).verify("session_1_abc")

        assert result.successful is True
        assert result.amount_kobo == 150_000

    @pytest.mark.parametrize("body", [
        {'status': True, 'data': {'status': "abandoned"}},
        {'status': False, 'data': {'status': "success"}},
        {'status': True},
    ])
    def test_unsuccessful_payment(self, body):
        result = _gateway(lambda request: httpx.Response(200, json=body)).verify("session_1_abc")

        assert result.successful is False

    def test_app_holds_configured_client(self, app):
        from medhub.services.payment_gateway import init_payment_gateway

        init_payment_gateway(app)
        client = app.extensions['payment_gateway']

        assert isinstance(client, PaymentGateway)
        assert client.secret_key == "sk_test_medhub"
