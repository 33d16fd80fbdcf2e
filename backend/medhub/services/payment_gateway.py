# Overview: HTTP client for the external payment gateway (transaction initialize / verify).

"""
Payment gateway client (Paystack-compatible API).

Only two calls are made: initialize a hosted-payment transaction and verify
it by reference. Every request carries a bounded timeout; initialize sends
the transaction reference as Idempotency-Key so a retried checkout cannot
open a second charge for the same reference.

The app holds one client in app.extensions["payment_gateway"]; tests swap
in a fake with the same two methods.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from flask import current_app

from ..errors import PaymentGatewayError


@dataclass
class PaymentSession:
    reference: str
    authorization_url: str
    access_code: str | None = None


@dataclass
class PaymentVerification:
    reference: str
    successful: bool
    gateway_status: str | None = None
    amount_kobo: int | None = None


class PaymentGateway:
    def __init__(self, base_url: str, secret_key: str, timeout: float = 10.0, transport=None):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
        )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            with self._client() as client:
                response = client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise PaymentGatewayError("Payment gateway unreachable", {"reason": str(exc)})

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            raise PaymentGatewayError(
                "Payment gateway rejected the request",
                {"status_code": response.status_code, "gateway_message": body.get("message")},
            )
        return body

    def initialize(self, *, email: str, amount_kobo: int, reference: str, callback_url: str) -> PaymentSession:
        body = self._request(
            "POST",
            "/transaction/initialize",
            json={
                "email": email,
                "amount": amount_kobo,
                "reference": reference,
                "callback_url": callback_url,
            },
            headers={"Idempotency-Key": reference},
        )
        data = body.get("data") or {}
        if not body.get("status") or not data.get("authorization_url"):
            raise PaymentGatewayError(
                "Failed to initialize payment",
                {"gateway_message": body.get("message")},
            )
        return PaymentSession(
            reference=data.get("reference") or reference,
            authorization_url=data["authorization_url"],
            access_code=data.get("access_code"),
        )

    def verify(self, reference: str) -> PaymentVerification:
        body = self._request("GET", f"/transaction/verify/{reference}")
        data = body.get("data") or {}
        gateway_status = data.get("status")
        return PaymentVerification(
            reference=reference,
            successful=bool(body.get("status")) and gateway_status == "success",
            gateway_status=gateway_status,
            amount_kobo=data.get("amount"),
        )


def init_payment_gateway(app) -> None:
    app.extensions["payment_gateway"] = PaymentGateway(
        base_url=app.config["PAYMENT_GATEWAY_BASE_URL"],
        secret_key=app.config["PAYMENT_GATEWAY_SECRET_KEY"],
        timeout=app.config["PAYMENT_GATEWAY_TIMEOUT_SECONDS"],
    )


def get_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]
