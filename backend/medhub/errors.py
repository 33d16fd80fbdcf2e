# Overview: Service-layer exception taxonomy; each error carries the HTTP status route adapters respond with.

"""
Service errors.

Services raise these; route adapters translate them into
`{"message", "error", "details"}` JSON bodies using `status`.
Anything that is not a ServiceError is an unexpected failure (500).
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for expected business failures."""

    status = 500
    code = "server_error"

    def __init__(self, message: str, details: dict | None = None, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status is not None:
            self.status = status

    def to_dict(self) -> dict:
        body = {"message": self.message, "error": self.code}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(ServiceError):
    status = 404
    code = "not_found"


class UnavailableError(ServiceError):
    """Stock or availability violated."""
    status = 400
    code = "unavailable"


class ConflictError(ServiceError):
    status = 409
    code = "conflict"


class UnauthorizedError(ServiceError):
    status = 401
    code = "unauthorized"


class ForbiddenError(ServiceError):
    status = 403
    code = "forbidden"


class UpstreamError(ServiceError):
    status = 502
    code = "upstream_error"


class EmptyCartError(ServiceError):
    status = 400
    code = "empty_cart"


class PrescriptionRequiredError(ServiceError):
    status = 400
    code = "prescription_required"


class PrescriptionNotVerifiedError(ServiceError):
    status = 400
    code = "prescription_not_verified"


class NoPayableItemsError(ServiceError):
    status = 400
    code = "no_payable_items"


class SessionNotFoundError(NotFoundError):
    code = "session_not_found"


class OrdersNotFoundError(NotFoundError):
    code = "orders_not_found"


class InvalidTransitionError(ServiceError):
    status = 400
    code = "invalid_transition"


class SlotUnavailableError(UnavailableError):
    code = "slot_unavailable"


class PaymentGatewayError(UpstreamError):
    code = "payment_gateway_error"


class PaymentVerificationFailedError(ServiceError):
    status = 400
    code = "payment_verification_failed"


def error_response(exc: ServiceError, **context):
    """
    Log an expected failure with its identifiers and build the JSON reply.

    Route adapters call this from `except ServiceError`; the status comes
    from the error itself.
    """
    from flask import current_app, jsonify

    from .extensions import db

    db.session.rollback()
    current_app.logger.warning(
        "%s (%s) status=%s context=%s details=%s",
        exc.message, exc.code, exc.status, context, exc.details,
    )
    return jsonify(exc.to_dict()), exc.status
