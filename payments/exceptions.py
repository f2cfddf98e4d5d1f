"""
Payment error taxonomy.

Every error is a DRF ``APIException`` so views can let DRF render it with the
right status code. Gateway-facing services raise these directly.
"""
from rest_framework import status
from rest_framework.exceptions import APIException


class PaymentError(APIException):  # Base class for payment lifecycle errors
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Payment request could not be processed."
    default_code = "payment_error"


class PaymentNotFound(PaymentError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Payment not found."
    default_code = "not_found"


class PaymentForbidden(PaymentError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to act on this payment."
    default_code = "forbidden"


class PaymentBadRequest(PaymentError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid payment request."
    default_code = "bad_request"


class GatewayUnavailable(PaymentError):
    """Network failure, timeout or 5xx from the gateway. Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Payment gateway is temporarily unavailable. Please retry."
    default_code = "gateway_unavailable"


class GatewayRejected(PaymentError):
    """The gateway answered a request with a 4xx."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment gateway rejected the request."
    default_code = "gateway_rejected"

    def __init__(self, detail=None, code=None, http_status=None, payload=None):
        super().__init__(detail, code)
        self.http_status = http_status
        self.payload = payload or {}


class InternalInconsistency(PaymentError):
    """Ledger state that should be impossible. Details go to logs, not clients."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "An internal error occurred. Our team has been notified."
    default_code = "internal_error"

    def __init__(self, message="", detail=None, code=None):
        super().__init__(detail, code)
        self.message = message

    def __str__(self):
        return self.message or str(self.detail)


class MalformedWebhook(PaymentError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Malformed webhook payload."
    default_code = "malformed_webhook"
