"""
Gateway-neutral provider contract.

Each gateway adapter translates its own vocabulary into the normalized
``GatewayStatus`` / ``RefundGatewayStatus`` enums and the dataclasses below,
so the reconciler never reads gateway payload keys directly.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import requests

from payments.exceptions import GatewayRejected, GatewayUnavailable

logger = logging.getLogger(__name__)


class GatewayStatus(Enum):
    CREATED = "created"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PENDING = "pending"
    UNKNOWN = "unknown"

    @property
    def is_success(self):
        return self is GatewayStatus.CAPTURED

    @property
    def is_failure(self):
        return self in (GatewayStatus.FAILED, GatewayStatus.CANCELLED, GatewayStatus.EXPIRED)


class RefundGatewayStatus(Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
    UNKNOWN = "unknown"


class WebhookKind(Enum):
    PAYMENT = "payment"
    REFUND = "refund"
    IGNORED = "ignored"


@dataclass
class GatewayOrder:
    provider: str
    provider_order_id: str
    amount: int
    currency: str
    receipt: str
    payment_link: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayPayment:
    provider: str
    provider_order_id: str
    status: GatewayStatus
    provider_payment_id: Optional[str] = None
    method: str = ""
    amount: Optional[int] = None
    raw_status: str = ""
    error_code: str = ""
    error_description: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayRefund:
    provider: str
    provider_refund_id: str
    status: RefundGatewayStatus
    amount: Optional[int] = None
    raw_status: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def not_registered(cls, provider, refund_reference):
        """The gateway holds no refund for our reference, so the request never reached it"""
        return cls(
            provider=provider,
            provider_refund_id=refund_reference,
            status=RefundGatewayStatus.FAILED,
            raw={"failure_reason": "Refund was not registered at the gateway"},
        )


@dataclass
class WebhookEvent:
    """Tagged result of parsing a verified webhook body"""

    kind: WebhookKind
    event_type: str
    payment: Optional[GatewayPayment] = None
    refund: Optional[GatewayRefund] = None
    refund_reference: str = ""

    @classmethod
    def ignored(cls, event_type):
        return cls(kind=WebhookKind.IGNORED, event_type=event_type or "unknown")


def hmac_sha256(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def signatures_match(expected: str, provided: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.strip().encode("utf-8"))


class PaymentProvider:
    """Base class for payment gateway adapters"""

    name = ""
    signature_header = ""
    event_id_header = ""
    timestamp_header = ""
    uses_checkout_signature = True

    def __init__(self, options: Dict[str, Any]):  # Initialize instance
        self.options = options
        self.timeout = options.get("TIMEOUT", 30)
        self.fetch_timeout = options.get("FETCH_TIMEOUT", self.timeout)
        self.webhook_secret = options.get("WEBHOOK_SECRET", "")

    # Outbound HTTP

    def get_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def get_auth(self):
        return None

    def _make_request(
        self,
        method: str,
        url: str,
        data: Optional[Dict] = None,
        timeout: Optional[int] = None,
    ) -> Dict:
        """Make HTTP request to the gateway and map failures to payment errors"""
        try:
            response = requests.request(
                method,
                url,
                headers=self.get_headers(),
                auth=self.get_auth(),
                json=data,
                timeout=timeout or self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.error(f"{self.name} API timeout [{method} {url}]: {str(e)}")
            raise GatewayUnavailable(f"{self.name} request timed out. Please retry.")
        except requests.exceptions.RequestException as e:
            logger.error(f"{self.name} API request failed [{method} {url}]: {str(e)}")
            raise GatewayUnavailable()

        try:
            payload = response.json() if response.text else {}
        except ValueError:
            payload = {"raw": response.text}

        if response.status_code >= 500:
            logger.error(f"{self.name} API error {response.status_code} [{method} {url}]: {payload}")
            raise GatewayUnavailable()

        if response.status_code >= 400:
            message = self.extract_error_message(payload)
            logger.error(f"{self.name} API rejected {response.status_code} [{method} {url}]: {message}")
            raise GatewayRejected(
                f"{self.name}: {message}", http_status=response.status_code, payload=payload
            )

        return payload

    def extract_error_message(self, payload) -> str:
        if isinstance(payload, dict):
            return payload.get("message") or "request rejected"
        return "request rejected"

    # Contract

    def create_order(self, amount_minor: int, currency: str, receipt: str, notes: Optional[Dict] = None) -> GatewayOrder:
        raise NotImplementedError

    def fetch_payment(self, provider_payment_id: str) -> GatewayPayment:
        raise NotImplementedError

    def fetch_order_payment(self, provider_order_id: str) -> GatewayPayment:
        raise NotImplementedError

    def create_refund(self, payment, amount_minor: int, note: str, refund_reference: str) -> GatewayRefund:
        raise NotImplementedError

    def fetch_refund(self, payment, provider_refund_id: str) -> GatewayRefund:
        """
        Current state of a refund. ``provider_refund_id`` may be our own
        ``RF-...`` reference when the create call never got an answer.
        """
        raise NotImplementedError

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        raise NotImplementedError

    def verify_webhook_signature(self, raw_body: bytes, signature: str, timestamp: Optional[str] = None) -> bool:
        raise NotImplementedError

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        raise NotImplementedError

    def client_options(self) -> Dict[str, Any]:
        """Public values the checkout client needs (never secrets)"""
        return {}
