import logging
from typing import Any, Dict, Optional

from .base import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    GatewayStatus,
    PaymentProvider,
    RefundGatewayStatus,
    WebhookEvent,
    WebhookKind,
    hmac_sha256,
    signatures_match,
)

logger = logging.getLogger(__name__)


PAYMENT_STATUS_MAP = {
    "created": GatewayStatus.CREATED,
    "authorized": GatewayStatus.AUTHORIZED,
    "captured": GatewayStatus.CAPTURED,
    # A refunded payment was captured first; refunds are tracked separately
    "refunded": GatewayStatus.CAPTURED,
    "failed": GatewayStatus.FAILED,
}

REFUND_STATUS_MAP = {
    "pending": RefundGatewayStatus.PENDING,
    "created": RefundGatewayStatus.PENDING,
    "processed": RefundGatewayStatus.PROCESSED,
    "failed": RefundGatewayStatus.FAILED,
}

METHOD_MAP = {
    "card": "card",
    "upi": "upi",
    "netbanking": "net_banking",
    "bank_transfer": "net_banking",
    "wallet": "wallet",
    "emi": "emi",
    "cardless_emi": "emi",
    "paylater": "other",
}

PAYMENT_EVENTS = {"payment.captured", "payment.failed", "payment.authorized", "order.paid"}
REFUND_EVENTS = {"refund.processed", "refund.failed", "refund.created"}


def map_payment_status(raw_status):
    return PAYMENT_STATUS_MAP.get((raw_status or "").lower(), GatewayStatus.UNKNOWN)


def map_refund_status(raw_status):
    return REFUND_STATUS_MAP.get((raw_status or "").lower(), RefundGatewayStatus.UNKNOWN)


def refund_reference_of(entity):
    notes = entity.get("notes") or {}
    if not isinstance(notes, dict):
        notes = {}
    return notes.get("refund_reference") or entity.get("receipt") or ""


def map_method(raw_method):
    if not raw_method:
        return ""
    return METHOD_MAP.get(raw_method.lower(), "other")


class RazorpayProvider(PaymentProvider):  # Razorpay Orders API adapter
    name = "razorpay"
    signature_header = "x-razorpay-signature"
    event_id_header = "x-razorpay-event-id"

    def __init__(self, options: Dict[str, Any]):  # Initialize instance
        super().__init__(options)
        self.key_id = options.get("KEY_ID", "")
        self.key_secret = options.get("KEY_SECRET", "")
        self.base_url = options.get("BASE_URL", "https://api.razorpay.com/v1").rstrip("/")

    def get_auth(self):
        return (self.key_id, self.key_secret)

    def extract_error_message(self, payload) -> str:
        if isinstance(payload, dict):
            error = payload.get("error") or {}
            return error.get("description") or "Razorpay API request failed"
        return "Razorpay API request failed"

    def client_options(self) -> Dict[str, Any]:
        return {"key_id": self.key_id}

    def _to_payment(self, entity: Dict[str, Any], order_id: str = "") -> GatewayPayment:
        raw_status = entity.get("status", "")
        return GatewayPayment(
            provider=self.name,
            provider_order_id=entity.get("order_id") or order_id,
            provider_payment_id=entity.get("id"),
            status=map_payment_status(raw_status),
            method=map_method(entity.get("method")),
            amount=entity.get("amount"),
            raw_status=raw_status,
            error_code=entity.get("error_code") or "",
            error_description=entity.get("error_description") or "",
            raw=entity,
        )

    def _to_refund(self, entity: Dict[str, Any]) -> GatewayRefund:
        raw_status = entity.get("status", "")
        return GatewayRefund(
            provider=self.name,
            provider_refund_id=entity.get("id", ""),
            status=map_refund_status(raw_status),
            amount=entity.get("amount"),
            raw_status=raw_status,
            raw=entity,
        )

    def create_order(self, amount_minor: int, currency: str, receipt: str, notes: Optional[Dict] = None) -> GatewayOrder:
        data = {
            "amount": int(amount_minor),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        order = self._make_request("POST", f"{self.base_url}/orders", data)
        logger.info(f"Razorpay order {order.get('id')} created for receipt {receipt}")
        return GatewayOrder(
            provider=self.name,
            provider_order_id=order["id"],
            amount=int(order.get("amount", amount_minor)),
            currency=order.get("currency", currency),
            receipt=order.get("receipt", receipt),
            raw=order,
        )

    def fetch_payment(self, provider_payment_id: str) -> GatewayPayment:
        entity = self._make_request(
            "GET", f"{self.base_url}/payments/{provider_payment_id}", timeout=self.fetch_timeout
        )
        return self._to_payment(entity)

    def fetch_order_payment(self, provider_order_id: str) -> GatewayPayment:
        """Most relevant payment attempt for an order (captured wins, else latest)"""
        result = self._make_request(
            "GET", f"{self.base_url}/orders/{provider_order_id}/payments", timeout=self.fetch_timeout
        )
        items = result.get("items") or []
        if not items:
            return GatewayPayment(
                provider=self.name,
                provider_order_id=provider_order_id,
                status=GatewayStatus.CREATED,
                raw_status="created",
                raw=result,
            )

        captured = [item for item in items if item.get("status") in ("captured", "refunded")]
        if captured:
            entity = captured[0]
        else:
            entity = max(items, key=lambda item: item.get("created_at") or 0)
        return self._to_payment(entity, order_id=provider_order_id)

    def create_refund(self, payment, amount_minor: int, note: str, refund_reference: str) -> GatewayRefund:
        data = {
            "amount": int(amount_minor),
            "receipt": refund_reference,
            "notes": {"reason": note, "refund_reference": refund_reference},
        }
        entity = self._make_request(
            "POST", f"{self.base_url}/payments/{payment.provider_payment_id}/refund", data
        )
        logger.info(f"Razorpay refund {entity.get('id')} requested for payment {payment.provider_payment_id}")
        return self._to_refund(entity)

    def fetch_refund(self, payment, provider_refund_id: str) -> GatewayRefund:
        if not provider_refund_id.startswith("rfnd_"):
            return self.find_refund_by_reference(payment, provider_refund_id)
        entity = self._make_request(
            "GET",
            f"{self.base_url}/payments/{payment.provider_payment_id}/refunds/{provider_refund_id}",
            timeout=self.fetch_timeout,
        )
        return self._to_refund(entity)

    def find_refund_by_reference(self, payment, refund_reference: str) -> GatewayRefund:
        """Match our RF- reference against the refunds Razorpay holds for the payment"""
        result = self._make_request(
            "GET",
            f"{self.base_url}/payments/{payment.provider_payment_id}/refunds",
            timeout=self.fetch_timeout,
        )
        for entity in result.get("items") or []:
            if refund_reference_of(entity) == refund_reference:
                return self._to_refund(entity)
        logger.warning(f"No Razorpay refund for reference {refund_reference} on payment {payment.provider_payment_id}")
        return GatewayRefund.not_registered(self.name, refund_reference)

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            logger.error("Razorpay key secret is not configured")
            return False
        if not order_id or not payment_id or not signature:
            return False

        expected = hmac_sha256(self.key_secret, f"{order_id}|{payment_id}".encode("utf-8")).hex()
        return signatures_match(expected, signature)

    def verify_webhook_signature(self, raw_body: bytes, signature: str, timestamp: Optional[str] = None) -> bool:
        if not self.webhook_secret:
            logger.error("Razorpay webhook secret is not configured")
            return False
        if not signature:
            logger.warning("Missing X-Razorpay-Signature header")
            return False

        expected = hmac_sha256(self.webhook_secret, raw_body).hex()
        return signatures_match(expected, signature)

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        event_type = payload.get("event", "")
        body = payload.get("payload") or {}

        if event_type in PAYMENT_EVENTS:
            entity = (body.get("payment") or {}).get("entity") or {}
            order_id = entity.get("order_id") or ((body.get("order") or {}).get("entity") or {}).get("id", "")
            if not entity or not order_id:
                return WebhookEvent.ignored(event_type)
            return WebhookEvent(
                kind=WebhookKind.PAYMENT,
                event_type=event_type,
                payment=self._to_payment(entity, order_id=order_id),
            )

        if event_type in REFUND_EVENTS:
            entity = (body.get("refund") or {}).get("entity") or {}
            if not entity.get("id"):
                return WebhookEvent.ignored(event_type)
            refund = self._to_refund(entity)
            if event_type == "refund.processed" and refund.status is RefundGatewayStatus.UNKNOWN:
                refund.status = RefundGatewayStatus.PROCESSED
            elif event_type == "refund.failed" and refund.status is RefundGatewayStatus.UNKNOWN:
                refund.status = RefundGatewayStatus.FAILED
            return WebhookEvent(
                kind=WebhookKind.REFUND,
                event_type=event_type,
                refund=refund,
                refund_reference=refund_reference_of(entity),
            )

        return WebhookEvent.ignored(event_type)
