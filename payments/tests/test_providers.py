import base64
import hashlib
import hmac
import json
from unittest import mock

import requests
from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase

from payments.exceptions import GatewayRejected, GatewayUnavailable, PaymentBadRequest
from payments.providers import GatewayStatus, PaymentProviderRegistry, RefundGatewayStatus, WebhookKind
from payments.providers.cashfree import CashfreeProvider, map_order_status, to_major, to_minor
from payments.providers.razorpay import RazorpayProvider, map_method, map_payment_status
from .helpers import RAZORPAY_OPTIONS, gateway_response, razorpay_payment_webhook, sign_razorpay_webhook

REQUEST = "payments.providers.base.requests.request"

CASHFREE_OPTIONS = {
    "APP_ID": "cf_app",
    "SECRET_KEY": "cf_secret",
    "WEBHOOK_SECRET": "cf_secret",
    "ENVIRONMENT": "sandbox",
    "RETURN_URL": "https://medipay.test/payments/return",
    "NOTIFY_URL": "https://medipay.test/api/v1/payments/webhook/cashfree/",
}


class PaymentRecord:  # Minimal stand-in for the fields adapters read off a Payment
    def __init__(self, provider_order_id="order_1", provider_payment_id="pay_1"):  # Initialize instance
        self.provider_order_id = provider_order_id
        self.provider_payment_id = provider_payment_id


class RazorpayProviderTest(SimpleTestCase):  # RazorpayProviderTest class implementation
    def setUp(self):  # Setup
        self.provider = RazorpayProvider(dict(RAZORPAY_OPTIONS))

    def test_checkout_signature(self):  # Test checkout signature
        signature = hmac.new(b"rzp_test_secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
        self.assertTrue(self.provider.verify_signature("order_1", "pay_1", signature))
        self.assertFalse(self.provider.verify_signature("order_1", "pay_2", signature))
        self.assertFalse(self.provider.verify_signature("order_1", "pay_1", ""))

    def test_webhook_signature(self):  # Test webhook signature
        body = razorpay_payment_webhook("order_1")
        self.assertTrue(self.provider.verify_webhook_signature(body, sign_razorpay_webhook(body)))
        self.assertFalse(self.provider.verify_webhook_signature(body + b" ", sign_razorpay_webhook(body)))
        self.assertFalse(self.provider.verify_webhook_signature(body, ""))

    def test_status_and_method_mapping(self):  # Test status and method mapping
        self.assertEqual(map_payment_status("captured"), GatewayStatus.CAPTURED)
        self.assertEqual(map_payment_status("refunded"), GatewayStatus.CAPTURED)
        self.assertEqual(map_payment_status("authorized"), GatewayStatus.AUTHORIZED)
        self.assertEqual(map_payment_status("on_hold"), GatewayStatus.UNKNOWN)
        self.assertEqual(map_method("netbanking"), "net_banking")
        self.assertEqual(map_method("paylater"), "other")
        self.assertEqual(map_method(None), "")

    @mock.patch(REQUEST)
    def test_create_order_sends_minor_units(self, request):  # Test create order sends minor units
        request.return_value = gateway_response(200, {
            "id": "order_abc", "amount": 50000, "currency": "INR", "receipt": "APT-BK1-1",
        })
        order = self.provider.create_order(50000, "INR", "APT-BK1-1", notes={"appointment_id": "a1"})

        self.assertEqual(order.provider_order_id, "order_abc")
        self.assertEqual(order.amount, 50000)
        method, url = request.call_args[0]
        self.assertEqual(method, "POST")
        self.assertEqual(url, "https://api.razorpay.test/v1/orders")
        self.assertEqual(request.call_args[1]["json"]["amount"], 50000)
        self.assertEqual(request.call_args[1]["auth"], ("rzp_test_key", "rzp_test_secret"))

    @mock.patch(REQUEST)
    def test_server_error_is_unavailable(self, request):  # Test server error is unavailable
        request.return_value = gateway_response(502, {"error": {"description": "upstream"}})
        with self.assertRaises(GatewayUnavailable):
            self.provider.fetch_payment("pay_1")

    @mock.patch(REQUEST)
    def test_timeout_is_unavailable(self, request):  # Test timeout is unavailable
        request.side_effect = requests.exceptions.Timeout("read timed out")
        with self.assertRaises(GatewayUnavailable):
            self.provider.fetch_payment("pay_1")

    @mock.patch(REQUEST)
    def test_client_error_is_rejected(self, request):  # Test client error is rejected
        request.return_value = gateway_response(400, {"error": {"description": "The id provided does not exist"}})
        with self.assertRaises(GatewayRejected) as ctx:
            self.provider.fetch_payment("pay_missing")
        self.assertEqual(ctx.exception.http_status, 400)
        self.assertIn("does not exist", str(ctx.exception.detail))

    @mock.patch(REQUEST)
    def test_order_payment_prefers_captured_attempt(self, request):  # Test order payment prefers captured attempt
        request.return_value = gateway_response(200, {"items": [
            {"id": "pay_failed", "order_id": "order_1", "status": "failed", "created_at": 20},
            {"id": "pay_ok", "order_id": "order_1", "status": "captured", "method": "card", "created_at": 10},
        ]})
        payment = self.provider.fetch_order_payment("order_1")
        self.assertEqual(payment.provider_payment_id, "pay_ok")
        self.assertEqual(payment.status, GatewayStatus.CAPTURED)
        self.assertEqual(payment.method, "card")

    @mock.patch(REQUEST)
    def test_order_without_attempts_is_created(self, request):  # Test order without attempts is created
        request.return_value = gateway_response(200, {"items": []})
        payment = self.provider.fetch_order_payment("order_1")
        self.assertEqual(payment.status, GatewayStatus.CREATED)
        self.assertIsNone(payment.provider_payment_id)

    @mock.patch(REQUEST)
    def test_refund_uses_payment_id(self, request):  # Test refund uses payment id
        request.return_value = gateway_response(200, {"id": "rfnd_1", "status": "processed", "amount": 37500})
        refund = self.provider.create_refund(PaymentRecord(), 37500, "Patient cancelled", "RF-1")

        self.assertEqual(refund.provider_refund_id, "rfnd_1")
        self.assertEqual(refund.status, RefundGatewayStatus.PROCESSED)
        self.assertEqual(request.call_args[0][1], "https://api.razorpay.test/v1/payments/pay_1/refund")
        self.assertEqual(request.call_args[1]["json"]["amount"], 37500)

    def test_parse_payment_webhook(self):  # Test parse payment webhook
        payload = json.loads(razorpay_payment_webhook("order_9", payment_id="pay_9"))
        event = self.provider.parse_webhook(payload)
        self.assertEqual(event.kind, WebhookKind.PAYMENT)
        self.assertEqual(event.payment.provider_order_id, "order_9")
        self.assertEqual(event.payment.provider_payment_id, "pay_9")

    def test_parse_refund_and_unknown_webhooks(self):  # Test parse refund and unknown webhooks
        event = self.provider.parse_webhook({
            "event": "refund.processed",
            "payload": {"refund": {"entity": {
                "id": "rfnd_1",
                "payment_id": "pay_1",
                "status": "processed",
                "notes": {"refund_reference": "RF-abc"},
            }}},
        })
        self.assertEqual(event.kind, WebhookKind.REFUND)
        self.assertEqual(event.refund.status, RefundGatewayStatus.PROCESSED)
        self.assertEqual(event.refund_reference, "RF-abc")

        self.assertEqual(self.provider.parse_webhook({"event": "invoice.paid"}).kind, WebhookKind.IGNORED)

    @mock.patch(REQUEST)
    def test_refund_sends_reference(self, request):  # Test refund sends reference
        request.return_value = gateway_response(200, {"id": "rfnd_1", "status": "pending", "amount": 50000})
        self.provider.create_refund(PaymentRecord(), 50000, "Doctor cancelled", "RF-abc")

        body = request.call_args[1]["json"]
        self.assertEqual(body["receipt"], "RF-abc")
        self.assertEqual(body["notes"]["refund_reference"], "RF-abc")

    @mock.patch(REQUEST)
    def test_fetch_refund_by_reference(self, request):  # Test fetch refund by reference
        request.return_value = gateway_response(200, {"items": [
            {"id": "rfnd_7", "status": "processed", "amount": 25000, "notes": {"refund_reference": "RF-other"}},
            {"id": "rfnd_8", "status": "processed", "amount": 50000, "notes": {"refund_reference": "RF-abc"}},
        ]})
        refund = self.provider.fetch_refund(PaymentRecord(), "RF-abc")

        self.assertEqual(refund.provider_refund_id, "rfnd_8")
        self.assertEqual(refund.status, RefundGatewayStatus.PROCESSED)
        self.assertEqual(request.call_args[0][1], "https://api.razorpay.test/v1/payments/pay_1/refunds")

    @mock.patch(REQUEST)
    def test_fetch_refund_by_receipt(self, request):  # Test fetch refund by receipt
        request.return_value = gateway_response(200, {"items": [
            {"id": "rfnd_9", "status": "pending", "amount": 50000, "receipt": "RF-abc"},
        ]})
        refund = self.provider.fetch_refund(PaymentRecord(), "RF-abc")
        self.assertEqual(refund.provider_refund_id, "rfnd_9")
        self.assertEqual(refund.status, RefundGatewayStatus.PENDING)

    @mock.patch(REQUEST)
    def test_unregistered_reference_fails(self, request):  # Test unregistered reference fails
        request.return_value = gateway_response(200, {"items": []})
        refund = self.provider.fetch_refund(PaymentRecord(), "RF-abc")

        self.assertEqual(refund.provider_refund_id, "RF-abc")
        self.assertEqual(refund.status, RefundGatewayStatus.FAILED)

    @mock.patch(REQUEST)
    def test_fetch_refund_by_gateway_id(self, request):  # Test fetch refund by gateway id
        request.return_value = gateway_response(200, {"id": "rfnd_1", "status": "processed", "amount": 50000})
        self.provider.fetch_refund(PaymentRecord(), "rfnd_1")
        self.assertEqual(request.call_args[0][1], "https://api.razorpay.test/v1/payments/pay_1/refunds/rfnd_1")

    def test_client_options_expose_key_id_only(self):  # Test client options expose key id only
        self.assertEqual(self.provider.client_options(), {"key_id": "rzp_test_key"})


class CashfreeProviderTest(SimpleTestCase):  # CashfreeProviderTest class implementation
    def setUp(self):  # Setup
        self.provider = CashfreeProvider(dict(CASHFREE_OPTIONS))

    def test_amount_conversion(self):  # Test amount conversion
        self.assertEqual(to_major(50000), 500.0)
        self.assertEqual(to_major(49950), 499.5)
        self.assertEqual(to_minor(499.5), 49950)
        self.assertEqual(to_minor("500.00"), 50000)
        self.assertIsNone(to_minor(None))

    def test_order_status_mapping(self):  # Test order status mapping
        self.assertEqual(map_order_status("PAID"), GatewayStatus.CAPTURED)
        self.assertEqual(map_order_status("ACTIVE"), GatewayStatus.CREATED)
        self.assertEqual(map_order_status("EXPIRED"), GatewayStatus.FAILED)
        self.assertEqual(map_order_status("SOMETHING_NEW"), GatewayStatus.PENDING)

    @mock.patch(REQUEST)
    def test_create_order_uses_receipt_as_order_id(self, request):  # Test create order uses receipt as order id
        request.return_value = gateway_response(200, {
            "order_id": "APT-BK1-1", "order_amount": 500.0, "order_currency": "INR",
            "payment_session_id": "session_abc", "cf_order_id": 1001,
        })
        order = self.provider.create_order(50000, "INR", "APT-BK1-1", notes={"contact": "+919800000001"})

        sent = request.call_args[1]["json"]
        self.assertEqual(sent["order_id"], "APT-BK1-1")
        self.assertEqual(sent["order_amount"], 500.0)
        self.assertIn("notify_url", sent["order_meta"])
        self.assertEqual(order.provider_order_id, "APT-BK1-1")
        self.assertEqual(order.amount, 50000)
        self.assertEqual(order.payment_link, "https://payments-test.cashfree.com/order/#session_abc")

    @mock.patch(REQUEST)
    def test_conflict_fetches_existing_order(self, request):  # Test conflict fetches existing order
        request.side_effect = [
            gateway_response(409, {"message": "order with same id is already present"}),
            gateway_response(200, {"order_id": "APT-BK1-1", "order_amount": 500, "payment_session_id": "s1"}),
        ]
        order = self.provider.create_order(50000, "INR", "APT-BK1-1")
        self.assertEqual(order.provider_order_id, "APT-BK1-1")
        self.assertEqual(request.call_args_list[1][0], ("GET", "https://sandbox.cashfree.com/pg/orders/APT-BK1-1"))

    @mock.patch(REQUEST)
    def test_fetch_order_payment(self, request):  # Test fetch order payment
        request.side_effect = [
            gateway_response(200, {"order_id": "APT-BK1-1", "order_status": "PAID"}),
            gateway_response(200, [
                {"cf_payment_id": 555, "payment_status": "SUCCESS", "payment_group": "upi", "payment_amount": 500},
            ]),
        ]
        payment = self.provider.fetch_order_payment("APT-BK1-1")
        self.assertEqual(payment.status, GatewayStatus.CAPTURED)
        self.assertEqual(payment.provider_payment_id, "555")
        self.assertEqual(payment.method, "upi")
        self.assertEqual(payment.amount, 50000)

    def test_no_checkout_signature(self):  # Test no checkout signature
        self.assertFalse(self.provider.uses_checkout_signature)
        self.assertFalse(self.provider.verify_signature("APT-BK1-1", "555", "anything"))

    def test_webhook_signature_includes_timestamp(self):  # Test webhook signature includes timestamp
        body = b'{"type":"PAYMENT_SUCCESS_WEBHOOK"}'
        timestamp = "1729312345"
        digest = hmac.new(b"cf_secret", timestamp.encode() + body, hashlib.sha256).digest()
        signature = base64.b64encode(digest).decode()

        self.assertTrue(self.provider.verify_webhook_signature(body, signature, timestamp))
        self.assertFalse(self.provider.verify_webhook_signature(body, signature, "1729312346"))
        self.assertFalse(self.provider.verify_webhook_signature(body, signature, None))

    def test_parse_payment_webhook(self):  # Test parse payment webhook
        event = self.provider.parse_webhook({
            "type": "PAYMENT_FAILED_WEBHOOK",
            "data": {
                "order": {"order_id": "APT-BK1-1"},
                "payment": {
                    "cf_payment_id": 77,
                    "payment_status": "FAILED",
                    "error_details": {"error_code": "TRANSACTION_DECLINED"},
                },
            },
        })
        self.assertEqual(event.kind, WebhookKind.PAYMENT)
        self.assertEqual(event.payment.status, GatewayStatus.FAILED)
        self.assertEqual(event.payment.error_code, "TRANSACTION_DECLINED")

    def test_parse_refund_webhook(self):  # Test parse refund webhook
        event = self.provider.parse_webhook({
            "type": "REFUND_STATUS_WEBHOOK",
            "data": {"refund": {"refund_id": "RF-abc", "order_id": "APT-BK1-1", "refund_status": "SUCCESS"}},
        })
        self.assertEqual(event.kind, WebhookKind.REFUND)
        self.assertEqual(event.refund.provider_refund_id, "RF-abc")
        self.assertEqual(event.refund.status, RefundGatewayStatus.PROCESSED)
        self.assertEqual(event.refund_reference, "RF-abc")

    @mock.patch(REQUEST)
    def test_unknown_refund_is_not_registered(self, request):  # Test unknown refund is not registered
        request.return_value = gateway_response(404, {"message": "refund does not exist"})
        refund = self.provider.fetch_refund(PaymentRecord("APT-BK1-1"), "RF-abc")

        self.assertEqual(refund.provider_refund_id, "RF-abc")
        self.assertEqual(refund.status, RefundGatewayStatus.FAILED)
        self.assertEqual(
            request.call_args[0][1], "https://sandbox.cashfree.com/pg/orders/APT-BK1-1/refunds/RF-abc"
        )

    @mock.patch(REQUEST)
    def test_refund_lookup_rejection_propagates(self, request):  # Test refund lookup rejection propagates
        request.return_value = gateway_response(401, {"message": "authentication failed"})
        with self.assertRaises(GatewayRejected):
            self.provider.fetch_refund(PaymentRecord("APT-BK1-1"), "RF-abc")


class PaymentProviderRegistryTest(SimpleTestCase):  # PaymentProviderRegistryTest class implementation
    def test_builds_configured_backends(self):  # Test builds configured backends
        registry = PaymentProviderRegistry({
            "razorpay": {"BACKEND": "payments.providers.razorpay.RazorpayProvider", **RAZORPAY_OPTIONS},
            "cashfree": {"BACKEND": "payments.providers.cashfree.CashfreeProvider", **CASHFREE_OPTIONS},
        }, active="cashfree")

        self.assertEqual(registry.get().name, "cashfree")
        self.assertEqual(registry.get("razorpay").name, "razorpay")
        self.assertEqual(sorted(registry.names()), ["cashfree", "razorpay"])

    def test_unknown_provider(self):  # Test unknown provider
        registry = PaymentProviderRegistry.from_providers([RazorpayProvider(dict(RAZORPAY_OPTIONS))])
        with self.assertRaises(PaymentBadRequest):
            registry.get("stripe")

    def test_missing_backend(self):  # Test missing backend
        with self.assertRaises(ImproperlyConfigured):
            PaymentProviderRegistry({"razorpay": {"KEY_ID": "x"}})

    def test_inactive_provider_not_configured(self):  # Test inactive provider not configured
        with self.assertRaises(ImproperlyConfigured):
            PaymentProviderRegistry(
                {"razorpay": {"BACKEND": "payments.providers.razorpay.RazorpayProvider"}}, active="cashfree"
            )
