import hashlib
import hmac
import itertools
import json
import uuid
from datetime import timedelta
from unittest import mock

from django.utils import timezone

from appointments.models import Appointment
from appointments.services import AppointmentStatusCoupler
from core.models import Participant
from payments.container import PaymentServices
from payments.models import Payment
from payments.providers import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    GatewayStatus,
    PaymentProvider,
    PaymentProviderRegistry,
    RefundGatewayStatus,
)
from payments.providers.razorpay import RazorpayProvider

_counter = itertools.count(1)

RAZORPAY_OPTIONS = {
    "KEY_ID": "rzp_test_key",
    "KEY_SECRET": "rzp_test_secret",
    "WEBHOOK_SECRET": "rzp_webhook_secret",
    "BASE_URL": "https://api.razorpay.test/v1",
}


class FakeProvider(PaymentProvider):  # In-memory gateway used by service tests
    signature_header = "x-fake-signature"
    event_id_header = "x-fake-event-id"

    def __init__(self, name="razorpay", uses_checkout_signature=True):  # Initialize instance
        super().__init__({"WEBHOOK_SECRET": "fake-webhook-secret"})
        self.name = name
        self.uses_checkout_signature = uses_checkout_signature
        self.signature_valid = True
        self.gateway_payment = None
        self.gateway_refund = None
        self.refund_error = None
        self.created_orders = []
        self.created_refunds = []
        self.fetch_calls = 0
        self.on_create_order = None

    def create_order(self, amount_minor, currency, receipt, notes=None):
        if self.on_create_order:
            self.on_create_order()
        order_id = f"order_{receipt}_{len(self.created_orders) + 1}"
        self.created_orders.append({"amount": amount_minor, "currency": currency, "receipt": receipt, "notes": notes})
        return GatewayOrder(self.name, order_id, amount_minor, currency, receipt, raw={"id": order_id})

    def _payment(self):
        self.fetch_calls += 1
        return self.gateway_payment

    def fetch_payment(self, provider_payment_id):
        return self._payment()

    def fetch_order_payment(self, provider_order_id):
        return self._payment()

    def create_refund(self, payment, amount_minor, note, refund_reference):
        if self.refund_error:
            raise self.refund_error
        self.created_refunds.append({"amount": amount_minor, "reference": refund_reference})
        return self.gateway_refund or GatewayRefund(
            self.name, f"rfnd_{len(self.created_refunds)}", RefundGatewayStatus.PENDING, amount_minor, "pending"
        )

    def fetch_refund(self, payment, provider_refund_id):
        return self.gateway_refund

    def verify_signature(self, order_id, payment_id, signature):
        return self.signature_valid

    def client_options(self):
        return {"key_id": "rzp_test_key"} if self.name == "razorpay" else {}


def captured(payment, provider_payment_id="pay_test_1", method="upi"):
    return GatewayPayment(
        provider=payment.provider,
        provider_order_id=payment.provider_order_id,
        status=GatewayStatus.CAPTURED,
        provider_payment_id=provider_payment_id,
        method=method,
        amount=payment.total_amount,
        raw_status="captured",
        raw={"id": provider_payment_id, "status": "captured"},
    )


def gateway_status(payment, status, raw_status=None, provider_payment_id="pay_test_1"):
    return GatewayPayment(
        provider=payment.provider,
        provider_order_id=payment.provider_order_id,
        status=status,
        provider_payment_id=provider_payment_id,
        raw_status=raw_status or status.value,
        error_code="BAD_REQUEST_ERROR" if status is GatewayStatus.FAILED else "",
        raw={"status": raw_status or status.value},
    )


def build_services(*providers):
    registry = PaymentProviderRegistry.from_providers(list(providers))
    return PaymentServices.build(registry, coupler=AppointmentStatusCoupler())


def razorpay_provider():
    return RazorpayProvider(dict(RAZORPAY_OPTIONS))


def sign_razorpay_webhook(body, secret=RAZORPAY_OPTIONS["WEBHOOK_SECRET"]):
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def razorpay_payment_webhook(order_id, payment_id="pay_hook_1", event="payment.captured", status="captured"):
    return json.dumps({
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_id,
                    "status": status,
                    "method": "upi",
                    "amount": 50000,
                }
            }
        },
    }).encode("utf-8")


def gateway_response(status_code=200, payload=None):
    response = mock.Mock()
    response.status_code = status_code
    response.text = json.dumps(payload if payload is not None else {})
    response.json.return_value = payload if payload is not None else {}
    return response


def make_participant(role="patient", **extra):
    n = next(_counter)
    extra.setdefault("full_name", f"{role.title()} {n}")
    extra.setdefault("phone_number", f"+9198000{n:05d}")
    return Participant.objects.create_user(
        email=f"{role}{n}@test.com", password="test123", role=role, **extra
    )


def make_appointment(patient, hospital, hours_ahead=48, **extra):
    extra.setdefault("consultation_fee", 50000)
    extra.setdefault("consultation_type", "in_person")
    return Appointment.objects.create(
        booking_number=f"BK{next(_counter):06d}",
        patient=patient,
        hospital=hospital,
        scheduled_start=timezone.now() + timedelta(hours=hours_ahead),
        **extra,
    )


def make_payment(appointment, status="pending", provider="razorpay", **extra):
    amount = extra.pop("total_amount", appointment.consultation_fee if appointment else 50000)
    extra.setdefault("payer", appointment.patient if appointment else None)
    extra.setdefault("hospital", appointment.hospital if appointment else None)
    if status in Payment.SETTLEABLE_STATUSES:
        extra.setdefault("paid_at", timezone.now())
        extra.setdefault("provider_payment_id", f"pay_{uuid.uuid4().hex[:14]}")
    return Payment.objects.create(
        appointment=appointment,
        base_amount=amount,
        total_amount=amount,
        currency="INR",
        provider=provider,
        provider_order_id=f"order_{uuid.uuid4().hex[:14]}",
        receipt=f"APT-{appointment.booking_number if appointment else 'NA'}-1",
        status=status,
        **extra,
    )
