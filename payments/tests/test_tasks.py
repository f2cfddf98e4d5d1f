from datetime import timedelta

from django.apps import apps
from django.test import TestCase
from django.utils import timezone

from appointments.models import Appointment
from payments import tasks
from payments.exceptions import GatewayUnavailable
from payments.models import Payment, Refund, Settlement
from payments.settlement_service import previous_week
from payments.providers import GatewayRefund, RefundGatewayStatus
from .helpers import FakeProvider, build_services, captured, make_appointment, make_participant, make_payment


class PaymentTasksTest(TestCase):  # PaymentTasksTest class implementation
    def setUp(self):  # Setup
        self.provider = FakeProvider()
        config = apps.get_app_config("payments")
        config.services = build_services(self.provider)
        self.addCleanup(config.reset_services)

        self.patient = make_participant("patient")
        self.hospital = make_participant("hospital")
        self.appointment = make_appointment(self.patient, self.hospital)

    def age(self, obj, minutes):
        type(obj).objects.filter(pk=obj.pk).update(created_at=timezone.now() - timedelta(minutes=minutes))

    def test_expire_stale_payments(self):  # Test expire stale payments
        payment = make_payment(self.appointment)
        self.age(payment, 45)

        self.assertEqual(tasks.expire_stale_payments(), "Expired 1 payments")
        payment.refresh_from_db()
        self.assertEqual(payment.status, "failed")

    def test_poll_pending_payments(self):  # Test poll pending payments
        old = make_payment(self.appointment)
        fresh = make_payment(make_appointment(self.patient, self.hospital))
        self.age(old, 10)
        self.provider.gateway_payment = captured(old)

        self.assertEqual(tasks.poll_pending_payments(), "Reconciled 1 payments")

        old.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(old.status, "completed")
        self.assertEqual(fresh.status, "pending")
        self.assertEqual(self.provider.fetch_calls, 1)

    def test_poll_survives_gateway_outage(self):  # Test poll survives gateway outage
        payment = make_payment(self.appointment)
        self.age(payment, 10)

        def unavailable(*args):
            raise GatewayUnavailable()

        self.provider.fetch_order_payment = unavailable
        self.assertEqual(tasks.poll_pending_payments(), "Reconciled 0 payments")
        payment.refresh_from_db()
        self.assertEqual(payment.status, "pending")

    def test_sweep_unconfirmed_appointments(self):  # Test sweep unconfirmed appointments
        make_payment(self.appointment, status="completed")

        self.assertEqual(tasks.sweep_unconfirmed_appointments(), "Confirmed 1 appointments")
        self.assertEqual(Appointment.objects.get(pk=self.appointment.pk).status, "confirmed")

    def test_poll_pending_refunds(self):  # Test poll pending refunds
        payment = make_payment(self.appointment, status="completed")
        refund = Refund.objects.create(
            payment=payment, original_amount=50000, refund_amount=50000, refund_percentage=100,
            status="processing", refund_type="full", reason="Cannot attend", provider_refund_id="rfnd_poll",
        )
        self.provider.gateway_refund = GatewayRefund("razorpay", "rfnd_poll", RefundGatewayStatus.PROCESSED)

        self.assertEqual(tasks.poll_pending_refunds(), "Settled 1 refunds")
        refund.refresh_from_db()
        self.assertEqual(refund.status, "completed")
        self.assertEqual(Payment.objects.get(pk=payment.pk).status, "refunded")

    def test_poll_resolves_unanswered_refund(self):  # Test poll resolves unanswered refund
        payment = make_payment(self.appointment, status="completed")
        refund = Refund.objects.create(
            payment=payment, original_amount=50000, refund_amount=50000, refund_percentage=100,
            status="pending", refund_type="full", reason="Cannot attend",
        )
        Refund.objects.filter(pk=refund.pk).update(provider_refund_id=refund.reference)
        self.provider.gateway_refund = GatewayRefund("razorpay", "rfnd_found", RefundGatewayStatus.PROCESSED)

        # Too recent: the create call may still be in flight
        self.assertEqual(tasks.poll_pending_refunds(), "Settled 0 refunds")
        refund.refresh_from_db()
        self.assertEqual(refund.status, "pending")

        self.age(refund, 10)
        self.assertEqual(tasks.poll_pending_refunds(), "Settled 1 refunds")
        refund.refresh_from_db()
        self.assertEqual(refund.status, "completed")
        self.assertEqual(refund.provider_refund_id, "rfnd_found")

    def test_generate_weekly_settlements(self):  # Test generate weekly settlements
        period_start, _ = previous_week(timezone.now())
        make_payment(self.appointment, status="completed", paid_at=period_start + timedelta(days=2))

        self.assertEqual(tasks.generate_weekly_settlements(), "Generated 1 settlements")
        self.assertEqual(Settlement.objects.get().payment_count, 1)
