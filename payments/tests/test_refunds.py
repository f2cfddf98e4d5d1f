from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from payments.exceptions import GatewayRejected, GatewayUnavailable, PaymentBadRequest, PaymentForbidden
from payments.models import CreditTransaction, Payment, Refund
from payments.providers import GatewayRefund, RefundGatewayStatus, WebhookEvent, WebhookKind
from payments.refund_service import calculate_refund_policy
from .helpers import FakeProvider, build_services, make_appointment, make_participant, make_payment


class RefundPolicyTest(TestCase):  # RefundPolicyTest class implementation
    def setUp(self):  # Setup
        self.patient = make_participant("patient")
        self.hospital = make_participant("hospital")
        self.now = timezone.now()

    def policy_for(self, hours_ahead, **kwargs):
        appointment = make_appointment(self.patient, self.hospital)
        appointment.scheduled_start = self.now + timedelta(hours=hours_ahead)
        return calculate_refund_policy(appointment, self.now, **kwargs)

    def test_tiers(self):  # Test tiers
        self.assertEqual(self.policy_for(48).percentage, 100)
        self.assertEqual(self.policy_for(24).refund_type, "full")
        self.assertEqual(self.policy_for(10).percentage, 75)
        self.assertEqual(self.policy_for(4).refund_type, "partial_75")
        self.assertEqual(self.policy_for(2).percentage, 50)
        self.assertEqual(self.policy_for(1).refund_type, "partial_50")
        self.assertEqual(self.policy_for(0.5).percentage, 0)
        self.assertEqual(self.policy_for(-3).refund_type, "none")

    def test_doctor_cancellation_refunds_everything_plus_credit(self):  # Test doctor cancellation refunds everything plus credit
        policy = self.policy_for(0.5, cancelled_by="doctor")
        self.assertEqual(policy.percentage, 100)
        self.assertEqual(policy.refund_type, "doctor_cancelled")
        self.assertEqual(policy.credit_amount, 5000)

    def test_cancelled_by_read_from_appointment(self):  # Test cancelled by read from appointment
        appointment = make_appointment(self.patient, self.hospital, hours_ahead=2, cancelled_by="hospital")
        self.assertEqual(calculate_refund_policy(appointment).percentage, 100)


class RefundServiceTest(TestCase):  # RefundServiceTest class implementation
    def setUp(self):  # Setup
        self.provider = FakeProvider()
        self.refunds = build_services(self.provider).refunds
        self.patient = make_participant("patient")
        self.hospital = make_participant("hospital")
        self.staff = make_participant("admin")
        self.appointment = make_appointment(self.patient, self.hospital, hours_ahead=48)
        self.payment = make_payment(self.appointment, status="completed")

    def test_full_refund_requested(self):  # Test full refund requested
        refund = self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")

        self.assertEqual(refund.status, "processing")
        self.assertEqual(refund.refund_amount, 50000)
        self.assertEqual(refund.refund_percentage, 100)
        self.assertEqual(refund.refund_type, "full")
        self.assertEqual(refund.provider_refund_id, "rfnd_1")
        self.assertEqual(refund.initiated_by, self.patient)
        self.assertEqual(self.provider.created_refunds[0]["reference"], f"RF-{refund.id.hex}")

        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "completed")

    def test_partial_refund_inside_four_hours(self):  # Test partial refund inside four hours
        self.appointment.scheduled_start = timezone.now() + timedelta(hours=3)
        self.appointment.save()

        refund = self.refunds.process_refund(self.payment.id, self.patient, reason="Running late")

        self.assertEqual(refund.refund_amount, 25000)
        self.assertEqual(refund.refund_type, "partial_50")

    def test_not_eligible_inside_one_hour(self):  # Test not eligible inside one hour
        self.appointment.scheduled_start = timezone.now() + timedelta(minutes=30)
        self.appointment.save()
        with self.assertRaises(PaymentBadRequest):
            self.refunds.process_refund(self.payment.id, self.patient, reason="Too late")
        self.assertFalse(Refund.objects.exists())

    def test_synchronous_processed_refund_completes(self):  # Test synchronous processed refund completes
        self.provider.gateway_refund = GatewayRefund("razorpay", "rfnd_sync", RefundGatewayStatus.PROCESSED, 50000)

        refund = self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")

        self.assertEqual(refund.status, "completed")
        self.assertIsNotNone(refund.completed_at)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "refunded")

    def test_only_completed_payments(self):  # Test only completed payments
        Payment.objects.filter(pk=self.payment.pk).update(status="pending")
        with self.assertRaises(PaymentBadRequest) as ctx:
            self.refunds.process_refund(self.payment.id, self.patient, reason="x")
        self.assertIn("Only completed payments can be refunded", str(ctx.exception.detail))

    def test_stranger_cannot_refund(self):  # Test stranger cannot refund
        with self.assertRaises(PaymentForbidden):
            self.refunds.process_refund(self.payment.id, make_participant("patient"), reason="x")

    def test_patient_cannot_choose_amount(self):  # Test patient cannot choose amount
        with self.assertRaises(PaymentForbidden):
            self.refunds.process_refund(self.payment.id, self.patient, amount=100, reason="x")

    def test_zero_amount_rejected(self):  # Test zero amount rejected
        with self.assertRaises(PaymentBadRequest) as ctx:
            self.refunds.process_refund(self.payment.id, self.staff, amount=0, reason="x")
        self.assertIn("Refund amount must be greater than 0", str(ctx.exception.detail))

    def test_amount_above_payment_rejected(self):  # Test amount above payment rejected
        with self.assertRaises(PaymentBadRequest):
            self.refunds.process_refund(self.payment.id, self.staff, amount=50001, reason="x")

    def test_staff_custom_amount(self):  # Test staff custom amount
        refund = self.refunds.process_refund(self.payment.id, self.staff, amount=12500, reason="Goodwill")
        self.assertEqual(refund.refund_type, "custom")
        self.assertEqual(refund.refund_amount, 12500)
        self.assertEqual(refund.refund_percentage, 25)

    def test_hospital_reports_technical_failure(self):  # Test hospital reports technical failure
        self.appointment.scheduled_start = timezone.now() + timedelta(minutes=10)
        self.appointment.save()
        refund = self.refunds.process_refund(
            self.payment.id, self.hospital, reason="Video link failed", refund_type="technical_failure"
        )
        self.assertEqual(refund.refund_amount, 50000)
        self.assertEqual(refund.credit_amount, 0)

    def test_doctor_cancelled_grants_credit(self):  # Test doctor cancelled grants credit
        refund = self.refunds.process_refund(
            self.payment.id, self.staff, reason="Doctor unavailable", refund_type="doctor_cancelled"
        )
        self.assertEqual(refund.refund_percentage, 100)
        self.assertEqual(refund.credit_amount, 5000)

    def test_doctor_cancelled_credit_granted_on_completion(self):  # Test doctor cancelled credit granted on completion
        refund = self.refunds.process_refund(
            self.payment.id, self.staff, reason="Doctor unavailable", refund_type="doctor_cancelled"
        )
        self.assertFalse(CreditTransaction.objects.exists())

        self.refunds.apply_gateway_refund_status(refund, RefundGatewayStatus.PROCESSED, source="test")
        self.refunds.apply_gateway_refund_status(refund, RefundGatewayStatus.PROCESSED, source="test")

        txn = CreditTransaction.objects.get()
        self.assertEqual(txn.refund_id, refund.id)
        self.assertEqual(txn.amount, 5000)
        self.assertEqual(txn.source, "refund_bonus")
        self.assertEqual(txn.account.participant, self.patient)
        self.assertEqual(self.patient.credit_account.balance, 5000)

    def test_failed_refund_grants_no_credit(self):  # Test failed refund grants no credit
        refund = self.refunds.process_refund(
            self.payment.id, self.staff, reason="Doctor unavailable", refund_type="doctor_cancelled"
        )
        self.refunds.apply_gateway_refund_status(refund, RefundGatewayStatus.FAILED, {"failure_reason": "Account closed"})
        self.assertFalse(CreditTransaction.objects.exists())

    def test_one_refund_in_flight(self):  # Test one refund in flight
        self.refunds.process_refund(self.payment.id, self.staff, amount=1000, reason="First")
        with self.assertRaises(PaymentBadRequest) as ctx:
            self.refunds.process_refund(self.payment.id, self.staff, amount=1000, reason="Second")
        self.assertIn("already in progress", str(ctx.exception.detail))
        self.assertEqual(Refund.objects.count(), 1)

    def test_fully_refunded_payment_is_closed(self):  # Test fully refunded payment is closed
        refund = self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        self.refunds.apply_gateway_refund_status(refund, RefundGatewayStatus.PROCESSED, source="test")
        with self.assertRaises(PaymentBadRequest) as ctx:
            self.refunds.process_refund(self.payment.id, self.staff, amount=1, reason="Again")
        self.assertIn("Only completed payments can be refunded", str(ctx.exception.detail))

    def test_gateway_rejection_fails_refund_only(self):  # Test gateway rejection fails refund only
        self.provider.refund_error = GatewayRejected("razorpay: The refund amount is invalid", http_status=400)

        with self.assertRaises(GatewayRejected):
            self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")

        refund = Refund.objects.get()
        self.assertEqual(refund.status, "failed")
        self.assertIsNotNone(refund.failed_at)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "completed")

        # A failed attempt does not block a retry
        self.provider.refund_error = None
        retry = self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        self.assertEqual(retry.status, "processing")

    def test_gateway_timeout_keeps_refund_open(self):  # Test gateway timeout keeps refund open
        self.provider.refund_error = GatewayUnavailable()

        with self.assertRaises(GatewayUnavailable):
            self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")

        refund = Refund.objects.get()
        self.assertEqual(refund.status, "pending")
        self.assertEqual(refund.provider_refund_id, refund.reference)
        self.assertIsNone(refund.failed_at)

    def test_retry_after_timeout_does_not_refund_twice(self):  # Test retry after timeout does not refund twice
        sent = []

        def gateway_took_it_then_timed_out(payment, amount_minor, note, refund_reference):
            sent.append(refund_reference)
            raise GatewayUnavailable("razorpay request timed out. Please retry.")

        self.provider.create_refund = gateway_took_it_then_timed_out
        with self.assertRaises(GatewayUnavailable):
            self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")

        del self.provider.create_refund
        with self.assertRaises(PaymentBadRequest) as ctx:
            self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        self.assertIn("already in progress", str(ctx.exception.detail))

        self.assertEqual(len(sent), 1)
        self.assertEqual(self.provider.created_refunds, [])
        self.assertEqual(Refund.objects.count(), 1)

    def test_sync_resolves_timed_out_refund_by_reference(self):  # Test sync resolves timed out refund by reference
        self.provider.refund_error = GatewayUnavailable()
        with self.assertRaises(GatewayUnavailable):
            self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        refund = Refund.objects.get()

        fetched = []

        def fetch_refund(payment, provider_refund_id):
            fetched.append(provider_refund_id)
            return GatewayRefund("razorpay", "rfnd_late", RefundGatewayStatus.PROCESSED, 50000, "processed")

        self.provider.fetch_refund = fetch_refund
        refund = self.refunds.sync_refund(refund)

        self.assertEqual(fetched, [f"RF-{refund.id.hex}"])
        self.assertEqual(refund.status, "completed")
        self.assertEqual(refund.provider_refund_id, "rfnd_late")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "refunded")

    def test_sync_fails_refund_the_gateway_never_saw(self):  # Test sync fails refund the gateway never saw
        self.provider.refund_error = GatewayUnavailable()
        with self.assertRaises(GatewayUnavailable):
            self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        refund = Refund.objects.get()

        self.provider.gateway_refund = GatewayRefund.not_registered("razorpay", refund.reference)
        refund = self.refunds.sync_refund(refund)

        self.assertEqual(refund.status, "failed")
        self.assertEqual(refund.failure_reason, "Refund was not registered at the gateway")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "completed")

        # The payment can be refunded again once the lost attempt is closed
        self.provider.refund_error = None
        self.provider.gateway_refund = None
        retry = self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        self.assertEqual(retry.status, "processing")

    def test_webhook_matches_timed_out_refund_by_reference(self):  # Test webhook matches timed out refund by reference
        self.provider.refund_error = GatewayUnavailable()
        with self.assertRaises(GatewayUnavailable):
            self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        refund = Refund.objects.get()

        event = WebhookEvent(
            kind=WebhookKind.REFUND,
            event_type="refund.processed",
            refund=GatewayRefund("razorpay", "rfnd_hook", RefundGatewayStatus.PROCESSED, 50000),
            refund_reference=refund.reference,
        )
        self.assertEqual(self.refunds.apply_webhook_refund("razorpay", event), "processed")

        refund.refresh_from_db()
        self.assertEqual(refund.status, "completed")
        self.assertEqual(refund.provider_refund_id, "rfnd_hook")

    def test_second_refund_on_partially_refunded_payment(self):  # Test second refund on partially refunded payment
        first = self.refunds.process_refund(self.payment.id, self.staff, amount=20000, reason="Partial")
        self.refunds.apply_gateway_refund_status(first, RefundGatewayStatus.PROCESSED, source="test")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "partially_refunded")

        with self.assertRaises(PaymentBadRequest) as ctx:
            self.refunds.process_refund(self.payment.id, self.staff, amount=30001, reason="Rest")
        self.assertIn("exceed", str(ctx.exception.detail))

        second = self.refunds.process_refund(self.payment.id, self.staff, amount=30000, reason="Rest")
        self.refunds.apply_gateway_refund_status(second, RefundGatewayStatus.PROCESSED, source="test")

        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "refunded")
        self.assertEqual(Refund.objects.filter(payment=self.payment, status="completed").count(), 2)

    def test_partial_refund_confirmation(self):  # Test partial refund confirmation
        refund = self.refunds.process_refund(self.payment.id, self.staff, amount=20000, reason="Partial")

        self.assertTrue(self.refunds.apply_gateway_refund_status(refund, RefundGatewayStatus.PROCESSED, source="test"))
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "partially_refunded")

        # Confirmation replayed
        self.assertFalse(self.refunds.apply_gateway_refund_status(refund, RefundGatewayStatus.PROCESSED, source="test"))

    def test_gateway_failed_refund(self):  # Test gateway failed refund
        refund = self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        self.refunds.apply_gateway_refund_status(refund, RefundGatewayStatus.FAILED, {"failure_reason": "Account closed"})

        refund.refresh_from_db()
        self.assertEqual(refund.status, "failed")
        self.assertEqual(refund.failure_reason, "Account closed")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "completed")

    def test_webhook_refund(self):  # Test webhook refund
        refund = self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        event = WebhookEvent(
            kind=WebhookKind.REFUND,
            event_type="refund.processed",
            refund=GatewayRefund("razorpay", refund.provider_refund_id, RefundGatewayStatus.PROCESSED),
        )

        self.assertEqual(self.refunds.apply_webhook_refund("razorpay", event), "processed")
        refund.refresh_from_db()
        self.assertEqual(refund.status, "completed")

        event.refund.provider_refund_id = "rfnd_unknown"
        self.assertEqual(self.refunds.apply_webhook_refund("razorpay", event), "not_found")

    def test_sync_refund_polls_gateway(self):  # Test sync refund polls gateway
        refund = self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        self.provider.gateway_refund = GatewayRefund("razorpay", refund.provider_refund_id, RefundGatewayStatus.PROCESSED)

        refund = self.refunds.sync_refund(refund)

        self.assertEqual(refund.status, "completed")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "refunded")

    def test_refunds_for_scopes_by_role(self):  # Test refunds for scopes by role
        self.refunds.process_refund(self.payment.id, self.patient, reason="Cannot attend")
        self.assertEqual(self.refunds.refunds_for(self.patient).count(), 1)
        self.assertEqual(self.refunds.refunds_for(self.hospital).count(), 1)
        self.assertEqual(self.refunds.refunds_for(self.staff).count(), 1)
        self.assertEqual(self.refunds.refunds_for(make_participant("patient")).count(), 0)
