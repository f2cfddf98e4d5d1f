from datetime import timedelta
from unittest import mock

from django.test import TestCase
from django.utils import timezone

from communication.models import Notification
from core.models import Participant
from payments.exceptions import InternalInconsistency
from payments.models import Payment
from .models import Appointment
from .services import AppointmentStatusCoupler


class AppointmentModelTest(TestCase):  # AppointmentModelTest class implementation
    def setUp(self):  # Setup
        self.patient = Participant.objects.create_user(
            email="patient@test.com", password="test123", role="patient"
        )
        self.hospital = Participant.objects.create_user(
            email="hospital@test.com", password="test123", role="hospital"
        )

    def test_create_appointment(self):  # Test create appointment
        appointment = Appointment.objects.create(
            booking_number="BK000001",
            patient=self.patient,
            hospital=self.hospital,
            scheduled_start=timezone.now() + timedelta(days=1),
            consultation_fee=50000,
        )
        self.assertEqual(appointment.status, "pending_payment")
        self.assertEqual(appointment.consultation_type, "in_person")
        self.assertEqual(appointment.currency, "INR")
        self.assertEqual(appointment.version, 1)

        appointment.cancellation_reason = "Changed plans"
        appointment.save()
        self.assertEqual(appointment.version, 2)


class AppointmentStatusCouplerTest(TestCase):  # AppointmentStatusCouplerTest class implementation
    def setUp(self):  # Setup
        self.patient = Participant.objects.create_user(
            email="patient@test.com", password="test123", role="patient",
            full_name="Meera Iyer", phone_number="+919800000099",
        )
        self.hospital = Participant.objects.create_user(
            email="hospital@test.com", password="test123", role="hospital"
        )
        self.appointment = Appointment.objects.create(
            booking_number="BK000002",
            patient=self.patient,
            hospital=self.hospital,
            scheduled_start=timezone.now() + timedelta(days=2),
            consultation_fee=49950,
        )
        self.payment = Payment.objects.create(
            appointment=self.appointment,
            payer=self.patient,
            hospital=self.hospital,
            base_amount=49950,
            total_amount=49950,
            provider="razorpay",
            provider_order_id="order_coupler_1",
            receipt="APT-BK000002-1",
            status="completed",
            paid_at=timezone.now(),
        )
        self.coupler = AppointmentStatusCoupler()

    def test_confirm_on_payment_success(self):  # Test confirm on payment success
        self.assertTrue(self.coupler.confirm_on_payment_success(self.payment))

        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.status, "confirmed")
        self.assertEqual(self.appointment.version, 2)

        notification = Notification.objects.get()
        self.assertEqual(notification.purpose, "PAYMENT_SUCCESS")
        self.assertEqual(notification.phone, "+919800000099")
        self.assertEqual(notification.variables["amount"], "499.50")
        self.assertEqual(notification.variables["patient_name"], "Meera Iyer")

    def test_confirmation_is_idempotent(self):  # Test confirmation is idempotent
        self.coupler.confirm_on_payment_success(self.payment)
        self.assertFalse(self.coupler.confirm_on_payment_success(self.payment))
        self.assertEqual(Notification.objects.count(), 1)

    def test_cancelled_appointment_is_not_confirmed(self):  # Test cancelled appointment is not confirmed
        Appointment.objects.filter(pk=self.appointment.pk).update(status="cancelled")

        with self.assertLogs("appointments.services", level="WARNING"):
            self.assertFalse(self.coupler.confirm_on_payment_success(self.payment))

        self.assertEqual(Appointment.objects.get(pk=self.appointment.pk).status, "cancelled")
        self.assertFalse(Notification.objects.exists())

    @mock.patch("appointments.services.capture_error_with_context")
    def test_appointment_payment_without_appointment(self, capture):  # Test appointment payment without appointment
        orphan = Payment(id=self.payment.id, appointment=None, payment_type="appointment")
        with self.assertRaises(InternalInconsistency):
            self.coupler.confirm_on_payment_success(orphan)
        capture.assert_called_once()

    @mock.patch("appointments.services.capture_error_with_context")
    def test_notification_failure_does_not_undo_confirmation(self, capture):  # Test notification failure does not undo confirmation
        notifier = mock.Mock()
        notifier.send.side_effect = RuntimeError("queue unavailable")

        confirmed = AppointmentStatusCoupler(notifier=notifier).confirm_on_payment_success(self.payment)

        self.assertTrue(confirmed)
        self.assertEqual(Appointment.objects.get(pk=self.appointment.pk).status, "confirmed")
        capture.assert_called_once()

    def test_sweep_unconfirmed(self):  # Test sweep unconfirmed
        self.assertEqual(self.coupler.sweep_unconfirmed(), 1)
        self.assertEqual(self.coupler.sweep_unconfirmed(), 0)
        self.assertEqual(Appointment.objects.get(pk=self.appointment.pk).status, "confirmed")
