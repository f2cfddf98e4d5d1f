from django.test import TestCase
from core.models import Participant
from .models import Notification
from .notification_service import NotificationDispatcher


class NotificationDispatcherTest(TestCase):  # NotificationDispatcherTest class implementation
    def setUp(self):  # Setup
        self.user = Participant.objects.create_user(
            email="user@test.com", password="test123", role="patient", phone_number="+919800000001"
        )

    def test_send_persists_notification(self):  # Test send persists notification
        notification = NotificationDispatcher.send(
            "PAYMENT_SUCCESS",
            recipient=self.user,
            phone=self.user.phone_number,
            email=self.user.email,
            variables={"patient_name": "Asha", "amount": "500.00", "date": "2026-10-20"},
        )
        self.assertEqual(Notification.objects.count(), 1)
        self.assertEqual(notification.status, "queued")
        self.assertEqual(notification.variables["amount"], "500.00")

    def test_send_without_contact_details(self):  # Test send without contact details
        notification = NotificationDispatcher.send("PAYMENT_SUCCESS", phone=None, email=None)
        self.assertEqual(notification.phone, "")
        self.assertEqual(notification.email, "")
        self.assertIsNone(notification.recipient)
