from .models import Notification
import logging

logger = logging.getLogger(__name__)


class NotificationDispatcher:  # Service class for outbound notification operations
    """
    Records notifications for delivery.

    Channel fan-out (WhatsApp, SMS, email) is handled by the delivery
    workers that consume queued rows; callers only see persistence errors.
    """

    @staticmethod
    def send(purpose, recipient=None, phone="", email="", variables=None):
        notification = Notification.objects.create(
            purpose=purpose,
            recipient=recipient,
            phone=phone or "",
            email=email or "",
            variables=variables or {},
        )
        logger.info(
            f"Notification {purpose} queued for {phone or email or 'unknown recipient'} ({notification.id})"
        )
        return notification
