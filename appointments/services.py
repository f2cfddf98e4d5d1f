import logging

from django.db.models import F
from django.utils import timezone

from communication.notification_service import NotificationDispatcher
from core.sentry_utils import add_breadcrumb, capture_error_with_context
from payments.exceptions import InternalInconsistency
from payments.models import Payment, format_major_amount
from .models import Appointment

logger = logging.getLogger(__name__)


class AppointmentStatusCoupler:  # Service class for payment-driven appointment transitions
    """
    Moves an appointment from ``pending_payment`` to ``confirmed`` once its
    payment is durably ``completed``.

    The appointment row is flipped with a conditional update, so only the
    caller that actually moved it sends the PAYMENT_SUCCESS notification.
    A crash between the payment update and this step leaves a completed
    payment on a pending appointment, which ``sweep_unconfirmed`` repairs.
    """

    def __init__(self, notifier=NotificationDispatcher):  # Initialize instance
        self.notifier = notifier

    def confirm_on_payment_success(self, payment):
        if payment.appointment_id is None:
            if payment.payment_type == "appointment":
                message = f"Completed appointment payment {payment.id} has no linked appointment"
                logger.error(message)
                error = InternalInconsistency(message)
                capture_error_with_context(error, {"payment": {"id": str(payment.id)}})
                raise error
            return False

        now = timezone.now()
        updated = Appointment.objects.filter(
            pk=payment.appointment_id, status="pending_payment"
        ).update(
            status="confirmed",
            confirmed_at=now,
            updated_at=now,
            version=F("version") + 1,
        )

        if not updated:
            current = Appointment.objects.filter(pk=payment.appointment_id).values_list("status", flat=True).first()
            if current != "confirmed":
                logger.warning(
                    f"Payment {payment.id} completed but appointment {payment.appointment_id} is '{current}'; "
                    f"not confirming"
                )
            return False

        logger.info(f"Appointment {payment.appointment_id} confirmed by payment {payment.id}")
        add_breadcrumb(
            f"Appointment {payment.appointment_id} confirmed",
            category="appointment",
            data={"payment_id": str(payment.id)},
        )
        self._notify_payment_success(payment)
        return True

    def _notify_payment_success(self, payment):
        try:
            appointment = Appointment.objects.select_related("patient").get(pk=payment.appointment_id)
            patient = appointment.patient
            self.notifier.send(
                "PAYMENT_SUCCESS",
                recipient=patient,
                phone=patient.phone_number,
                email=patient.email,
                variables={
                    "patient_name": patient.full_name or patient.email,
                    "amount": format_major_amount(payment.total_amount),
                    "date": timezone.localtime(appointment.scheduled_start).strftime("%d %b %Y"),
                },
            )
        except Exception as e:
            logger.error(f"PAYMENT_SUCCESS notification failed for payment {payment.id}: {str(e)}")
            capture_error_with_context(e, {"payment": {"id": str(payment.id)}})

    def sweep_unconfirmed(self, limit=100):
        """Re-apply confirmation for completed payments whose appointment is still pending"""
        payments = list(
            Payment.objects.filter(
                status="completed", appointment__status="pending_payment"
            ).order_by("paid_at")[:limit]
        )
        confirmed = 0
        for payment in payments:
            if self.confirm_on_payment_success(payment):
                confirmed += 1
        if confirmed:
            logger.warning(f"Sweep confirmed {confirmed} appointments left pending after payment")
        return confirmed
