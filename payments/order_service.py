import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from appointments.models import Appointment
from core.sentry_utils import add_breadcrumb
from .exceptions import PaymentBadRequest, PaymentForbidden, PaymentNotFound
from .fee_service import FeeCalculationService
from .models import Payment

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    payment: Payment
    reused: bool = False
    client_options: Dict[str, Any] = field(default_factory=dict)

    def as_response(self):
        data = {
            "order_id": self.payment.provider_order_id,
            "payment_id": str(self.payment.id),
            "amount": self.payment.total_amount,
            "currency": self.payment.currency,
            "provider": self.payment.provider,
            "receipt": self.payment.receipt,
        }
        if self.payment.payment_link:
            data["payment_link"] = self.payment.payment_link
        data.update(self.client_options)
        return data


class OrderLedgerService:  # Service class for gateway order creation and expiry
    """
    Owns the "one open payment per appointment" rule.

    ACID Compliance:
    - The Payment row is inserted only after the gateway confirms the order
    - The partial unique index on (appointment, open status) settles races
    - Expiry is a conditional update so it never clobbers a completed payment
    """

    def __init__(self, providers):  # Initialize instance
        self.providers = providers

    @property
    def ttl(self):
        return timedelta(minutes=getattr(settings, "PAYMENT_ORDER_TTL_MINUTES", 30))

    def _load_appointment(self, appointment_id):
        try:
            return Appointment.objects.select_related("patient", "hospital").get(pk=appointment_id)
        except (Appointment.DoesNotExist, ValidationError, ValueError):
            raise PaymentNotFound("Appointment not found")

    def _open_payment(self, appointment):
        return Payment.objects.filter(appointment=appointment, status__in=Payment.OPEN_STATUSES).first()

    def _client_options(self, payment):
        return self.providers.get(payment.provider).client_options()

    def expire_payment(self, payment, now=None, reason="expired"):
        """Mark a pending payment failed; returns True when this caller expired it"""
        now = now or timezone.now()
        updated = Payment.objects.filter(pk=payment.pk, status="pending").update(
            status="failed",
            failure_reason=reason,
            error_description="Payment window expired",
            failed_at=now,
            updated_at=now,
            version=F("version") + 1,
        )
        if updated:
            logger.info(f"Payment {payment.id} ({payment.provider_order_id}) marked failed: {reason}")
            add_breadcrumb(
                f"Payment {payment.id} expired",
                category="payment",
                data={"order_id": payment.provider_order_id},
            )
        return bool(updated)

    def create_order(self, payer, appointment_id):
        appointment = self._load_appointment(appointment_id)

        if appointment.patient_id != payer.pk:
            raise PaymentForbidden("You can only pay for your own appointments")

        if appointment.status != "pending_payment":
            raise PaymentBadRequest("Appointment is not awaiting payment")

        now = timezone.now()
        existing = self._open_payment(appointment)
        if existing:
            if existing.status == "processing":
                raise PaymentBadRequest("A payment for this appointment is already being processed")

            if now - existing.created_at < self.ttl and existing.provider_order_id:
                logger.info(f"Reusing pending order {existing.provider_order_id} for appointment {appointment.id}")
                return OrderResult(existing, reused=True, client_options=self._client_options(existing))

            if not self.expire_payment(existing, now=now):
                existing.refresh_from_db()
                if existing.is_open:
                    raise PaymentBadRequest("A payment for this appointment is already being processed")
                if existing.status == "completed":
                    raise PaymentBadRequest("Appointment is already paid")

        fees = FeeCalculationService.calculate_appointment_fees(
            appointment.consultation_fee, appointment.consultation_type
        )
        attempt = Payment.objects.filter(appointment=appointment).count() + 1
        receipt = f"APT-{appointment.booking_number}-{attempt}"

        provider = self.providers.get()
        patient = appointment.patient
        order = provider.create_order(
            fees["total_amount"],
            appointment.currency or settings.PAYMENT_CURRENCY,
            receipt,
            notes={
                "appointment_id": str(appointment.id),
                "booking_number": appointment.booking_number,
                "patient_id": str(patient.pk),
                "contact": patient.phone_number or "",
                "email": patient.email or "",
            },
        )

        try:
            with transaction.atomic():
                payment = Payment.objects.create(
                    appointment=appointment,
                    payer=payer,
                    hospital=appointment.hospital,
                    payment_type="appointment",
                    base_amount=fees["base_amount"],
                    platform_fee=fees["platform_fee"],
                    gst_amount=fees["gst_amount"],
                    total_amount=fees["total_amount"],
                    currency=order.currency,
                    provider=provider.name,
                    provider_order_id=order.provider_order_id,
                    receipt=receipt,
                    payment_link=order.payment_link,
                    status="pending",
                    gateway_response=order.raw,
                )
        except IntegrityError:
            winner = self._open_payment(appointment)
            if winner is None:
                raise
            logger.warning(
                f"Concurrent order creation for appointment {appointment.id}; returning {winner.provider_order_id}"
            )
            return OrderResult(winner, reused=True, client_options=self._client_options(winner))

        logger.info(
            f"Order {payment.provider_order_id} created via {provider.name} for appointment "
            f"{appointment.booking_number}: {payment.total_amount} {payment.currency}"
        )
        add_breadcrumb(
            f"Order created for appointment {appointment.booking_number}",
            category="payment",
            data={"order_id": payment.provider_order_id, "amount": payment.total_amount},
        )
        return OrderResult(payment, client_options=provider.client_options())

    def stale_payments(self, now=None):
        cutoff = (now or timezone.now()) - self.ttl
        return Payment.objects.filter(status="pending", created_at__lt=cutoff)

    def expire_stale_payments(self, now=None):
        """Fail every pending payment older than the order TTL; returns the count"""
        now = now or timezone.now()
        expired = 0
        for payment in self.stale_payments(now).only("id", "provider_order_id", "status"):
            if self.expire_payment(payment, now=now):
                expired += 1
        if expired:
            logger.info(f"Expired {expired} stale pending payments")
        return expired
