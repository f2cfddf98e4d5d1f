import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import F, Sum
from django.utils import timezone

from core.sentry_utils import add_breadcrumb
from .exceptions import (
    GatewayRejected,
    GatewayUnavailable,
    PaymentBadRequest,
    PaymentForbidden,
    PaymentNotFound,
)
from .credit_service import CreditService
from .models import Payment, Refund
from .providers import RefundGatewayStatus

logger = logging.getLogger(__name__)


OPERATOR_REFUND_TYPES = ("doctor_cancelled", "technical_failure")


@dataclass(frozen=True)
class RefundPolicy:
    percentage: int
    refund_type: str
    credit_amount: int = 0


def calculate_refund_policy(appointment, now=None, cancelled_by=None):
    """
    Refund percentage for cancelling ``appointment`` at ``now``.

    >= 24h before start: 100% (full), >= 4h: 75%, >= 1h: 50%, otherwise 0%.
    A doctor or hospital cancellation always refunds 100% plus a fixed credit.
    """
    policy = settings.REFUND_POLICY
    now = now or timezone.now()
    cancelled_by = cancelled_by or appointment.cancelled_by

    if cancelled_by in ("doctor", "hospital"):
        return RefundPolicy(policy["FULL_PERCENT"], "doctor_cancelled", policy["DOCTOR_CANCEL_CREDIT"])

    hours_until = (appointment.scheduled_start - now).total_seconds() / 3600

    if hours_until >= policy["FULL_REFUND_HOURS"]:
        return RefundPolicy(policy["FULL_PERCENT"], "full")
    if hours_until >= policy["PARTIAL_75_HOURS"]:
        return RefundPolicy(policy["PARTIAL_75_PERCENT"], "partial_75")
    if hours_until >= policy["PARTIAL_50_HOURS"]:
        return RefundPolicy(policy["PARTIAL_50_PERCENT"], "partial_50")
    return RefundPolicy(0, "none")


def percentage_of(amount, percentage):
    value = Decimal(int(amount)) * Decimal(percentage) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class RefundService:  # Service class for refund operations
    """
    Drives gateway refunds for completed payments.

    ACID Compliance:
    - One in-flight refund per payment (partial unique index)
    - Sum of non-failed refunds never exceeds the amount paid
    - A gateway rejection fails the Refund row and leaves the Payment untouched
    - An unanswered gateway call keeps the Refund pending under its RF- reference
      until a poll or webhook tells us what the gateway did
    - Payment moves to refunded/partially_refunded only on gateway confirmation
    - The cancellation credit is granted in the same transaction that completes the refund
    """

    REFUNDABLE_STATUSES = ("completed", "partially_refunded")

    def __init__(self, providers, credits=None):  # Initialize instance
        self.providers = providers
        self.credits = credits or CreditService()

    def _can_set_amount(self, participant, payment):
        return participant.is_platform_staff or (
            participant.role == "hospital" and payment.hospital_id == participant.pk
        )

    def _refunded_so_far(self, payment):
        return Refund.objects.filter(
            payment=payment, status__in=("pending", "processing", "completed")
        ).aggregate(total=Sum("refund_amount"))["total"] or 0

    def process_refund(self, payment_id, requested_by, amount=None, reason="", refund_type=None, now=None):
        now = now or timezone.now()
        try:
            payment = Payment.objects.select_related("appointment").get(pk=payment_id)
        except (Payment.DoesNotExist, ValidationError, ValueError):
            raise PaymentNotFound()

        operator = self._can_set_amount(requested_by, payment)
        if payment.payer_id != requested_by.pk and not operator:
            raise PaymentForbidden()

        if payment.status not in self.REFUNDABLE_STATUSES:
            raise PaymentBadRequest("Only completed payments can be refunded")

        if (amount is not None or refund_type) and not operator:
            raise PaymentForbidden("Only staff or the hospital can set the refund amount or type")

        if refund_type and refund_type not in OPERATOR_REFUND_TYPES:
            raise PaymentBadRequest(f"Unsupported refund type: {refund_type}")

        credit_amount = 0
        if amount is not None:
            amount = int(amount)
            if amount <= 0:
                raise PaymentBadRequest("Refund amount must be greater than 0")
            if amount > payment.total_amount:
                raise PaymentBadRequest("Refund amount cannot exceed the payment amount")
            refund_amount = amount
            refund_type = refund_type or "custom"
            percentage = int(
                (Decimal(amount) * 100 / Decimal(payment.total_amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            )
            if refund_type == "doctor_cancelled":
                credit_amount = settings.REFUND_POLICY["DOCTOR_CANCEL_CREDIT"]
        elif refund_type:
            percentage = settings.REFUND_POLICY["FULL_PERCENT"]
            refund_amount = percentage_of(payment.total_amount, percentage)
            if refund_type == "doctor_cancelled":
                credit_amount = settings.REFUND_POLICY["DOCTOR_CANCEL_CREDIT"]
        else:
            if payment.appointment is None:
                raise PaymentBadRequest("A refund amount is required for payments without an appointment")
            policy = calculate_refund_policy(payment.appointment, now)
            refund_type = policy.refund_type
            percentage = policy.percentage
            credit_amount = policy.credit_amount
            refund_amount = percentage_of(payment.total_amount, percentage)
            if refund_amount <= 0:
                raise PaymentBadRequest("This appointment is not eligible for a refund under the cancellation policy")

        if Refund.objects.filter(payment=payment, status__in=Refund.OPEN_STATUSES).exists():
            raise PaymentBadRequest("A refund is already in progress for this payment")

        if self._refunded_so_far(payment) + refund_amount > payment.total_amount:
            raise PaymentBadRequest("Refund would exceed the amount paid")

        try:
            with transaction.atomic():
                refund = Refund.objects.create(
                    payment=payment,
                    appointment=payment.appointment,
                    original_amount=payment.total_amount,
                    refund_amount=refund_amount,
                    refund_percentage=percentage,
                    credit_amount=credit_amount,
                    currency=payment.currency,
                    status="pending",
                    refund_type=refund_type,
                    reason=reason,
                    initiated_by=requested_by,
                )
        except IntegrityError:
            raise PaymentBadRequest("A refund is already in progress for this payment")

        refund_reference = refund.reference
        provider = self.providers.get(payment.provider)
        try:
            gateway_refund = provider.create_refund(payment, refund_amount, reason, refund_reference)
        except GatewayRejected as e:
            Refund.objects.filter(pk=refund.pk, status="pending").update(
                status="failed",
                failure_reason=str(e.detail),
                failed_at=timezone.now(),
                updated_at=timezone.now(),
                version=F("version") + 1,
            )
            logger.error(f"Gateway rejected refund {refund.id} for payment {payment.id}, marked failed: {e.detail}")
            raise
        except GatewayUnavailable as e:
            # Outcome unknown: the row stays open under its reference
            Refund.objects.filter(pk=refund.pk, status="pending").update(
                provider_refund_id=refund_reference,
                gateway_response={"error": str(e.detail)},
                updated_at=timezone.now(),
                version=F("version") + 1,
            )
            logger.error(
                f"No gateway answer for refund {refund.id} on payment {payment.id}; "
                f"left pending as {refund_reference} for reconciliation: {e.detail}"
            )
            raise

        Refund.objects.filter(pk=refund.pk, status="pending").update(
            status="processing",
            provider_refund_id=gateway_refund.provider_refund_id or refund_reference,
            processed_at=timezone.now(),
            gateway_response=gateway_refund.raw,
            updated_at=timezone.now(),
            version=F("version") + 1,
        )
        refund.refresh_from_db()
        logger.info(
            f"Refund {refund.id} of {refund_amount} ({refund_type}) requested on payment {payment.id} "
            f"via {payment.provider}"
        )
        add_breadcrumb(
            f"Refund {refund.id} requested",
            category="refund",
            data={"payment_id": str(payment.id), "amount": refund_amount},
        )

        if gateway_refund.status in (RefundGatewayStatus.PROCESSED, RefundGatewayStatus.FAILED):
            self.apply_gateway_refund_status(refund, gateway_refund.status, gateway_refund.raw, source="create")
            refund.refresh_from_db()
        return refund

    def apply_gateway_refund_status(self, refund, status, raw=None, source=""):
        """Apply an asynchronous gateway confirmation; returns True when the refund moved"""
        now = timezone.now()

        if status is RefundGatewayStatus.PROCESSED:
            with transaction.atomic():
                updated = Refund.objects.filter(pk=refund.pk, status__in=Refund.OPEN_STATUSES).update(
                    status="completed",
                    completed_at=now,
                    gateway_response=raw or {},
                    updated_at=now,
                    version=F("version") + 1,
                )
                if not updated:
                    logger.info(f"Refund {refund.id} already settled; {source} confirmation ignored")
                    return False

                payment = Payment.objects.get(pk=refund.payment_id)
                refunded = Refund.objects.filter(payment=payment, status="completed").aggregate(
                    total=Sum("refund_amount")
                )["total"] or 0
                new_status = "refunded" if refunded >= payment.total_amount else "partially_refunded"
                Payment.objects.filter(
                    pk=payment.pk, status__in=self.REFUNDABLE_STATUSES
                ).update(status=new_status, updated_at=now, version=F("version") + 1)

                if refund.credit_amount:
                    self.credits.grant_refund_credit(refund)

            logger.info(f"Refund {refund.id} completed via {source}; payment {payment.id} is now {new_status}")
            return True

        if status is RefundGatewayStatus.FAILED:
            updated = Refund.objects.filter(pk=refund.pk, status__in=Refund.OPEN_STATUSES).update(
                status="failed",
                failed_at=now,
                failure_reason=(raw or {}).get("failure_reason") or "Gateway reported refund failure",
                gateway_response=raw or {},
                updated_at=now,
                version=F("version") + 1,
            )
            if updated:
                logger.warning(f"Refund {refund.id} failed at gateway ({source}); payment {refund.payment_id} unchanged")
            return bool(updated)

        if status is RefundGatewayStatus.PENDING:
            logger.info(f"Refund {refund.id} still pending at gateway ({source})")
        else:
            logger.warning(f"Unrecognised refund status for refund {refund.id} ({source}); leaving it {refund.status}")
        return False

    def _record_gateway_refund(self, refund, gateway_refund, source):
        """Attach the gateway's refund id to a refund created while the gateway was unreachable"""
        if refund.status != "pending" or gateway_refund.status is RefundGatewayStatus.FAILED:
            return refund
        Refund.objects.filter(pk=refund.pk, status="pending").update(
            status="processing",
            provider_refund_id=gateway_refund.provider_refund_id or refund.provider_refund_id,
            processed_at=timezone.now(),
            updated_at=timezone.now(),
            version=F("version") + 1,
        )
        refund.refresh_from_db()
        logger.info(f"Refund {refund.id} found at gateway as {refund.provider_refund_id} ({source})")
        return refund

    def apply_webhook_refund(self, provider_name, event):
        gateway_refund = event.refund
        refunds = Refund.objects.filter(payment__provider=provider_name)
        refund = refunds.filter(provider_refund_id=gateway_refund.provider_refund_id).first()
        if refund is None and event.refund_reference:
            refund = refunds.filter(provider_refund_id=event.refund_reference).first()
        if refund is None:
            logger.warning(f"{provider_name} {event.event_type} for unknown refund {gateway_refund.provider_refund_id}")
            return "not_found"
        refund = self._record_gateway_refund(refund, gateway_refund, source="webhook")
        self.apply_gateway_refund_status(refund, gateway_refund.status, gateway_refund.raw, source="webhook")
        return "processed"

    def sync_refund(self, refund):
        """Poll the gateway for an open refund, including one whose create call went unanswered"""
        if refund.status not in Refund.OPEN_STATUSES or not refund.provider_refund_id:
            return refund
        payment = refund.payment
        provider = self.providers.get(payment.provider)
        gateway_refund = provider.fetch_refund(payment, refund.provider_refund_id)
        refund = self._record_gateway_refund(refund, gateway_refund, source="poll")
        self.apply_gateway_refund_status(refund, gateway_refund.status, gateway_refund.raw, source="poll")
        refund.refresh_from_db()
        return refund

    def refunds_for(self, participant):
        queryset = Refund.objects.select_related("payment")
        if participant.is_platform_staff:
            return queryset
        if participant.role == "hospital":
            return queryset.filter(payment__hospital=participant)
        return queryset.filter(payment__payer=participant)
