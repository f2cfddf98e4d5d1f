import hashlib
import json
import logging
from dataclasses import dataclass

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.sentry_utils import (
    add_breadcrumb,
    capture_error_with_context,
    capture_message_with_context,
    set_payment_context,
)
from .exceptions import MalformedWebhook, PaymentBadRequest, PaymentForbidden, PaymentNotFound
from .models import Payment, PaymentWebhookEvent
from .providers import GatewayStatus, WebhookKind

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    status: str
    event_id: str = ""
    event_type: str = ""
    detail: str = ""


class PaymentReconciler:  # Service class for payment status reconciliation
    """
    State machine for ``pending -> processing -> completed | failed``.

    Client verify, gateway webhook and redirect/poll callbacks all land in
    ``apply_gateway_payment``. Transitions are single-row conditional updates
    on the status column; the affected-row count decides which caller owns
    the side effects (appointment confirmation, notification).

    ACID Compliance:
    - Payment row is committed before the appointment row is touched
    - Terminal payments are returned unchanged (idempotent)
    - Webhook deliveries are recorded once per (provider, event id)
    """

    def __init__(self, providers, coupler, refunds=None):  # Initialize instance
        self.providers = providers
        self.coupler = coupler
        self.refunds = refunds

    # Lookups

    def _get_payment(self, **lookup):
        try:
            return Payment.objects.get(**lookup)
        except (Payment.DoesNotExist, ValidationError, ValueError):
            raise PaymentNotFound()

    def _check_payer(self, payment, participant):
        if payment.payer_id != participant.pk and not participant.is_platform_staff:
            raise PaymentForbidden()

    def get_payment_for(self, participant, payment_id):
        payment = self._get_payment(pk=payment_id)
        if payment.payer_id == participant.pk or participant.is_platform_staff:
            return payment
        if participant.role == "hospital" and payment.hospital_id == participant.pk:
            return payment
        raise PaymentForbidden()

    # Entry points

    def verify_payment(self, payer, provider_name, order_id, payment_id, signature):
        """Client verify path: checkout signature first, then gateway status"""
        payment = self._get_payment(provider_order_id=order_id)
        self._check_payer(payment, payer)

        if provider_name and provider_name != payment.provider:
            raise PaymentBadRequest("Payment provider does not match this order")

        provider = self.providers.get(payment.provider)
        if not provider.uses_checkout_signature:
            return self.verify_callback_payment(payer, order_id)

        if not provider.verify_signature(order_id, payment_id, signature):
            logger.warning(f"Invalid checkout signature for order {order_id} (payment {payment_id})")
            raise PaymentBadRequest("Invalid payment signature")

        if not payment.is_open:
            return payment

        gateway_payment = provider.fetch_payment(payment_id)
        if gateway_payment.provider_order_id and gateway_payment.provider_order_id != payment.provider_order_id:
            logger.warning(
                f"Payment {payment_id} belongs to order {gateway_payment.provider_order_id}, not {order_id}"
            )
            raise PaymentBadRequest("Payment does not belong to this order")

        return self.apply_gateway_payment(payment, gateway_payment, signature=signature, source="client_verify")

    def verify_callback_payment(self, payer, order_id):
        """Redirect path: never trusts client status, always re-fetches"""
        payment = self._get_payment(provider_order_id=order_id)
        self._check_payer(payment, payer)

        if not payment.is_open:
            return payment
        return self.reconcile(payment, source="callback")

    def reconcile(self, payment, source="poll"):
        provider = self.providers.get(payment.provider)
        if payment.provider_payment_id and provider.uses_checkout_signature:
            gateway_payment = provider.fetch_payment(payment.provider_payment_id)
        else:
            gateway_payment = provider.fetch_order_payment(payment.provider_order_id)
        return self.apply_gateway_payment(payment, gateway_payment, source=source)

    def handle_webhook(self, provider_name, raw_body, headers):
        provider = self.providers.get(provider_name)
        signature = headers.get(provider.signature_header, "")
        timestamp = headers.get(provider.timestamp_header) if provider.timestamp_header else None

        if not provider.verify_webhook_signature(raw_body, signature, timestamp):
            logger.warning(f"Dropping {provider_name} webhook with invalid signature")
            return WebhookResult("invalid_signature")

        try:
            payload = json.loads(raw_body)
        except (TypeError, ValueError):
            raise MalformedWebhook()
        if not isinstance(payload, dict):
            raise MalformedWebhook()

        event = provider.parse_webhook(payload)
        event_id = ""
        if provider.event_id_header:
            event_id = headers.get(provider.event_id_header, "")
        event_id = event_id or hashlib.sha256(raw_body).hexdigest()

        with transaction.atomic():
            record, created = PaymentWebhookEvent.objects.select_for_update().get_or_create(
                provider=provider.name,
                event_id=event_id,
                defaults={
                    "event_type": event.event_type,
                    "payload": payload,
                    "signature_valid": True,
                },
            )
            if not created and record.processed:
                logger.info(f"{provider.name} webhook {event_id} already processed (duplicate delivery)")
                return WebhookResult("duplicate", event_id, event.event_type)
            if not created:
                logger.warning(f"{provider.name} webhook {event_id} failed previously. Retrying...")

        try:
            outcome = self._dispatch(provider, event)
        except Exception as e:
            logger.error(f"Error processing {provider.name} webhook {event_id}: {str(e)}")
            capture_error_with_context(e, {"webhook": {"provider": provider.name, "event_id": event_id}})
            PaymentWebhookEvent.objects.filter(pk=record.pk).update(processing_error=str(e)[:2000])
            return WebhookResult("error", event_id, event.event_type, str(e))

        PaymentWebhookEvent.objects.filter(pk=record.pk).update(
            processed=True, processed_at=timezone.now(), processing_error=""
        )
        return WebhookResult(outcome, event_id, event.event_type)

    def _dispatch(self, provider, event):
        if event.kind is WebhookKind.PAYMENT:
            gateway_payment = event.payment
            payment = Payment.objects.filter(
                provider=provider.name, provider_order_id=gateway_payment.provider_order_id
            ).first()
            if payment is None:
                logger.warning(
                    f"{provider.name} {event.event_type} for unknown order {gateway_payment.provider_order_id}"
                )
                return "not_found"
            self.apply_gateway_payment(payment, gateway_payment, source="webhook")
            return "processed"

        if event.kind is WebhookKind.REFUND:
            if self.refunds is None:
                logger.warning(f"Refund webhook {event.event_type} received with no refund service configured")
                return "ignored"
            return self.refunds.apply_webhook_refund(provider.name, event)

        logger.info(f"Ignoring {provider.name} webhook event {event.event_type}")
        return "ignored"

    # State machine

    def apply_gateway_payment(self, payment, gateway_payment, signature="", source=""):
        status = gateway_payment.status

        if not payment.is_open:
            if status.is_success and payment.status == "failed":
                self._report_late_capture(payment, gateway_payment, source)
            else:
                logger.info(f"Payment {payment.id} already {payment.status}; {source} is a no-op")
            return payment

        if status.is_success:
            self.complete_payment(payment, gateway_payment, signature=signature, source=source)
        elif status.is_failure:
            self.fail_payment(payment, gateway_payment, source=source)
        elif status is GatewayStatus.AUTHORIZED:
            self.mark_processing(payment, gateway_payment)
        elif status in (GatewayStatus.CREATED, GatewayStatus.PENDING):
            logger.info(f"Payment {payment.id} still {status.value} at gateway ({source})")
        else:
            logger.warning(
                f"Unrecognised {payment.provider} status '{gateway_payment.raw_status}' for payment "
                f"{payment.id}; leaving it {payment.status}"
            )

        payment.refresh_from_db()
        return payment

    def complete_payment(self, payment, gateway_payment, signature="", source=""):
        now = timezone.now()
        changes = {
            "status": "completed",
            "paid_at": now,
            "payment_method": gateway_payment.method or "other",
            "gateway_response": gateway_payment.raw,
            "error_code": "",
            "error_description": "",
            "updated_at": now,
            "version": F("version") + 1,
        }
        if gateway_payment.provider_payment_id:
            changes["provider_payment_id"] = gateway_payment.provider_payment_id
        if signature:
            changes["provider_signature"] = signature

        updated = Payment.objects.filter(pk=payment.pk, status__in=Payment.OPEN_STATUSES).update(**changes)
        payment.refresh_from_db()

        if not updated:
            if payment.status == "failed":
                self._report_late_capture(payment, gateway_payment, source)
            else:
                logger.info(f"Payment {payment.id} already {payment.status}; {source} lost the race")
            return False

        set_payment_context(payment, source=source)
        add_breadcrumb(
            f"Payment {payment.id} completed",
            category="payment",
            data={"source": source, "order_id": payment.provider_order_id},
        )
        logger.info(
            f"Payment {payment.id} completed via {source} "
            f"({payment.provider} order {payment.provider_order_id}, {payment.total_amount} {payment.currency})"
        )
        self.coupler.confirm_on_payment_success(payment)
        return True

    def fail_payment(self, payment, gateway_payment, source=""):
        now = timezone.now()
        changes = {
            "status": "failed",
            "failed_at": now,
            "failure_reason": (gateway_payment.status.value or "failed")[:100],
            "error_code": gateway_payment.error_code[:100],
            "error_description": gateway_payment.error_description,
            "gateway_response": gateway_payment.raw,
            "updated_at": now,
            "version": F("version") + 1,
        }
        if gateway_payment.provider_payment_id and not payment.provider_payment_id:
            changes["provider_payment_id"] = gateway_payment.provider_payment_id

        updated = Payment.objects.filter(pk=payment.pk, status__in=Payment.OPEN_STATUSES).update(**changes)
        if updated:
            add_breadcrumb(
                f"Payment {payment.id} failed",
                category="payment",
                level="warning",
                data={"source": source, "reason": changes["failure_reason"]},
            )
            logger.info(
                f"Payment {payment.id} failed via {source}: {gateway_payment.error_code or gateway_payment.raw_status}"
            )
        return bool(updated)

    def mark_processing(self, payment, gateway_payment):
        changes = {"status": "processing", "updated_at": timezone.now(), "version": F("version") + 1}
        if gateway_payment.provider_payment_id and not payment.provider_payment_id:
            changes["provider_payment_id"] = gateway_payment.provider_payment_id
        updated = Payment.objects.filter(pk=payment.pk, status="pending").update(**changes)
        if updated:
            logger.info(f"Payment {payment.id} authorized, awaiting capture")
        return bool(updated)

    def _report_late_capture(self, payment, gateway_payment, source):
        message = (
            f"Gateway captured payment for order {payment.provider_order_id} after it was marked failed "
            f"({payment.failure_reason or 'failed'}); manual reconciliation required"
        )
        logger.error(message)
        capture_message_with_context(
            message,
            level="error",
            context={
                "payment": {
                    "id": str(payment.id),
                    "order_id": payment.provider_order_id,
                    "gateway_payment_id": gateway_payment.provider_payment_id,
                    "source": source,
                }
            },
        )
