from celery import shared_task
from django.utils import timezone
from datetime import timedelta
import logging

from .exceptions import GatewayRejected, GatewayUnavailable

logger = logging.getLogger(__name__)

POLL_AFTER = timedelta(minutes=5)


@shared_task
def expire_stale_payments():
    """Fail pending payments whose gateway order outlived the order TTL"""
    from payments.apps import get_services

    expired = get_services().ledger.expire_stale_payments(timezone.now())
    return f"Expired {expired} payments"


@shared_task
def poll_pending_payments(limit=100):
    """
    Reconcile open payments older than five minutes against the gateway.
    Covers webhooks that never arrived and clients that never called verify.
    """
    from payments.apps import get_services
    from payments.models import Payment

    services = get_services()
    cutoff = timezone.now() - POLL_AFTER
    payments = Payment.objects.filter(
        status__in=Payment.OPEN_STATUSES, created_at__lt=cutoff
    ).order_by("created_at")[:limit]

    reconciled = 0
    for payment in payments:
        try:
            payment = services.reconciler.reconcile(payment, source="poll")
        except (GatewayUnavailable, GatewayRejected) as e:
            logger.warning(f"Polling {payment.provider} for payment {payment.id} failed: {e.detail}")
            continue
        if not payment.is_open:
            reconciled += 1

    logger.info(f"Polled pending payments, {reconciled} reached a terminal status")
    return f"Reconciled {reconciled} payments"


@shared_task
def sweep_unconfirmed_appointments():
    """Confirm appointments left pending_payment after their payment completed"""
    from payments.apps import get_services

    confirmed = get_services().coupler.sweep_unconfirmed()
    return f"Confirmed {confirmed} appointments"


@shared_task
def poll_pending_refunds(limit=100):
    """
    Resolve open refunds against the gateway: processing refunds awaiting
    confirmation, and pending ones whose create call never got an answer.
    """
    from django.db.models import Q
    from payments.apps import get_services
    from payments.models import Refund

    services = get_services()
    cutoff = timezone.now() - POLL_AFTER
    refunds = Refund.objects.select_related("payment").filter(
        Q(status="processing") | Q(status="pending", created_at__lt=cutoff),
        provider_refund_id__isnull=False,
    ).order_by("created_at")[:limit]

    settled = 0
    for refund in refunds:
        try:
            refund = services.refunds.sync_refund(refund)
        except (GatewayUnavailable, GatewayRejected) as e:
            logger.warning(f"Polling refund {refund.id} failed: {e.detail}")
            continue
        if refund.status not in Refund.OPEN_STATUSES:
            settled += 1

    logger.info(f"Polled pending refunds, {settled} settled")
    return f"Settled {settled} refunds"


@shared_task
def generate_weekly_settlements():
    """Aggregate last week's payments into one settlement per hospital"""
    from payments.apps import get_services
    from payments.settlement_service import previous_week

    period_start, period_end = previous_week(timezone.now())
    settlements = get_services().settlements.generate_for_period(period_start, period_end)
    return f"Generated {len(settlements)} settlements"
