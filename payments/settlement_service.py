import logging
from datetime import datetime, time, timedelta

from django.db import IntegrityError, transaction
from django.db.models import Count, F, Sum
from django.utils import timezone

from core.models import Participant
from .exceptions import PaymentBadRequest
from .models import Payment, Refund, Settlement

logger = logging.getLogger(__name__)


def previous_week(now=None):
    """Monday 00:00 to Monday 00:00 (local time) of the week before ``now``"""
    today = timezone.localtime(now or timezone.now()).date()
    this_monday = today - timedelta(days=today.weekday())
    last_monday = this_monday - timedelta(days=7)
    tz = timezone.get_current_timezone()
    return (
        timezone.make_aware(datetime.combine(last_monday, time.min), tz),
        timezone.make_aware(datetime.combine(this_monday, time.min), tz),
    )


class SettlementService:  # Service class for hospital settlement operations
    """
    Aggregates a hospital's settled payments over a period.

    ACID Compliance:
    - One settlement per (hospital, period_start, period_end)
    - A payment is claimed by at most one settlement (conditional update on settlement IS NULL)
    - A completed refund is deducted by exactly one settlement, the first one generated
      after it completed, whichever settlement paid out its payment
    - Status only moves forward: pending -> processing -> completed | failed
    """

    def settleable_payments(self, hospital, period_start, period_end):
        return Payment.objects.filter(
            hospital=hospital,
            status__in=Payment.SETTLEABLE_STATUSES,
            paid_at__gte=period_start,
            paid_at__lt=period_end,
            settlement__isnull=True,
        )

    def deductible_refunds(self, hospital, period_end):
        """Completed refunds on the hospital's payments not yet deducted from any payout"""
        return Refund.objects.filter(
            payment__hospital=hospital,
            status="completed",
            completed_at__lt=period_end,
            settlement__isnull=True,
        )

    def generate_settlement(self, hospital, period_start, period_end):
        if period_end <= period_start:
            raise PaymentBadRequest("Settlement period end must be after its start")

        existing = Settlement.objects.filter(
            hospital=hospital, period_start=period_start, period_end=period_end
        ).first()
        if existing:
            logger.info(f"Settlement {existing.id} already exists for hospital {hospital.pk}; returning it")
            return existing

        try:
            with transaction.atomic():
                settlement = Settlement.objects.create(
                    hospital=hospital, period_start=period_start, period_end=period_end
                )
                payment_ids = list(
                    self.settleable_payments(hospital, period_start, period_end).values_list("id", flat=True)
                )
                Payment.objects.filter(pk__in=payment_ids, settlement__isnull=True).update(
                    settlement=settlement, updated_at=timezone.now(), version=F("version") + 1
                )

                totals = Payment.objects.filter(settlement=settlement).aggregate(
                    count=Count("id"),
                    total=Sum("total_amount"),
                    platform_fee=Sum("platform_fee"),
                    gst=Sum("gst_amount"),
                )
                refund_ids = list(
                    self.deductible_refunds(hospital, period_end).values_list("id", flat=True)
                )
                Refund.objects.filter(pk__in=refund_ids, settlement__isnull=True).update(
                    settlement=settlement, updated_at=timezone.now(), version=F("version") + 1
                )
                refunded = Refund.objects.filter(settlement=settlement).aggregate(
                    total=Sum("refund_amount")
                )["total"] or 0

                settlement.payment_count = totals["count"] or 0
                settlement.total_amount = totals["total"] or 0
                settlement.platform_fee = totals["platform_fee"] or 0
                settlement.gst_amount = totals["gst"] or 0
                settlement.refund_amount = refunded
                settlement.net_amount = (
                    settlement.total_amount - settlement.platform_fee - settlement.gst_amount - refunded
                )
                first = Payment.objects.filter(settlement=settlement).values_list("currency", flat=True).first()
                if first:
                    settlement.currency = first
                settlement.save()
        except IntegrityError:
            return Settlement.objects.get(hospital=hospital, period_start=period_start, period_end=period_end)

        logger.info(
            f"Settlement {settlement.id} for hospital {hospital.pk}: {settlement.payment_count} payments, "
            f"net {settlement.net_amount} {settlement.currency}"
        )
        return settlement

    def generate_for_period(self, period_start, period_end):
        hospital_ids = (
            Payment.objects.filter(
                status__in=Payment.SETTLEABLE_STATUSES,
                paid_at__gte=period_start,
                paid_at__lt=period_end,
                settlement__isnull=True,
                hospital__isnull=False,
            )
            .values_list("hospital_id", flat=True)
            .distinct()
        )
        refund_hospital_ids = (
            Refund.objects.filter(
                status="completed",
                completed_at__lt=period_end,
                settlement__isnull=True,
                payment__hospital__isnull=False,
            )
            .values_list("payment__hospital_id", flat=True)
            .distinct()
        )
        settlements = []
        hospital_pks = set(hospital_ids) | set(refund_hospital_ids)
        for hospital in Participant.objects.filter(pk__in=hospital_pks):
            settlements.append(self.generate_settlement(hospital, period_start, period_end))
        logger.info(f"Generated {len(settlements)} settlements for {period_start:%Y-%m-%d}..{period_end:%Y-%m-%d}")
        return settlements

    def _transition(self, settlement, from_statuses, **changes):
        now = timezone.now()
        updated = Settlement.objects.filter(pk=settlement.pk, status__in=from_statuses).update(
            updated_at=now, version=F("version") + 1, **changes
        )
        settlement.refresh_from_db()
        if not updated:
            raise PaymentBadRequest(f"Settlement is {settlement.status} and cannot move to {changes['status']}")
        logger.info(f"Settlement {settlement.id} -> {settlement.status}")
        return settlement

    def mark_processing(self, settlement):
        return self._transition(settlement, ("pending",), status="processing")

    def mark_completed(self, settlement, reference):
        return self._transition(
            settlement,
            ("pending", "processing"),
            status="completed",
            reference=reference,
            processed_at=timezone.now(),
        )

    def mark_failed(self, settlement, reason):
        return self._transition(
            settlement,
            ("pending", "processing"),
            status="failed",
            failure_reason=reason,
            processed_at=timezone.now(),
        )

    def settlements_for(self, participant):
        queryset = Settlement.objects.select_related("hospital")
        if participant.is_platform_staff:
            return queryset
        return queryset.filter(hospital=participant)
