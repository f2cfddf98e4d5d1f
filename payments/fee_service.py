from decimal import Decimal, ROUND_HALF_UP
from django.conf import settings


class FeeCalculationService:
    """Service for calculating platform fees and GST on appointment payments"""

    @staticmethod
    def _round_minor(value: Decimal) -> int:
        return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))

    @staticmethod
    def get_fee_percentage(consultation_type: str) -> Decimal:
        schedule = settings.PLATFORM_FEES
        percentage = schedule.get(consultation_type, schedule.get('DEFAULT_PERCENTAGE', 0))
        return Decimal(str(percentage))

    @staticmethod
    def calculate_platform_fee(base_amount: int, consultation_type: str) -> int:
        """
        Platform fee in minor units from the fee schedule.

        The percentage depends on the consultation type and the result is
        clamped to the configured minimum and maximum fee.
        """
        schedule = settings.PLATFORM_FEES
        percentage = FeeCalculationService.get_fee_percentage(consultation_type)
        fee = FeeCalculationService._round_minor(Decimal(base_amount) * percentage / Decimal(100))
        fee = max(fee, int(schedule.get('MINIMUM_FEE', 0)))
        maximum = schedule.get('MAXIMUM_FEE')
        if maximum is not None:
            fee = min(fee, int(maximum))
        return fee

    @staticmethod
    def calculate_gst(platform_fee: int) -> int:
        rate = Decimal(str(settings.GST_RATE))
        return FeeCalculationService._round_minor(Decimal(platform_fee) * rate / Decimal(100))

    @staticmethod
    def calculate_appointment_fees(base_amount: int, consultation_type: str) -> dict:
        """
        Calculate the fee breakdown charged for an appointment

        Args:
            base_amount: consultation fee in minor units
            consultation_type: online, in_person, walk_in or follow_up

        Returns:
            dict with minor-unit integers:
            {
                'base_amount': consultation fee,
                'platform_fee': fee charged to the patient,
                'gst_amount': GST on the platform fee,
                'total_amount': base_amount + platform_fee + gst_amount,
                'scheduled_platform_fee': fee the schedule quotes,
                'scheduled_gst_amount': GST the schedule quotes,
                'fee_percentage': schedule percentage as a string,
            }

        When CHARGE_PLATFORM_FEE is off the patient pays the consultation fee
        only; the scheduled figures are still reported for display.
        """
        base_amount = int(base_amount)
        scheduled_fee = FeeCalculationService.calculate_platform_fee(base_amount, consultation_type)
        scheduled_gst = FeeCalculationService.calculate_gst(scheduled_fee)

        if getattr(settings, 'CHARGE_PLATFORM_FEE', False):
            platform_fee, gst_amount = scheduled_fee, scheduled_gst
        else:
            platform_fee, gst_amount = 0, 0

        return {
            'base_amount': base_amount,
            'platform_fee': platform_fee,
            'gst_amount': gst_amount,
            'total_amount': base_amount + platform_fee + gst_amount,
            'scheduled_platform_fee': scheduled_fee,
            'scheduled_gst_amount': scheduled_gst,
            'fee_percentage': f'{FeeCalculationService.get_fee_percentage(consultation_type)}%',
        }
