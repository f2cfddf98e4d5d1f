from django.test import SimpleTestCase, override_settings

from payments.fee_service import FeeCalculationService
from payments.models import format_major_amount


class FeeCalculationServiceTest(SimpleTestCase):  # FeeCalculationServiceTest class implementation
    def test_fee_off_by_default(self):  # Test fee off by default
        fees = FeeCalculationService.calculate_appointment_fees(50000, "online")
        self.assertEqual(fees["total_amount"], 50000)
        self.assertEqual(fees["platform_fee"], 0)
        self.assertEqual(fees["gst_amount"], 0)
        self.assertEqual(fees["scheduled_platform_fee"], 3500)
        self.assertEqual(fees["scheduled_gst_amount"], 630)

    @override_settings(CHARGE_PLATFORM_FEE=True)
    def test_fee_charged_when_enabled(self):  # Test fee charged when enabled
        fees = FeeCalculationService.calculate_appointment_fees(50000, "online")
        self.assertEqual(fees["platform_fee"], 3500)
        self.assertEqual(fees["gst_amount"], 630)
        self.assertEqual(fees["total_amount"], 54130)
        self.assertEqual(fees["fee_percentage"], "7%")

    def test_fee_clamped_to_minimum_and_maximum(self):  # Test fee clamped to minimum and maximum
        self.assertEqual(FeeCalculationService.calculate_platform_fee(10000, "in_person"), 2000)
        self.assertEqual(FeeCalculationService.calculate_platform_fee(1000000, "online"), 50000)

    def test_unknown_consultation_type_uses_default(self):  # Test unknown consultation type uses default
        self.assertEqual(FeeCalculationService.calculate_platform_fee(100000, "home_visit"), 7000)

    def test_format_major_amount(self):  # Test format major amount
        self.assertEqual(format_major_amount(50000), "500")
        self.assertEqual(format_major_amount(49950), "499.50")
        self.assertEqual(format_major_amount(5), "0.05")
