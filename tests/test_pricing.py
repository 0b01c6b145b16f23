import math
import unittest
from decimal import Decimal

from app.services.pricing import InvalidAmount, calculate_fees, validate_request_amount


class CalculateFeesTestCase(unittest.TestCase):
    def test_two_hundred_dollar_example(self):
        fees = calculate_fees(200)
        self.assertEqual(fees.requested_amount, 200.0)
        self.assertEqual(fees.profit, 4.00)
        self.assertEqual(fees.compliance_fee, 3.92)
        self.assertEqual(fees.delivery_fee, 8.16)
        self.assertEqual(fees.total_service_fee, 16.08)
        self.assertEqual(fees.total_payment, 216.08)

    def test_profit_floor_applies_below_175(self):
        fees = calculate_fees(100)
        self.assertEqual(fees.profit, 3.50)
        self.assertEqual(fees.compliance_fee, 2.91)
        self.assertEqual(fees.total_payment, 114.57)

    def test_compliance_fee_rounds_half_up(self):
        # 0.0101 * 150 + 1.90 = 3.415
        fees = calculate_fees(150)
        self.assertEqual(fees.compliance_fee, 3.42)
        self.assertEqual(fees.total_payment, 165.08)

    def test_total_is_sum_of_parts_for_whole_dollar_amounts(self):
        for amount in range(0, 2001, 7):
            fees = calculate_fees(amount)
            parts = fees.requested_amount + fees.profit + fees.compliance_fee + fees.delivery_fee
            self.assertEqual(round(parts, 2), fees.total_payment, amount)
            service = fees.profit + fees.compliance_fee + fees.delivery_fee
            self.assertEqual(round(service, 2), fees.total_service_fee, amount)

    def test_delivery_fee_override(self):
        fees = calculate_fees(200, delivery_fee=Decimal("5.00"))
        self.assertEqual(fees.delivery_fee, 5.00)
        self.assertEqual(fees.total_payment, 212.92)

    def test_deterministic(self):
        self.assertEqual(calculate_fees(420), calculate_fees(420))

    def test_rejects_bad_amounts(self):
        for bad in (-1, -0.01, math.nan, math.inf, -math.inf, "abc", None, True):
            with self.subTest(amount=bad):
                with self.assertRaises(InvalidAmount):
                    calculate_fees(bad)

    def test_invalid_amount_is_a_value_error(self):
        self.assertTrue(issubclass(InvalidAmount, ValueError))

    def test_as_order_fields(self):
        fields = calculate_fees(200).as_order_fields()
        self.assertEqual(fields["total_payment"], 216.08)
        self.assertEqual(len(fields), 6)


class ValidateRequestAmountTestCase(unittest.TestCase):
    def test_accepts_amounts_on_the_step(self):
        for amount in (100, 120, 500, 1000):
            self.assertIsNone(validate_request_amount(amount))

    def test_minimum(self):
        self.assertIn("Minimum", validate_request_amount(80))

    def test_maximum(self):
        self.assertIn("Maximum", validate_request_amount(1020))

    def test_step(self):
        self.assertIn("increments", validate_request_amount(110))

    def test_not_a_number(self):
        self.assertIsNotNone(validate_request_amount(math.nan))


if __name__ == "__main__":
    unittest.main()
