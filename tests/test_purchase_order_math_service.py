from __future__ import annotations

import unittest
from decimal import Decimal

from printflow.errors import ValidationError
from printflow.services.purchase_order_math_service import derive_margin, round2, split_customer_total, to_money


class PurchaseOrderMathServiceTests(unittest.TestCase):
    def test_split_applies_default_twenty_percent_margin(self) -> None:
        split = split_customer_total(Decimal('100.00'))
        self.assertEqual(split.vendor_amount, Decimal('80.00'))
        self.assertEqual(split.margin_amount, Decimal('20.00'))

    def test_split_large_total(self) -> None:
        split = split_customer_total('1000')
        self.assertEqual(split.total, Decimal('1000.00'))
        self.assertEqual(split.vendor_amount, Decimal('800.00'))
        self.assertEqual(split.margin_amount, Decimal('200.00'))

    def test_residual_cent_stays_with_margin(self) -> None:
        split = split_customer_total(Decimal('99.99'))
        self.assertEqual(split.vendor_amount, Decimal('79.99'))
        self.assertEqual(split.margin_amount, Decimal('20.00'))
        self.assertEqual(split.vendor_amount + split.margin_amount, Decimal('99.99'))

    def test_parts_always_add_back_to_total(self) -> None:
        for raw in ('0.01', '0.05', '1.11', '33.33', '250.49', '12345.67'):
            split = split_customer_total(raw)
            self.assertEqual(split.vendor_amount + split.margin_amount, split.total, raw)
            self.assertGreaterEqual(split.margin_amount, Decimal('0'))

    def test_float_input_does_not_leak_binary_noise(self) -> None:
        split = split_customer_total(0.1 + 0.2)
        self.assertEqual(split.total, Decimal('0.30'))
        self.assertEqual(split.vendor_amount, Decimal('0.24'))

    def test_custom_margin_rate(self) -> None:
        split = split_customer_total(Decimal('80.00'), margin_rate=Decimal('0.25'))
        self.assertEqual(split.vendor_amount, Decimal('60.00'))
        self.assertEqual(split.margin_amount, Decimal('20.00'))

    def test_zero_total_splits_to_zero(self) -> None:
        split = split_customer_total(Decimal('0'))
        self.assertEqual(split.vendor_amount, Decimal('0.00'))
        self.assertEqual(split.margin_amount, Decimal('0.00'))

    def test_negative_total_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            split_customer_total(Decimal('-1'))

    def test_rate_outside_unit_interval_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            split_customer_total(Decimal('10'), margin_rate=Decimal('1.5'))

    def test_non_numeric_amount_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            to_money('abc', field='total')
        self.assertEqual(ctx.exception.details[0]['field'], 'total')
        with self.assertRaises(ValidationError):
            to_money('NaN')

    def test_round2_is_half_up(self) -> None:
        self.assertEqual(round2(Decimal('0.005')), Decimal('0.01'))
        self.assertEqual(round2(Decimal('2.675')), Decimal('2.68'))

    def test_derive_margin(self) -> None:
        self.assertEqual(derive_margin(Decimal('80.00'), Decimal('60.00')), Decimal('20.00'))
        self.assertEqual(derive_margin(Decimal('80.00'), Decimal('80.00')), Decimal('0.00'))

    def test_derive_margin_rejects_vendor_above_original(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            derive_margin(Decimal('60.00'), Decimal('60.01'))
        self.assertEqual(ctx.exception.details[0]['field'], 'vendor_amount')

    def test_derive_margin_reports_every_negative_field(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            derive_margin(Decimal('-1'), Decimal('-2'))
        self.assertEqual([d['field'] for d in ctx.exception.details], ['original_amount', 'vendor_amount'])


if __name__ == '__main__':
    unittest.main()
