"""Tests for the amortization calculator and collateral aggregation."""
import os
import sys
import unittest
from datetime import datetime

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from goldloan.exceptions import ValidationError
from goldloan.services.loan_calculator import (
    aggregate_collateral,
    calculate_due_date,
    calculate_emi,
    round_money,
)
from loan_fixtures import make_item


class TestCalculateEmi(unittest.TestCase):

    def test_standard_annuity(self):
        terms = calculate_emi(100000, 12, 12)
        self.assertAlmostEqual(terms.monthly_emi, 8884.88, places=2)
        self.assertAlmostEqual(terms.total_interest, 6618.56, places=2)
        self.assertAlmostEqual(terms.total_amount, 106618.56, places=2)

    def test_total_is_principal_plus_interest(self):
        for principal, rate, term in [(5000, 7.5, 6), (250000, 18, 24), (1000, 0.1, 1)]:
            terms = calculate_emi(principal, rate, term)
            self.assertAlmostEqual(terms.total_amount, principal + terms.total_interest, places=2)

    def test_repeated_calls_are_identical(self):
        self.assertEqual(calculate_emi(75000, 14, 18), calculate_emi(75000, 14, 18))

    def test_emi_rounded_to_cents(self):
        terms = calculate_emi(12345, 13.3, 7)
        self.assertEqual(terms.monthly_emi, round(terms.monthly_emi, 2))

    def test_zero_rate_spreads_principal(self):
        terms = calculate_emi(12000, 0, 12)
        self.assertEqual(terms.monthly_emi, 1000.0)
        self.assertEqual(terms.total_interest, 0.0)
        self.assertEqual(terms.total_amount, 12000.0)

    def test_invalid_inputs(self):
        for args in [(0, 12, 12), (-500, 12, 12), (1000, -1, 12), (1000, 12, 0)]:
            with self.assertRaises(ValidationError):
                calculate_emi(*args)

    def test_all_errors_reported(self):
        with self.assertRaises(ValidationError) as context:
            calculate_emi(0, -1, 0)
        self.assertEqual(len(context.exception.errors), 3)


class TestAggregateCollateral(unittest.TestCase):

    def test_sums_items(self):
        totals = aggregate_collateral([
            make_item(net_weight=10, gross_weight=11, value=40000),
            make_item(name="Ring", net_weight=5, gross_weight=6, value=20000),
        ])
        self.assertEqual(totals.total_net_weight, 15)
        self.assertEqual(totals.total_gross_weight, 17)
        self.assertEqual(totals.total_estimated_value, 60000)

    def test_empty_list(self):
        totals = aggregate_collateral([])
        self.assertEqual(totals.total_net_weight, 0)
        self.assertEqual(totals.total_gross_weight, 0)
        self.assertEqual(totals.total_estimated_value, 0)


class TestHelpers(unittest.TestCase):

    def test_due_date_clamps_month_end(self):
        self.assertEqual(calculate_due_date(datetime(2024, 1, 31), 1), datetime(2024, 2, 29))
        self.assertEqual(calculate_due_date(datetime(2023, 11, 15), 3), datetime(2024, 2, 15))

    def test_round_money_half_up(self):
        self.assertEqual(round_money(2.675), 2.68)
        self.assertEqual(round_money(1.005), 1.01)


if __name__ == '__main__':
    unittest.main()
