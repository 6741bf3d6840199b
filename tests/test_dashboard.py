"""Tests for dashboard statistics."""
import os
import sys
import unittest
from datetime import datetime

import pandas as pd

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from goldloan.cache import TTLCache
from goldloan.database import DatabaseManager
from goldloan.exceptions import ForbiddenError
from goldloan.services import DashboardService, LoanService, OutsourcingService
from goldloan.services.dashboard_service import summarize_loans, summarize_payments
from loan_fixtures import ADMIN, EMPLOYEE, OFFICER, make_entity, make_loan


class TestSummarizeLoans(unittest.TestCase):

    def test_empty_frame(self):
        df = pd.DataFrame(columns=['id', 'status', 'account', 'loan_amount', 'outsourced_to', 'application_date'])
        summary = summarize_loans(df, 2024)
        self.assertEqual(summary['stats']['total_loans'], 0)
        self.assertEqual(summary['stats']['account3_amount'], 0.0)
        self.assertEqual(summary['monthly_trends'], [])

    def test_counts_and_trends(self):
        df = pd.DataFrame({
            'id': [1, 2, 3],
            'status': ["approved", "approved", "pending"],
            'account': ["account1", "account3", "account3"],
            'loan_amount': [1000.0, 2000.0, 4000.0],
            'outsourced_to': [None, 7, None],
            'application_date': pd.to_datetime(["2024-01-05", "2024-01-20", "2024-03-01"]),
        })
        summary = summarize_loans(df, 2024)
        stats = summary['stats']
        self.assertEqual(stats['total_loans'], 3)
        self.assertEqual(stats['total_amount'], 7000.0)
        self.assertEqual(stats['approved_loans'], 2)
        self.assertEqual(stats['closed_loans'], 0)
        self.assertEqual(stats['outsourced_loans'], 1)
        self.assertEqual(stats['outsourced_amount'], 2000.0)
        self.assertEqual(stats['account3_loans'], 2)
        self.assertEqual(stats['account3_amount'], 6000.0)
        self.assertEqual(summary['monthly_trends'], [
            {'month': 1, 'count': 2, 'total_amount': 3000.0},
            {'month': 3, 'count': 1, 'total_amount': 4000.0},
        ])


class TestSummarizePayments(unittest.TestCase):

    def test_empty_frame(self):
        df = pd.DataFrame(columns=['id', 'monthly_emi', 'due_date', 'payment_count', 'total_paid'])
        summary = summarize_payments(df)
        self.assertEqual(summary['total_loans'], 0)
        self.assertEqual(summary['collection_rate'], 0)

    def test_overdue_and_collection_rate(self):
        df = pd.DataFrame({
            'id': [1, 2, 3],
            'monthly_emi': [1000.0, 2000.0, 1000.0],
            'due_date': pd.to_datetime(["2024-01-01", "2024-01-01", "2025-01-01"]),
            'payment_count': [1, 0, 0],
            'total_paid': [1000.0, 0.0, 0.0],
        })
        summary = summarize_payments(df, as_of=datetime(2024, 6, 1))
        self.assertEqual(summary['total_loans'], 3)
        self.assertEqual(summary['total_emi'], 4000.0)
        self.assertEqual(summary['total_paid'], 1000.0)
        self.assertEqual(summary['overdue_loans'], 1)
        self.assertEqual(summary['collection_rate'], 25)


class TestDashboardService(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.loans = LoanService(self.db)
        self.service = DashboardService(self.db, cache=TTLCache(ttl=300))
        self.year = datetime.now().year

    def tearDown(self):
        self.db.close()

    def test_employee_sees_own_loans(self):
        self.loans.create_loan(EMPLOYEE, make_loan())
        self.loans.create_loan(OFFICER, make_loan(loan_amount=5000))
        self.assertEqual(self.service.get_stats(EMPLOYEE)['stats']['total_loans'], 1)
        self.assertEqual(self.service.get_stats(ADMIN)['stats']['total_loans'], 2)

    def test_outsourced_totals(self):
        loan = self.loans.create_loan(OFFICER, make_loan(account="account3"))
        outsourcing = OutsourcingService(self.db)
        entity = outsourcing.create_entity(ADMIN, make_entity())
        outsourcing.assign(loan.id, entity.id, OFFICER, custom_amount=40000)
        stats = self.service.get_stats(ADMIN)['stats']
        self.assertEqual(stats['outsourced_loans'], 1)
        self.assertEqual(stats['outsourced_amount'], 100000.0)

    def test_cached_until_invalidated(self):
        self.loans.create_loan(OFFICER, make_loan())
        self.assertEqual(self.service.get_stats(ADMIN)['stats']['total_loans'], 1)
        self.loans.create_loan(OFFICER, make_loan())
        self.assertEqual(self.service.get_stats(ADMIN)['stats']['total_loans'], 1)
        self.service.invalidate()
        self.assertEqual(self.service.get_stats(ADMIN)['stats']['total_loans'], 2)

    def test_monthly_trend_for_current_year(self):
        self.loans.create_loan(OFFICER, make_loan(application_date=datetime(self.year, 2, 10)))
        self.loans.create_loan(OFFICER, make_loan(application_date=datetime(self.year - 1, 2, 10)))
        trends = self.service.get_stats(ADMIN)['monthly_trends']
        self.assertEqual(trends, [{'month': 2, 'count': 1, 'total_amount': 100000.0}])

    def test_payment_summary_scoped(self):
        own = self.loans.create_loan(EMPLOYEE, make_loan(application_date=datetime(self.year - 3, 1, 1)))
        self.loans.create_loan(OFFICER, make_loan())
        self.loans.record_payment(own.id, EMPLOYEE, 1, 4442.44)

        summary = self.service.get_payment_summary(EMPLOYEE)
        self.assertEqual(summary['total_loans'], 1)
        self.assertEqual(summary['total_paid'], 4442.44)
        self.assertEqual(summary['overdue_loans'], 0)
        self.assertEqual(summary['collection_rate'], 50)

        summary = self.service.get_payment_summary(ADMIN)
        self.assertEqual(summary['total_loans'], 2)
        self.assertEqual(summary['overdue_loans'], 0)

    def test_overdue_unpaid_loan(self):
        self.loans.create_loan(OFFICER, make_loan(application_date=datetime(self.year - 3, 1, 1)))
        self.assertEqual(self.service.get_payment_summary(ADMIN)['overdue_loans'], 1)

    def test_cache_stats_admin_only(self):
        self.service.get_stats(ADMIN)
        self.assertEqual(self.service.cache_stats(ADMIN)['dashboard']['total'], 1)
        with self.assertRaises(ForbiddenError):
            self.service.cache_stats(OFFICER)

    def test_clear_cache_admin_only(self):
        with self.assertRaises(ForbiddenError):
            self.service.clear_cache(OFFICER)
        self.service.clear_cache(ADMIN)


if __name__ == '__main__':
    unittest.main()
