"""Tests for the LoanEngine facade and its Result mapping."""
import os
import sys
import unittest
from datetime import datetime

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from goldloan.cache import TTLCache
from goldloan.database import DatabaseManager
from goldloan.engine import LoanEngine
from goldloan.result import ErrorType, Result
from loan_fixtures import ADMIN, EMPLOYEE, OFFICER, OTHER_EMPLOYEE, make_document, make_entity, make_loan


class TestResult(unittest.TestCase):

    def test_ok(self):
        result = Result.ok(5)
        self.assertTrue(result)
        self.assertEqual(result.unwrap(), 5)
        self.assertEqual(result.to_response(201), (201, {'data': 5}))

    def test_fail(self):
        result = Result.fail("bad", ErrorType.VALIDATION, ["Name is required"])
        self.assertFalse(result)
        self.assertEqual(result.unwrap_or(0), 0)
        with self.assertRaises(ValueError):
            result.unwrap()
        status, body = result.to_response()
        self.assertEqual(status, 400)
        self.assertEqual(body['errors'], ["Name is required"])


class TestLoanEngine(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.engine = LoanEngine(self.db, cache=TTLCache())
        self.loan = self.engine.create_loan(EMPLOYEE, make_loan()).unwrap()

    def tearDown(self):
        self.db.close()

    def assertFailure(self, result, error_type, status):
        self.assertFalse(result.success)
        self.assertEqual(result.error_type, error_type)
        self.assertEqual(result.to_response()[0], status)

    def test_validation_failure(self):
        result = self.engine.create_loan(EMPLOYEE, make_loan(net_weight=30, gross_weight=20))
        self.assertFailure(result, ErrorType.VALIDATION, 400)
        self.assertIn("Gross weight cannot be less than net weight", result.errors)

    def test_non_numeric_field_is_validation_failure(self):
        result = self.engine.create_loan(OFFICER, make_loan(loan_amount="50000", loan_term="12"))
        self.assertFailure(result, ErrorType.VALIDATION, 400)
        self.assertIn("Loan amount must be a number", result.errors)
        self.assertIn("Loan term must be a whole number of months", result.errors)

        result = self.engine.record_payment(self.loan.id, EMPLOYEE, 1, "100")
        self.assertFailure(result, ErrorType.VALIDATION, 400)

    def test_unexpected_error_logged_and_typed(self):
        def broken(loan_id, actor):
            raise RuntimeError("disk unavailable")

        self.engine.loan_service.get_loan = broken
        with self.assertLogs('goldloan.engine', level='ERROR'):
            result = self.engine.get_loan(self.loan.id, ADMIN)
        self.assertFailure(result, ErrorType.INTERNAL, 500)
        self.assertIn("disk unavailable", result.error)

    def test_backdated_payment(self):
        paid_on = datetime(2024, 5, 3, 10, 30)
        payment = self.engine.record_payment(self.loan.id, EMPLOYEE, 1, 8884.88, payment_date=paid_on).unwrap()
        self.assertEqual(payment.payment_date, paid_on)
        self.assertEqual(self.engine.list_payments(self.loan.id, EMPLOYEE).unwrap()[0].payment_date, paid_on)

    def test_payment_summary_and_schedule(self):
        self.engine.record_payment(self.loan.id, EMPLOYEE, 1, 8884.88).unwrap()
        summary = self.engine.get_payment_summary(EMPLOYEE).unwrap()
        self.assertEqual(summary['total_loans'], 1)
        self.assertEqual(summary['collection_rate'], 100)
        schedule = self.engine.list_payment_schedule(EMPLOYEE, status="paid").unwrap()
        self.assertEqual([loan.id for loan in schedule], [self.loan.id])
        self.assertFailure(self.engine.list_payment_schedule(EMPLOYEE, status="late"), ErrorType.VALIDATION, 400)

    def test_cache_stats_admin_only(self):
        self.engine.get_dashboard_stats(ADMIN).unwrap()
        stats = self.engine.get_cache_stats(ADMIN).unwrap()
        self.assertEqual(stats['dashboard']['valid'], 1)
        self.assertFailure(self.engine.get_cache_stats(OFFICER), ErrorType.FORBIDDEN, 403)

    def test_not_found(self):
        self.assertFailure(self.engine.get_loan(999, ADMIN), ErrorType.NOT_FOUND, 404)

    def test_forbidden(self):
        self.assertFailure(self.engine.get_loan(self.loan.id, OTHER_EMPLOYEE), ErrorType.FORBIDDEN, 403)

    def test_invalid_state(self):
        self.assertTrue(self.engine.close_loan(self.loan.id, OFFICER, "fully_paid"))
        result = self.engine.update_loan(self.loan.id, EMPLOYEE, {'notes': "edit"})
        self.assertFailure(result, ErrorType.INVALID_STATE, 409)

    def test_already_outsourced(self):
        self.engine.change_account(self.loan.id, OFFICER, "account3").unwrap()
        entity = self.engine.create_outsource_entity(ADMIN, make_entity()).unwrap()
        self.assertTrue(self.engine.assign_outsource(self.loan.id, entity.id, OFFICER))
        result = self.engine.assign_outsource(self.loan.id, entity.id, OFFICER)
        self.assertFailure(result, ErrorType.ALREADY_OUTSOURCED, 409)

    def test_conflict(self):
        stale = self.db.get_loan(self.loan.id)
        self.engine.update_loan(self.loan.id, EMPLOYEE, {'notes': "fresh"}).unwrap()
        original_get = self.db.get_loan
        self.db.get_loan = lambda loan_id: stale
        try:
            result = self.engine.change_account(self.loan.id, ADMIN, "account2")
        finally:
            self.db.get_loan = original_get
        self.assertFailure(result, ErrorType.CONFLICT, 409)

    def test_writes_invalidate_dashboard(self):
        stats = self.engine.get_dashboard_stats(ADMIN).unwrap()
        self.assertEqual(stats['stats']['total_loans'], 1)
        self.engine.create_loan(OFFICER, make_loan()).unwrap()
        stats = self.engine.get_dashboard_stats(ADMIN).unwrap()
        self.assertEqual(stats['stats']['total_loans'], 2)

    def test_full_lifecycle(self):
        self.assertTrue(self.engine.record_payment(self.loan.id, EMPLOYEE, 1, 8884.88))
        analytics = self.engine.get_loan_analytics(self.loan.id, EMPLOYEE).unwrap()
        self.assertEqual(analytics['next_payment_due'], 2)

        document = self.engine.attach_document(self.loan.id, EMPLOYEE, make_document()).unwrap()
        self.assertTrue(self.engine.verify_document(document.id, OFFICER))
        self.assertEqual(len(self.engine.list_documents(self.loan.id, EMPLOYEE).unwrap()), 1)

        closed = self.engine.close_loan(self.loan.id, ADMIN, "fully_paid").unwrap()
        self.assertAlmostEqual(closed.final_amount, 97733.68, places=2)
        status, body = self.engine.get_loan(self.loan.id, EMPLOYEE).to_response()
        self.assertEqual(status, 200)
        self.assertEqual(body['data']['status'], "closed")
        self.assertEqual(body['data']['total_paid'], 8884.88)

    def test_list_results(self):
        status, body = self.engine.list_loans(ADMIN, search="ravi").to_response()
        self.assertEqual(status, 200)
        self.assertEqual(len(body['data']), 1)
        self.assertEqual(self.engine.reconcile_documents().unwrap(), [])


if __name__ == '__main__':
    unittest.main()
