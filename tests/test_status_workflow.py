"""Tests for loan lifecycle transitions."""
import os
import sys
import unittest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from goldloan.database import DatabaseManager
from goldloan.exceptions import ForbiddenError, InvalidStateError, ValidationError
from goldloan.services import ClosureService, LoanService, StatusWorkflow
from goldloan.services.status_workflow import allowed_targets, can_transition
from loan_fixtures import ADMIN, EMPLOYEE, OFFICER, make_loan


class TestTransitionTable(unittest.TestCase):

    def test_edges(self):
        self.assertTrue(can_transition("pending", "approved"))
        self.assertTrue(can_transition("pending", "under_review"))
        self.assertTrue(can_transition("under_review", "rejected"))
        self.assertFalse(can_transition("approved", "pending"))
        self.assertFalse(can_transition("rejected", "approved"))

    def test_terminal_statuses(self):
        self.assertEqual(allowed_targets("rejected"), frozenset())
        self.assertEqual(allowed_targets("closed"), frozenset())


class TestStatusWorkflow(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.db.set_setting("initial_status", "pending")
        self.loans = LoanService(self.db)
        self.workflow = StatusWorkflow(self.db)
        self.loan = self.loans.create_loan(EMPLOYEE, make_loan())

    def tearDown(self):
        self.db.close()

    def test_officer_approves(self):
        loan = self.workflow.request_transition(self.loan.id, OFFICER, "approved")
        self.assertEqual(loan.status, "approved")
        self.assertEqual(loan.approved_by, OFFICER.id)
        self.assertEqual(loan.status_changed_by, OFFICER.id)
        self.assertEqual(self.db.get_loan(self.loan.id).status, "approved")

    def test_review_then_reject(self):
        self.workflow.request_transition(self.loan.id, ADMIN, "under_review")
        loan = self.workflow.request_transition(self.loan.id, ADMIN, "rejected", notes="Purity mismatch")
        self.assertEqual(loan.status, "rejected")
        self.assertEqual(loan.notes, "Purity mismatch")

    def test_rejected_is_terminal(self):
        self.workflow.request_transition(self.loan.id, ADMIN, "rejected")
        with self.assertRaises(InvalidStateError):
            self.workflow.request_transition(self.loan.id, ADMIN, "approved")

    def test_employee_forbidden(self):
        with self.assertRaises(ForbiddenError):
            self.workflow.request_transition(self.loan.id, EMPLOYEE, "approved")
        self.assertEqual(self.db.get_loan(self.loan.id).status, "pending")

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            self.workflow.request_transition(self.loan.id, ADMIN, "archived")

    def test_close_through_workflow_rejected(self):
        self.workflow.request_transition(self.loan.id, ADMIN, "approved")
        with self.assertRaises(InvalidStateError):
            self.workflow.request_transition(self.loan.id, ADMIN, "closed")

    def test_closed_loan_cannot_move(self):
        self.workflow.request_transition(self.loan.id, ADMIN, "approved")
        ClosureService(self.db).close(self.loan.id, ADMIN, "fully_paid")
        for target in ("approved", "pending", "rejected", "archived"):
            with self.assertRaises(InvalidStateError):
                self.workflow.request_transition(self.loan.id, ADMIN, target)

    def test_disbursement(self):
        with self.assertRaises(InvalidStateError):
            self.workflow.mark_disbursed(self.loan.id, OFFICER)
        self.workflow.request_transition(self.loan.id, OFFICER, "approved")
        loan = self.workflow.mark_disbursed(self.loan.id, OFFICER)
        self.assertIsNotNone(loan.disbursement_date)
        self.assertEqual(loan.status, "approved")
        with self.assertRaises(InvalidStateError):
            self.workflow.mark_disbursed(self.loan.id, OFFICER)


if __name__ == '__main__':
    unittest.main()
