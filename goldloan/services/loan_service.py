"""Loan record service for the GoldLoan engine.

This service handles the loan aggregate itself:
- Submission (with loan code generation and initial status)
- Field updates with recomputation of derived fields
- Account bucket changes and soft deletion
- Payment recording and analytics
"""
import logging
import random
from dataclasses import replace
from datetime import datetime

from goldloan.authorization import AccessPolicy, Action
from goldloan.config import (
    ACCOUNTS,
    DEFAULT_INITIAL_STATUS,
    INITIAL_STATUSES,
    LOAN_CODE_ATTEMPTS,
    LOAN_CODE_PREFIX,
    STATUS_APPROVED,
)
from goldloan.data_structures import Payment
from goldloan.exceptions import DatabaseError, InvalidStateError, LoanNotFoundError, ValidationError
from goldloan.services.loan_calculator import aggregate_collateral, calculate_due_date, calculate_emi
from goldloan.validation import ensure_valid, validate_loan, validate_payment

logger = logging.getLogger(__name__)

TERM_FIELDS = frozenset({'loan_amount', 'interest_rate', 'loan_term'})
WEIGHT_FIELDS = frozenset({'net_weight', 'gross_weight', 'collateral_items'})

UPDATABLE_FIELDS = frozenset({
    'applicant_name', 'applicant_phone', 'applicant_email', 'applicant_address',
    'loan_amount', 'net_weight', 'gross_weight', 'gold_purity', 'interest_rate',
    'loan_term', 'notes', 'collateral_items',
})


def load_loan(db, loan_id):
    """Fetch an active loan or raise LoanNotFoundError."""
    loan = db.get_loan(loan_id)
    if loan is None or not loan.is_active:
        raise LoanNotFoundError(loan_id)
    return loan


def ensure_not_closed(loan, operation="modify"):
    if loan.is_closed:
        raise InvalidStateError(
            f"Cannot {operation} loan '{loan.loan_code}': loan is closed",
            loan.loan_code, loan.status
        )


def refresh_derived_fields(loan, terms=True, weights=True, due_date=True):
    """Recompute stored derived fields from the loan's inputs.

    Args:
        loan: LoanRecord to update in place.
        terms: Recompute EMI, total interest and total payable.
        weights: Recompute total net/gross weight.
        due_date: Recompute the due date from the application date.
    """
    if terms:
        result = calculate_emi(loan.loan_amount, loan.interest_rate, loan.loan_term)
        loan.monthly_emi = result.monthly_emi
        loan.total_interest = result.total_interest
        loan.total_amount = result.total_amount

    if weights:
        if loan.collateral_items:
            totals = aggregate_collateral(loan.collateral_items)
            loan.total_net_weight = totals.total_net_weight
            loan.total_gross_weight = totals.total_gross_weight
        else:
            # Single-item loans: the top-level weights are authoritative
            loan.total_net_weight = loan.net_weight
            loan.total_gross_weight = loan.gross_weight

    if due_date and loan.application_date is not None:
        loan.due_date = calculate_due_date(loan.application_date, loan.loan_term)


class LoanService:
    """Handles the loan record and its append-only payment history.

    Attributes:
        db: DatabaseManager instance for data persistence.
        policy: AccessPolicy used for every role and ownership decision.
    """

    def __init__(self, db_manager, policy=None):
        self.db = db_manager
        self.policy = policy or AccessPolicy()

    def initial_status(self):
        """Status given to new submissions, from settings or the default."""
        status = self.db.get_setting("initial_status", DEFAULT_INITIAL_STATUS)
        if status not in INITIAL_STATUSES:
            logger.warning("Ignoring invalid initial_status setting %r", status)
            return DEFAULT_INITIAL_STATUS
        return status

    def generate_loan_code(self):
        """Return an unused ``GL`` + 6 digit code.

        Raises:
            DatabaseError: If no free code was found after several attempts.
        """
        for _ in range(LOAN_CODE_ATTEMPTS):
            code = f"{LOAN_CODE_PREFIX}{random.randint(100000, 999999)}"
            if not self.db.loan_code_exists(code):
                return code
        raise DatabaseError("Could not generate a unique loan code")

    def create_loan(self, actor, loan):
        """Submit a new loan application.

        Args:
            actor: Submitting Actor; recorded as ``submitted_by``.
            loan: LoanRecord carrying applicant data, terms and collateral.

        Returns:
            The persisted LoanRecord with derived fields populated.

        Raises:
            ForbiddenError: If the actor may not create loans.
            ValidationError: If any field is invalid.
        """
        self.policy.check(actor, Action.LOAN_CREATE)
        ensure_valid(validate_loan(loan))

        now = datetime.now()
        loan.submitted_by = actor.id
        loan.loan_code = self.generate_loan_code()
        loan.application_date = loan.application_date or now
        loan.status = self.initial_status()
        loan.status_changed_at = now
        loan.status_changed_by = actor.id
        if loan.status == STATUS_APPROVED:
            loan.approval_date = now
            loan.approved_by = actor.id
        loan.is_active = True
        loan.version = 0
        loan.created_at = now
        loan.updated_at = now
        refresh_derived_fields(loan)

        with self.db.transaction():
            self.db.insert_loan(loan)

        logger.info("Created loan %s (status=%s) for actor %s", loan.loan_code, loan.status, actor.id)
        return loan

    def get_loan(self, loan_id, actor):
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.LOAN_VIEW, loan)
        return loan

    def list_loans(self, actor, status=None, account=None, start_date=None, end_date=None, search=None):
        """List active loans visible to the actor, newest first.

        Employees only see loans they submitted.
        """
        self.policy.check(actor, Action.LOAN_VIEW)
        return self.db.query_loans(
            status=status,
            account=account,
            start_date=start_date,
            end_date=end_date,
            search=search,
            submitted_by=self.policy.scope_to_actor(actor),
        )

    def update_loan(self, loan_id, actor, changes):
        """Apply field changes to an open loan.

        Derived fields are recomputed when the terms, weights or collateral
        items change.

        Args:
            loan_id: ID of the loan.
            actor: Acting user.
            changes: Mapping of attribute name to new value.

        Raises:
            ValidationError: For protected/unknown fields or invalid values.
            InvalidStateError: If the loan is closed.
        """
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.LOAN_UPDATE, loan)
        ensure_not_closed(loan, "update")

        protected = sorted(set(changes) - UPDATABLE_FIELDS)
        if protected:
            raise ValidationError([f"Field '{name}' cannot be updated directly" for name in protected])

        updated = replace(loan, **changes)
        ensure_valid(validate_loan(updated))

        changed = {name for name in changes if getattr(loan, name) != changes[name]}
        refresh_derived_fields(
            updated,
            terms=bool(changed & TERM_FIELDS),
            weights=bool(changed & WEIGHT_FIELDS),
            due_date='loan_term' in changed,
        )
        updated.updated_at = datetime.now()

        with self.db.transaction():
            self.db.update_loan(updated)
            if 'collateral_items' in changed:
                self.db.replace_collateral_items(updated.id, updated.collateral_items)

        logger.info("Updated loan %s fields %s", updated.loan_code, sorted(changed))
        return updated

    def change_account(self, loan_id, actor, account):
        """Move a loan to another bookkeeping bucket."""
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.LOAN_CHANGE_ACCOUNT, loan)
        if account not in ACCOUNTS:
            raise ValidationError(f"Invalid account type. Must be one of {', '.join(ACCOUNTS)}")
        ensure_not_closed(loan, "change the account of")

        loan.account = account
        loan.updated_at = datetime.now()
        self.db.update_loan(loan)
        logger.info("Loan %s moved to %s", loan.loan_code, account)
        return loan

    def delete_loan(self, loan_id, actor):
        """Soft delete: the row stays but drops out of every query."""
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.LOAN_DELETE, loan)

        loan.is_active = False
        loan.updated_at = datetime.now()
        self.db.update_loan(loan)
        logger.info("Soft-deleted loan %s by actor %s", loan.loan_code, actor.id)
        return loan

    def record_payment(self, loan_id, actor, month, amount, payment_method="cash", notes="",
                       payment_date=None):
        """Append an installment payment to the loan's history.

        Raises:
            ValidationError: If the month is outside the term or already paid,
                or the amount is negative.
            InvalidStateError: If the loan is closed.
        """
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.PAYMENT_RECORD, loan)
        ensure_not_closed(loan, "record a payment on")

        payment = Payment(
            month=month,
            amount=amount,
            payment_date=payment_date or datetime.now(),
            payment_method=payment_method,
            received_by=actor.id,
            notes=notes or ""
        )
        ensure_valid(validate_payment(payment, loan))

        self.db.add_payment(loan.id, payment)
        loan.payments.append(payment)
        logger.info("Recorded payment for month %s on loan %s: %s", month, loan.loan_code, amount)
        return payment

    def list_payments(self, loan_id, actor):
        loan = self.get_loan(loan_id, actor)
        return sorted(loan.payments, key=lambda p: p.month)

    def list_payment_schedule(self, actor, status=None, start_date=None, end_date=None, search=None):
        """Loans visible to the actor ordered by due date, for collection follow-up.

        Args:
            status: ``"paid"`` for loans with at least one payment, ``"unpaid"``
                for loans with none, None for both.
            start_date, end_date: Inclusive bounds on the due date.
            search: Matched against applicant name, email and loan code.
        """
        if status not in (None, "paid", "unpaid"):
            raise ValidationError("Payment status filter must be 'paid' or 'unpaid'")
        loans = self.list_loans(actor, search=search)

        if status == "paid":
            loans = [loan for loan in loans if loan.payments]
        elif status == "unpaid":
            loans = [loan for loan in loans if not loan.payments]
        if start_date:
            loans = [loan for loan in loans if loan.due_date and loan.due_date >= start_date]
        if end_date:
            loans = [loan for loan in loans if loan.due_date and loan.due_date <= end_date]

        return sorted(loans, key=lambda loan: (loan.due_date is None, loan.due_date or datetime.min))

    def get_analytics(self, loan_id, actor, as_of=None):
        """Payment summary for a single loan."""
        loan = self.get_loan(loan_id, actor)
        return {
            'loan_code': loan.loan_code,
            'applicant_name': loan.applicant_name,
            'monthly_emi': loan.monthly_emi,
            'total_amount': loan.total_amount,
            'total_paid': loan.total_paid,
            'remaining_amount': loan.remaining_amount,
            'remaining_months': loan.remaining_months(as_of),
            'loan_age_days': loan.loan_age_days(as_of),
            'payment_status': loan.payment_status,
            'next_payment_due': loan.next_payment_due,
            'collateral_value': loan.collateral_total_value,
            'payment_history': sorted(loan.payments, key=lambda p: p.month),
        }
