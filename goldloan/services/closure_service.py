"""Closure accounting for GoldLoan loans."""
import logging
from datetime import datetime

from goldloan.authorization import AccessPolicy, Action
from goldloan.config import CLOSURE_REASONS, MAX_NOTES_LENGTH, STATUS_APPROVED, STATUS_CLOSED
from goldloan.exceptions import InvalidStateError, ValidationError
from goldloan.services.loan_calculator import round_money
from goldloan.services.loan_service import load_loan
from goldloan.validation import is_number

logger = logging.getLogger(__name__)


def _closure_errors(reason, notes, final_amount):
    errors = []
    if not reason:
        errors.append("Closure reason is required")
    elif reason not in CLOSURE_REASONS:
        errors.append(f"Closure reason must be one of {', '.join(CLOSURE_REASONS)}")
    if notes and len(notes) > MAX_NOTES_LENGTH:
        errors.append(f"Closure notes cannot exceed {MAX_NOTES_LENGTH} characters")
    if final_amount is not None and not is_number(final_amount):
        errors.append("Final amount must be a number")
    elif final_amount is not None and final_amount < 0:
        errors.append("Final amount cannot be negative")
    return errors


def outstanding_amount(loan) -> float:
    """Total payable less everything recorded as paid, floored at zero."""
    return round_money(max(0.0, loan.total_amount - sum(p.amount for p in loan.payments)))


class ClosureService:
    """Terminal transition that settles a loan."""

    def __init__(self, db_manager, policy=None):
        self.db = db_manager
        self.policy = policy or AccessPolicy()

    def close(self, loan_id, actor, reason, notes=None, final_amount=None):
        """Close an approved loan.

        Args:
            loan_id: ID of the loan.
            actor: Acting user, must be an admin or loan officer.
            reason: One of ``CLOSURE_REASONS``.
            notes: Optional closure notes.
            final_amount: Settled amount; defaults to the outstanding amount.

        Returns:
            The closed LoanRecord.

        Raises:
            ForbiddenError: If the actor may not close loans.
            ValidationError: If the reason is missing or unknown, or the final
                amount is negative.
            InvalidStateError: If the loan is not approved.
        """
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.LOAN_CLOSE, loan)

        errors = _closure_errors(reason, notes, final_amount)
        if errors:
            raise ValidationError(errors)

        if loan.status == STATUS_CLOSED:
            raise InvalidStateError(
                f"Loan '{loan.loan_code}' is already closed", loan.loan_code, loan.status
            )
        if loan.status != STATUS_APPROVED:
            raise InvalidStateError(
                f"Cannot close loan with status '{loan.status}'. Loan must be approved first.",
                loan.loan_code, loan.status
            )

        now = datetime.now()
        loan.status = STATUS_CLOSED
        loan.status_changed_at = now
        loan.status_changed_by = actor.id
        loan.closed_at = now
        loan.closed_by = actor.id
        loan.closure_reason = reason
        loan.closure_notes = notes or ""
        loan.final_amount = round_money(final_amount) if final_amount is not None else outstanding_amount(loan)
        loan.updated_at = now

        self.db.update_loan(loan)
        logger.info("Closed loan %s (%s) final amount %s by actor %s",
                    loan.loan_code, reason, loan.final_amount, actor.id)
        return loan

    def update_closure_details(self, loan_id, actor, reason=None, notes=None, final_amount=None):
        """Amend the closure metadata of a closed loan.

        Only the fields passed are changed; nothing else about the loan can
        be modified after closure.
        """
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.LOAN_CLOSE, loan)
        if loan.status != STATUS_CLOSED:
            raise InvalidStateError(
                f"Loan '{loan.loan_code}' is not closed", loan.loan_code, loan.status
            )

        errors = _closure_errors(reason or loan.closure_reason, notes, final_amount)
        if errors:
            raise ValidationError(errors)

        if reason is not None:
            loan.closure_reason = reason
        if notes is not None:
            loan.closure_notes = notes
        if final_amount is not None:
            loan.final_amount = round_money(final_amount)
        loan.updated_at = datetime.now()

        self.db.update_loan(loan)
        logger.info("Updated closure details of loan %s", loan.loan_code)
        return loan
