"""Status workflow for GoldLoan loans.

Lifecycle::

    pending      -> approved | rejected | under_review
    under_review -> approved | rejected
    approved     -> closed   (closure service only)

``rejected`` and ``closed`` are terminal.
"""
import logging
from datetime import datetime

from goldloan.authorization import AccessPolicy, Action
from goldloan.config import (
    LOAN_STATUSES,
    STATUS_APPROVED,
    STATUS_CLOSED,
    STATUS_PENDING,
    STATUS_REJECTED,
    STATUS_UNDER_REVIEW,
)
from goldloan.exceptions import InvalidStateError, ValidationError
from goldloan.services.loan_service import ensure_not_closed, load_loan

logger = logging.getLogger(__name__)

TRANSITIONS = {
    STATUS_PENDING: frozenset({STATUS_APPROVED, STATUS_REJECTED, STATUS_UNDER_REVIEW}),
    STATUS_UNDER_REVIEW: frozenset({STATUS_APPROVED, STATUS_REJECTED}),
    STATUS_APPROVED: frozenset({STATUS_CLOSED}),
    STATUS_REJECTED: frozenset(),
    STATUS_CLOSED: frozenset(),
}


def allowed_targets(status):
    """Statuses reachable from ``status`` in one step."""
    return TRANSITIONS.get(status, frozenset())


def can_transition(current, target) -> bool:
    return target in allowed_targets(current)


class StatusWorkflow:
    """Validates and applies lifecycle transitions on a loan."""

    def __init__(self, db_manager, policy=None):
        self.db = db_manager
        self.policy = policy or AccessPolicy()

    def request_transition(self, loan_id, actor, target_status, notes=None):
        """Move a loan to ``target_status``.

        Args:
            loan_id: ID of the loan.
            actor: Acting user, must be an admin or loan officer.
            target_status: Desired status.
            notes: Optional text replacing the loan notes.

        Returns:
            The updated LoanRecord.

        Raises:
            ForbiddenError: If the actor may not change statuses.
            ValidationError: If ``target_status`` is not a known status.
            InvalidStateError: If the loan is closed, the target is ``closed``,
                or the edge is not part of the lifecycle.
        """
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.LOAN_TRANSITION, loan)

        ensure_not_closed(loan, "change the status of")
        if target_status not in LOAN_STATUSES:
            raise ValidationError(f"Unknown status '{target_status}'")
        if target_status == STATUS_CLOSED:
            raise InvalidStateError(
                "Closing a loan requires a closure reason; use the closure operation",
                loan.loan_code, loan.status
            )
        if not can_transition(loan.status, target_status):
            raise InvalidStateError(
                f"Cannot move loan '{loan.loan_code}' from '{loan.status}' to '{target_status}'",
                loan.loan_code, loan.status
            )

        previous = loan.status
        now = datetime.now()
        loan.status = target_status
        loan.status_changed_at = now
        loan.status_changed_by = actor.id
        if target_status == STATUS_APPROVED:
            loan.approval_date = now
            loan.approved_by = actor.id
        if notes:
            loan.notes = notes
        loan.updated_at = now

        self.db.update_loan(loan)
        logger.info("Loan %s: %s -> %s by actor %s", loan.loan_code, previous, target_status, actor.id)
        return loan

    def mark_disbursed(self, loan_id, actor):
        """Record when an approved loan's funds were released.

        Disbursement is bookkeeping only; the status stays ``approved``.
        """
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.LOAN_TRANSITION, loan)
        if loan.status != STATUS_APPROVED:
            raise InvalidStateError(
                f"Only approved loans can be disbursed (status: {loan.status})",
                loan.loan_code, loan.status
            )
        if loan.disbursement_date is not None:
            raise InvalidStateError(
                f"Loan '{loan.loan_code}' was already disbursed", loan.loan_code, loan.status
            )

        loan.disbursement_date = datetime.now()
        loan.updated_at = loan.disbursement_date
        self.db.update_loan(loan)
        logger.info("Loan %s disbursed by actor %s", loan.loan_code, actor.id)
        return loan
