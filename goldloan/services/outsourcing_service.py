"""Outsourcing service for the GoldLoan engine.

This service handles delegation of loans to third-party entities:
- Outsource entity management
- Assignment of an approved loan and profit-margin computation
- Release of an assignment
- Read views of available and outsourced loans

The entity name copied onto a loan at assignment time is for display only.
It is not refreshed when the entity is renamed and no decision reads it.
"""
import logging
from dataclasses import replace
from datetime import datetime

from goldloan.authorization import AccessPolicy, Action
from goldloan.config import DEFAULT_OUTSOURCE_ACCOUNT, STATUS_APPROVED
from goldloan.exceptions import (
    AlreadyOutsourcedError,
    EntityNotFoundError,
    InvalidStateError,
    ValidationError,
)
from goldloan.services.loan_calculator import round_money
from goldloan.services.loan_service import ensure_not_closed, load_loan
from goldloan.validation import ensure_valid, is_number, validate_entity, validate_rate

logger = logging.getLogger(__name__)

PROTECTED_ENTITY_FIELDS = frozenset({'id', 'created_by', 'created_at', 'updated_at'})


def profit_margin(loan_rate, outsource_rate) -> float:
    """Rate spread kept by the lender; negative when the entity charges more."""
    return round_money(loan_rate - outsource_rate)


class OutsourcingService:
    """Assigns loans to outsource entities and manages those entities."""

    def __init__(self, db_manager, policy=None):
        self.db = db_manager
        self.policy = policy or AccessPolicy()

    def outsource_account(self):
        """Account bucket whose loans are offered for outsourcing."""
        return self.db.get_setting("outsource_account", DEFAULT_OUTSOURCE_ACCOUNT)

    def _load_entity(self, entity_id):
        entity = self.db.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    # Entities
    def create_entity(self, actor, entity):
        self.policy.check(actor, Action.ENTITY_MANAGE)
        ensure_valid(validate_entity(entity))

        now = datetime.now()
        entity.created_by = actor.id
        entity.created_at = now
        entity.updated_at = now
        self.db.insert_entity(entity)
        logger.info("Created outsource entity %s (%s)", entity.id, entity.name)
        return entity

    def update_entity(self, entity_id, actor, changes):
        self.policy.check(actor, Action.ENTITY_MANAGE)
        entity = self._load_entity(entity_id)

        protected = sorted(set(changes) & PROTECTED_ENTITY_FIELDS)
        if protected:
            raise ValidationError([f"Field '{name}' cannot be updated" for name in protected])

        updated = replace(entity, **changes)
        ensure_valid(validate_entity(updated))
        updated.updated_at = datetime.now()
        self.db.update_entity(updated)
        logger.info("Updated outsource entity %s", entity_id)
        return updated

    def deactivate_entity(self, entity_id, actor):
        """Soft delete: the entity stays referenced by past assignments."""
        self.policy.check(actor, Action.ENTITY_DEACTIVATE)
        entity = self._load_entity(entity_id)
        entity.status = "inactive"
        entity.updated_at = datetime.now()
        self.db.update_entity(entity)
        logger.info("Deactivated outsource entity %s", entity_id)
        return entity

    def get_entity(self, entity_id, actor):
        self.policy.check(actor, Action.OUTSOURCE_VIEW)
        return self._load_entity(entity_id)

    def list_entities(self, actor, status=None, entity_type=None, search=None):
        self.policy.check(actor, Action.OUTSOURCE_VIEW)
        return self.db.query_entities(status=status, entity_type=entity_type, search=search)

    # Assignments
    def assign(self, loan_id, entity_id, actor, custom_amount=None, custom_interest_rate=None, notes=None):
        """Assign a loan to an outsource entity.

        Args:
            loan_id: ID of the loan.
            entity_id: ID of the outsource entity.
            actor: Acting user, must be an admin or loan officer.
            custom_amount: Amount handed over; defaults to the loan amount.
            custom_interest_rate: Rate agreed with the entity; defaults to
                the entity's offered rate.
            notes: Free-text assignment notes.

        Returns:
            The updated LoanRecord. Its status is left unchanged.

        Raises:
            ForbiddenError: If the actor may not assign loans.
            LoanNotFoundError, EntityNotFoundError: For unknown ids.
            AlreadyOutsourcedError: If the loan already has an assignment.
            InvalidStateError: If the loan is not approved or the entity is
                inactive.
            ValidationError: If the custom rate is out of range or the amount
                exceeds what the entity accepts.
        """
        self.policy.check(actor, Action.OUTSOURCE_ASSIGN)
        loan = load_loan(self.db, loan_id)
        entity = self._load_entity(entity_id)

        if loan.is_outsourced:
            raise AlreadyOutsourcedError(loan.loan_code, loan.outsource_entity)
        if loan.status != STATUS_APPROVED:
            raise InvalidStateError(
                f"Only approved loans can be outsourced (status: {loan.status})",
                loan.loan_code, loan.status
            )
        if not entity.is_active:
            raise InvalidStateError(f"Outsource entity '{entity.name}' is inactive")

        amount = custom_amount if custom_amount is not None else loan.loan_amount
        rate = custom_interest_rate if custom_interest_rate is not None else entity.interest_rate

        errors = validate_rate(rate, "Outsource interest rate")
        if not is_number(amount):
            errors.append("Outsource amount must be a number")
        elif amount <= 0:
            errors.append("Outsource amount must be greater than zero")
        elif amount > entity.max_loan_amount:
            errors.append(
                f"Outsource amount {amount:,} exceeds the entity maximum of {entity.max_loan_amount:,}"
            )
        ensure_valid(errors)

        now = datetime.now()
        loan.outsourced_to = entity.id
        loan.outsource_entity = entity.name
        loan.outsource_date = now
        loan.outsource_amount = round_money(amount)
        loan.outsource_interest_rate = rate
        loan.profit_margin = profit_margin(loan.interest_rate, rate)
        loan.outsource_notes = notes
        loan.updated_at = now

        self.db.update_loan(loan)
        logger.info("Loan %s outsourced to %s at %s%% (margin %s)",
                    loan.loan_code, entity.name, rate, loan.profit_margin)
        if loan.profit_margin < 0:
            logger.warning("Loan %s outsourced at a negative margin of %s", loan.loan_code, loan.profit_margin)
        return loan

    def release(self, loan_id, actor):
        """Clear a loan's assignment so it can be outsourced again."""
        self.policy.check(actor, Action.OUTSOURCE_ASSIGN)
        loan = load_loan(self.db, loan_id)
        ensure_not_closed(loan, "release")
        if not loan.is_outsourced:
            raise InvalidStateError(
                f"Loan '{loan.loan_code}' is not outsourced", loan.loan_code, loan.status
            )

        previous = loan.outsource_entity
        loan.outsourced_to = None
        loan.outsource_entity = None
        loan.outsource_date = None
        loan.outsource_amount = None
        loan.outsource_interest_rate = None
        loan.profit_margin = None
        loan.outsource_notes = None
        loan.updated_at = datetime.now()

        self.db.update_loan(loan)
        logger.info("Released loan %s from %s", loan.loan_code, previous)
        return loan

    def list_available(self, actor, account=None):
        """Approved loans in the outsourcing bucket that have no assignment."""
        self.policy.check(actor, Action.OUTSOURCE_VIEW)
        return self.db.query_loans(
            status=STATUS_APPROVED,
            account=account or self.outsource_account(),
            outsourced=False,
        )

    def list_outsourced(self, actor):
        self.policy.check(actor, Action.OUTSOURCE_VIEW)
        return self.db.query_loans(outsourced=True)
