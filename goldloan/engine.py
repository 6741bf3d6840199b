"""Business logic facade for the GoldLoan engine.

This module provides the LoanEngine class which composes the focused
service classes in goldloan/services/ and converts their exceptions into
``Result`` objects, so callers always receive a typed outcome.

Service Classes:
    - LoanService: Loan record, payments and analytics
    - StatusWorkflow: Lifecycle transitions
    - ClosureService: Closure accounting
    - OutsourcingService: Outsource entities and assignments
    - DocumentService: Document references
    - DashboardService: Cached aggregate statistics
"""
import logging
import sqlite3

from goldloan.authorization import AccessPolicy
from goldloan.exceptions import (
    AlreadyOutsourcedError,
    ConcurrentModificationError,
    DatabaseError,
    ForbiddenError,
    GoldLoanError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from goldloan.result import ErrorType, Result
from goldloan.services import (
    ClosureService,
    DashboardService,
    DocumentService,
    LoanService,
    OutsourcingService,
    StatusWorkflow,
)

logger = logging.getLogger(__name__)

# Most specific first
ERROR_TYPES = (
    (ValidationError, ErrorType.VALIDATION),
    (NotFoundError, ErrorType.NOT_FOUND),
    (ForbiddenError, ErrorType.FORBIDDEN),
    (AlreadyOutsourcedError, ErrorType.ALREADY_OUTSOURCED),
    (InvalidStateError, ErrorType.INVALID_STATE),
    (ConcurrentModificationError, ErrorType.CONFLICT),
    (DatabaseError, ErrorType.DATABASE),
)


def error_type_for(error):
    for exc_class, error_type in ERROR_TYPES:
        if isinstance(error, exc_class):
            return error_type
    return None


class LoanEngine:
    """Entry point for every loan operation.

    Attributes:
        db: DatabaseManager instance for data persistence.
        policy: AccessPolicy shared by all services.
        loan_service, workflow, closure_service, outsourcing_service,
        document_service, dashboard_service: lazily created services.

    Usage:
        engine = LoanEngine(DatabaseManager(":memory:"))
        result = engine.create_loan(actor, loan)
        if not result:
            print(result.error_type, result.errors)
    """

    def __init__(self, db_manager, policy=None, cache=None):
        self.db = db_manager
        self.policy = policy or AccessPolicy()
        self._cache = cache
        self._loan_service = None
        self._workflow = None
        self._closure_service = None
        self._outsourcing_service = None
        self._document_service = None
        self._dashboard_service = None

    @property
    def loan_service(self):
        """Lazy-load LoanService instance."""
        if self._loan_service is None:
            self._loan_service = LoanService(self.db, self.policy)
        return self._loan_service

    @property
    def workflow(self):
        """Lazy-load StatusWorkflow instance."""
        if self._workflow is None:
            self._workflow = StatusWorkflow(self.db, self.policy)
        return self._workflow

    @property
    def closure_service(self):
        """Lazy-load ClosureService instance."""
        if self._closure_service is None:
            self._closure_service = ClosureService(self.db, self.policy)
        return self._closure_service

    @property
    def outsourcing_service(self):
        """Lazy-load OutsourcingService instance."""
        if self._outsourcing_service is None:
            self._outsourcing_service = OutsourcingService(self.db, self.policy)
        return self._outsourcing_service

    @property
    def document_service(self):
        """Lazy-load DocumentService instance."""
        if self._document_service is None:
            self._document_service = DocumentService(self.db, self.policy)
        return self._document_service

    @property
    def dashboard_service(self):
        """Lazy-load DashboardService instance."""
        if self._dashboard_service is None:
            self._dashboard_service = DashboardService(self.db, self.policy, self._cache)
        return self._dashboard_service

    def _run(self, operation, *args, invalidates=False, **kwargs):
        """Call a service method and wrap its outcome in a Result."""
        try:
            value = operation(*args, **kwargs)
        except GoldLoanError as e:
            errors = e.errors if isinstance(e, ValidationError) else None
            return Result.fail(e.message, error_type_for(e), errors)
        except sqlite3.Error as e:
            logger.exception("Database failure in %s", operation.__name__)
            return Result.fail(f"Database error: {e}", ErrorType.DATABASE)
        except Exception as e:
            logger.exception("Unexpected failure in %s", operation.__name__)
            return Result.fail(f"Unexpected error: {e}", ErrorType.INTERNAL)

        if invalidates:
            self.dashboard_service.invalidate()
        return Result.ok(value)

    # Loans
    def create_loan(self, actor, loan):
        return self._run(self.loan_service.create_loan, actor, loan, invalidates=True)

    def get_loan(self, loan_id, actor):
        return self._run(self.loan_service.get_loan, loan_id, actor)

    def list_loans(self, actor, **filters):
        return self._run(self.loan_service.list_loans, actor, **filters)

    def update_loan(self, loan_id, actor, changes):
        return self._run(self.loan_service.update_loan, loan_id, actor, changes, invalidates=True)

    def change_account(self, loan_id, actor, account):
        return self._run(self.loan_service.change_account, loan_id, actor, account, invalidates=True)

    def delete_loan(self, loan_id, actor):
        return self._run(self.loan_service.delete_loan, loan_id, actor, invalidates=True)

    def record_payment(self, loan_id, actor, month, amount, payment_method="cash", notes="",
                       payment_date=None):
        return self._run(self.loan_service.record_payment, loan_id, actor, month, amount,
                         payment_method=payment_method, notes=notes, payment_date=payment_date)

    def list_payments(self, loan_id, actor):
        return self._run(self.loan_service.list_payments, loan_id, actor)

    def list_payment_schedule(self, actor, status=None, start_date=None, end_date=None, search=None):
        return self._run(self.loan_service.list_payment_schedule, actor, status=status,
                         start_date=start_date, end_date=end_date, search=search)

    def get_loan_analytics(self, loan_id, actor):
        return self._run(self.loan_service.get_analytics, loan_id, actor)

    # Lifecycle
    def request_transition(self, loan_id, actor, target_status, notes=None):
        return self._run(self.workflow.request_transition, loan_id, actor, target_status,
                         notes=notes, invalidates=True)

    def mark_disbursed(self, loan_id, actor):
        return self._run(self.workflow.mark_disbursed, loan_id, actor)

    def close_loan(self, loan_id, actor, reason, notes=None, final_amount=None):
        return self._run(self.closure_service.close, loan_id, actor, reason,
                         notes=notes, final_amount=final_amount, invalidates=True)

    def update_closure_details(self, loan_id, actor, reason=None, notes=None, final_amount=None):
        return self._run(self.closure_service.update_closure_details, loan_id, actor,
                         reason=reason, notes=notes, final_amount=final_amount)

    # Outsourcing
    def assign_outsource(self, loan_id, entity_id, actor, custom_amount=None,
                         custom_interest_rate=None, notes=None):
        return self._run(self.outsourcing_service.assign, loan_id, entity_id, actor,
                         custom_amount=custom_amount, custom_interest_rate=custom_interest_rate,
                         notes=notes, invalidates=True)

    def release_outsource(self, loan_id, actor):
        return self._run(self.outsourcing_service.release, loan_id, actor, invalidates=True)

    def list_available_for_outsourcing(self, actor, account=None):
        return self._run(self.outsourcing_service.list_available, actor, account=account)

    def list_outsourced_loans(self, actor):
        return self._run(self.outsourcing_service.list_outsourced, actor)

    def create_outsource_entity(self, actor, entity):
        return self._run(self.outsourcing_service.create_entity, actor, entity)

    def update_outsource_entity(self, entity_id, actor, changes):
        return self._run(self.outsourcing_service.update_entity, entity_id, actor, changes)

    def deactivate_outsource_entity(self, entity_id, actor):
        return self._run(self.outsourcing_service.deactivate_entity, entity_id, actor)

    def get_outsource_entity(self, entity_id, actor):
        return self._run(self.outsourcing_service.get_entity, entity_id, actor)

    def list_outsource_entities(self, actor, status=None, entity_type=None, search=None):
        return self._run(self.outsourcing_service.list_entities, actor,
                         status=status, entity_type=entity_type, search=search)

    # Documents
    def attach_document(self, loan_id, actor, document):
        return self._run(self.document_service.attach, loan_id, actor, document)

    def verify_document(self, document_id, actor, is_verified=True, notes=None):
        return self._run(self.document_service.verify, document_id, actor,
                         is_verified=is_verified, notes=notes)

    def delete_document(self, document_id, actor):
        return self._run(self.document_service.delete, document_id, actor)

    def list_documents(self, loan_id, actor):
        return self._run(self.document_service.list_documents, loan_id, actor)

    def reconcile_documents(self):
        return self._run(self.document_service.reconcile)

    # Dashboard
    def get_dashboard_stats(self, actor, year=None):
        return self._run(self.dashboard_service.get_stats, actor, year=year)

    def clear_dashboard_cache(self, actor):
        return self._run(self.dashboard_service.clear_cache, actor)

    def get_payment_summary(self, actor, as_of=None):
        return self._run(self.dashboard_service.get_payment_summary, actor, as_of=as_of)

    def get_cache_stats(self, actor):
        return self._run(self.dashboard_service.cache_stats, actor)
