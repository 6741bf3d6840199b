"""Services package for GoldLoan business logic.

Each service owns one concern of the loan lifecycle; ``LoanEngine`` in
``goldloan.engine`` composes them behind a single facade.
"""

from .loan_calculator import calculate_emi, aggregate_collateral, calculate_due_date, round_money
from .loan_service import LoanService
from .status_workflow import StatusWorkflow
from .outsourcing_service import OutsourcingService
from .closure_service import ClosureService
from .document_service import DocumentService
from .dashboard_service import DashboardService

__all__ = ['calculate_emi', 'aggregate_collateral', 'calculate_due_date', 'round_money',
           'LoanService', 'StatusWorkflow', 'OutsourcingService', 'ClosureService',
           'DocumentService', 'DashboardService']
