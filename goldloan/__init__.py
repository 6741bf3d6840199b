"""GoldLoan: loan origination and servicing engine for gold-collateralized loans."""

from .database import DatabaseManager
from .engine import LoanEngine

__all__ = ['DatabaseManager', 'LoanEngine']
