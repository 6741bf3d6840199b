"""Pure loan arithmetic for the GoldLoan engine.

- Amortization (EMI, total interest, total payable)
- Collateral weight and value aggregation
- Due date derivation
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from dateutil.relativedelta import relativedelta

from goldloan.data_structures import CollateralItem, CollateralTotals, LoanTerms
from goldloan.exceptions import ValidationError
from goldloan.validation import is_number

TWO_PLACES = Decimal('0.01')


def round_money(value) -> float:
    """Round to 2 decimal places using round-half-up semantics."""
    return float(Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def calculate_emi(principal, annual_rate, term_months) -> LoanTerms:
    """Compute the equated monthly installment for a loan.

    Args:
        principal: Amount borrowed, must be positive.
        annual_rate: Annual interest rate in percent, must not be negative.
        term_months: Number of monthly installments, must be positive.

    Returns:
        LoanTerms with the EMI, total interest and total payable, each
        rounded to 2 decimal places.

    Raises:
        ValidationError: If any input is out of range.
    """
    errors = []
    if not is_number(principal) or principal <= 0:
        errors.append("Principal must be greater than zero")
    if not is_number(annual_rate) or annual_rate < 0:
        errors.append("Interest rate cannot be negative")
    if not is_number(term_months) or int(term_months) <= 0:
        errors.append("Loan term must be at least 1 month")
    if errors:
        raise ValidationError(errors)

    n = int(term_months)
    r = annual_rate / 100 / 12

    if r > 0:
        growth = (1 + r) ** n
        emi = round_money(principal * r * growth / (growth - 1))
    else:
        # Interest-free: spread the principal evenly
        emi = round_money(principal / n)

    total_interest = round_money(emi * n - principal)
    total_amount = round_money(principal + total_interest)
    return LoanTerms(monthly_emi=emi, total_interest=total_interest, total_amount=total_amount)


def aggregate_collateral(items: Iterable[CollateralItem]) -> CollateralTotals:
    """Sum weights and estimated values across collateral items.

    An empty list yields zeros.
    """
    net = 0.0
    gross = 0.0
    value = 0.0
    for item in items:
        net += item.net_weight or 0
        gross += item.gross_weight or 0
        value += item.estimated_value or 0
    return CollateralTotals(
        total_net_weight=round_money(net),
        total_gross_weight=round_money(gross),
        total_estimated_value=round_money(value),
    )


def calculate_due_date(application_date: datetime, term_months: int) -> datetime:
    """Application date plus the term in calendar months."""
    return application_date + relativedelta(months=int(term_months))
