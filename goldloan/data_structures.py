from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List, Dict, Any, Optional

from dateutil.relativedelta import relativedelta

from goldloan.config import (
    DEFAULT_ACCOUNT,
    DEFAULT_COUNTRY,
    DEFAULT_INTEREST_RATE,
    DEFAULT_LOAN_TERM,
    DEFAULT_PURITY,
    STATUS_APPROVED,
    STATUS_CLOSED,
)


@dataclass
class Actor:
    """The authenticated user on whose behalf an operation runs."""
    id: int
    role: str
    name: str = ""


@dataclass
class Address:
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = DEFAULT_COUNTRY


@dataclass
class Picture:
    """Reference to an image held by the external document store."""
    filename: str
    original_name: str = ""
    mime_type: str = ""
    size: int = 0
    uploaded_at: Optional[datetime] = None


@dataclass
class CollateralItem:
    name: str
    net_weight: float
    gross_weight: float
    purity: str
    estimated_value: float
    item_type: str = "gold"
    description: str = ""
    pictures: List[Picture] = field(default_factory=list)
    id: Optional[int] = None


@dataclass
class Payment:
    month: int
    amount: float
    payment_date: Optional[datetime] = None
    payment_method: str = "cash"
    received_by: Optional[int] = None
    notes: str = ""
    id: Optional[int] = None


@dataclass
class LoanTerms:
    """Output of the amortization calculator."""
    monthly_emi: float
    total_interest: float
    total_amount: float


@dataclass
class CollateralTotals:
    """Output of the collateral aggregator."""
    total_net_weight: float
    total_gross_weight: float
    total_estimated_value: float


@dataclass
class LoanRecord:
    """Aggregate holding applicant data, terms, collateral and history.

    Derived fields (EMI figures, weight totals, due date) are written by
    ``LoanService`` whenever the inputs they depend on change; they are
    stored, not computed on access.
    """
    applicant_name: str
    applicant_phone: str
    loan_amount: float
    net_weight: float
    gross_weight: float
    submitted_by: Optional[int] = None
    applicant_email: Optional[str] = None
    applicant_address: Optional[Address] = None
    gold_purity: str = DEFAULT_PURITY
    interest_rate: float = DEFAULT_INTEREST_RATE
    loan_term: int = DEFAULT_LOAN_TERM
    account: str = DEFAULT_ACCOUNT
    notes: str = ""
    id: Optional[int] = None
    loan_code: Optional[str] = None
    status: Optional[str] = None
    application_date: Optional[datetime] = None
    approval_date: Optional[datetime] = None
    approved_by: Optional[int] = None
    disbursement_date: Optional[datetime] = None
    status_changed_at: Optional[datetime] = None
    status_changed_by: Optional[int] = None
    due_date: Optional[datetime] = None

    monthly_emi: float = 0.0
    total_interest: float = 0.0
    total_amount: float = 0.0
    total_net_weight: float = 0.0
    total_gross_weight: float = 0.0

    collateral_items: List[CollateralItem] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)
    documents: List[int] = field(default_factory=list)

    outsourced_to: Optional[int] = None
    outsource_entity: Optional[str] = None
    outsource_date: Optional[datetime] = None
    outsource_amount: Optional[float] = None
    outsource_interest_rate: Optional[float] = None
    profit_margin: Optional[float] = None
    outsource_notes: Optional[str] = None

    closed_at: Optional[datetime] = None
    closed_by: Optional[int] = None
    closure_reason: Optional[str] = None
    closure_notes: Optional[str] = None
    final_amount: Optional[float] = None

    is_active: bool = True
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_closed(self) -> bool:
        return self.status == STATUS_CLOSED

    @property
    def is_approved(self) -> bool:
        return self.status == STATUS_APPROVED

    @property
    def is_outsourced(self) -> bool:
        return self.outsourced_to is not None

    @property
    def total_paid(self) -> float:
        return round(sum(p.amount for p in self.payments), 2)

    @property
    def remaining_amount(self) -> float:
        """Total payable less recorded payments, never negative."""
        return round(max(0.0, (self.total_amount or 0.0) - self.total_paid), 2)

    @property
    def next_payment_due(self) -> int:
        """Installment number following the latest recorded month."""
        if not self.payments:
            return 1
        return max(p.month for p in self.payments) + 1

    @property
    def payment_status(self) -> str:
        if not self.payments:
            return "no_payments"
        expected = self.monthly_emi * len(self.payments)
        if self.total_paid >= expected:
            return "up_to_date"
        if self.total_paid > 0:
            return "partial"
        return "overdue"

    @property
    def collateral_total_value(self) -> float:
        return round(sum(item.estimated_value for item in self.collateral_items), 2)

    def remaining_months(self, as_of: datetime = None) -> int:
        """Whole calendar months left until the due date, partial months counted."""
        if self.due_date is None:
            return self.loan_term
        as_of = as_of or datetime.now()
        if as_of >= self.due_date:
            return 0
        delta = relativedelta(self.due_date, as_of)
        months = delta.years * 12 + delta.months
        if delta.days or delta.hours or delta.minutes or delta.seconds:
            months += 1
        return months

    def loan_age_days(self, as_of: datetime = None) -> int:
        if self.application_date is None:
            return 0
        as_of = as_of or datetime.now()
        return abs((as_of - self.application_date).days)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for a JSON boundary, including the read-only analytics."""
        data = _isoformat(asdict(self))
        data.update({
            'total_paid': self.total_paid,
            'remaining_amount': self.remaining_amount,
            'next_payment_due': self.next_payment_due,
            'payment_status': self.payment_status,
            'collateral_total_value': self.collateral_total_value,
        })
        return data


@dataclass
class OutsourceEntity:
    name: str
    contact_person: str
    phone: str
    email: str
    address: str
    interest_rate: float
    max_loan_amount: float
    created_by: Optional[int] = None
    type: str = "organization"
    status: str = "active"
    notes: str = ""
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.contact_person if self.type == "individual" else self.name

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> Dict[str, Any]:
        data = _isoformat(asdict(self))
        data['display_name'] = self.display_name
        return data


@dataclass
class Document:
    """Metadata for a file held by the external document store."""
    filename: str
    original_name: str
    file_path: str
    file_size: int
    mime_type: str
    document_type: str
    loan_id: Optional[int] = None
    uploaded_by: Optional[int] = None
    description: str = ""
    is_verified: bool = False
    verified_by: Optional[int] = None
    verification_date: Optional[datetime] = None
    verification_notes: str = ""
    is_active: bool = True
    tags: List[str] = field(default_factory=list)
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def file_extension(self) -> str:
        return self.original_name.rsplit('.', 1)[-1].lower()

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith('image/')

    def to_dict(self) -> Dict[str, Any]:
        return _isoformat(asdict(self))


def _isoformat(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _isoformat(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_isoformat(v) for v in value]
    return value
