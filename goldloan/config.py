"""Centralized configuration for the GoldLoan engine.

This module contains the bounds, enumerations and business rule constants
used across the loan services. Values that operators may need to change at
runtime are also stored in the ``settings`` table and looked up through
``DatabaseManager.get_setting``.
"""

# =============================================================================
# LOAN BOUNDS
# =============================================================================

MIN_LOAN_AMOUNT = 1000
MAX_LOAN_AMOUNT = 10000000

# Grams
MIN_WEIGHT = 0.1
MAX_WEIGHT = 10000

# Annual percentage
MIN_INTEREST_RATE = 0.1
MAX_INTEREST_RATE = 36

MIN_LOAN_TERM = 1
MAX_LOAN_TERM = 60

MIN_COLLATERAL_VALUE = 100

MAX_NOTES_LENGTH = 1000
MAX_NAME_LENGTH = 100

# =============================================================================
# ENUMERATIONS
# =============================================================================

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_UNDER_REVIEW = "under_review"
STATUS_REJECTED = "rejected"
STATUS_CLOSED = "closed"

LOAN_STATUSES = (
    STATUS_PENDING,
    STATUS_APPROVED,
    STATUS_UNDER_REVIEW,
    STATUS_REJECTED,
    STATUS_CLOSED,
)

GOLD_PURITIES = ("18K", "22K", "24K", "91.6%", "91.7%", "99.9%")

ACCOUNTS = ("account1", "account2", "account3")

COLLATERAL_TYPES = ("gold", "silver", "diamond", "other")

PAYMENT_METHODS = ("cash", "bank_transfer", "cheque", "online")

CLOSURE_REASONS = ("fully_paid", "settlement", "write_off", "collateral_auction", "other")

ENTITY_TYPES = ("organization", "individual")

ENTITY_STATUSES = ("active", "inactive")

DOCUMENT_TYPES = (
    "identity_proof",
    "address_proof",
    "income_proof",
    "gold_images",
    "loan_agreement",
    "bank_statement",
    "other",
)

ROLE_ADMIN = "admin"
ROLE_LOAN_OFFICER = "loan_officer"
ROLE_EMPLOYEE = "employee"

ROLES = (ROLE_ADMIN, ROLE_LOAN_OFFICER, ROLE_EMPLOYEE)

# =============================================================================
# DEFAULTS
# =============================================================================

# New submissions skip review unless the "initial_status" setting says otherwise
DEFAULT_INITIAL_STATUS = STATUS_APPROVED

# Statuses a new submission may start in
INITIAL_STATUSES = (STATUS_PENDING, STATUS_UNDER_REVIEW, STATUS_APPROVED)

DEFAULT_INTEREST_RATE = 12.0
DEFAULT_LOAN_TERM = 12
DEFAULT_PURITY = "22K"
DEFAULT_ACCOUNT = "account1"
DEFAULT_COUNTRY = "India"

# Only this bucket is offered for outsourcing unless "outsource_account" is set
DEFAULT_OUTSOURCE_ACCOUNT = "account3"

LOAN_CODE_PREFIX = "GL"
LOAN_CODE_ATTEMPTS = 10

# =============================================================================
# FORMATS
# =============================================================================

# Microsecond precision: a reloaded record matches the one written
DATETIME_FORMAT_STORAGE = "%Y-%m-%d %H:%M:%S.%f"

# =============================================================================
# CACHE
# =============================================================================

# Seconds
DASHBOARD_CACHE_TTL = 300
