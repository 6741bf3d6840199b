"""Field-level validation for GoldLoan records.

Each ``validate_*`` function returns a list of messages, empty when the
record is valid. ``ensure_valid`` raises ``ValidationError`` with the
collected list.
"""
import re

from goldloan.config import (
    ACCOUNTS,
    COLLATERAL_TYPES,
    DOCUMENT_TYPES,
    ENTITY_STATUSES,
    ENTITY_TYPES,
    GOLD_PURITIES,
    MAX_INTEREST_RATE,
    MAX_LOAN_AMOUNT,
    MAX_LOAN_TERM,
    MAX_NAME_LENGTH,
    MAX_NOTES_LENGTH,
    MAX_WEIGHT,
    MIN_COLLATERAL_VALUE,
    MIN_INTEREST_RATE,
    MIN_LOAN_AMOUNT,
    MIN_LOAN_TERM,
    MIN_WEIGHT,
    PAYMENT_METHODS,
)
from goldloan.exceptions import ValidationError

PHONE_PATTERN = re.compile(r'^\+?[1-9]\d{0,15}$')
EMAIL_PATTERN = re.compile(r'^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$')


def ensure_valid(errors):
    if errors:
        raise ValidationError(errors)


def is_number(value) -> bool:
    """True for int and float values, bools excluded."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _range_errors(value, label, low, high, message):
    if not is_number(value):
        return [f"{label} must be a number"]
    if not low <= value <= high:
        return [message]
    return []


def validate_rate(rate, label="Interest rate"):
    return _range_errors(
        rate, label, MIN_INTEREST_RATE, MAX_INTEREST_RATE,
        f"{label} must be between {MIN_INTEREST_RATE}% and {MAX_INTEREST_RATE}%"
    )


def _weight_errors(net_weight, gross_weight):
    errors = _range_errors(
        net_weight, "Net weight", MIN_WEIGHT, MAX_WEIGHT,
        f"Net weight must be between {MIN_WEIGHT} and {MAX_WEIGHT:,} grams"
    )
    errors.extend(_range_errors(
        gross_weight, "Gross weight", MIN_WEIGHT, MAX_WEIGHT,
        f"Gross weight must be between {MIN_WEIGHT} and {MAX_WEIGHT:,} grams"
    ))
    if not errors and gross_weight < net_weight:
        errors.append("Gross weight cannot be less than net weight")
    return errors


def validate_loan(loan):
    """Validate applicant data, terms and collateral of a LoanRecord."""
    errors = []

    name = (loan.applicant_name or "").strip()
    if not name:
        errors.append("Applicant name is required")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"Applicant name cannot exceed {MAX_NAME_LENGTH} characters")

    if not loan.applicant_phone:
        errors.append("Phone number is required")
    elif not PHONE_PATTERN.match(str(loan.applicant_phone)):
        errors.append("Please enter a valid phone number")

    if loan.applicant_email and not EMAIL_PATTERN.match(str(loan.applicant_email)):
        errors.append("Please enter a valid email")

    errors.extend(_range_errors(
        loan.loan_amount, "Loan amount", MIN_LOAN_AMOUNT, MAX_LOAN_AMOUNT,
        f"Loan amount must be between {MIN_LOAN_AMOUNT:,} and {MAX_LOAN_AMOUNT:,}"
    ))
    errors.extend(_weight_errors(loan.net_weight, loan.gross_weight))

    if loan.gold_purity not in GOLD_PURITIES:
        errors.append(f"Gold purity must be one of {', '.join(GOLD_PURITIES)}")

    errors.extend(validate_rate(loan.interest_rate))

    if not isinstance(loan.loan_term, int) or isinstance(loan.loan_term, bool):
        errors.append("Loan term must be a whole number of months")
    elif not MIN_LOAN_TERM <= loan.loan_term <= MAX_LOAN_TERM:
        errors.append(f"Loan term must be between {MIN_LOAN_TERM} and {MAX_LOAN_TERM} months")

    if loan.account not in ACCOUNTS:
        errors.append(f"Account must be one of {', '.join(ACCOUNTS)}")

    if loan.notes and len(loan.notes) > MAX_NOTES_LENGTH:
        errors.append(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters")

    for index, item in enumerate(loan.collateral_items, start=1):
        errors.extend(f"Item {index}: {msg}" for msg in validate_collateral_item(item))

    weights = [(item.net_weight, item.gross_weight) for item in loan.collateral_items]
    if weights and all(is_number(net) and is_number(gross) for net, gross in weights):
        if sum(gross for _, gross in weights) > MAX_WEIGHT:
            errors.append(f"Total collateral weight cannot exceed {MAX_WEIGHT:,} grams")

    return errors


def validate_collateral_item(item):
    errors = []
    if not (item.name or "").strip():
        errors.append("Item name is required")
    if item.item_type not in COLLATERAL_TYPES:
        errors.append(f"Item type must be one of {', '.join(COLLATERAL_TYPES)}")
    errors.extend(_weight_errors(item.net_weight, item.gross_weight))
    if not item.purity:
        errors.append("Purity is required")
    elif item.item_type == "gold" and item.purity not in GOLD_PURITIES:
        errors.append(f"Gold purity must be one of {', '.join(GOLD_PURITIES)}")
    if not is_number(item.estimated_value):
        errors.append("Value must be a number")
    elif item.estimated_value < MIN_COLLATERAL_VALUE:
        errors.append(f"Value must be at least {MIN_COLLATERAL_VALUE}")
    return errors


def validate_payment(payment, loan):
    errors = []
    if not isinstance(payment.month, int) or isinstance(payment.month, bool):
        errors.append("Month must be a whole number")
    elif not 1 <= payment.month <= loan.loan_term:
        errors.append(f"Month must be between 1 and {loan.loan_term}")
    elif any(p.month == payment.month for p in loan.payments):
        errors.append("Payment for this month already recorded")
    if not is_number(payment.amount):
        errors.append("Amount must be a number")
    elif payment.amount < 0:
        errors.append("Amount cannot be negative")
    if payment.payment_method not in PAYMENT_METHODS:
        errors.append(f"Payment method must be one of {', '.join(PAYMENT_METHODS)}")
    return errors


def validate_entity(entity):
    errors = []
    name = (entity.name or "").strip()
    if not name:
        errors.append("Entity name is required")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"Entity name cannot exceed {MAX_NAME_LENGTH} characters")
    if entity.type not in ENTITY_TYPES:
        errors.append(f"Entity type must be one of {', '.join(ENTITY_TYPES)}")
    if not (entity.contact_person or "").strip():
        errors.append("Contact person is required")
    if not entity.phone or not PHONE_PATTERN.match(str(entity.phone)):
        errors.append("Please enter a valid phone number")
    if not entity.email or not EMAIL_PATTERN.match(str(entity.email)):
        errors.append("Please enter a valid email")
    if not (entity.address or "").strip():
        errors.append("Address is required")
    errors.extend(validate_rate(entity.interest_rate))
    errors.extend(_range_errors(
        entity.max_loan_amount, "Maximum loan amount", MIN_LOAN_AMOUNT, MAX_LOAN_AMOUNT,
        f"Maximum loan amount must be between {MIN_LOAN_AMOUNT:,} and {MAX_LOAN_AMOUNT:,}"
    ))
    if entity.status not in ENTITY_STATUSES:
        errors.append(f"Status must be one of {', '.join(ENTITY_STATUSES)}")
    return errors

def validate_document(document):
    errors = []
    if not document.filename:
        errors.append("Filename is required")
    if not document.original_name:
        errors.append("Original filename is required")
    if not document.file_path:
        errors.append("File path is required")
    if not is_number(document.file_size) or document.file_size < 1:
        errors.append("File size must be at least 1 byte")
    if not document.mime_type:
        errors.append("MIME type is required")
    if document.document_type not in DOCUMENT_TYPES:
        errors.append(f"Document type must be one of {', '.join(DOCUMENT_TYPES)}")
    return errors
