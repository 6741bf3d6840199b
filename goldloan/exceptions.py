"""Custom exceptions for the GoldLoan engine."""


class GoldLoanError(Exception):
    """Base exception for all GoldLoan errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class DatabaseError(GoldLoanError):
    """Raised when a database operation fails."""
    pass


class TransactionError(DatabaseError):
    """Raised when a database transaction fails to complete."""
    pass


class ValidationError(GoldLoanError):
    """Raised when input fails field-level validation.

    Attributes:
        errors: List of human-readable messages, one per offending field.
    """

    def __init__(self, errors, message: str = "Validation failed"):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(message, {'errors': self.errors})


class NotFoundError(GoldLoanError):
    """Raised when an identifier does not resolve to a record."""
    pass


class LoanNotFoundError(NotFoundError):
    """Raised when a loan cannot be found."""

    def __init__(self, loan_id=None):
        details = {}
        message = "Loan not found"
        if loan_id is not None:
            details['loan_id'] = loan_id
            message = f"Loan '{loan_id}' not found"
        super().__init__(message, details)


class EntityNotFoundError(NotFoundError):
    """Raised when an outsource entity cannot be found."""

    def __init__(self, entity_id=None):
        details = {}
        message = "Outsource entity not found"
        if entity_id is not None:
            details['entity_id'] = entity_id
            message = f"Outsource entity {entity_id} not found"
        super().__init__(message, details)


class DocumentNotFoundError(NotFoundError):
    """Raised when a document cannot be found."""

    def __init__(self, document_id=None):
        details = {}
        message = "Document not found"
        if document_id is not None:
            details['document_id'] = document_id
            message = f"Document {document_id} not found"
        super().__init__(message, details)


class ForbiddenError(GoldLoanError):
    """Raised when the acting user lacks the role or ownership for an action."""

    def __init__(self, action: str, role: str = None, reason: str = None):
        details = {'action': action}
        if role:
            details['role'] = role
        message = reason or f"Insufficient permissions for '{action}'"
        super().__init__(message, details)


class InvalidStateError(GoldLoanError):
    """Raised when an operation is not legal from the loan's current status."""

    def __init__(self, message: str, loan_code: str = None, status: str = None):
        details = {}
        if loan_code:
            details['loan_code'] = loan_code
        if status:
            details['status'] = status
        super().__init__(message, details)


class AlreadyOutsourcedError(GoldLoanError):
    """Raised when assigning a loan that is already outsourced."""

    def __init__(self, loan_code: str, entity_name: str = None):
        details = {'loan_code': loan_code}
        if entity_name:
            details['outsource_entity'] = entity_name
        message = f"Loan '{loan_code}' is already outsourced"
        super().__init__(message, details)


class ConcurrentModificationError(DatabaseError):
    """Raised when a loan changed between read and write."""

    def __init__(self, loan_id, expected_version: int):
        details = {
            'loan_id': loan_id,
            'expected_version': expected_version
        }
        message = f"Loan {loan_id} was modified by another request"
        super().__init__(message, details)
