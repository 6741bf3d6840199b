"""Result pattern for consistent return types in the GoldLoan engine.

Services raise exceptions from ``goldloan.exceptions``; the ``LoanEngine``
facade converts them into ``Result`` objects so that callers always receive
a typed success or failure instead of an exception.
"""
from dataclasses import dataclass, field
from typing import List, Optional, TypeVar, Generic

T = TypeVar('T')


# Common error types for consistency
class ErrorType:
    """Standard error type constants."""
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    INVALID_STATE = "INVALID_STATE"
    ALREADY_OUTSOURCED = "ALREADY_OUTSOURCED"
    CONFLICT = "CONFLICT"
    DATABASE = "DATABASE"
    INTERNAL = "INTERNAL"


# Status codes used by an HTTP boundary layer
HTTP_STATUS = {
    ErrorType.VALIDATION: 400,
    ErrorType.FORBIDDEN: 403,
    ErrorType.NOT_FOUND: 404,
    ErrorType.INVALID_STATE: 409,
    ErrorType.ALREADY_OUTSOURCED: 409,
    ErrorType.CONFLICT: 409,
    ErrorType.DATABASE: 500,
    ErrorType.INTERNAL: 500,
}


@dataclass
class Result(Generic[T]):
    """Represents the outcome of an operation.

    Attributes:
        success: Whether the operation succeeded.
        value: The return value on success, None on failure.
        error: Error message on failure, None on success.
        error_type: Category of error (one of ``ErrorType``).
        errors: Field-level messages for validation failures.

    Usage:
        result = engine.close_loan(loan_id, actor, "fully_paid")
        if result.success:
            print(result.value.final_amount)
        else:
            print(result.error_type, result.error)
    """
    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, value: T = None) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: str, error_type: str = None, errors: List[str] = None) -> 'Result[T]':
        """Create a failure result.

        Args:
            error: Error message describing what went wrong.
            error_type: Optional error category for programmatic handling.
            errors: Optional list of field-level messages.

        Returns:
            A Result with success=False and error details.
        """
        return cls(success=False, error=error, error_type=error_type, errors=list(errors or []))

    def __bool__(self) -> bool:
        return self.success

    def unwrap(self) -> T:
        """Get the value, raising an exception if the operation failed.

        Raises:
            ValueError: If the operation failed.
        """
        if not self.success:
            raise ValueError(f"Result unwrap failed: {self.error}")
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get the value or a default if the operation failed."""
        return self.value if self.success else default

    def to_response(self, success_status: int = 200) -> tuple:
        """Map the result to an ``(http_status, body)`` pair.

        Successful values exposing ``to_dict`` are serialized; lists of such
        values are serialized element-wise.
        """
        if self.success:
            return success_status, {'data': _serialize(self.value)}

        body = {'message': self.error, 'error_type': self.error_type}
        if self.errors:
            body['errors'] = self.errors
        return HTTP_STATUS.get(self.error_type, 500), body


def _serialize(value):
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value
