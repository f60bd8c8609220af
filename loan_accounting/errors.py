"""Exception hierarchy for the loan accounting engine."""

from typing import Any, Dict, Optional


class LoanAccountingError(Exception):
    """Base exception for all loan accounting errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(LoanAccountingError, ValueError):
    """Raised for a non-positive amount, an amount above the balance, a bad period or date."""


class NotFoundError(LoanAccountingError, LookupError):
    """Raised when a loan or repayment id does not exist."""


class StateConflictError(LoanAccountingError):
    """Raised when the loan's status or terms do not allow the operation."""


class ComputationError(LoanAccountingError):
    """Raised when an internal invariant is violated while deriving loan state."""
