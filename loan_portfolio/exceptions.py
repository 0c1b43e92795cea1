"""Exception hierarchy for the loan portfolio service."""


class LoanPortfolioError(Exception):
    """Base exception for all loan portfolio errors."""


class ValidationError(LoanPortfolioError):
    """Raised when input is malformed or violates a business rule."""


class InvalidLoanStateError(ValidationError):
    """Raised when a loan is in the wrong status for the operation."""


class CustomerHasActiveLoansError(ValidationError):
    """Raised when deleting a customer that still has active loans."""


class NotFoundError(LoanPortfolioError):
    """Raised when a customer, loan or installment does not exist."""


class AuthorizationError(LoanPortfolioError):
    """Raised when the caller does not own the requested resource."""


class ConcurrencyError(LoanPortfolioError):
    """Raised when a write is based on a stale version of a document."""


class StoreError(LoanPortfolioError):
    """Raised when the underlying document store fails."""
