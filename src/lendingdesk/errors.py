"""Exception classes raised by the lending service.

Every error has a stable ``kind`` that callers can branch on, a rendered
``message`` and a ``details`` dict with the identifiers involved.
"""

from typing import Optional


class LendingError(Exception):
    """Base exception for all lending errors."""

    kind = "lending_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotEligibleError(LendingError):
    """Raised when a patron is not allowed to borrow."""

    kind = "not_eligible"


class BorrowLimitError(NotEligibleError):
    """Raised when a patron already holds the maximum number of open loans."""


class OutOfStockError(LendingError):
    """Raised when an item has no copies left to lend."""

    kind = "out_of_stock"


class AlreadyReturnedError(LendingError):
    """Raised when returning a loan that is not open."""

    kind = "already_returned"


class NotFoundError(LendingError):
    """Raised when a referenced patron, item or loan does not exist."""

    kind = "not_found"


class PatronNotFoundError(NotFoundError, NotEligibleError):
    """Raised when borrowing for a patron that does not exist."""

    kind = "not_found"


class ItemNotFoundError(NotFoundError, OutOfStockError):
    """Raised when borrowing an item that does not exist."""

    kind = "not_found"


class LoanNotFoundError(NotFoundError):
    """Raised when a loan id does not resolve."""


class InvalidArgumentError(LendingError, ValueError):
    """Raised for missing or malformed input, before any database access."""

    kind = "invalid_argument"


class TransactionError(LendingError):
    """Raised when a unit of work could not be committed and was rolled back."""

    kind = "transaction_failure"
