"""Lending module.

Provides functionality for:
- Borrowing a copy of an item for a patron
- Returning a borrowed copy
- Overdue fine calculation
- Checking an item's copy count against its open loans
"""

from .fines import FinePolicy
from .schemas import BorrowRequest, FineAssessment, InventoryReport
from .service import LendingService

__all__ = [
    "LendingService",
    "FinePolicy",
    "BorrowRequest",
    "FineAssessment",
    "InventoryReport",
]
