"""Database module: ORM models, schemas, sessions and repositories."""

from .models import Item, Loan, Patron
from .repositories import ItemRepository, LoanRepository, PatronRepository
from .schemas import (
    ItemCreate,
    ItemResponse,
    ItemUpdate,
    LoanCreate,
    LoanResponse,
    LoanStatus,
    LoanUpdate,
    PatronCreate,
    PatronResponse,
    PatronStatus,
    PatronUpdate,
)
from .sqlite import Database, get_db, reset_db

__all__ = [
    "Item",
    "Loan",
    "Patron",
    "ItemRepository",
    "LoanRepository",
    "PatronRepository",
    "ItemCreate",
    "ItemResponse",
    "ItemUpdate",
    "LoanCreate",
    "LoanResponse",
    "LoanStatus",
    "LoanUpdate",
    "PatronCreate",
    "PatronResponse",
    "PatronStatus",
    "PatronUpdate",
    "Database",
    "get_db",
    "reset_db",
]
