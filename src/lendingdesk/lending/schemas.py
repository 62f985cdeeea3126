"""Pydantic schemas for lending requests and query results."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

MAX_LOAN_DAYS = 3650


class BorrowRequest(BaseModel):
    """Arguments of a borrow call, checked before the database is touched."""

    patron_id: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)
    loan_period_days: int = Field(..., gt=0, le=MAX_LOAN_DAYS, strict=True)

    model_config = {"str_strip_whitespace": True}


class FineAssessment(BaseModel):
    """Fine owed on a loan as of a point in time."""

    loan_id: str
    due_date: datetime
    effective_end: datetime  # return date, or now for open loans
    overdue_days: int
    daily_rate: Decimal
    amount: Decimal
    is_returned: bool


class InventoryReport(BaseModel):
    """Copy counter of an item checked against its open loans."""

    item_id: str
    title: str
    total_copies: int
    available_copies: int
    open_loans: int
    expected_available: int
    consistent: bool
    checked_at: Optional[datetime] = None
